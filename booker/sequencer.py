"""Workflow step sequencer.

Runs the booking steps strictly in order and stops at the first step that
fails. A booking has no useful partial state, so there is no resume: the
failure is logged, a full-page screenshot is taken, and the operator starts
over.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from browser import BrowserController
from config import AUTH_ATTEMPTS, DATE_PICKER_ATTEMPTS
from errors import PreconditionTimeout, WorkflowFailed

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkflowStep:
    """One named step. Steps with max_attempts > 1 retry internally and
    receive the count as their ``attempts`` keyword."""
    name: str
    action: Callable[..., Awaitable[None]]
    timeout: float
    max_attempts: int = 1

    def invoke(self, surface) -> Awaitable[None]:
        if self.max_attempts > 1:
            return self.action(surface, attempts=self.max_attempts)
        return self.action(surface)


class Sequencer:
    def __init__(self, steps: list[WorkflowStep], diagnostics=None, metrics=None):
        self.steps = steps
        self.diagnostics = diagnostics
        self.metrics = metrics
        self.state = WorkflowState.NOT_STARTED
        self.current_index: Optional[int] = None
        self.failed_step: Optional[str] = None
        self.cause: Optional[BaseException] = None

    async def run(self, surface) -> None:
        """Execute every step once, in order. Raises WorkflowFailed on the first failure.

        Cancellation (the whole-run deadline) is recorded and captured like a
        failure, then propagated unchanged.
        """
        for index, step in enumerate(self.steps):
            self.state = WorkflowState.RUNNING
            self.current_index = index
            logger.info("step %d/%d: %s", index + 1, len(self.steps), step.name)
            if self.metrics:
                self.metrics.start_step(step.name, index)

            try:
                await asyncio.wait_for(step.invoke(surface), timeout=step.timeout)
            except asyncio.TimeoutError:
                await self._fail(surface, step, PreconditionTimeout(f"step {step.name} to finish", step.timeout))
            except asyncio.CancelledError as e:
                await self._record_failure(surface, step, e, "run cancelled")
                raise
            except Exception as e:
                await self._fail(surface, step, e)

            if self.metrics:
                self.metrics.end_step(step.name, success=True)

        self.state = WorkflowState.COMPLETED
        self.current_index = None
        logger.info("workflow completed")

    async def _fail(self, surface, step: WorkflowStep, cause: BaseException) -> None:
        await self._record_failure(surface, step, cause, f"{type(cause).__name__}: {cause}")
        raise WorkflowFailed(step.name, cause) from cause

    async def _record_failure(self, surface, step: WorkflowStep, cause: BaseException, error: str) -> None:
        self.state = WorkflowState.FAILED
        self.failed_step = step.name
        self.cause = cause
        if self.metrics:
            self.metrics.end_step(step.name, success=False, error=error)
        logger.error("step %s failed: %s", step.name, error)
        if self.diagnostics:
            await self.diagnostics.capture_failure(surface, step.name)


def build_booking_steps(booking) -> list[WorkflowStep]:
    """The booking workflow, in its fixed order."""
    return [
        WorkflowStep("ChangeLanguage", booking.change_language, timeout=30),
        WorkflowStep("LocateAccount", booking.locate_account, timeout=20),
        WorkflowStep("NavigateLogin", booking.navigate_login, timeout=20),
        WorkflowStep("EnterCredentials", booking.enter_credentials, timeout=20),
        WorkflowStep("Authenticate", booking.authenticate,
                     timeout=60, max_attempts=AUTH_ATTEMPTS),
        WorkflowStep("SelectTrip", booking.select_trip, timeout=30),
        WorkflowStep("SelectDate", booking.select_date,
                     timeout=40, max_attempts=DATE_PICKER_ATTEMPTS),
        WorkflowStep("SelectSession", booking.select_session, timeout=30),
        WorkflowStep("SetTicketCounts", booking.set_ticket_counts, timeout=30),
        WorkflowStep("FillPassengers", booking.fill_passengers, timeout=30),
        WorkflowStep("AcceptTerms", booking.accept_terms, timeout=20),
        # 4 attempts x (10s image + 5s submit + 15 polls + 8.5s outcome)
        WorkflowStep("SolveChallengeAndSubmit", booking.solve_challenge_and_submit, timeout=240),
    ]


async def run_booking(
    sequencer: Sequencer,
    headless: bool = False,
    keep_open: bool = False,
    surface_factory=BrowserController,
) -> None:
    """Run the sequencer inside one browser session.

    The browser is closed on success and on failure alike; with keep_open a
    failed run waits for Enter first so the page can be inspected.
    """
    async with surface_factory(headless=headless) as surface:
        try:
            await sequencer.run(surface)
        except WorkflowFailed:
            if keep_open:
                print("\n" + "=" * 60)
                print("  BROWSER LEFT OPEN FOR DEBUGGING")
                print("  Press Enter to close browser and exit...")
                print("=" * 60 + "\n", flush=True)
                try:
                    await asyncio.get_running_loop().run_in_executor(None, input)
                except (EOFError, KeyboardInterrupt):
                    pass
            raise
