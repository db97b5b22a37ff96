"""Challenge solving coordinator.

Each attempt is one retryable unit: capture a fresh challenge image, send it
to the solving service, poll for the answer, type it, submit the form and
read the outcome. Nothing is recovered mid-attempt; a failed attempt simply
moves on to a brand new challenge image. Total cost is capped by
attempts x polls.
"""
import asyncio
import logging
from dataclasses import dataclass

from config import (
    ARTIFACT_TIMEOUT,
    CHALLENGE_ATTEMPTS,
    CONFIRMATION_TIMEOUT,
    INTERSTITIAL_TIMEOUT,
    MAX_POLLS,
    POLL_SECONDS,
    REJECTION_WINDOW,
    SELECTORS,
    SETTLE_SECONDS,
    SUBMIT_TIMEOUT,
    TEXTS,
)
from errors import (
    ChallengeAttemptFailed,
    ElementNotFound,
    PreconditionTimeout,
    ServiceError,
)
from primitives import (
    any_text,
    click,
    find_and_act,
    has_text,
    rendered,
    type_into,
    visible,
    wait_until,
)
from solving_service import ChallengeJob, ChallengeParams, JobStatus, SolvingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChallengePolicy:
    attempts: int = CHALLENGE_ATTEMPTS
    artifact_timeout: float = ARTIFACT_TIMEOUT
    submit_timeout: float = SUBMIT_TIMEOUT
    max_polls: int = MAX_POLLS
    poll_interval: float = POLL_SECONDS
    interstitial_timeout: float = INTERSTITIAL_TIMEOUT
    rejection_window: float = REJECTION_WINDOW
    confirmation_timeout: float = CONFIRMATION_TIMEOUT
    settle: float = SETTLE_SECONDS


class ChallengeCoordinator:
    def __init__(
        self,
        service: SolvingService,
        policy: ChallengePolicy = ChallengePolicy(),
        params: ChallengeParams = ChallengeParams(),
        diagnostics=None,
        metrics=None,
    ):
        self.service = service
        self.policy = policy
        self.params = params
        self.diagnostics = diagnostics
        self.metrics = metrics
        self._last_artifact: bytes | None = None

    async def run(self, surface) -> str:
        """Solve the challenge and submit the booking. Returns the accepted answer.

        Raises PreconditionTimeout if no challenge image ever renders and
        ChallengeAttemptFailed once every attempt has been used up.
        """
        reason = "no attempt made"
        self._last_artifact = None
        for attempt in range(1, self.policy.attempts + 1):
            logger.info("[challenge] attempt %d/%d", attempt, self.policy.attempts)
            if self.metrics:
                self.metrics.challenge_attempts += 1

            if attempt > 1:
                try:
                    await self._refresh(surface)
                except Exception as e:
                    reason = f"{type(e).__name__}: {e}"
                    logger.warning("challenge refresh %d failed: %s", attempt, reason)
                    continue

            try:
                await wait_until(
                    rendered(surface, SELECTORS["captcha_image"], min_height=0),
                    "challenge image", self.policy.artifact_timeout,
                )
            except PreconditionTimeout:
                logger.error("challenge image never rendered; giving up on the challenge")
                raise

            try:
                answer = await self._attempt(surface, attempt)
            except Exception as e:
                # Browser errors (a detached image, a re-rendered button) fail
                # this attempt only.
                reason = f"{type(e).__name__}: {e}"
                logger.warning("challenge attempt %d failed: %s", attempt, reason)
                continue

            logger.info("challenge accepted on attempt %d", attempt)
            return answer

        logger.error("challenge attempts exhausted: %s", reason)
        raise ChallengeAttemptFailed(self.policy.attempts, reason)

    async def _attempt(self, surface, attempt: int) -> str:
        artifact = await self._capture(surface)
        if artifact == self._last_artifact:
            raise ChallengeAttemptFailed(attempt, "challenge image did not change after refresh")
        self._last_artifact = artifact

        job = ChallengeJob(artifact=artifact)
        if self.diagnostics:
            self.diagnostics.save_artifact(job.artifact, attempt)

        try:
            job.submitted_id = await asyncio.wait_for(
                self.service.submit(job.artifact, self.params),
                timeout=self.policy.submit_timeout,
            )
        except asyncio.TimeoutError:
            raise ServiceError(f"submit took longer than {self.policy.submit_timeout:g}s")
        if self.metrics:
            self.metrics.solver_submits += 1

        await self._wait_for_answer(job, attempt)
        logger.info("[challenge] job %s solved as %r", job.submitted_id, job.solved_text)

        await self._enter_answer(surface, job.solved_text)
        await self._dismiss_interstitial(surface)

        rejection = await self._rejection_message(surface)
        if rejection:
            raise ChallengeAttemptFailed(attempt, f"site rejected the answer: {rejection}")

        await wait_until(
            rendered(surface, SELECTORS["confirmation_marker"]),
            "booking confirmation", self.policy.confirmation_timeout,
        )
        return job.solved_text

    async def _capture(self, surface) -> bytes:
        # Re-resolve after the wait: the image element may have been replaced.
        for handle in await surface.query_all(SELECTORS["captcha_image"]):
            if not await surface.is_rendered(handle):
                continue
            box = await surface.bounding_box(handle)
            if box and box["height"] > 0:
                return await surface.screenshot(handle)
        raise ElementNotFound(SELECTORS["captcha_image"], "challenge image disappeared")

    async def _wait_for_answer(self, job: ChallengeJob, attempt: int) -> None:
        for poll in range(1, self.policy.max_polls + 1):
            await asyncio.sleep(self.policy.poll_interval)
            result = await self.service.poll(job.submitted_id)
            if self.metrics:
                self.metrics.solver_polls += 1
            job.status = result.status
            if result.status == JobStatus.SOLVED:
                job.solved_text = result.text
                return
            if result.status == JobStatus.FAILED:
                raise ServiceError(f"solver gave up on job {job.submitted_id}: {result.text}")
            logger.debug("job %s pending (poll %d)", job.submitted_id, poll)

        job.status = JobStatus.FAILED
        raise ChallengeAttemptFailed(attempt, f"no answer after {self.policy.max_polls} polls")

    async def _enter_answer(self, surface, answer: str) -> None:
        typed = await find_and_act(surface, SELECTORS["captcha_input"], visible, type_into(answer))
        if not typed:
            raise ElementNotFound(SELECTORS["captcha_input"], "challenge input")
        submitted = await find_and_act(surface, SELECTORS["form_submit"], visible, click)
        if not submitted:
            raise ElementNotFound(SELECTORS["form_submit"], "booking submit button")

    async def _dismiss_interstitial(self, surface) -> None:
        try:
            await wait_until(
                any_text(surface, SELECTORS["interstitial_buttons"], [TEXTS["continue"]]),
                "confirmation popup", self.policy.interstitial_timeout,
            )
        except PreconditionTimeout:
            return
        await find_and_act(
            surface, SELECTORS["interstitial_buttons"],
            has_text(TEXTS["continue"], exact=False), click,
        )
        logger.info("[challenge] dismissed confirmation popup")

    async def _rejection_message(self, surface) -> str | None:
        """Rejection toast text if one shows up within the window, else None."""
        try:
            await wait_until(
                any_text(surface, SELECTORS["toast"], TEXTS["rejections"]),
                "rejection toast", self.policy.rejection_window,
            )
        except PreconditionTimeout:
            return None
        for handle in await surface.query_all(SELECTORS["toast"]):
            text = await surface.text_of(handle)
            if any(r in text for r in TEXTS["rejections"]):
                return text
        return "rejection toast"

    async def _refresh(self, surface) -> None:
        """Ask the page for a new challenge image; challenges are single use."""
        await find_and_act(surface, SELECTORS["captcha_refresh"], visible, click)
        await asyncio.sleep(self.policy.settle)
