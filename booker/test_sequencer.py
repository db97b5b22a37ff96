import asyncio

import pytest

from diagnostics import Diagnostics
from errors import ElementNotFound, PreconditionTimeout, WorkflowFailed
from metrics import MetricsTracker
from sequencer import Sequencer, WorkflowState, WorkflowStep, build_booking_steps, run_booking
from steps import BookingSteps


def recording_steps(visited, fail_at=None, error=None):
    def make(name):
        async def action(surface):
            visited.append(name)
            if name == fail_at:
                raise error
        return action

    names = ["First", "Second", "Third"]
    return [WorkflowStep(n, make(n), timeout=1) for n in names]


@pytest.mark.asyncio
async def test_steps_run_in_declared_order(surface):
    visited = []
    metrics = MetricsTracker()
    sequencer = Sequencer(recording_steps(visited), metrics=metrics)

    await sequencer.run(surface)

    assert visited == ["First", "Second", "Third"]
    assert sequencer.state == WorkflowState.COMPLETED
    assert metrics.get_summary()["success"] is True


@pytest.mark.asyncio
async def test_first_failure_stops_the_workflow(surface, tmp_path):
    visited = []
    metrics = MetricsTracker()
    diagnostics = Diagnostics(tmp_path, "profile-20261019_120000")
    sequencer = Sequencer(
        recording_steps(visited, fail_at="Second", error=ElementNotFound(".route-item")),
        diagnostics=diagnostics,
        metrics=metrics,
    )

    with pytest.raises(WorkflowFailed) as exc:
        await sequencer.run(surface)

    assert visited == ["First", "Second"]
    assert exc.value.step_name == "Second"
    assert isinstance(exc.value.cause, ElementNotFound)
    assert sequencer.state == WorkflowState.FAILED
    assert sequencer.failed_step == "Second"
    assert surface.screenshots == ["page"]
    assert (tmp_path / "profile-20261019_120000-failure.png").read_bytes() == b"\x89PNG fake"
    summary = metrics.get_summary()
    assert summary["failed_step"] == "Second"
    assert summary["steps_completed"] == 1


@pytest.mark.asyncio
async def test_step_timeout_becomes_precondition_timeout(surface):
    async def hangs(surface):
        await asyncio.sleep(10)

    sequencer = Sequencer([WorkflowStep("Slow", hangs, timeout=0.01)])

    with pytest.raises(WorkflowFailed) as exc:
        await sequencer.run(surface)
    assert isinstance(exc.value.cause, PreconditionTimeout)


def test_booking_steps_fixed_order(profile):
    steps = build_booking_steps(BookingSteps(profile))
    assert [s.name for s in steps] == [
        "ChangeLanguage", "LocateAccount", "NavigateLogin", "EnterCredentials",
        "Authenticate", "SelectTrip", "SelectDate", "SelectSession",
        "SetTicketCounts", "FillPassengers", "AcceptTerms", "SolveChallengeAndSubmit",
    ]
    retrying = {s.name: s.max_attempts for s in steps if s.max_attempts > 1}
    assert retrying == {"Authenticate": 3, "SelectDate": 3}


@pytest.mark.asyncio
async def test_run_booking_releases_surface_on_success(surface):
    sequencer = Sequencer(recording_steps([]))
    await run_booking(sequencer, surface_factory=lambda headless: surface)
    assert surface.closed


@pytest.mark.asyncio
async def test_run_booking_releases_surface_on_failure(surface):
    sequencer = Sequencer(recording_steps([], fail_at="First", error=ElementNotFound("x")))
    with pytest.raises(WorkflowFailed):
        await run_booking(sequencer, surface_factory=lambda headless: surface)
    assert surface.closed


@pytest.mark.asyncio
async def test_run_deadline_captures_failure_before_release(surface, tmp_path):
    async def hangs(surface):
        await asyncio.sleep(10)

    metrics = MetricsTracker()
    diagnostics = Diagnostics(tmp_path, "trip-1")
    sequencer = Sequencer(
        [WorkflowStep("First", hangs, timeout=30), WorkflowStep("Second", hangs, timeout=30)],
        diagnostics=diagnostics,
        metrics=metrics,
    )

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(run_booking(sequencer, surface_factory=lambda headless: surface), timeout=0.05)

    assert sequencer.state == WorkflowState.FAILED
    assert sequencer.failed_step == "First"
    assert surface.screenshots == ["page"]
    assert (tmp_path / "trip-1-failure.png").exists()
    assert surface.closed
    assert metrics.get_summary()["failed_step"] == "First"


@pytest.mark.asyncio
async def test_retrying_step_receives_its_attempt_count(surface):
    seen = {}

    async def retrying(surface, attempts=1):
        seen["attempts"] = attempts

    async def single(surface):
        seen["single"] = True

    await Sequencer([
        WorkflowStep("Retrying", retrying, timeout=1, max_attempts=3),
        WorkflowStep("Single", single, timeout=1),
    ]).run(surface)

    assert seen == {"attempts": 3, "single": True}
