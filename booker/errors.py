"""Failure taxonomy for the booking workflow.

Only the Sequencer and the challenge coordinator catch these; everything
else lets them propagate.
"""


class BookingError(Exception):
    """Base class for every workflow failure."""


class PreconditionTimeout(BookingError):
    def __init__(self, description: str, timeout: float):
        self.description = description
        self.timeout = timeout
        super().__init__(f"timed out after {timeout:g}s waiting for {description}")


class ElementNotFound(BookingError):
    def __init__(self, selector: str, detail: str = ""):
        self.selector = selector
        self.detail = detail
        message = f"no element matched {selector!r}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class ServiceError(BookingError):
    """The solving service answered with an error state."""


class ChallengeAttemptFailed(BookingError):
    def __init__(self, attempts: int, reason: str):
        self.attempts = attempts
        self.reason = reason
        super().__init__(f"challenge not passed after {attempts} attempt(s): {reason}")


class IneligibleSelection(BookingError):
    """No option satisfies the booking constraints."""


class NoEligibleSlot(IneligibleSelection):
    pass


class WorkflowFailed(BookingError):
    def __init__(self, step_name: str, cause: BaseException):
        self.step_name = step_name
        self.cause = cause
        super().__init__(f"step {step_name} failed: {cause}")
