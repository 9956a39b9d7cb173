"""Exception taxonomy for scheduling runs."""


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    def __init__(self, message: str, phase: str = "general"):
        super().__init__(message)
        self.phase = phase


class EligibilityError(SchedulingError):
    """Raised when the patient has a critical contraindication for the therapy."""

    def __init__(self, message: str, violations=None, phase: str = "eligibility"):
        super().__init__(message, phase)
        self.violations = list(violations or [])


class ConfigurationError(SchedulingError):
    """Raised when the protocol or resource pool cannot be scheduled at all (e.g. empty workflow)."""

    pass


class UnresolvedConflictError(SchedulingError):
    """Describes a conflict that has no alternative slot and not enough priority to preempt."""

    def __init__(self, message: str, conflict=None, phase: str = "conflict_resolution"):
        super().__init__(message, phase)
        self.conflict = conflict


class InternalError(SchedulingError):
    """Wraps an unexpected exception caught at the orchestrator boundary."""

    pass


class RunCancelledError(SchedulingError):
    """Raised when the caller's cancellation signal is observed mid-run."""

    pass
