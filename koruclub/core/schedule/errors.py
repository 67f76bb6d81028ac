"""
Scheduler exceptions.

Calendar math never raises; these cover the I/O edges of the core.
"""


class SchedulerError(Exception):
    """Base exception for the scheduling core."""


class DispatchError(SchedulerError):
    """Message could not be sent after all retry attempts."""

    def __init__(self, message: str, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts


class PersistenceError(SchedulerError):
    """Ledger read/write failed."""


class JobRunNotFoundError(PersistenceError):
    """No job run with the given id."""


class InvalidTransitionError(SchedulerError):
    """Attempted a status change the JobRun lifecycle does not allow."""

    def __init__(self, run_id: str, current: str, target: str) -> None:
        super().__init__(f"Job run {run_id}: cannot move {current} → {target}")
        self.run_id = run_id
        self.current = current
        self.target = target
