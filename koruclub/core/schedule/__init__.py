"""Sprint scheduling — calendar rules, job ledger, missed-job recovery."""

from koruclub.core.schedule.reconciler import MissedJobReconciler, ReconcileResult
from koruclub.core.schedule.scheduler import SprintScheduler
from koruclub.core.schedule.types import JobStatus, JobType

__all__ = [
    "JobStatus",
    "JobType",
    "MissedJobReconciler",
    "ReconcileResult",
    "SprintScheduler",
]
