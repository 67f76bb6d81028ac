"""MissedJobReconciler — find occurrences that fell inside a downtime window.

On startup the last heartbeat bounds the window the process was away.
Every qualifying slot strictly inside ``(last_heartbeat, now)`` gets a
``missed`` ledger row (once per slot). Nothing is ever sent from here; a
human resolves missed jobs with a manual trigger.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger

from koruclub.core.schedule.calendar import at_job_time, qualifying_days
from koruclub.core.schedule.types import JOB_SPECS, JobRun
from koruclub.memory.ledger import JobLedger


@dataclass
class ReconcileResult:
    missed: list[JobRun] = field(default_factory=list)  # all currently-missed runs
    recorded: int = 0  # rows inserted by this pass
    downtime: timedelta | None = None


class MissedJobReconciler:
    def __init__(self, ledger: JobLedger, min_downtime_s: int = 60, clock=None):
        self.ledger = ledger
        self.min_downtime = timedelta(seconds=min_downtime_s)
        self._clock = clock or datetime.now

    def reconcile(self, now: datetime | None = None) -> ReconcileResult:
        now = now or self._clock()
        state = self.ledger.get_state()

        if state is None:
            logger.info("No scheduler state found (first run)")
            self.ledger.heartbeat(now)
            return ReconcileResult()

        last = state.last_heartbeat
        downtime = now - last
        if downtime < self.min_downtime:
            logger.debug(f"Downtime {downtime.total_seconds():.0f}s below threshold")
            self.ledger.heartbeat(now)
            return ReconcileResult(downtime=downtime)

        logger.info(
            f"Checking for missed jobs: downtime {downtime.total_seconds() / 60:.0f} min "
            f"(last heartbeat {last:%Y-%m-%d %H:%M})"
        )

        recorded = 0
        for job_type in JOB_SPECS:
            for day in qualifying_days(job_type, last, now):
                slot = at_job_time(job_type, day)
                if last < slot < now and self.ledger.record_missed(job_type, slot):
                    recorded += 1

        missed = self.ledger.get_missed_jobs()
        self.ledger.heartbeat(now)
        if missed:
            logger.warning(f"{len(missed)} missed job(s) awaiting manual trigger")
        return ReconcileResult(missed=missed, recorded=recorded, downtime=downtime)
