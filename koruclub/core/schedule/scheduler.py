"""SprintScheduler — APScheduler triggers + JobLedger bookkeeping.

APScheduler only decides *when* to wake up. Whether a tick is a real
occurrence is decided by the calendar rules at fire time, and every tick
leaves exactly one ledger row behind (completed, skipped or failed).
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from koruclub.core.config.schema import Config
from koruclub.core.schedule.calendar import (
    all_next_occurrences,
    at_job_time,
    describe_skip,
    is_occurrence,
    now_local,
)
from koruclub.core.schedule.dispatch import Dispatcher, send_with_retry
from koruclub.core.schedule.errors import DispatchError
from koruclub.core.schedule.reconciler import MissedJobReconciler, ReconcileResult
from koruclub.core.schedule.types import (
    CHECK_IN_MESSAGE_NO_GOALS,
    JOB_SPECS,
    JobRun,
    JobType,
    ManualTriggerResult,
    NextOccurrence,
    SchedulerSnapshot,
    SchedulerStatus,
    job_spec,
)
from koruclub.memory.ledger import JobLedger

if TYPE_CHECKING:
    from koruclub.memory.store import MemoryStore

HEARTBEAT_JOB_ID = "heartbeat"
_CRON_WEEKDAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def build_trigger(job_type: JobType, timezone: str) -> CronTrigger:
    """Cron trigger that wakes on every candidate day of ``job_type``."""
    spec = job_spec(job_type)
    if spec.weekday is None:
        return CronTrigger(day="last", hour=spec.hour, minute=spec.minute, timezone=timezone)
    return CronTrigger(
        day_of_week=_CRON_WEEKDAYS[spec.weekday],
        hour=spec.hour,
        minute=spec.minute,
        timezone=timezone,
    )


class SprintScheduler:
    """Owns the sprint cadence for one destination chat."""

    def __init__(
        self,
        ledger: JobLedger,
        dispatcher: Dispatcher,
        config: Config | None = None,
        store: MemoryStore | None = None,
        clock=None,
        sleep=asyncio.sleep,
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.config = config or Config()
        self.store = store
        self.timezone = self.config.scheduler.timezone
        self._clock = clock or (lambda: now_local(self.timezone))
        self._sleep = sleep
        self._scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self.reconciler = MissedJobReconciler(
            ledger, self.config.scheduler.min_downtime_s, clock=self._clock
        )

        self.state = SchedulerStatus.INACTIVE
        self.destination: str | None = None
        self.started_at: datetime | None = None

        self.last_kickoff_message_id: str | None = None
        self.last_kickoff_at: datetime | None = None

        self.next_occurrences: list[NextOccurrence] = []
        self.missed_jobs: list[JobRun] = []

    @property
    def is_active(self) -> bool:
        return self.state == SchedulerStatus.ACTIVE

    def now(self) -> datetime:
        return self._clock()

    # ── Lifecycle ─────────────────────────────────────────────

    def start(self, destination: str) -> bool:
        """Register all triggers for ``destination`` and go active.

        Restarting while active replaces the previous registrations.
        Returns False, leaving the scheduler inactive, if registration fails.
        """
        if self.is_active:
            self._scheduler.remove_all_jobs()

        try:
            for job_type in JOB_SPECS:
                self._scheduler.add_job(
                    self.run_job,
                    trigger=build_trigger(job_type, self.timezone),
                    id=job_type.value,
                    args=[job_type],
                    replace_existing=True,
                )
            self._scheduler.add_job(
                self.heartbeat,
                trigger=IntervalTrigger(seconds=self.config.scheduler.heartbeat_interval_s),
                id=HEARTBEAT_JOB_ID,
                replace_existing=True,
            )
            if not self._scheduler.running:
                self._scheduler.start()
        except Exception as e:
            logger.error(f"Failed to register sprint jobs: {e}")
            self._scheduler.remove_all_jobs()
            self.state = SchedulerStatus.INACTIVE
            self.destination = None
            return False

        self.heartbeat()
        self.state = SchedulerStatus.ACTIVE
        self.destination = destination
        self.started_at = self.now()
        self._refresh_next()
        logger.info(f"SprintScheduler started for {destination} ({len(JOB_SPECS)} jobs)")
        return True

    def stop(self) -> None:
        if not self.is_active:
            return
        self._scheduler.remove_all_jobs()
        self.state = SchedulerStatus.INACTIVE
        self.started_at = None
        self.next_occurrences = []
        self.missed_jobs = []
        logger.info("SprintScheduler stopped")

    def shutdown(self) -> None:
        """Stop and tear down APScheduler (application exit)."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def heartbeat(self) -> None:
        try:
            self.ledger.heartbeat(self.now())
        except Exception as e:
            logger.error(f"Heartbeat write failed: {e}")

    # ── Commands ──────────────────────────────────────────────

    def start_scheduler(self, destination: str) -> bool:
        """False if already running (nothing is re-registered)."""
        if self.is_active:
            return False
        return self.start(destination)

    def stop_scheduler(self) -> bool:
        """False if it was not running."""
        if not self.is_active:
            return False
        self.stop()
        return True

    def get_next_occurrences(self) -> list[NextOccurrence]:
        return all_next_occurrences(self.now())

    def get_missed_jobs(self) -> list[JobRun]:
        return self.ledger.get_missed_jobs()

    def reconcile_missed(self) -> ReconcileResult:
        result = self.reconciler.reconcile(self.now())
        self.missed_jobs = result.missed
        return result

    def set_last_kickoff(self, message_id: str | None, at: datetime) -> None:
        self.last_kickoff_message_id = message_id
        self.last_kickoff_at = at
        logger.info(f"Tracking kickoff message: {message_id}")

    def status(self) -> SchedulerSnapshot:
        return SchedulerSnapshot(
            status=self.state,
            destination=self.destination,
            started_at=self.started_at,
            scheduled_tasks=len(self._scheduler.get_jobs()) if self.is_active else 0,
            next_occurrences=self.get_next_occurrences(),
            missed_jobs=self.get_missed_jobs(),
        )

    async def manual_trigger(
        self, job_type: JobType, destination: str | None = None
    ) -> ManualTriggerResult:
        """Send ``job_type``'s message once, right now, and resolve a missed run.

        No retry: the person who typed the command sees the failure.
        """
        target = destination or self.destination
        if not target:
            return ManualTriggerResult(sent=False, error="No destination chat configured")

        spec = job_spec(job_type)
        try:
            message_id = await self.dispatcher.send(target, self._compose(job_type))
        except Exception as e:
            logger.error(f"Manual {spec.label} failed: {e}")
            return ManualTriggerResult(sent=False, error=str(e))

        if job_type == JobType.KICKOFF:
            self.set_last_kickoff(message_id, self.now())

        try:
            resolved = self.ledger.record_manual_trigger(job_type, message_id, self.now())
            self.missed_jobs = self.ledger.get_missed_jobs()
        except Exception as e:
            # the message is out; only the bookkeeping failed
            logger.error(f"Manual {spec.label} sent but not recorded: {e}")
            return ManualTriggerResult(
                sent=True, resolved_missed=False, message_id=message_id, error=str(e)
            )
        return ManualTriggerResult(sent=True, resolved_missed=resolved, message_id=message_id)

    # ── Execution ─────────────────────────────────────────────

    async def run_job(self, job_type: JobType) -> None:
        """One trigger tick: record, check the calendar, send, record outcome."""
        spec = job_spec(job_type)
        now = self.now()
        try:
            run_id = self.ledger.record_fired(job_type, at_job_time(job_type, now))
        except Exception as e:
            logger.error(f"Could not record {spec.label} tick, abandoning: {e}")
            return

        try:
            if not is_occurrence(job_type, now):
                self.ledger.record_skipped(run_id, describe_skip(job_type, now))
                return

            if not self.destination:
                self.ledger.record_failed(run_id, "No destination chat configured")
                return

            logger.info(f"Executing {spec.label} at {now:%Y-%m-%d %H:%M} (day {now.day})")
            try:
                message_id = await send_with_retry(
                    self.dispatcher,
                    self.destination,
                    self._compose(job_type),
                    label=spec.label,
                    max_attempts=self.config.scheduler.max_attempts,
                    base_delay=self.config.scheduler.retry_base_delay_s,
                    sleep=self._sleep,
                )
            except DispatchError as e:
                self.ledger.record_failed(run_id, str(e))
                return

            self.ledger.record_completed(run_id, message_id)
            if job_type == JobType.KICKOFF:
                self.set_last_kickoff(message_id, now)
                self._carry_over_goals()
        except Exception as e:
            logger.error(f"Error in {spec.label} task: {e}")
            try:
                self.ledger.record_failed(run_id, str(e))
            except Exception as inner:
                logger.error(f"Could not record {spec.label} failure: {inner}")
        finally:
            self._refresh_next()

    def _compose(self, job_type: JobType) -> str:
        if job_type == JobType.CHECK_IN and not self._users_with_goals():
            return CHECK_IN_MESSAGE_NO_GOALS
        return job_spec(job_type).message

    def _users_with_goals(self) -> list[str]:
        if self.store is None:
            return []
        try:
            return self.store.get_users_with_active_goals()
        except Exception as e:
            logger.warning(f"Could not read active goals: {e}")
            return []

    def _carry_over_goals(self) -> None:
        if self.store is None:
            return
        try:
            users = self.store.get_users_with_active_goals()
            carried = sum(len(self.store.carry_over_goals(u)) for u in users)
        except Exception as e:
            logger.error(f"Goal carry-over failed: {e}")
            return
        if carried:
            logger.info(f"Carried over {carried} goal(s) into the new sprint")

    def _refresh_next(self) -> None:
        if self.is_active:
            self.next_occurrences = self.get_next_occurrences()
