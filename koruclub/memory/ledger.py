"""JobLedger — durable record of every scheduled-job evaluation.

Two tables:
    scheduled_job_runs   one row per evaluated or detected occurrence
    scheduler_state      singleton heartbeat row

Status changes go through guarded ``UPDATE ... WHERE status IN (...)`` statements
so an illegal transition fails loudly instead of overwriting a terminal run.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from koruclub.core.schedule.errors import (
    InvalidTransitionError,
    JobRunNotFoundError,
    PersistenceError,
)
from koruclub.core.schedule.types import (
    JobRun,
    JobStatus,
    JobType,
    SchedulerState,
    can_transition,
    job_label,
)

MANUAL_TRIGGER_ATTEMPTS = 3


def _ts(value: datetime) -> str:
    return value.isoformat(sep=" ", timespec="seconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_run(row: sqlite3.Row) -> JobRun:
    return JobRun(
        id=row["id"],
        job_type=JobType(row["job_type"]),
        scheduled_for=_parse_ts(row["scheduled_for"]),
        status=JobStatus(row["status"]),
        executed_at=_parse_ts(row["executed_at"]),
        skipped_reason=row["skipped_reason"],
        message_id=row["message_id"],
        error=row["error"],
        created_at=_parse_ts(row["created_at"]),
    )


class JobLedger:
    """SQLite job-run ledger + scheduler heartbeat."""

    def __init__(self, db_path: str = "data/koruclub.db", clock=None):
        self.db_path = db_path
        self._clock = clock or datetime.now
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()
        logger.info(f"JobLedger initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        try:
            conn = sqlite3.connect(self.db_path, timeout=10.0)
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open ledger {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    # ════════════════════════════════════════════════════════════
    # LIVE TICKS (pending → completed | skipped | failed)
    # ════════════════════════════════════════════════════════════

    def record_fired(self, job_type: JobType, scheduled_for: datetime) -> str:
        """Insert a ``pending`` run for a live tick. Returns its id."""
        run_id = uuid.uuid4().hex
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO scheduled_job_runs (id, job_type, scheduled_for, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (run_id, job_type.value, _ts(scheduled_for), JobStatus.PENDING.value, _ts(self._clock())),
            )
            conn.commit()
        logger.info(f"Job fired: {job_type.value} scheduled for {scheduled_for:%Y-%m-%d %H:%M}")
        return run_id

    def record_skipped(self, run_id: str, reason: str) -> None:
        self._finish(run_id, JobStatus.SKIPPED, skipped_reason=reason)
        logger.info(f"Job skipped: {run_id} - {reason}")

    def record_completed(self, run_id: str, message_id: str | None = None) -> None:
        self._finish(run_id, JobStatus.COMPLETED, message_id=message_id)
        logger.info(f"Job completed: {run_id}")

    def record_failed(self, run_id: str, error: str) -> None:
        self._finish(run_id, JobStatus.FAILED, error=error)
        logger.warning(f"Job failed: {run_id} - {error}")

    def _finish(self, run_id: str, target: JobStatus, **fields: Any) -> None:
        """Move a run to ``target`` if TRANSITIONS allows it from its current status."""
        sources = [s.value for s in JobStatus if can_transition(s, target)]
        columns = {"status": target.value, "executed_at": _ts(self._clock()), **fields}
        assignments = ", ".join(f"{name} = ?" for name in columns)
        placeholders = ", ".join("?" for _ in sources)
        with self._get_conn() as conn:
            cursor = conn.execute(
                f"UPDATE scheduled_job_runs SET {assignments} WHERE id = ? AND status IN ({placeholders})",
                (*columns.values(), run_id, *sources),
            )
            if cursor.rowcount == 0:
                row = conn.execute(
                    "SELECT status FROM scheduled_job_runs WHERE id = ?", (run_id,)
                ).fetchone()
                if row is None:
                    raise JobRunNotFoundError(f"Job run not found: {run_id}")
                raise InvalidTransitionError(run_id, row["status"], target.value)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # MISSED + MANUAL
    # ════════════════════════════════════════════════════════════

    def record_missed(self, job_type: JobType, scheduled_for: datetime) -> bool:
        """Insert a ``missed`` run unless one already exists for the exact slot.

        Returns True if a row was inserted.
        """
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = conn.execute(
                "SELECT id FROM scheduled_job_runs WHERE job_type = ? AND scheduled_for = ?",
                (job_type.value, _ts(scheduled_for)),
            ).fetchone()
            if existing:
                conn.rollback()
                return False
            conn.execute(
                """INSERT INTO scheduled_job_runs (id, job_type, scheduled_for, status, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    uuid.uuid4().hex,
                    job_type.value,
                    _ts(scheduled_for),
                    JobStatus.MISSED.value,
                    _ts(self._clock()),
                ),
            )
            conn.commit()
        logger.info(
            f"Recorded missed job: {job_label(job_type)} scheduled for {scheduled_for:%Y-%m-%d %H:%M}"
        )
        return True

    def record_manual_trigger(
        self,
        job_type: JobType,
        message_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Record a user-triggered send, resolving the latest missed run if any.

        The lookup and the write share one transaction; if the store fails
        the whole operation is retried, never left half-applied.

        Returns
        -------
        bool
            True if a ``missed`` run was flipped to ``manual``.
        """

        def log_failure(state: RetryCallState) -> None:
            logger.warning(
                f"Manual trigger for {job_type.value} failed "
                f"(attempt {state.attempt_number}/{MANUAL_TRIGGER_ATTEMPTS}): {state.outcome.exception()}"
            )

        at = now or self._clock()
        for attempt in Retrying(
            stop=stop_after_attempt(MANUAL_TRIGGER_ATTEMPTS),
            retry=retry_if_exception_type(PersistenceError),
            after=log_failure,
            reraise=True,
        ):
            with attempt:
                resolved = self._manual_trigger_once(job_type, message_id, at)
        return resolved

    def _manual_trigger_once(
        self, job_type: JobType, message_id: str | None, now: datetime
    ) -> bool:
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            missed = conn.execute(
                """SELECT id, scheduled_for FROM scheduled_job_runs
                   WHERE job_type = ? AND status = ?
                   ORDER BY scheduled_for DESC LIMIT 1""",
                (job_type.value, JobStatus.MISSED.value),
            ).fetchone()
            if missed:
                conn.execute(
                    """UPDATE scheduled_job_runs
                       SET status = ?, executed_at = ?, message_id = ?
                       WHERE id = ? AND status = ?""",
                    (
                        JobStatus.MANUAL.value,
                        _ts(self._clock()),
                        message_id,
                        missed["id"],
                        JobStatus.MISSED.value,
                    ),
                )
            else:
                conn.execute(
                    """INSERT INTO scheduled_job_runs
                       (id, job_type, scheduled_for, status, executed_at, message_id, created_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        uuid.uuid4().hex,
                        job_type.value,
                        _ts(now),
                        JobStatus.MANUAL.value,
                        _ts(self._clock()),
                        message_id,
                        _ts(self._clock()),
                    ),
                )
            conn.commit()

        if missed:
            logger.info(
                f"Missed {job_label(job_type)} ({missed['scheduled_for']}) resolved via manual trigger"
            )
            return True
        logger.info(f"Manual trigger recorded: {job_type.value}")
        return False

    # ════════════════════════════════════════════════════════════
    # HEARTBEAT
    # ════════════════════════════════════════════════════════════

    def heartbeat(self, now: datetime | None = None) -> None:
        """Upsert last_heartbeat; scheduler_started is set on first call only."""
        stamp = _ts(now or self._clock())
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO scheduler_state (id, last_heartbeat, scheduler_started)
                   VALUES ('singleton', ?, ?)
                   ON CONFLICT(id) DO UPDATE SET last_heartbeat = excluded.last_heartbeat""",
                (stamp, stamp),
            )
            conn.commit()

    def get_state(self) -> SchedulerState | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT last_heartbeat, scheduler_started FROM scheduler_state WHERE id = 'singleton'"
            ).fetchone()
        if not row:
            return None
        return SchedulerState(
            last_heartbeat=_parse_ts(row["last_heartbeat"]),
            scheduler_started=_parse_ts(row["scheduler_started"]),
        )

    # ════════════════════════════════════════════════════════════
    # QUERIES
    # ════════════════════════════════════════════════════════════

    def get_run(self, run_id: str) -> JobRun | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_job_runs WHERE id = ?", (run_id,)
            ).fetchone()
        return _row_to_run(row) if row else None

    def get_missed_jobs(self) -> list[JobRun]:
        """All currently-missed runs, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM scheduled_job_runs WHERE status = ? ORDER BY scheduled_for ASC",
                (JobStatus.MISSED.value,),
            ).fetchall()
        return [_row_to_run(r) for r in rows]

    def get_last_successful_run(self, job_type: JobType) -> JobRun | None:
        with self._get_conn() as conn:
            row = conn.execute(
                """SELECT * FROM scheduled_job_runs
                   WHERE job_type = ? AND status IN (?, ?)
                   ORDER BY executed_at DESC LIMIT 1""",
                (job_type.value, JobStatus.COMPLETED.value, JobStatus.MANUAL.value),
            ).fetchone()
        return _row_to_run(row) if row else None

    def get_recent_runs(
        self, limit: int = 20, job_type: JobType | None = None
    ) -> list[JobRun]:
        query = "SELECT * FROM scheduled_job_runs"
        params: list[Any] = []
        if job_type:
            query += " WHERE job_type = ?"
            params.append(job_type.value)
        query += " ORDER BY scheduled_for DESC LIMIT ?"
        params.append(limit)
        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_run(r) for r in rows]


# ════════════════════════════════════════════════════════════
# SQL SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scheduled_job_runs (
    id TEXT PRIMARY KEY,
    job_type TEXT NOT NULL,
    scheduled_for TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    executed_at TEXT,
    skipped_reason TEXT,
    message_id TEXT,
    error TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_job_runs_type_scheduled
    ON scheduled_job_runs(job_type, scheduled_for);
CREATE INDEX IF NOT EXISTS idx_job_runs_type_status
    ON scheduled_job_runs(job_type, status);

CREATE TABLE IF NOT EXISTS scheduler_state (
    id TEXT PRIMARY KEY DEFAULT 'singleton',
    last_heartbeat TEXT NOT NULL,
    scheduler_started TEXT NOT NULL
);
"""
