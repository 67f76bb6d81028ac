"""Sprint schedule types — job kinds, run ledger rows, scheduler state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel

MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY, SUNDAY = range(7)


class JobType(str, Enum):
    """The five recurring sprint events."""

    KICKOFF = "kickoff"
    REVIEW = "review"
    DEMO = "demo"
    CHECK_IN = "check_in"
    MONTH_END = "month_end"


class JobStatus(str, Enum):
    """Lifecycle of a single JobRun.

    ``pending`` is the only state a live tick creates; ``missed`` is only
    created by the reconciler. Everything else is terminal.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    MISSED = "missed"
    MANUAL = "manual"


# from-state → allowed to-states
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.COMPLETED, JobStatus.SKIPPED, JobStatus.FAILED}
    ),
    JobStatus.MISSED: frozenset({JobStatus.MANUAL}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.SKIPPED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.MANUAL: frozenset(),
}


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class JobSpec:
    """Static configuration of one job type."""

    job_type: JobType
    label: str
    hour: int
    minute: int
    horizon_days: int
    command: str
    message: str
    weekday: int | None = None  # None → last day of month
    occurrences: frozenset[int] = frozenset()


KICKOFF_MESSAGE = (
    "*Sprint Kickoff* 🚀\n\n"
    "👉 What are your main goals for the next 2 weeks?\n\n"
    "Share below and let's crush this sprint together! 💪"
)

JOB_SPECS: dict[JobType, JobSpec] = {
    JobType.KICKOFF: JobSpec(
        job_type=JobType.KICKOFF,
        label="Sprint Kickoff",
        hour=9,
        minute=0,
        horizon_days=31,
        command="monday",
        weekday=MONDAY,
        occurrences=frozenset({1, 3}),
        message=KICKOFF_MESSAGE,
    ),
    JobType.REVIEW: JobSpec(
        job_type=JobType.REVIEW,
        label="Sprint Review",
        hour=15,
        minute=30,
        horizon_days=31,
        command="friday",
        weekday=FRIDAY,
        occurrences=frozenset({2, 4}),
        message=(
            "*Sprint Review* 🔍\n\n"
            "👉 How did you do on your sprint goals?\n\n"
            "Share your wins, learnings, and let's celebrate our growth! 🎉"
        ),
    ),
    JobType.DEMO: JobSpec(
        job_type=JobType.DEMO,
        label="Demo Day",
        hour=10,
        minute=0,
        horizon_days=45,
        command="demo",
        weekday=SATURDAY,
        occurrences=frozenset({2}),
        message=(
            "*Demo Day* 🎬\n\n"
            "👉 Share what you've been cooking up!\n\n"
            "There is no specific format. Could be a short vid, link, "
            "screenshot or picture. 🏆"
        ),
    ),
    JobType.CHECK_IN: JobSpec(
        job_type=JobType.CHECK_IN,
        label="Mid-Sprint Check-in",
        hour=9,
        minute=0,
        horizon_days=31,
        command="checkin",
        weekday=WEDNESDAY,
        occurrences=frozenset({2, 4}),
        message=(
            "*Mid-Sprint Check-in* 📊\n\n"
            "We're halfway through the sprint! How's everyone tracking?\n\n"
            "👉 Share a quick update on your progress 👇"
        ),
    ),
    JobType.MONTH_END: JobSpec(
        job_type=JobType.MONTH_END,
        label="Monthly Celebration",
        hour=9,
        minute=0,
        horizon_days=32,
        command="monthly",
        message=(
            "*Monthly Celebration* 🎊\n\n"
            "As we close out the month, take a moment to reflect on your "
            "accomplishments!\n\nBe proud of what you've achieved ✨"
        ),
    ),
}

# Used when nobody has an active goal yet.
CHECK_IN_MESSAGE_NO_GOALS = (
    "*Mid-Sprint Check-in* 📊\n\n"
    "How's everyone tracking on their goals? Drop an update below! 👇"
)


def job_spec(job_type: JobType) -> JobSpec:
    return JOB_SPECS[job_type]


def job_label(job_type: JobType) -> str:
    return JOB_SPECS[job_type].label


def job_type_from_command(command: str) -> JobType | None:
    """Resolve a chat command word (``monday``, ``review`` ...) to a JobType."""
    word = command.strip().lower()
    aliases = {"kickoff": JobType.KICKOFF, "review": JobType.REVIEW, "month_end": JobType.MONTH_END}
    if word in aliases:
        return aliases[word]
    for spec in JOB_SPECS.values():
        if spec.command == word or spec.job_type.value == word:
            return spec.job_type
    return None


# ════════════════════════════════════════════════════════════
# LEDGER ROWS
# ════════════════════════════════════════════════════════════


class JobRun(BaseModel):
    """One evaluated-or-detected occurrence — mirrors scheduled_job_runs."""

    id: str
    job_type: JobType
    scheduled_for: datetime
    status: JobStatus
    executed_at: datetime | None = None
    skipped_reason: str | None = None
    message_id: str | None = None
    error: str | None = None
    created_at: datetime | None = None

    @property
    def label(self) -> str:
        return job_label(self.job_type)


class SchedulerState(BaseModel):
    """Singleton heartbeat row — bounds the reconciliation window."""

    last_heartbeat: datetime
    scheduler_started: datetime


class NextOccurrence(BaseModel):
    """Derived, never persisted."""

    job_type: JobType
    date: datetime
    label: str


class SchedulerStatus(str, Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"


class ManualTriggerResult(BaseModel):
    sent: bool
    resolved_missed: bool = False
    message_id: str | None = None
    error: str | None = None


class SchedulerSnapshot(BaseModel):
    """Status view for the chat command and the HTTP API."""

    status: SchedulerStatus
    destination: str | None = None
    started_at: datetime | None = None
    scheduled_tasks: int = 0
    next_occurrences: list[NextOccurrence] = []
    missed_jobs: list[JobRun] = []
