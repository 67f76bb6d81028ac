"""Pydantic data models — goals, stats, API responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from koruclub.core.schedule.types import JobType


# ════════════════════════════════════════════════════════════
# GOALS
# ════════════════════════════════════════════════════════════


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CARRIED_OVER = "carried_over"


class Goal(BaseModel):
    id: str
    user_id: str
    text: str
    status: GoalStatus = GoalStatus.ACTIVE
    sprint_number: int
    created_at: datetime
    completed_at: datetime | None = None


class SprintSummary(BaseModel):
    completed: list[Goal] = Field(default_factory=list)
    active: list[Goal] = Field(default_factory=list)
    carried_over: list[Goal] = Field(default_factory=list)


class SprintHistory(BaseModel):
    sprint_number: int
    goals: list[Goal] = Field(default_factory=list)
    completed: int = 0
    total: int = 0


class GoalPatterns(BaseModel):
    frequently_completed: list[str] = Field(default_factory=list)
    frequently_carried_over: list[str] = Field(default_factory=list)


class GoalHistory(BaseModel):
    sprints: list[SprintHistory] = Field(default_factory=list)
    patterns: GoalPatterns = Field(default_factory=GoalPatterns)


class UserStats(BaseModel):
    total_goals: int = 0
    completed_goals: int = 0
    completion_rate: int = 0  # percent, rounded
    current_streak: int = 0  # consecutive sprints with a completion


class TopPerformer(BaseModel):
    user_id: str
    completed_goals: int
    completion_rate: int


class AdminStats(BaseModel):
    total_users: int = 0
    total_goals: int = 0
    active_goals: int = 0
    completed_goals: int = 0
    carried_over_goals: int = 0
    overall_completion_rate: int = 0
    current_sprint_number: int = 0
    current_sprint_goals: int = 0
    current_sprint_completed: int = 0
    current_sprint_active_users: int = 0
    top_performers: list[TopPerformer] = Field(default_factory=list)
    goals_set_last_7_days: int = 0
    goals_completed_last_7_days: int = 0


class CompletionMatch(BaseModel):
    goal_id: str
    confidence: str  # high | medium | low


# ════════════════════════════════════════════════════════════
# API REQUEST / RESPONSE
# ════════════════════════════════════════════════════════════


class HealthResponse(BaseModel):
    status: str
    ready: bool
    version: str = ""


class TriggerResponse(BaseModel):
    job_type: JobType
    sent: bool
    resolved_missed: bool = False
    message_id: str | None = None
    error: str | None = None
