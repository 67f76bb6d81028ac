"""SQLite-based goal store for KoruClub.

One table, ``goals``. A goal is ``active`` until it is completed or, when a
new sprint starts, ``carried_over`` (the old row is closed and a fresh
active copy is created in the current sprint).
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

from loguru import logger

from koruclub.goals.sprint import sprint_number
from koruclub.memory.models import (
    AdminStats,
    Goal,
    GoalHistory,
    GoalPatterns,
    GoalStatus,
    SprintHistory,
    SprintSummary,
    TopPerformer,
    UserStats,
)


def _row_to_goal(row: sqlite3.Row) -> Goal:
    return Goal(
        id=row["id"],
        user_id=row["user_id"],
        text=row["text"],
        status=GoalStatus(row["status"]),
        sprint_number=row["sprint_number"],
        created_at=datetime.fromisoformat(row["created_at"]),
        completed_at=(
            datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None
        ),
    )


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


class MemoryStore:
    """SQLite goal memory — single source of truth for sprint goals."""

    def __init__(self, db_path: str = "data/koruclub.db", clock=None):
        self.db_path = db_path
        self._clock = clock or datetime.now
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"MemoryStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    def current_sprint(self) -> int:
        return sprint_number(self._clock())

    def _fetch(self, query: str, params: tuple = ()) -> list[Goal]:
        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_goal(r) for r in rows]

    # ════════════════════════════════════════════════════════════
    # GOALS
    # ════════════════════════════════════════════════════════════

    def count_goals(self) -> int:
        with self._get_conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM goals").fetchone()[0]

    def add_goals(self, user_id: str, texts: list[str]) -> list[Goal]:
        """Create one active goal per text in the current sprint."""
        now = self._clock()
        sprint = sprint_number(now)
        goals = [
            Goal(
                id=f"{user_id}-{sprint}-{uuid.uuid4().hex[:8]}",
                user_id=user_id,
                text=text,
                sprint_number=sprint,
                created_at=now,
            )
            for text in texts
        ]
        with self._get_conn() as conn:
            conn.executemany(
                """INSERT INTO goals (id, user_id, text, status, sprint_number, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (g.id, g.user_id, g.text, g.status.value, g.sprint_number, g.created_at.isoformat())
                    for g in goals
                ],
            )
            conn.commit()
        logger.info(f"Goals added: {len(goals)} for {user_id} (sprint {sprint})")
        return goals

    def get_goal(self, goal_id: str) -> Goal | None:
        goals = self._fetch("SELECT * FROM goals WHERE id = ?", (goal_id,))
        return goals[0] if goals else None

    def get_active_goals(self, user_id: str) -> list[Goal]:
        return self._fetch(
            "SELECT * FROM goals WHERE user_id = ? AND status = ? ORDER BY created_at",
            (user_id, GoalStatus.ACTIVE.value),
        )

    def get_current_sprint_goals(self, user_id: str) -> list[Goal]:
        return self._fetch(
            """SELECT * FROM goals
               WHERE user_id = ? AND sprint_number = ? AND status = ?
               ORDER BY created_at""",
            (user_id, self.current_sprint(), GoalStatus.ACTIVE.value),
        )

    def complete_goal(self, user_id: str, goal_id: str) -> Goal | None:
        """Mark an active goal of ``user_id`` completed. None if not theirs / not active."""
        with self._get_conn() as conn:
            cursor = conn.execute(
                """UPDATE goals SET status = ?, completed_at = ?
                   WHERE id = ? AND user_id = ? AND status = ?""",
                (
                    GoalStatus.COMPLETED.value,
                    self._clock().isoformat(),
                    goal_id,
                    user_id,
                    GoalStatus.ACTIVE.value,
                ),
            )
            conn.commit()
        if cursor.rowcount == 0:
            return None
        return self.get_goal(goal_id)

    def carry_over_goals(self, user_id: str) -> list[Goal]:
        """Close active goals from past sprints and re-open them in this one."""
        now = self._clock()
        sprint = sprint_number(now)
        old = self._fetch(
            "SELECT * FROM goals WHERE user_id = ? AND status = ? AND sprint_number < ?",
            (user_id, GoalStatus.ACTIVE.value, sprint),
        )
        if not old:
            return []

        carried = [
            Goal(
                id=f"{user_id}-{sprint}-{uuid.uuid4().hex[:8]}",
                user_id=user_id,
                text=g.text,
                sprint_number=sprint,
                created_at=now,
            )
            for g in old
        ]
        with self._get_conn() as conn:
            conn.executemany(
                "UPDATE goals SET status = ? WHERE id = ?",
                [(GoalStatus.CARRIED_OVER.value, g.id) for g in old],
            )
            conn.executemany(
                """INSERT INTO goals (id, user_id, text, status, sprint_number, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                [
                    (g.id, g.user_id, g.text, g.status.value, g.sprint_number, g.created_at.isoformat())
                    for g in carried
                ],
            )
            conn.commit()
        logger.info(f"Carried over {len(carried)} goal(s) for {user_id} into sprint {sprint}")
        return carried

    def get_sprint_summary(self, user_id: str, sprint: int | None = None) -> SprintSummary:
        goals = self._fetch(
            "SELECT * FROM goals WHERE user_id = ? AND sprint_number = ?",
            (user_id, sprint if sprint is not None else self.current_sprint()),
        )
        return SprintSummary(
            completed=[g for g in goals if g.status == GoalStatus.COMPLETED],
            active=[g for g in goals if g.status == GoalStatus.ACTIVE],
            carried_over=[g for g in goals if g.status == GoalStatus.CARRIED_OVER],
        )

    def get_users_with_active_goals(self) -> list[str]:
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT DISTINCT user_id FROM goals WHERE status = ? ORDER BY user_id",
                (GoalStatus.ACTIVE.value,),
            ).fetchall()
        return [r["user_id"] for r in rows]

    # ════════════════════════════════════════════════════════════
    # HISTORY + STATS
    # ════════════════════════════════════════════════════════════

    def get_goal_history(self, user_id: str, sprint_count: int = 3) -> GoalHistory:
        """Per-sprint breakdown of the last ``sprint_count`` sprints, newest first."""
        current = self.current_sprint()
        first = max(1, current - sprint_count + 1)
        goals = self._fetch(
            """SELECT * FROM goals
               WHERE user_id = ? AND sprint_number BETWEEN ? AND ?
               ORDER BY sprint_number DESC, created_at""",
            (user_id, first, current),
        )

        sprints = []
        for number in range(current, first - 1, -1):
            in_sprint = [g for g in goals if g.sprint_number == number]
            sprints.append(
                SprintHistory(
                    sprint_number=number,
                    goals=in_sprint,
                    completed=sum(g.status == GoalStatus.COMPLETED for g in in_sprint),
                    total=len(in_sprint),
                )
            )

        return GoalHistory(
            sprints=sprints,
            patterns=GoalPatterns(
                frequently_completed=[
                    g.text.lower() for g in goals if g.status == GoalStatus.COMPLETED
                ][:5],
                frequently_carried_over=[
                    g.text.lower() for g in goals if g.status == GoalStatus.CARRIED_OVER
                ][:5],
            ),
        )

    def get_user_stats(self, user_id: str) -> UserStats:
        goals = self._fetch("SELECT * FROM goals WHERE user_id = ?", (user_id,))
        completed = [g for g in goals if g.status == GoalStatus.COMPLETED]

        streak = 0
        current = self.current_sprint()
        for i, number in enumerate(sorted({g.sprint_number for g in completed}, reverse=True)):
            if number != current - i:
                break
            streak += 1

        return UserStats(
            total_goals=len(goals),
            completed_goals=len(completed),
            completion_rate=_percent(len(completed), len(goals)),
            current_streak=streak,
        )

    def get_admin_stats(self) -> AdminStats:
        """Aggregate stats across every member."""
        goals = self._fetch("SELECT * FROM goals")
        now = self._clock()
        current = sprint_number(now)
        week_ago = now - timedelta(days=7)

        by_status = {s: [g for g in goals if g.status == s] for s in GoalStatus}
        in_sprint = [g for g in goals if g.sprint_number == current]
        # carried_over rows duplicate their active copy; leave them out of rates
        countable = [g for g in goals if g.status != GoalStatus.CARRIED_OVER]

        per_user: dict[str, dict[str, int]] = {}
        for g in countable:
            entry = per_user.setdefault(g.user_id, {"total": 0, "completed": 0})
            entry["total"] += 1
            entry["completed"] += g.status == GoalStatus.COMPLETED
        top = sorted(
            (
                TopPerformer(
                    user_id=user_id,
                    completed_goals=s["completed"],
                    completion_rate=_percent(s["completed"], s["total"]),
                )
                for user_id, s in per_user.items()
                if s["total"] >= 3
            ),
            key=lambda p: p.completion_rate,
            reverse=True,
        )[:5]

        return AdminStats(
            total_users=len({g.user_id for g in goals}),
            total_goals=len(goals),
            active_goals=len(by_status[GoalStatus.ACTIVE]),
            completed_goals=len(by_status[GoalStatus.COMPLETED]),
            carried_over_goals=len(by_status[GoalStatus.CARRIED_OVER]),
            overall_completion_rate=_percent(
                len(by_status[GoalStatus.COMPLETED]), len(countable)
            ),
            current_sprint_number=current,
            current_sprint_goals=len(in_sprint),
            current_sprint_completed=sum(g.status == GoalStatus.COMPLETED for g in in_sprint),
            current_sprint_active_users=len({g.user_id for g in in_sprint}),
            top_performers=top,
            goals_set_last_7_days=sum(g.created_at >= week_ago for g in goals),
            goals_completed_last_7_days=sum(
                bool(g.completed_at and g.completed_at >= week_ago) for g in goals
            ),
        )

    def get_db_summary(self) -> str:
        """Plain-text digest of the goal data, fed to the admin chat prompt."""
        stats = self.get_admin_stats()
        recent = self._fetch(
            "SELECT * FROM goals WHERE sprint_number >= ? ORDER BY created_at DESC LIMIT 50",
            (stats.current_sprint_number - 2,),
        )

        def quoted(status: GoalStatus) -> str:
            texts = [f'"{g.text}"' for g in recent if g.status == status]
            return ", ".join(texts[:10])

        performers = "\n".join(
            f"{i}. User {p.user_id[-6:]}: {p.completed_goals} completed ({p.completion_rate}%)"
            for i, p in enumerate(stats.top_performers, 1)
        )
        lines = [
            "DATABASE SUMMARY (KoruClub Goal Tracking):",
            "",
            "OVERALL STATS:",
            f"- Total users: {stats.total_users}",
            f"- Total goals ever set: {stats.total_goals}",
            f"- Goals completed: {stats.completed_goals} ({stats.overall_completion_rate}% completion rate)",
            f"- Currently active goals: {stats.active_goals}",
            f"- Carried over (incomplete): {stats.carried_over_goals}",
            "",
            f"CURRENT SPRINT (#{stats.current_sprint_number}):",
            f"- Goals set: {stats.current_sprint_goals}",
            f"- Completed: {stats.current_sprint_completed}",
            f"- Active users: {stats.current_sprint_active_users}",
            "",
            "RECENT ACTIVITY (Last 7 days):",
            f"- Goals set: {stats.goals_set_last_7_days}",
            f"- Goals completed: {stats.goals_completed_last_7_days}",
            "",
            "TOP PERFORMERS:",
            performers or "None yet",
            "",
            "SAMPLE RECENT GOALS (last 3 sprints):",
            f"Active: {quoted(GoalStatus.ACTIVE)}",
            f"Completed: {quoted(GoalStatus.COMPLETED)}",
        ]
        return "\n".join(lines)


# ════════════════════════════════════════════════════════════
# SQL SCHEMA
# ════════════════════════════════════════════════════════════

_SCHEMA = """
CREATE TABLE IF NOT EXISTS goals (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    text TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    sprint_number INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_goals_user ON goals(user_id);
CREATE INDEX IF NOT EXISTS idx_goals_status ON goals(status);
CREATE INDEX IF NOT EXISTS idx_goals_sprint ON goals(sprint_number);
"""
