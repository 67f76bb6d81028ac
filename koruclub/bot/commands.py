"""Chat command router — ``!bot <command>`` in the group and in admin DMs.

The router is transport-agnostic: it takes an ``IncomingMessage`` and
returns a ``BotResponse`` describing what to post back. Scheduled job
messages themselves go out through the scheduler's dispatcher.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from loguru import logger

from koruclub.core.config.schema import Config
from koruclub.core.schedule.calendar import format_when
from koruclub.core.schedule.scheduler import SprintScheduler
from koruclub.core.schedule.types import (
    JobRun,
    JobType,
    SchedulerSnapshot,
    job_spec,
    job_type_from_command,
)
from koruclub.goals.extractor import GoalExtractor
from koruclub.goals.tracker import GoalTracker
from koruclub.memory.store import MemoryStore


@dataclass
class IncomingMessage:
    chat_id: str  # "<id>@g.us" for groups, "<id>@c.us" for DMs
    sender_id: str
    text: str
    message_id: str | None = None
    quoted_id: str | None = None
    quoted_text: str | None = None

    @property
    def is_group(self) -> bool:
        return self.chat_id.endswith("@g.us")


@dataclass
class BotResponse:
    chat_id: str
    replies: list[str] = field(default_factory=list)
    reaction: str | None = None
    react_to: str | None = None  # message id the reaction goes on


Handler = Callable[[IncomingMessage, str], Awaitable[list[str]]]

TRIGGER_COMMANDS = frozenset(
    {"monday", "kickoff", "friday", "review", "demo", "checkin", "monthly"}
)


# ════════════════════════════════════════════════════════════
# FORMATTING
# ════════════════════════════════════════════════════════════


def format_uptime(started_at: datetime | None, now: datetime) -> str:
    if started_at is None:
        return "0 minutes"
    seconds = int((now - started_at).total_seconds())
    days, rest = divmod(seconds, 86400)
    return f"{days} days, {rest // 3600} hours, {rest % 3600 // 60} minutes"


def format_status(snapshot: SchedulerSnapshot, now: datetime) -> str:
    active = snapshot.status.value == "active"
    upcoming = "\n".join(
        f"- {o.label}: {format_when(o.date)}" for o in snapshot.next_occurrences
    )
    text = (
        "*Bot Status Report*\n\n"
        f"🤖 Active: {'Yes ✅' if active else 'No ❌'}\n"
        f"⏱️ Uptime: {format_uptime(snapshot.started_at, now)}\n"
        f"👥 Target Group: {snapshot.destination or 'Not set'}\n"
        f"📊 Scheduled Tasks: {snapshot.scheduled_tasks}\n\n"
        f"*Upcoming Messages:*\n{upcoming or 'No upcoming messages scheduled.'}"
    )
    if snapshot.missed_jobs:
        text += f"\n\n⚠️ *Missed Jobs:* {len(snapshot.missed_jobs)} (send `!bot missed` for details)"
    return text


def format_missed(runs: list[JobRun], prefix: str) -> str:
    if not runs:
        return "✅ No missed jobs."
    lines = [
        f"- {run.label}: {format_when(run.scheduled_for)} → send *{prefix} {job_spec(run.job_type).command}*"
        for run in runs
    ]
    return (
        f"*Missed Jobs* ⚠️\n\n{chr(10).join(lines)}\n\n"
        "_These were due while I was offline. Trigger one manually to resolve it._"
    )


# ════════════════════════════════════════════════════════════
# ROUTER
# ════════════════════════════════════════════════════════════


class CommandRouter:
    def __init__(
        self,
        config: Config,
        scheduler: SprintScheduler,
        store: MemoryStore,
        extractor: GoalExtractor,
        tracker: GoalTracker,
    ):
        self.config = config
        self.scheduler = scheduler
        self.store = store
        self.extractor = extractor
        self.tracker = tracker
        self.target_group: str | None = config.whatsapp.target_group or None

        self._group: dict[str, Handler] = {
            "start": self._start,
            "stop": self._stop,
            "status": self._status,
            "help": self._group_help,
            "missed": self._missed,
            "goals": self._goals,
            "mentor": self._mentor,
        }
        self._admin: dict[str, Handler] = {
            "status": self._status,
            "help": self._admin_help,
            "stats": self._stats,
            "chat": self._chat,
            "missed": self._missed,
        }

    @property
    def prefix(self) -> str:
        return self.config.bot.command_prefix

    def _parse(self, text: str) -> tuple[str, str] | None:
        """``"!bot chat how are we?"`` → ``("chat", "how are we?")``."""
        if text != self.prefix and not text.startswith(f"{self.prefix} "):
            return None
        parts = text[len(self.prefix):].strip().split(maxsplit=1)
        if not parts:
            return "help", ""
        return parts[0].lower(), parts[1] if len(parts) > 1 else ""

    async def handle(self, msg: IncomingMessage) -> BotResponse | None:
        """Route one incoming message. None when the message is ignored."""
        text = msg.text.strip()
        if msg.is_group:
            return await self._handle_group(msg, text)
        if not self.config.admin_enabled or msg.chat_id != self.config.bot.admin_chat_id:
            return None
        parsed = self._parse(text)
        if parsed is None or parsed[0] not in self._admin:
            return None
        command, args = parsed
        logger.debug(f"Admin command: {command}")
        return BotResponse(msg.chat_id, await self._admin[command](msg, args))

    async def _handle_group(self, msg: IncomingMessage, text: str) -> BotResponse | None:
        if self.target_group is None:
            self.target_group = msg.chat_id
            logger.info(f"Set target group to: {msg.chat_id}")
        elif msg.chat_id != self.target_group:
            return None

        parsed = self._parse(text)
        if parsed is None:
            reply = await self.tracker.handle_message(
                msg.sender_id, text, msg.quoted_text, msg.quoted_id
            )
            if not reply:
                return None
            return BotResponse(msg.chat_id, reply.replies, reply.reaction, msg.message_id)

        command, args = parsed
        logger.debug(f"Group command: {command} from {msg.sender_id}")
        if command in TRIGGER_COMMANDS:
            return BotResponse(msg.chat_id, await self._trigger(msg, command))
        handler = self._group.get(command)
        if handler is None:
            return None
        return BotResponse(msg.chat_id, await handler(msg, args))

    # ── Scheduler ─────────────────────────────────────────────

    async def _start(self, msg: IncomingMessage, args: str) -> list[str]:
        if self.scheduler.is_active:
            return ["🤖 I'm already running! The scheduled message service is active."]
        if self.scheduler.start_scheduler(msg.chat_id):
            return [
                "📆 Scheduled message service started! I will now post regular "
                "updates according to the schedule."
            ]
        return ["❌ Failed to start scheduled message service. Please check server logs."]

    async def _stop(self, msg: IncomingMessage, args: str) -> list[str]:
        if not self.scheduler.stop_scheduler():
            return ["🤖 I'm not currently running any scheduled messages."]
        return ["🛑 Scheduled message service stopped."]

    async def _status(self, msg: IncomingMessage, args: str) -> list[str]:
        return [format_status(self.scheduler.status(), self.scheduler.now())]

    async def _missed(self, msg: IncomingMessage, args: str) -> list[str]:
        return [format_missed(self.scheduler.get_missed_jobs(), self.prefix)]

    async def _trigger(self, msg: IncomingMessage, command: str) -> list[str]:
        job_type: JobType = job_type_from_command(command)
        result = await self.scheduler.manual_trigger(job_type, destination=msg.chat_id)
        label = job_spec(job_type).label
        if not result.sent:
            return [f"❌ Couldn't send {label}: {result.error}"]
        if result.error:
            return [f"⚠️ {label} sent, but the run could not be recorded: {result.error}"]
        if result.resolved_missed:
            return [f"✅ Missed {label} resolved."]
        return []

    # ── Goals ─────────────────────────────────────────────────

    async def _goals(self, msg: IncomingMessage, args: str) -> list[str]:
        goals = self.store.get_active_goals(msg.sender_id)
        if not goals:
            return [
                "📋 You don't have any active goals yet.\n\n"
                "Reply to a Sprint Kickoff message to set your goals!"
            ]
        listed = "\n".join(f"{i}. {g.text}" for i, g in enumerate(goals, 1))
        return [
            f"*Your Active Goals* 📋\n\n{listed}\n\n"
            '_Mark as done by posting an update with "done", "finished", or "completed"_'
        ]

    async def _mentor(self, msg: IncomingMessage, args: str) -> list[str]:
        if not self.extractor.ready:
            return ["🤖 AI mentor isn't available right now. Try again later!"]

        stats = self.store.get_user_stats(msg.sender_id)
        if stats.total_goals == 0:
            return [
                "🧭 I don't have any goal data for you yet!\n\n"
                "Set some goals in the next Sprint Kickoff and I'll be able to "
                "provide personalized mentorship."
            ]

        mentorship = await self.extractor.generate_mentorship(
            self.store.get_active_goals(msg.sender_id),
            self.store.get_goal_history(msg.sender_id, 3),
            stats,
        )
        if mentorship:
            return [f"*Your Mentor Check-in* 🧭\n\n{mentorship}"]

        emoji = "🔥" if stats.completion_rate >= 70 else "👍" if stats.completion_rate >= 40 else "💪"
        return [
            "*Your Progress* 📊\n\n"
            f"{emoji} Completion rate: {stats.completion_rate}%\n"
            f"🎯 Goals completed: {stats.completed_goals}/{stats.total_goals}\n"
            f"🔥 Current streak: {stats.current_streak} sprints\n\n"
            "_Keep pushing! Every step counts._"
        ]

    # ── Help ──────────────────────────────────────────────────

    async def _group_help(self, msg: IncomingMessage, args: str) -> list[str]:
        c = self.config.command
        return [
            "*Available Commands*\n\n"
            f"📝 *{c('start')}* - Start scheduled messaging\n"
            f"📊 *{c('status')}* - Show bot status\n"
            f"🛟 *{c('help')}* - Show this help\n"
            f"🛑 *{c('stop')}* - Stop scheduled messaging\n"
            f"📅 *{c('monday')}* - Trigger Sprint Kickoff\n"
            f"📅 *{c('checkin')}* - Trigger Mid-Sprint Check-in\n"
            f"📅 *{c('friday')}* - Trigger Sprint Review\n"
            f"📅 *{c('demo')}* - Trigger Demo Day\n"
            f"📅 *{c('monthly')}* - Trigger Monthly Celebration\n"
            f"⚠️ *{c('missed')}* - List jobs missed while offline\n"
            f"📋 *{c('goals')}* - Show your active goals\n"
            f"🧭 *{c('mentor')}* - Get AI mentorship on your goals"
        ]

    async def _admin_help(self, msg: IncomingMessage, args: str) -> list[str]:
        c = self.config.command
        return [
            "*Admin Commands (Direct Message)*\n\n"
            f"📊 *{c('status')}* - Show bot status\n"
            f"📈 *{c('stats')}* - View goal tracking stats\n"
            f"💬 *{c('chat')} <message>* - Chat with AI about the data\n"
            f"⚠️ *{c('missed')}* - List jobs missed while offline\n"
            f"🛟 *{c('help')}* - Show this help\n\n"
            "*Note:* Start/stop commands must be used in the target group chat."
        ]

    # ── Admin ─────────────────────────────────────────────────

    async def _stats(self, msg: IncomingMessage, args: str) -> list[str]:
        try:
            stats = self.store.get_admin_stats()
        except Exception as e:
            logger.error(f"Error getting admin stats: {e}")
            return ["❌ Failed to retrieve stats. Check server logs."]

        top = "\n".join(
            f"  {i}. ...{p.user_id[-6:]}: {p.completion_rate}%"
            for i, p in enumerate(stats.top_performers, 1)
        )
        return [
            "*📈 Goal Tracking Stats*\n\n"
            "*Overall:*\n"
            f"👥 Total users: {stats.total_users}\n"
            f"🎯 Total goals: {stats.total_goals}\n"
            f"✅ Completed: {stats.completed_goals} ({stats.overall_completion_rate}%)\n"
            f"🔄 Active: {stats.active_goals}\n"
            f"⏭️ Carried over: {stats.carried_over_goals}\n\n"
            f"*Current Sprint (#{stats.current_sprint_number}):*\n"
            f"📝 Goals set: {stats.current_sprint_goals}\n"
            f"✅ Completed: {stats.current_sprint_completed}\n"
            f"👤 Active users: {stats.current_sprint_active_users}\n\n"
            "*Last 7 Days:*\n"
            f"📝 Goals set: {stats.goals_set_last_7_days}\n"
            f"✅ Completed: {stats.goals_completed_last_7_days}\n\n"
            f"*Top Performers (by completion rate):*\n{top or '  No users with 3+ goals yet'}"
        ]

    async def _chat(self, msg: IncomingMessage, question: str) -> list[str]:
        c = self.config.command("chat")
        if not question:
            return [
                "💬 *Admin Chat*\n\nAsk me anything about the goal tracking data!\n\n"
                "Examples:\n"
                f"• _{c} How many goals were completed this sprint?_\n"
                f"• _{c} Who are the most active users?_\n"
                f"• _{c} What kinds of goals do people set?_\n"
                f"• _{c} Any patterns in carried over goals?_"
            ]
        if not self.extractor.ready:
            return ["🤖 AI isn't available right now. Try again later!"]
        answer = await self.extractor.admin_chat(question, self.store.get_db_summary())
        return [f"💬 {answer}"]
