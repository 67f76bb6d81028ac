"""GoalTracker — turns ordinary group messages into goals and completions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from loguru import logger

from koruclub.core.config.schema import BotConfig
from koruclub.goals.extractor import GoalExtractor
from koruclub.memory.store import MemoryStore

COMPLETION_REACTION = "🎉"
_KICKOFF_MARKERS = ("Sprint Kickoff", "What are your main goals")


class KickoffSource(Protocol):
    last_kickoff_message_id: str | None
    last_kickoff_at: datetime | None


@dataclass
class TrackerReply:
    replies: list[str] = field(default_factory=list)
    reaction: str | None = None  # emoji to put on the incoming message

    def __bool__(self) -> bool:
        return bool(self.replies or self.reaction)


class GoalTracker:
    def __init__(
        self,
        store: MemoryStore,
        extractor: GoalExtractor,
        kickoff: KickoffSource,
        config: BotConfig | None = None,
        clock=None,
    ):
        self.store = store
        self.extractor = extractor
        self.kickoff = kickoff
        self.config = config or BotConfig()
        self._clock = clock or datetime.now

    def is_reply_to_kickoff(self, quoted_text: str | None, quoted_id: str | None) -> bool:
        if quoted_id and quoted_id == self.kickoff.last_kickoff_message_id:
            return True
        return bool(quoted_text) and any(m in quoted_text for m in _KICKOFF_MARKERS)

    def in_kickoff_window(self) -> bool:
        started = self.kickoff.last_kickoff_at
        if started is None:
            return False
        return self._clock() - started < timedelta(hours=self.config.kickoff_window_hours)

    def has_completion_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(kw.lower() in lowered for kw in self.config.completion_keywords)

    async def handle_message(
        self,
        user_id: str,
        text: str,
        quoted_text: str | None = None,
        quoted_id: str | None = None,
    ) -> TrackerReply:
        """Capture goals and/or detect completions in one group message.

        Goals are captured from a reply to the kickoff message, or from any
        message inside the kickoff window when the user has no active goals.
        """
        reply = TrackerReply()

        is_reply = self.is_reply_to_kickoff(quoted_text, quoted_id)
        if is_reply or self.in_kickoff_window():
            if is_reply or not self.store.get_active_goals(user_id):
                await self._capture(user_id, text, reply)

        if self.has_completion_keyword(text):
            await self._complete(user_id, text, reply)

        return reply

    async def _capture(self, user_id: str, text: str, reply: TrackerReply) -> None:
        goals = await self.extractor.extract_goals(text)
        if not goals:
            logger.debug(f"No goals found in message from {user_id}")
            return

        self.store.add_goals(user_id, goals)
        ack = await self.extractor.generate_response("goal_captured", goals, original=text)
        listed = "\n".join(f"{i}. {g}" for i, g in enumerate(goals, 1))
        reply.replies.append(
            ack or f"✅ Got it! I've captured your goals:\n\n{listed}\n\n_I'll track these for you this sprint!_"
        )

    async def _complete(self, user_id: str, text: str, reply: TrackerReply) -> None:
        active = self.store.get_active_goals(user_id)
        if not active:
            return

        done = []
        for match in await self.extractor.match_completions(text, active):
            if match.confidence not in ("high", "medium"):
                continue
            goal = self.store.complete_goal(user_id, match.goal_id)
            if goal:
                done.append(goal.text)
                logger.info(f"Marked goal as done: {goal.text}")

        if not done:
            return
        reply.reaction = COMPLETION_REACTION
        cheer = await self.extractor.generate_response("goal_completed", done, original=text)
        if cheer and len(done) > 1:
            reply.replies.append(cheer)
