"""GoalExtractor — LLM goal parsing with a pattern-matching safety net.

Small local models are unreliable: they echo prompt examples, return prose
instead of JSON, or miss half a bulleted list. Every LLM path here is
checked and falls back to deterministic extraction (or to ``None``, letting
the caller use canned text). Nothing in this module raises on LLM failure.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from loguru import logger

from koruclub.core.config.schema import LLMConfig
from koruclub.core.providers.litellm import LLMUnavailableError, complete
from koruclub.memory.models import CompletionMatch, Goal, GoalHistory, UserStats

ResponseContext = Literal["goal_captured", "goal_completed"]

_INVISIBLE = re.compile(r"[\u200b-\u200d\ufeff\u2060]")
_EDGE_SPACE = re.compile(r"^[\s\u00a0\u2000-\u200a]+|[\s\u00a0\u2000-\u200a]+$")
_GOAL_LINE = re.compile(
    r"^(?:[\U0001F300-\U0001FAD6]|[-\u2013\u2014\u2022*\u25ba\u25b6\u2192]|\d+[.):\-]?)\s*(.+)"
)
_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")

# Examples shown to the model in the extraction prompt
PROMPT_EXAMPLES = [
    "finish the landing page",
    "fix the auth bug",
    "focus on testing",
    "ship v2",
    "write docs",
    "review prs",
]

EXTRACT_PROMPT = """Extract the goals or tasks from this message. Return ONLY a JSON array of strings, nothing else.

Message: "{message}"

Examples:
- "I want to finish the landing page and fix the auth bug" → ["finish the landing page", "fix the auth bug"]
- "This sprint I'll focus on testing" → ["focus on testing"]
- "My goals: 1) ship v2 2) write docs 3) review PRs" → ["ship v2", "write docs", "review PRs"]

Return ONLY the JSON array:"""

MATCH_PROMPT = """A user posted an update. Match their message to completed goals from their list.

User's active goals:
{goals}

User's message: "{message}"

Return ONLY a JSON array of objects with goalId and confidence (high/medium/low).
Only include goals that the user has clearly completed or made significant progress on.
If no goals match, return [].

Example response: [{{"goalId": "user-1-123", "confidence": "high"}}]

Return ONLY the JSON array:"""

MENTOR_PROMPT = """You are a supportive mentor helping someone track their personal/professional goals in 2-week sprints.

Here's their data:

CURRENT SPRINT GOALS:
{current}

RECENT SPRINT HISTORY:
{history}

STATS:
- Completion rate: {rate}%
- Current streak: {streak} sprints with completions
- Total goals set: {total}
- Total completed: {completed}

GOALS THAT WERE CARRIED OVER (not completed):
{carried}

Based on this, provide brief personalized mentorship (3-5 sentences max). Consider:
- Acknowledge their progress honestly
- If they have incomplete goals, gently explore if they're too ambitious or need breaking down
- If completion rate is high, celebrate that
- If there are patterns (same goals carried over), suggest adjustments
- Keep it casual, supportive, and actionable
- End with one specific suggestion or question to reflect on

Be concise and genuine, not generic motivational fluff."""

ADMIN_PROMPT = """You are an AI assistant for KoruClub, a goal-tracking bot for a WhatsApp group running bi-weekly sprints.

You have access to the following database information:

{summary}

The admin is asking you a question about the data. Answer helpfully and concisely.
If they ask about specific users, use the last 6 characters of user IDs for privacy (shown as "User abc123").
If they ask for analysis or suggestions, provide actionable insights.
If they ask about something not in the data, say so.

Admin's question: "{question}"

Your response:"""


# ════════════════════════════════════════════════════════════
# DETERMINISTIC HELPERS
# ════════════════════════════════════════════════════════════


def extract_goals_fallback(message: str) -> list[str]:
    """Goals from bulleted / numbered / emoji-led lines (4-199 chars each)."""
    goals = []
    for line in _INVISIBLE.sub("", message).split("\n"):
        trimmed = _EDGE_SPACE.sub("", line)
        if not trimmed:
            continue
        match = _GOAL_LINE.match(trimmed)
        if match:
            text = match.group(1).strip()
            if 3 < len(text) < 200:
                goals.append(text)
    return goals


def is_prompt_echo(goals: list[str]) -> bool:
    """True if two or more goals are just the prompt's own examples."""
    hits = sum(any(ex in g.lower() for ex in PROMPT_EXAMPLES) for g in goals)
    return hits >= 2


def is_valid_response(response: str, original: str | None = None) -> bool:
    """Reject empty, overlong, JSON-ish, or echoing chat replies."""
    if not response or not 5 <= len(response) <= 500:
        return False
    if "```" in response or "json" in response or ("[" in response and "]" in response):
        return False
    if original and len(original) > 20:
        original_words = [w for w in original.lower().split() if len(w) > 4]
        response_words = set(response.lower().split())
        overlap = sum(w in response_words for w in original_words)
        if overlap > len(original_words) * 0.3:
            logger.warning("LLM response echoes the user message, discarding")
            return False
    return True


def _parse_json_array(text: str) -> list[Any] | None:
    match = _JSON_ARRAY.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None


# ════════════════════════════════════════════════════════════
# EXTRACTOR
# ════════════════════════════════════════════════════════════


class GoalExtractor:
    """LLM-backed goal parsing and chat text, degrading to ``None`` / fallbacks."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.ready = False

    async def init(self) -> bool:
        """Probe the model once; ``ready`` stays False if it does not answer."""
        if not self.config.enabled:
            logger.info("LLM disabled, using fallback goal extraction")
            return False
        try:
            await complete("Reply with OK.", self.config, max_tokens=5)
        except LLMUnavailableError as e:
            logger.warning(f"LLM not available ({self.config.model}): {e}")
            self.ready = False
            return False
        self.ready = True
        logger.info(f"LLM ready: {self.config.model}")
        return True

    async def _ask(self, prompt: str, temperature: float, max_tokens: int) -> str | None:
        try:
            return await complete(
                prompt, self.config, temperature=temperature, max_tokens=max_tokens
            )
        except LLMUnavailableError:
            return None

    async def extract_goals(self, message: str) -> list[str]:
        fallback = extract_goals_fallback(message)
        if not self.ready:
            logger.debug("LLM not ready, using fallback goal extraction")
            return fallback

        text = await self._ask(EXTRACT_PROMPT.format(message=message), 0.1, 200)
        parsed = _parse_json_array(text) if text else None
        if parsed is None:
            logger.warning(f"Could not parse goals from LLM response: {text!r}")
            return fallback

        goals = [g for g in parsed if isinstance(g, str) and g]
        if is_prompt_echo(goals):
            logger.warning("LLM returned the prompt examples, using fallback")
            return fallback
        if goals and len(goals) >= len(fallback):
            return goals
        if fallback:
            logger.info(f"Using fallback extraction ({len(fallback)} goals vs LLM's {len(goals)})")
            return fallback
        return goals

    async def match_completions(
        self, message: str, active_goals: list[Goal]
    ) -> list[CompletionMatch]:
        if not self.ready or not active_goals:
            return []

        goals_text = "\n".join(f"{i}. [{g.id}] {g.text}" for i, g in enumerate(active_goals, 1))
        text = await self._ask(MATCH_PROMPT.format(goals=goals_text, message=message), 0.1, 300)
        parsed = _parse_json_array(text) if text else None
        if not parsed:
            return []

        known = {g.id for g in active_goals}
        return [
            CompletionMatch(goal_id=m["goalId"], confidence=m["confidence"])
            for m in parsed
            if isinstance(m, dict)
            and m.get("goalId") in known
            and m.get("confidence") in ("high", "medium", "low")
        ]

    async def generate_response(
        self,
        context: ResponseContext,
        goals: list[str] | None = None,
        original: str | None = None,
    ) -> str | None:
        """Short encouraging line, or None if the model is off or misbehaves."""
        if not self.ready:
            return None

        listed = ", ".join(goals or [])
        prompts = {
            "goal_captured": (
                "Generate a brief (1-2 sentences) encouraging acknowledgment for someone "
                f"who just set these sprint goals: {listed}. Be casual and supportive. "
                "Include one relevant emoji. Do NOT repeat their goals back to them."
            ),
            "goal_completed": (
                f"Generate a brief (1 sentence) celebration for completing: {listed}. "
                "Be enthusiastic but concise. Include one relevant emoji."
            ),
        }
        text = await self._ask(prompts[context], 0.7, 100)
        if text is None or not is_valid_response(text, original):
            return None
        return text

    async def generate_mentorship(
        self, active_goals: list[Goal], history: GoalHistory, stats: UserStats
    ) -> str | None:
        if not self.ready:
            return None

        prompt = MENTOR_PROMPT.format(
            current="\n".join(f"- {g.text}" for g in active_goals) or "No active goals set yet",
            history="\n".join(
                f"Sprint {s.sprint_number}: {s.completed}/{s.total} completed"
                for s in history.sprints
            ),
            rate=stats.completion_rate,
            streak=stats.current_streak,
            total=stats.total_goals,
            completed=stats.completed_goals,
            carried=", ".join(history.patterns.frequently_carried_over) or "None",
        )
        return await self._ask(prompt, 0.7, 400)

    async def admin_chat(self, question: str, db_summary: str) -> str:
        if not self.ready:
            return "LLM is not available right now. Please try again later."
        text = await self._ask(
            ADMIN_PROMPT.format(summary=db_summary, question=question), 0.5, 600
        )
        if text is None:
            return "Sorry, I encountered an error processing your question. Please try again."
        return text
