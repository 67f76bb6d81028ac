"""Tests for koruclub.goals.extractor."""

from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from koruclub.core.config.schema import LLMConfig
from koruclub.core.providers.litellm import LLMUnavailableError
from koruclub.goals.extractor import (
    GoalExtractor,
    extract_goals_fallback,
    is_prompt_echo,
    is_valid_response,
)
from koruclub.memory.models import Goal, GoalHistory, SprintHistory, UserStats

COMPLETE = "koruclub.goals.extractor.complete"


def _goal(goal_id, text):
    return Goal(id=goal_id, user_id="u@c.us", text=text, sprint_number=3, created_at=datetime(2026, 2, 2))


@pytest.fixture
def extractor():
    ex = GoalExtractor(LLMConfig())
    ex.ready = True
    return ex


# ── Fallback extraction ───────────────────────────────────


def test_fallback_bullets_numbers_and_emoji():
    message = (
        "My goals this sprint:\n"
        "1. Ship the onboarding flow\n"
        "2) Migrate billing to Stripe\n"
        "- gym three times a week\n"
        "• read two chapters\n"
        "🚀 launch the beta\n"
        "thanks all"
    )
    assert extract_goals_fallback(message) == [
        "Ship the onboarding flow",
        "Migrate billing to Stripe",
        "gym three times a week",
        "read two chapters",
        "launch the beta",
    ]


def test_fallback_strips_invisible_characters():
    assert extract_goals_fallback("\u200b - refactor the parser\ufeff") == ["refactor the parser"]


def test_fallback_length_bounds():
    assert extract_goals_fallback("- abc") == []
    assert extract_goals_fallback("- abcd") == ["abcd"]
    assert extract_goals_fallback("- " + "x" * 200) == []


def test_fallback_plain_prose_has_no_goals():
    assert extract_goals_fallback("I want to finish the landing page") == []


def test_prompt_echo():
    assert is_prompt_echo(["Finish the landing page", "fix the auth bug"])
    assert not is_prompt_echo(["finish the landing page", "learn rust"])


@pytest.mark.parametrize(
    "response, ok",
    [
        ("Nice work, keep going! 🚀", True),
        ("ok", False),
        ("x" * 501, False),
        ('```json ["a"]```', False),
        ('["ship it"]', False),
        ("here is the json you asked for", False),
    ],
)
def test_is_valid_response(response, ok):
    assert is_valid_response(response) is ok


def test_is_valid_response_rejects_echo():
    original = "I finished the landing page and deployed the staging server"
    echo = "You finished the landing page and deployed staging server!"
    assert not is_valid_response(echo, original)
    assert is_valid_response("Huge win, well done! 🎉", original)


# ── LLM paths ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_init_marks_ready():
    ex = GoalExtractor(LLMConfig())
    with patch(COMPLETE, new_callable=AsyncMock, return_value="OK"):
        assert await ex.init() is True
    assert ex.ready


@pytest.mark.asyncio
async def test_init_unavailable():
    ex = GoalExtractor(LLMConfig())
    with patch(COMPLETE, new_callable=AsyncMock, side_effect=LLMUnavailableError("refused")):
        assert await ex.init() is False
    assert not ex.ready


@pytest.mark.asyncio
async def test_init_disabled_never_calls_model():
    ex = GoalExtractor(LLMConfig(enabled=False))
    with patch(COMPLETE, new_callable=AsyncMock) as mock:
        assert await ex.init() is False
    mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_goals_not_ready_uses_fallback():
    ex = GoalExtractor(LLMConfig())
    with patch(COMPLETE, new_callable=AsyncMock) as mock:
        assert await ex.extract_goals("- ship v3 release") == ["ship v3 release"]
    mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_extract_goals_from_llm(extractor):
    with patch(COMPLETE, new_callable=AsyncMock, return_value='Sure: ["ship v3", "hire a designer"]'):
        goals = await extractor.extract_goals("I want to ship v3 and hire a designer")
    assert goals == ["ship v3", "hire a designer"]


@pytest.mark.asyncio
async def test_extract_goals_prefers_longer_fallback(extractor):
    message = "- ship v3 release\n- hire a designer\n- plan the offsite"
    with patch(COMPLETE, new_callable=AsyncMock, return_value='["ship v3 release"]'):
        goals = await extractor.extract_goals(message)
    assert goals == ["ship v3 release", "hire a designer", "plan the offsite"]


@pytest.mark.asyncio
async def test_extract_goals_echo_falls_back(extractor):
    reply = '["finish the landing page", "fix the auth bug"]'
    with patch(COMPLETE, new_callable=AsyncMock, return_value=reply):
        assert await extractor.extract_goals("- learn rust basics") == ["learn rust basics"]


@pytest.mark.asyncio
async def test_extract_goals_unparseable_falls_back(extractor):
    with patch(COMPLETE, new_callable=AsyncMock, return_value="I think your goals are great"):
        assert await extractor.extract_goals("no list here") == []


@pytest.mark.asyncio
async def test_extract_goals_llm_error_falls_back(extractor):
    with patch(COMPLETE, new_callable=AsyncMock, side_effect=LLMUnavailableError("timeout")):
        assert await extractor.extract_goals("- learn rust basics") == ["learn rust basics"]


@pytest.mark.asyncio
async def test_match_completions_filters_unknown_and_bad_confidence(extractor):
    goals = [_goal("g1", "ship v3"), _goal("g2", "hire a designer")]
    reply = (
        '[{"goalId": "g1", "confidence": "high"},'
        ' {"goalId": "nope", "confidence": "high"},'
        ' {"goalId": "g2", "confidence": "certain"}]'
    )
    with patch(COMPLETE, new_callable=AsyncMock, return_value=reply):
        matches = await extractor.match_completions("shipped v3!", goals)
    assert [(m.goal_id, m.confidence) for m in matches] == [("g1", "high")]


@pytest.mark.asyncio
async def test_match_completions_without_goals_skips_model(extractor):
    with patch(COMPLETE, new_callable=AsyncMock) as mock:
        assert await extractor.match_completions("done!", []) == []
    mock.assert_not_awaited()


@pytest.mark.asyncio
async def test_generate_response_validates(extractor):
    with patch(COMPLETE, new_callable=AsyncMock, return_value="Love these goals! 💪"):
        assert await extractor.generate_response("goal_captured", ["ship v3"]) == "Love these goals! 💪"
    with patch(COMPLETE, new_callable=AsyncMock, return_value='["ship v3"]'):
        assert await extractor.generate_response("goal_captured", ["ship v3"]) is None


@pytest.mark.asyncio
async def test_generate_mentorship_prompt(extractor):
    history = GoalHistory(sprints=[SprintHistory(sprint_number=3, completed=1, total=2)])
    stats = UserStats(total_goals=2, completed_goals=1, completion_rate=50, current_streak=1)
    with patch(COMPLETE, new_callable=AsyncMock, return_value="Solid sprint.") as mock:
        text = await extractor.generate_mentorship([_goal("g1", "ship v3")], history, stats)
    assert text == "Solid sprint."
    prompt = mock.call_args.args[0]
    assert "- ship v3" in prompt
    assert "Sprint 3: 1/2 completed" in prompt
    assert "Completion rate: 50%" in prompt


@pytest.mark.asyncio
async def test_admin_chat_messages():
    ex = GoalExtractor(LLMConfig())
    assert await ex.admin_chat("who is top?", "summary") == (
        "LLM is not available right now. Please try again later."
    )
    ex.ready = True
    with patch(COMPLETE, new_callable=AsyncMock, side_effect=LLMUnavailableError("boom")):
        assert (await ex.admin_chat("who is top?", "summary")).startswith("Sorry")
    with patch(COMPLETE, new_callable=AsyncMock, return_value="User 111111 leads.") as mock:
        assert await ex.admin_chat("who is top?", "THE SUMMARY") == "User 111111 leads."
    assert "THE SUMMARY" in mock.call_args.args[0]
