"""Tests for koruclub.goals.tracker."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from koruclub.core.config.schema import BotConfig, LLMConfig
from koruclub.goals.extractor import GoalExtractor
from koruclub.goals.tracker import COMPLETION_REACTION, GoalTracker, TrackerReply
from koruclub.memory.models import CompletionMatch, GoalStatus
from koruclub.memory.store import MemoryStore

USER = "64211111111@c.us"
NOW = datetime(2026, 2, 3, 12, 0)
KICKOFF_TEXT = "*Sprint Kickoff* 🚀\n\n👉 What are your main goals for the next 2 weeks?"


@pytest.fixture
def store(tmp_path):
    return MemoryStore(str(tmp_path / "test.db"), clock=lambda: NOW)


@pytest.fixture
def kickoff():
    return SimpleNamespace(last_kickoff_message_id="kick-1", last_kickoff_at=NOW - timedelta(hours=3))


@pytest.fixture
def extractor():
    # not ready: deterministic fallback, no chat text
    return GoalExtractor(LLMConfig())


@pytest.fixture
def tracker(store, extractor, kickoff):
    return GoalTracker(store, extractor, kickoff, BotConfig(), clock=lambda: NOW)


def test_reply_detection(tracker):
    assert tracker.is_reply_to_kickoff(None, "kick-1")
    assert tracker.is_reply_to_kickoff(KICKOFF_TEXT, "other-id")
    assert not tracker.is_reply_to_kickoff("lunch?", "other-id")
    assert not tracker.is_reply_to_kickoff(None, None)


def test_kickoff_window(tracker, kickoff):
    assert tracker.in_kickoff_window()
    kickoff.last_kickoff_at = NOW - timedelta(hours=48)
    assert not tracker.in_kickoff_window()
    kickoff.last_kickoff_at = None
    assert not tracker.in_kickoff_window()


def test_completion_keywords(tracker):
    assert tracker.has_completion_keyword("Finally DONE with the migration")
    assert tracker.has_completion_keyword("landing page ✅")
    assert not tracker.has_completion_keyword("still working on it")


def test_empty_reply_is_falsy():
    assert not TrackerReply()
    assert TrackerReply(reaction=COMPLETION_REACTION)


@pytest.mark.asyncio
async def test_captures_goals_from_kickoff_reply(tracker, store):
    reply = await tracker.handle_message(
        USER, "- ship the onboarding flow\n- gym three times", quoted_id="kick-1"
    )

    assert [g.text for g in store.get_active_goals(USER)] == [
        "ship the onboarding flow",
        "gym three times",
    ]
    assert reply.replies == [
        "✅ Got it! I've captured your goals:\n\n"
        "1. ship the onboarding flow\n2. gym three times\n\n"
        "_I'll track these for you this sprint!_"
    ]
    assert reply.reaction is None


@pytest.mark.asyncio
async def test_window_capture_only_without_active_goals(tracker, store):
    await tracker.handle_message(USER, "- ship the onboarding flow")
    reply = await tracker.handle_message(USER, "- another goal entirely")

    assert not reply
    assert len(store.get_active_goals(USER)) == 1


@pytest.mark.asyncio
async def test_explicit_reply_adds_more_goals(tracker, store):
    await tracker.handle_message(USER, "- ship the onboarding flow")
    await tracker.handle_message(USER, "- another goal entirely", quoted_text=KICKOFF_TEXT)
    assert len(store.get_active_goals(USER)) == 2


@pytest.mark.asyncio
async def test_outside_window_ignores_lists(tracker, store, kickoff):
    kickoff.last_kickoff_at = NOW - timedelta(days=5)
    reply = await tracker.handle_message(USER, "- ship the onboarding flow")
    assert not reply
    assert store.get_active_goals(USER) == []


@pytest.mark.asyncio
async def test_llm_ack_replaces_canned_text(tracker, extractor):
    extractor.generate_response = AsyncMock(return_value="Great goals! 🚀")
    reply = await tracker.handle_message(USER, "- ship the onboarding flow", quoted_id="kick-1")
    assert reply.replies == ["Great goals! 🚀"]


@pytest.mark.asyncio
async def test_completion_marks_goal_and_reacts(tracker, store, extractor, kickoff):
    kickoff.last_kickoff_at = None
    [goal] = store.add_goals(USER, ["ship the onboarding flow"])
    extractor.match_completions = AsyncMock(
        return_value=[CompletionMatch(goal_id=goal.id, confidence="high")]
    )
    extractor.generate_response = AsyncMock(return_value="Nice! 🎉")

    reply = await tracker.handle_message(USER, "onboarding flow is done!")

    assert store.get_goal(goal.id).status == GoalStatus.COMPLETED
    assert reply.reaction == COMPLETION_REACTION
    # a single completion gets the reaction only
    assert reply.replies == []


@pytest.mark.asyncio
async def test_multiple_completions_add_cheer(tracker, store, extractor, kickoff):
    kickoff.last_kickoff_at = None
    goals = store.add_goals(USER, ["ship the onboarding flow", "gym three times"])
    extractor.match_completions = AsyncMock(
        return_value=[CompletionMatch(goal_id=g.id, confidence="medium") for g in goals]
    )
    extractor.generate_response = AsyncMock(return_value="Two for two! 🎉")

    reply = await tracker.handle_message(USER, "finished both!")

    assert reply.replies == ["Two for two! 🎉"]
    assert store.get_active_goals(USER) == []


@pytest.mark.asyncio
async def test_low_confidence_is_ignored(tracker, store, extractor, kickoff):
    kickoff.last_kickoff_at = None
    [goal] = store.add_goals(USER, ["ship the onboarding flow"])
    extractor.match_completions = AsyncMock(
        return_value=[CompletionMatch(goal_id=goal.id, confidence="low")]
    )

    reply = await tracker.handle_message(USER, "almost done with onboarding")

    assert not reply
    assert store.get_goal(goal.id).status == GoalStatus.ACTIVE


@pytest.mark.asyncio
async def test_completion_keyword_without_goals_skips_model(tracker, extractor, kickoff):
    kickoff.last_kickoff_at = None
    extractor.match_completions = AsyncMock()
    assert not await tracker.handle_message(USER, "done!")
    extractor.match_completions.assert_not_awaited()
