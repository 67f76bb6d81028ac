"""Tests for koruclub.bot.commands (chat command router)."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from koruclub.bot.commands import (
    CommandRouter,
    IncomingMessage,
    format_missed,
    format_uptime,
)
from koruclub.core.config.schema import Config
from koruclub.core.schedule.errors import PersistenceError
from koruclub.core.schedule.scheduler import SprintScheduler
from koruclub.core.schedule.types import JobStatus, JobType
from koruclub.goals.extractor import GoalExtractor
from koruclub.goals.tracker import COMPLETION_REACTION, GoalTracker
from koruclub.memory.ledger import JobLedger
from koruclub.memory.models import CompletionMatch
from koruclub.memory.store import MemoryStore

NOW = datetime(2026, 2, 4, 10, 0)
GROUP = "120363000000000000@g.us"
OTHER_GROUP = "120363999999999999@g.us"
ADMIN = "64200000000@c.us"
USER = "64211111111@c.us"


@pytest.fixture
def config():
    cfg = Config()
    cfg.bot.admin_chat_id = ADMIN
    return cfg


@pytest.fixture
def ledger(tmp_path):
    return JobLedger(str(tmp_path / "test.db"), clock=lambda: NOW)


@pytest.fixture
def store(tmp_path):
    return MemoryStore(str(tmp_path / "test.db"), clock=lambda: NOW)


@pytest.fixture
def dispatcher():
    d = MagicMock()
    d.send = AsyncMock(return_value="msg-1")
    return d


@pytest.fixture
def scheduler(ledger, dispatcher, store, config):
    sched = SprintScheduler(ledger, dispatcher, config, store=store, clock=lambda: NOW)
    with patch.object(sched, "_scheduler"):
        yield sched


@pytest.fixture
def extractor(config):
    return GoalExtractor(config.llm)


@pytest.fixture
def router(config, scheduler, store, extractor):
    tracker = GoalTracker(store, extractor, scheduler, config.bot, clock=lambda: NOW)
    return CommandRouter(config, scheduler, store, extractor, tracker)


def group_msg(text, chat_id=GROUP, sender=USER, **kw):
    return IncomingMessage(chat_id=chat_id, sender_id=sender, text=text, message_id="in-1", **kw)


def dm(text, chat_id=ADMIN):
    return IncomingMessage(chat_id=chat_id, sender_id=chat_id, text=text)


# ── Formatting ────────────────────────────────────────────


def test_format_uptime():
    assert format_uptime(None, NOW) == "0 minutes"
    assert format_uptime(datetime(2026, 2, 2, 8, 30), NOW) == "2 days, 1 hours, 30 minutes"


def test_format_missed(ledger):
    assert format_missed([], "!bot") == "✅ No missed jobs."
    ledger.record_missed(JobType.KICKOFF, datetime(2026, 2, 2, 9, 0))
    text = format_missed(ledger.get_missed_jobs(), "!bot")
    assert "- Sprint Kickoff: Mon 2 Feb 2026, 09:00 → send *!bot monday*" in text


# ── Group routing ─────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_group_becomes_target(router):
    await router.handle(group_msg("!bot help"))
    assert router.target_group == GROUP
    assert await router.handle(group_msg("!bot help", chat_id=OTHER_GROUP)) is None


@pytest.mark.asyncio
async def test_configured_target_group(config, scheduler, store, extractor):
    config.whatsapp.target_group = OTHER_GROUP
    tracker = GoalTracker(store, extractor, scheduler, config.bot)
    router = CommandRouter(config, scheduler, store, extractor, tracker)
    assert await router.handle(group_msg("!bot help")) is None


@pytest.mark.asyncio
async def test_bare_prefix_shows_help(router):
    response = await router.handle(group_msg("!bot"))
    assert response.replies[0].startswith("*Available Commands*")
    assert "*!bot monday* - Trigger Sprint Kickoff" in response.replies[0]


@pytest.mark.asyncio
async def test_unknown_command_is_ignored(router):
    assert await router.handle(group_msg("!bot dance")) is None
    # prefix must be its own word
    assert await router.handle(group_msg("!botstatus")) is None


@pytest.mark.asyncio
async def test_start_and_stop(router, scheduler):
    response = await router.handle(group_msg("!bot start"))
    assert response.replies[0].startswith("📆 Scheduled message service started!")
    assert scheduler.destination == GROUP

    response = await router.handle(group_msg("!bot start"))
    assert response.replies[0].startswith("🤖 I'm already running!")

    response = await router.handle(group_msg("!bot stop"))
    assert response.replies == ["🛑 Scheduled message service stopped."]

    response = await router.handle(group_msg("!bot stop"))
    assert response.replies == ["🤖 I'm not currently running any scheduled messages."]


@pytest.mark.asyncio
async def test_start_failure(router, scheduler):
    scheduler._scheduler.add_job.side_effect = ValueError("bad")
    response = await router.handle(group_msg("!bot start"))
    assert response.replies[0].startswith("❌ Failed to start")


@pytest.mark.asyncio
async def test_status(router):
    await router.handle(group_msg("!bot start"))
    response = await router.handle(group_msg("!bot status"))
    text = response.replies[0]
    assert text.startswith("*Bot Status Report*")
    assert "Active: Yes ✅" in text
    assert f"Target Group: {GROUP}" in text
    assert "- Mid-Sprint Check-in: Wed 11 Feb 2026, 09:00" in text


@pytest.mark.asyncio
async def test_trigger_resolves_missed(router, ledger, dispatcher):
    ledger.record_missed(JobType.KICKOFF, datetime(2026, 2, 2, 9, 0))

    response = await router.handle(group_msg("!bot monday"))

    dispatcher.send.assert_awaited_once()
    assert dispatcher.send.await_args.args[0] == GROUP
    assert response.replies == ["✅ Missed Sprint Kickoff resolved."]
    assert ledger.get_missed_jobs() == []


@pytest.mark.asyncio
async def test_trigger_without_missed_is_silent(router, ledger):
    response = await router.handle(group_msg("!bot demo"))
    assert response.replies == []
    assert ledger.get_recent_runs()[0].status == JobStatus.MANUAL


@pytest.mark.asyncio
async def test_trigger_failure_reports(router, dispatcher):
    dispatcher.send.side_effect = ConnectionError("WAHA down")
    response = await router.handle(group_msg("!bot friday"))
    assert response.replies == ["❌ Couldn't send Sprint Review: WAHA down"]


@pytest.mark.asyncio
async def test_trigger_sent_but_not_recorded(router, ledger, dispatcher):
    with patch.object(
        ledger, "_manual_trigger_once", side_effect=PersistenceError("database is locked")
    ):
        response = await router.handle(group_msg("!bot demo"))

    dispatcher.send.assert_awaited_once()
    assert response.replies == [
        "⚠️ Demo Day sent, but the run could not be recorded: database is locked"
    ]


@pytest.mark.asyncio
async def test_missed_list(router, ledger):
    response = await router.handle(group_msg("!bot missed"))
    assert response.replies == ["✅ No missed jobs."]
    ledger.record_missed(JobType.DEMO, datetime(2026, 1, 10, 10, 0))
    response = await router.handle(group_msg("!bot missed"))
    assert "send *!bot demo*" in response.replies[0]


# ── Goals ─────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_goals_command(router, store):
    response = await router.handle(group_msg("!bot goals"))
    assert "don't have any active goals" in response.replies[0]

    store.add_goals(USER, ["ship v3", "hire a designer"])
    response = await router.handle(group_msg("!bot goals"))
    assert "1. ship v3\n2. hire a designer" in response.replies[0]


@pytest.mark.asyncio
async def test_mentor_unavailable(router):
    response = await router.handle(group_msg("!bot mentor"))
    assert response.replies == ["🤖 AI mentor isn't available right now. Try again later!"]


@pytest.mark.asyncio
async def test_mentor_falls_back_to_progress(router, store, extractor):
    extractor.ready = True
    extractor.generate_mentorship = AsyncMock(return_value=None)
    [goal] = store.add_goals(USER, ["ship v3"])
    store.complete_goal(USER, goal.id)

    response = await router.handle(group_msg("!bot mentor"))

    text = response.replies[0]
    assert text.startswith("*Your Progress* 📊")
    assert "🔥 Completion rate: 100%" in text
    assert "Goals completed: 1/1" in text


@pytest.mark.asyncio
async def test_plain_message_goes_to_tracker(router, store, scheduler, extractor):
    [goal] = store.add_goals(USER, ["ship v3"])
    extractor.match_completions = AsyncMock(
        return_value=[CompletionMatch(goal_id=goal.id, confidence="high")]
    )

    response = await router.handle(group_msg("shipped v3, done!"))

    assert response.reaction == COMPLETION_REACTION
    assert response.react_to == "in-1"


@pytest.mark.asyncio
async def test_plain_chatter_gets_no_response(router):
    assert await router.handle(group_msg("morning all")) is None


# ── Admin DMs ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_dm_from_stranger_is_ignored(router):
    assert await router.handle(dm("!bot stats", chat_id=USER)) is None


@pytest.mark.asyncio
async def test_dm_without_admin_configured(router, config):
    config.bot.admin_chat_id = ""
    assert await router.handle(dm("!bot stats")) is None


@pytest.mark.asyncio
async def test_admin_cannot_start_from_dm(router):
    assert await router.handle(dm("!bot start")) is None


@pytest.mark.asyncio
async def test_admin_help(router):
    response = await router.handle(dm("!bot help"))
    assert response.chat_id == ADMIN
    assert response.replies[0].startswith("*Admin Commands (Direct Message)*")


@pytest.mark.asyncio
async def test_admin_stats(router, store):
    store.add_goals(USER, ["a goal"])
    response = await router.handle(dm("!bot stats"))
    text = response.replies[0]
    assert text.startswith("*📈 Goal Tracking Stats*")
    assert "👥 Total users: 1" in text
    assert "No users with 3+ goals yet" in text


@pytest.mark.asyncio
async def test_admin_chat(router, extractor):
    response = await router.handle(dm("!bot chat"))
    assert response.replies[0].startswith("💬 *Admin Chat*")

    response = await router.handle(dm("!bot chat who is top?"))
    assert response.replies == ["🤖 AI isn't available right now. Try again later!"]

    extractor.ready = True
    extractor.admin_chat = AsyncMock(return_value="User 111111 leads.")
    response = await router.handle(dm("!bot chat Who is top?"))
    assert response.replies == ["💬 User 111111 leads."]
    assert extractor.admin_chat.await_args.args[0] == "Who is top?"
