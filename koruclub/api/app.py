"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from koruclub import __version__
from koruclub.api.routes import router as core_router
from koruclub.bot.commands import CommandRouter
from koruclub.core.channels.waha_client import WAHAClient
from koruclub.core.channels.whatsapp import WhatsAppDispatcher
from koruclub.core.channels.whatsapp import router as whatsapp_router
from koruclub.core.config.loader import load_config
from koruclub.core.config.schema import Config
from koruclub.core.providers.litellm import setup_provider
from koruclub.core.schedule.calendar import now_local
from koruclub.core.schedule.scheduler import SprintScheduler
from koruclub.goals.extractor import GoalExtractor
from koruclub.goals.tracker import GoalTracker
from koruclub.memory.ledger import JobLedger
from koruclub.memory.store import MemoryStore


def build_services(app: FastAPI, config: Config) -> SprintScheduler:
    """Wire Config → stores → LLM → scheduler → chat router onto app.state."""
    tz = config.scheduler.timezone

    def clock():
        return now_local(tz)

    store = MemoryStore(str(config.db_path), clock=clock)
    ledger = JobLedger(str(config.db_path), clock=clock)
    waha = WAHAClient(config.whatsapp.waha_url, config.whatsapp.session, config.whatsapp.api_key)
    extractor = GoalExtractor(config.llm)
    scheduler = SprintScheduler(
        ledger, WhatsAppDispatcher(waha), config, store=store, clock=clock
    )
    tracker = GoalTracker(store, extractor, scheduler, config.bot, clock=clock)

    app.state.config = config
    app.state.store = store
    app.state.ledger = ledger
    app.state.waha = waha
    app.state.extractor = extractor
    app.state.scheduler = scheduler
    app.state.router = CommandRouter(config, scheduler, store, extractor, tracker)
    app.state.ready = False
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: load config, wire services, reconcile missed jobs, auto-start. Shutdown: stop scheduler."""
    config = load_config()
    setup_provider(config.llm)
    scheduler = build_services(app, config)

    await app.state.extractor.init()

    if config.scheduler.enabled:
        result = scheduler.reconcile_missed()
        if result.recorded:
            logger.warning(f"Recorded {result.recorded} missed job(s) during downtime")
        target = config.whatsapp.target_group
        if config.scheduler.auto_start and target:
            scheduler.start(target)
    else:
        logger.info("Scheduler disabled by config")

    app.state.ready = True
    logger.info(f"KoruClub API started — timezone: {config.scheduler.timezone}")
    yield

    scheduler.shutdown()
    logger.info("KoruClub API shutting down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="KoruClub API",
        description="Sprint goal-tracking bot for WhatsApp groups",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(core_router)
    app.include_router(whatsapp_router)
    return app


app = create_app()
