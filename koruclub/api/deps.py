"""FastAPI dependency injection — pull singletons from app.state."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from koruclub.bot.commands import CommandRouter
    from koruclub.core.channels.waha_client import WAHAClient
    from koruclub.core.schedule.scheduler import SprintScheduler


def get_scheduler(request: Request) -> SprintScheduler:
    return request.app.state.scheduler


def get_router(request: Request) -> CommandRouter:
    """Get the chat CommandRouter singleton from app state."""
    return request.app.state.router


def get_waha(request: Request) -> WAHAClient:
    return request.app.state.waha
