"""Message dispatch with bounded linear-backoff retry."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Protocol

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    stop_after_attempt,
    wait_incrementing,
)

from koruclub.core.schedule.errors import DispatchError


class Dispatcher(Protocol):
    """Anything that can post a text message to a chat.

    ``send`` returns the transport's message id (``None`` when the transport
    reports none) and raises on any failure.
    """

    async def send(self, destination: str, text: str) -> str | None: ...


def _error_text(exc: BaseException | None) -> str:
    return (str(exc) or type(exc).__name__) if exc else ""


def _log_retry(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = _error_text(state.outcome.exception() if state.outcome else None)
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"{label} send failed (attempt {state.attempt_number}/{max_attempts}): {error}, "
            f"retrying in {delay:.0f}s"
        )

    return before_sleep


async def send_with_retry(
    dispatcher: Dispatcher,
    destination: str,
    text: str,
    *,
    label: str,
    max_attempts: int = 3,
    base_delay: float = 60.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str | None:
    """Send ``text``, waiting ``base_delay * attempt`` between attempts.

    Raises
    ------
    DispatchError
        After ``max_attempts`` failures; carries the last error text.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        sleep=sleep,
        before_sleep=_log_retry(label, max_attempts),
    )
    try:
        async for attempt in retrying:
            with attempt:
                message_id = await dispatcher.send(destination, text)
    except RetryError as e:
        last = e.last_attempt.exception()
        last_error = _error_text(last)
        logger.error(f"{label} failed after {max_attempts} attempts: {last_error}")
        raise DispatchError(last_error, attempts=max_attempts) from last

    logger.info(f"{label} sent (attempt {attempt.retry_state.attempt_number})")
    return message_id
