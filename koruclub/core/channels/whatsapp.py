"""WhatsApp channel — WAHA webhook handler, send helpers, scheduler dispatcher."""

from __future__ import annotations

from typing import Any

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from loguru import logger

from koruclub.api.deps import get_router, get_waha
from koruclub.bot.commands import BotResponse, CommandRouter, IncomingMessage
from koruclub.core.channels.waha_client import WAHAClient, extract_message_id

router = APIRouter(tags=["whatsapp"])

_CHAT_SUFFIXES = ("@c.us", "@g.us", "@lid")


class WhatsAppDispatcher:
    """Sends scheduled job messages through WAHA; returns the message id."""

    def __init__(self, client: WAHAClient):
        self.client = client

    async def send(self, destination: str, text: str) -> str | None:
        response = await self.client.send_text(destination, text)
        message_id = extract_message_id(response)
        if message_id is None:
            logger.warning(f"WAHA response carried no message id: {str(response)[:200]}")
        return message_id


def parse_message(payload: dict[str, Any]) -> IncomingMessage | None:
    """WAHA ``message`` payload → IncomingMessage (None if not a chat message)."""
    text = (payload.get("body") or "").strip()
    chat_id = payload.get("from", "")
    if not text or not chat_id.endswith(_CHAT_SUFFIXES):
        return None

    reply_to = payload.get("replyTo") or {}
    quoted = (payload.get("_data") or {}).get("quotedMsg") or {}
    return IncomingMessage(
        chat_id=chat_id,
        # for groups the actual sender is in "participant"
        sender_id=payload.get("participant") or payload.get("author") or chat_id,
        text=text,
        message_id=extract_message_id(payload),
        quoted_id=reply_to.get("id") or (payload.get("_data") or {}).get("quotedStanzaID"),
        quoted_text=reply_to.get("body") or quoted.get("body"),
    )


@router.post("/webhooks/whatsapp")
async def whatsapp_webhook(
    request: Request,
    bot: CommandRouter = Depends(get_router),
    client: WAHAClient = Depends(get_waha),
):
    """Handle WAHA webhook events: commands, goal capture, completions."""
    body = await request.json()
    if body.get("event", "") != "message":
        return JSONResponse({"ok": True})

    payload = body.get("payload", {})
    if payload.get("fromMe", False):
        return JSONResponse({"ok": True})

    msg = parse_message(payload)
    if msg is None:
        return JSONResponse({"ok": True})
    logger.debug(f"WhatsApp: chat={msg.chat_id}, from={msg.sender_id}, text={msg.text[:80]!r}")

    try:
        response = await bot.handle(msg)
    except Exception as e:
        logger.error(f"WhatsApp: error handling message: {e}")
        return JSONResponse({"ok": True})

    if response is not None:
        await deliver(client, response)
    return JSONResponse({"ok": True})


async def deliver(client: WAHAClient, response: BotResponse) -> None:
    """Post a router response: reaction first, then each reply."""
    if response.reaction and response.react_to:
        try:
            await client.send_reaction(response.react_to, response.reaction)
        except Exception as e:
            logger.error(f"WhatsApp reaction failed: {e}")
    for text in response.replies:
        await send_whatsapp_message(client, response.chat_id, text)


async def send_whatsapp_message(client: WAHAClient, chat_id: str, text: str) -> None:
    """Send a chat reply, splitting long messages. Errors are logged, not raised."""
    if not text:
        return
    for chunk in split_message(text):
        try:
            await client.send_text(chat_id, chunk)
        except httpx.HTTPStatusError as e:
            logger.error(f"WhatsApp send failed ({e.response.status_code}): {e}")
        except Exception as e:
            logger.error(f"WhatsApp send failed: {e}")


def split_message(text: str, max_length: int = 4096) -> list[str]:
    """Split long messages at paragraph, then line boundaries; hard-cut as a last resort."""
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""

    def flush() -> None:
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ""

    for paragraph in text.split("\n\n"):
        if len(current) + len(paragraph) + 2 <= max_length:
            current = f"{current}\n\n{paragraph}" if current else paragraph
            continue
        flush()
        if len(paragraph) <= max_length:
            current = paragraph
            continue
        for line in paragraph.split("\n"):
            while len(line) > max_length:
                flush()
                chunks.append(line[:max_length])
                line = line[max_length:]
            if len(current) + len(line) + 1 > max_length:
                flush()
            current = f"{current}\n{line}" if current else line

    flush()
    return chunks
