"""Channel handlers — WAHA client and WhatsApp webhook."""

from koruclub.core.channels.waha_client import WAHAClient
from koruclub.core.channels.whatsapp import WhatsAppDispatcher, split_message

__all__ = ["WAHAClient", "WhatsAppDispatcher", "split_message"]
