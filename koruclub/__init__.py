"""KoruClub — sprint goal-tracking companion bot for WhatsApp groups."""

__version__ = "0.3.0"
