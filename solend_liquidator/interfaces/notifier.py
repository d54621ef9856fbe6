"""Notifier protocol for notification channels."""
from typing import Protocol


class Notifier(Protocol):
    """Abstract interface for sending liquidation notifications."""

    async def send_alert(self, message: str) -> bool: ...
