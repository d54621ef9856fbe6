"""Logging configuration for the CLI entry point."""
from __future__ import annotations

import logging

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging; unknown level names fall back to INFO."""
    numeric = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(level=numeric, format=_FORMAT, force=True)
    logging.getLogger().setLevel(numeric)

    # Chatty HTTP client internals.
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
