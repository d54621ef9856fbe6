"""Solend action builder and liquidation bot."""

__version__ = "0.1.0"
