"""Solend account layouts, instruction encoders and state loading."""
from .layouts import decode_obligation, decode_reserve
from .markets import parse_market, parse_markets
from .state import StateLoader

__all__ = [
    "StateLoader",
    "decode_obligation",
    "decode_reserve",
    "parse_market",
    "parse_markets",
]
