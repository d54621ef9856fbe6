"""Service modules"""
from .liquidator import Liquidator
from .markets import MarketService
from .submission import SolanaTransactionSender

__all__ = ["Liquidator", "MarketService", "SolanaTransactionSender"]
