"""Protocol interfaces for the liquidator."""
from .chain import ChainClient
from .notifier import Notifier
from .price_oracle import PriceUpdateTransactionBuilder, PullOracleUpdater
from .transport import TransactionSender

__all__ = [
    "ChainClient",
    "Notifier",
    "PriceUpdateTransactionBuilder",
    "PullOracleUpdater",
    "TransactionSender",
]
