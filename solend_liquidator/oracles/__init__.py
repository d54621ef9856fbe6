"""Price feed adapters, on-demand update builders and the oracle refresh orchestrator."""
from .feeds import TokenOracleService
from .pyth import HermesClient
from .pyth_receiver import PythPushUpdateBuilder
from .refresh import OracleContext, OracleRefresher
from .switchboard import CrossbarClient

__all__ = [
    "CrossbarClient",
    "HermesClient",
    "OracleContext",
    "OracleRefresher",
    "PythPushUpdateBuilder",
    "TokenOracleService",
]
