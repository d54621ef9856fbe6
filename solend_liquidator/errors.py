"""Exception taxonomy for plan construction and liquidation."""


class LendingEngineError(Exception):
    """Base class for all errors raised by this package."""


class PreconditionError(LendingEngineError):
    """Input violates a protocol precondition; nothing was built."""


class StateReadError(LendingEngineError):
    """An on-chain account could not be fetched or decoded."""


class OracleResolutionError(LendingEngineError):
    """No price could be resolved for a required reserve."""


class SubmissionError(LendingEngineError):
    """A transaction was rejected by the network or failed to confirm."""
