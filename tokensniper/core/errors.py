"""
Error taxonomy for the sniper core

Every error leaves the bot session in a well-defined, resumable state.
"""


class SniperError(Exception):
    """Base class for all sniper core errors"""
    pass


class InitializationError(SniperError):
    """A prerequisite service (wallet, trading service) is unavailable. Retry initialize()."""
    pass


class ValidationError(SniperError):
    """Malformed config or trade parameters. Rejected before any mutation."""
    pass


class PreconditionError(SniperError):
    """Operation attempted in the wrong session state or without a wallet"""
    pass


class ConcurrencyError(SniperError):
    """A trade for the same wallet and mint is already in flight"""
    pass


class TransactionError(SniperError):
    """Execution service failure during a buy or sell"""

    def __init__(self, message: str, mint: str = "", attempt_id: str = ""):
        super().__init__(message)
        self.mint = mint
        self.attempt_id = attempt_id
