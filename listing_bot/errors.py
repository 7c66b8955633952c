"""Error taxonomy shared by the live engine and the simulator."""

from __future__ import annotations


class VenueError(RuntimeError):
    """Venue rejected a request or returned an unusable payload."""


class TransientVenueError(VenueError):
    """Network failure, timeout, rate limit or 5xx. Retried on the next tick."""


class ConfigValidationError(ValueError):
    """Configuration cannot be used. Fatal before any trading starts."""


class PersistenceError(RuntimeError):
    """The store failed to read or commit."""


class TradeStateError(RuntimeError):
    """A trade was asked to leave a state it is not in."""


class BracketPlacementError(RuntimeError):
    def __init__(self, symbol: str, quantity: float, unwound: bool, cause: BaseException) -> None:
        action = "unwound" if unwound else "left for manual repair"
        super().__init__(f"bracket placement failed for {symbol} qty={quantity}, position {action}: {cause}")
        self.symbol = symbol
        self.quantity = quantity
        self.unwound = unwound
        self.cause = cause
