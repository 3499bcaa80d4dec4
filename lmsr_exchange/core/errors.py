"""Exchange error hierarchy.

Every rejection leaves market state untouched, except ``PersistenceFailure``,
which is raised after the in-memory trade or settlement already happened.
"""

from __future__ import annotations

from typing import Any, Optional


class MarketError(Exception):
    """Base exchange error."""

    code = "MARKET_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidParameter(MarketError, ValueError):
    code = "INVALID_PARAMETER"


class InvalidStake(InvalidParameter):
    code = "INVALID_STAKE"


class RiskCapExhausted(MarketError):
    code = "RISK_CAP_EXHAUSTED"

    def __init__(self, event_id: str, remaining: float) -> None:
        self.event_id = event_id
        self.remaining = remaining
        super().__init__(
            f"market {event_id} is at capacity (remaining risk {remaining:.6f})"
        )


class StakeExceedsCapacity(MarketError):
    code = "STAKE_EXCEEDS_CAPACITY"

    def __init__(self, event_id: str, stake: float, allowed: float) -> None:
        self.event_id = event_id
        self.stake = stake
        self.allowed = allowed
        super().__init__(
            f"stake {stake} exceeds capacity {allowed:.6f} on market {event_id}"
        )


class AlreadyResolved(MarketError):
    code = "ALREADY_RESOLVED"


class MarketResolved(MarketError):
    code = "MARKET_RESOLVED"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"market {event_id} is resolved; trading is closed")


class MarketNotFound(MarketError):
    code = "MARKET_NOT_FOUND"

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        super().__init__(f"market not found: {event_id}")


class PersistenceFailure(MarketError):
    """A ``record_*`` call failed after the in-memory state changed.

    ``result`` holds the order or settlement that did take effect in memory;
    callers reconcile the store against it rather than retrying the trade.
    """

    code = "PERSISTENCE_FAILURE"

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        self.result = result
        super().__init__(message)
