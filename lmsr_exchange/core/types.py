"""Core type definitions for the exchange.

Markets are binary (YES/NO). Sides are persisted by name, never by ordinal.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Union

from .errors import AlreadyResolved, InvalidParameter


class Side(str, Enum):
    YES = "YES"
    NO = "NO"

    @classmethod
    def from_outcome(cls, outcome: bool) -> "Side":
        return cls.YES if outcome else cls.NO

    @classmethod
    def parse(cls, value: Union["Side", str, bool]) -> "Side":
        if isinstance(value, Side):
            return value
        if isinstance(value, bool):
            return cls.from_outcome(value)
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise InvalidParameter(f"unknown side: {value!r}") from None

    @property
    def other(self) -> "Side":
        return Side.NO if self is Side.YES else Side.YES


@dataclass(frozen=True)
class Unresolved:
    def __repr__(self) -> str:
        return "Unresolved()"


@dataclass(frozen=True)
class Resolved:
    outcome: Side


Resolution = Union[Unresolved, Resolved]
UNRESOLVED = Unresolved()


@dataclass(frozen=True)
class Order:
    event_id: str
    side: Side
    stake: float
    price: float  # post-trade marginal price of ``side``, 2 dp
    expected_cashout: float
    delta: float = 0.0  # shares issued
    order_id: Optional[int] = None
    payout: Optional[float] = None

    @property
    def paid(self) -> bool:
        return self.payout is not None

    def with_order_id(self, order_id: Optional[int]) -> "Order":
        return replace(self, order_id=order_id)

    def with_payout(self, payout: float) -> "Order":
        """Return a copy carrying ``payout``; an order is paid at most once."""
        if self.payout is not None:
            raise AlreadyResolved(
                f"order {self.order_id} on {self.event_id} already paid {self.payout}"
            )
        return replace(self, payout=payout)


@dataclass(frozen=True)
class Quote:
    price_yes: float
    price_no: float
    size: float

    def price_for(self, side: Side) -> float:
        return self.price_yes if side is Side.YES else self.price_no


@dataclass(frozen=True)
class MarketState:
    """Aggregate row for one event as the persistence layer stores it."""

    event_id: str
    risk_cap: float
    q_yes: float = 0.0
    q_no: float = 0.0
    total_deposits: float = 0.0
    resolved: bool = False
    outcome: Optional[Side] = None
    # opaque event metadata; tag is a unique human-facing handle
    name: Optional[str] = None
    tag: Optional[str] = None
    maturity: Optional[str] = None
    order_count: int = 0

    @property
    def resolution(self) -> Resolution:
        if not self.resolved:
            return UNRESOLVED
        if self.outcome is None:
            raise InvalidParameter(f"market {self.event_id} resolved without outcome")
        return Resolved(self.outcome)


@dataclass(frozen=True)
class SettlementResult:
    event_id: str
    outcome: Side
    total_payouts: float
    profit_loss: float
    orders: Tuple[Order, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class MarketMetrics:
    q_yes: float
    q_no: float
    price_yes: float
    price_no: float
    total_deposits: float
    payout_if_yes: float
    payout_if_no: float
    pnl_if_yes: float
    pnl_if_no: float
    max_theoretical_loss: float
    exposure: float
    remaining_risk: float
    order_count: int
    resolved: bool
    outcome: Optional[Side] = None
