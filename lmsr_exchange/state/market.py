"""Stateful LMSR market for a single binary event.

All mutable state sits behind one lock per market. ``buy`` and ``settle`` hold
it for the whole compute-then-mutate sequence, so two concurrent buys can never
both pass the risk check against the same pre-trade quantities. Reads
(``price``, ``quote``, ``max_stake``, ``metrics``) take the same lock and
return a point-in-time snapshot that may be stale by the time it is used.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Iterable, List, Optional, Tuple, Union

from ..core.errors import (
    AlreadyResolved,
    InvalidParameter,
    MarketError,
    MarketResolved,
    PersistenceFailure,
    StakeExceedsCapacity,
)
from ..core.types import (
    UNRESOLVED,
    MarketMetrics,
    MarketState,
    Order,
    Quote,
    Resolution,
    Resolved,
    SettlementResult,
    Side,
)
from ..core.utils import round_figure
from ..io import metrics
from ..io.persistence import Persistence
from ..risk.limits import RiskBudget, validate_stake
from .settlement import payouts_by_side, settle_orders

logger = logging.getLogger(__name__)


def _non_negative(name: str, value: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidParameter(f"{name} must be a number, got {value!r}")
    if not math.isfinite(value) or value < 0:
        raise InvalidParameter(f"{name} must be non-negative, got {value}")
    return float(value)


class Market:
    def __init__(
        self,
        event_id: str,
        risk_cap: float,
        q_yes: float = 0.0,
        q_no: float = 0.0,
        total_deposits: float = 0.0,
        resolution: Resolution = UNRESOLVED,
        orders: Iterable[Order] = (),
        persistence: Optional[Persistence] = None,
        name: Optional[str] = None,
        tag: Optional[str] = None,
        maturity: Optional[str] = None,
    ):
        self.event_id = event_id
        self.name = name
        self.tag = tag
        self.maturity = maturity
        self.budget = RiskBudget(risk_cap)
        self.model = self.budget.model
        self._q_yes = _non_negative("q_yes", q_yes)
        self._q_no = _non_negative("q_no", q_no)
        self._total_deposits = _non_negative("total_deposits", total_deposits)
        self._resolution: Resolution = resolution
        self._orders: List[Order] = list(orders)
        self._persistence = persistence
        self._lock = threading.Lock()

    @classmethod
    def from_state(
        cls,
        state: MarketState,
        orders: Iterable[Order] = (),
        persistence: Optional[Persistence] = None,
    ) -> "Market":
        return cls(
            state.event_id,
            state.risk_cap,
            q_yes=state.q_yes,
            q_no=state.q_no,
            total_deposits=state.total_deposits,
            resolution=state.resolution,
            orders=orders,
            persistence=persistence,
            name=state.name,
            tag=state.tag,
            maturity=state.maturity,
        )

    # ------------------------------------------------------------------ reads

    @property
    def risk_cap(self) -> float:
        return self.budget.risk_cap

    @property
    def b(self) -> float:
        return self.model.b

    @property
    def q_yes(self) -> float:
        return self._q_yes

    @property
    def q_no(self) -> float:
        return self._q_no

    @property
    def total_deposits(self) -> float:
        return self._total_deposits

    @property
    def resolution(self) -> Resolution:
        return self._resolution

    @property
    def resolved(self) -> bool:
        return isinstance(self._resolution, Resolved)

    @property
    def outcome(self) -> Optional[Side]:
        if isinstance(self._resolution, Resolved):
            return self._resolution.outcome
        return None

    @property
    def orders(self) -> Tuple[Order, ...]:
        with self._lock:
            return tuple(self._orders)

    def price(self) -> Tuple[float, float]:
        with self._lock:
            return self.model.price(self._q_yes, self._q_no)

    def max_stake(self) -> float:
        with self._lock:
            return self._max_stake()

    def _max_stake(self) -> float:
        if self.resolved:
            return 0.0
        return self.budget.max_stake(self._q_yes, self._q_no)

    def quote(self) -> Quote:
        with self._lock:
            p_yes, p_no = self.model.price(self._q_yes, self._q_no)
            return Quote(price_yes=p_yes, price_no=p_no, size=self._max_stake())

    def state(self) -> MarketState:
        with self._lock:
            return MarketState(
                event_id=self.event_id,
                risk_cap=self.risk_cap,
                q_yes=self._q_yes,
                q_no=self._q_no,
                total_deposits=self._total_deposits,
                resolved=self.resolved,
                outcome=self.outcome,
                name=self.name,
                tag=self.tag,
                maturity=self.maturity,
                order_count=len(self._orders),
            )

    def metrics(self) -> MarketMetrics:
        with self._lock:
            p_yes, p_no = self.model.price(self._q_yes, self._q_no)
            if_yes, if_no = payouts_by_side(self._orders)
            exposure = self.budget.exposure(self._q_yes, self._q_no)
            return MarketMetrics(
                q_yes=self._q_yes,
                q_no=self._q_no,
                price_yes=p_yes,
                price_no=p_no,
                total_deposits=self._total_deposits,
                payout_if_yes=if_yes,
                payout_if_no=if_no,
                pnl_if_yes=self._total_deposits - if_yes,
                pnl_if_no=self._total_deposits - if_no,
                max_theoretical_loss=self.model.max_loss,
                exposure=exposure,
                remaining_risk=self.risk_cap - exposure,
                order_count=len(self._orders),
                resolved=self.resolved,
                outcome=self.outcome,
            )

    # ----------------------------------------------------------------- writes

    def _reject(self, err: MarketError) -> MarketError:
        metrics.inc_rejection(err.code)
        logger.warning("Rejected on %s: %s", self.event_id, err.message)
        return err

    def buy(self, side: Union[Side, str, bool], stake: float) -> Order:
        """Execute an all-or-nothing buy of ``stake`` money on ``side``.

        The order books the post-trade marginal price of ``side``.
        """
        side = Side.parse(side)
        try:
            stake = validate_stake(stake)
        except InvalidParameter as e:
            raise self._reject(e)

        with self._lock:
            if self.resolved:
                raise self._reject(MarketResolved(self.event_id))
            try:
                allowed = self.budget.check_trade(
                    self.event_id, stake, self._q_yes, self._q_no
                )
            except MarketError as e:
                raise self._reject(e)

            delta = self.model.solve_delta_for_side(side, stake, self._q_yes, self._q_no)
            q_yes, q_no = self._q_yes, self._q_no
            if side is Side.YES:
                q_yes += delta
            else:
                q_no += delta
            if not self.budget.within_cap(q_yes, q_no):
                raise self._reject(StakeExceedsCapacity(self.event_id, stake, allowed))

            self._q_yes, self._q_no = q_yes, q_no
            self._total_deposits += stake

            p_after = self.model.price_of(side, q_yes, q_no)
            order = Order(
                event_id=self.event_id,
                side=side,
                stake=stake,
                price=round_figure(p_after),
                expected_cashout=round_figure(stake / p_after),
                delta=delta,
            )
            self._orders.append(order)
            metrics.inc_order(side.value, stake)
            logger.info(
                "Order on %s: %s stake=%.2f delta=%.6f price=%.4f q_yes=%.6f q_no=%.6f",
                self.event_id,
                side.value,
                stake,
                delta,
                p_after,
                q_yes,
                q_no,
            )
            if self._persistence is not None:
                order = self._persist_order(len(self._orders) - 1, order)
            return order

    def _persist_order(self, index: int, order: Order) -> Order:
        try:
            order_id = self._persistence.record_order(
                order.event_id,
                order.side,
                order.stake,
                order.price,
                order.expected_cashout,
                order.delta,
            )
            order = order.with_order_id(order_id)
            self._orders[index] = order
            self._persistence.record_quantities(
                self.event_id, self._q_yes, self._q_no, self._total_deposits
            )
        except Exception as e:
            logger.exception("Persisting order on %s failed; reconcile store", self.event_id)
            raise PersistenceFailure(
                f"order on {self.event_id} executed but was not persisted: {e}",
                result=order,
            ) from e
        return order

    def settle(self, outcome: Union[Side, str, bool]) -> SettlementResult:
        """Resolve the market once and pay every unpaid order."""
        side = Side.parse(outcome)
        with self._lock:
            if self.resolved:
                raise self._reject(
                    AlreadyResolved(
                        f"market {self.event_id} already resolved as {self.outcome.value}"
                    )
                )
            self._resolution = Resolved(side)
            unpaid = {i for i, o in enumerate(self._orders) if not o.paid}
            settled, total_payouts = settle_orders(self._orders, side)
            self._orders = settled
            result = SettlementResult(
                event_id=self.event_id,
                outcome=side,
                total_payouts=total_payouts,
                profit_loss=self._total_deposits - total_payouts,
                orders=tuple(settled),
            )
            metrics.inc_settlement(side.value)
            logger.info(
                "Settled %s as %s: payouts=%.2f pnl=%.2f orders=%d",
                self.event_id,
                side.value,
                result.total_payouts,
                result.profit_loss,
                len(settled),
            )
            if self._persistence is not None:
                self._persist_settlement(result, [settled[i] for i in sorted(unpaid)])
            return result

    def _persist_settlement(self, result: SettlementResult, paid: List[Order]) -> None:
        try:
            for o in paid:
                if o.order_id is None:
                    logger.warning("Order without id on %s; payout not recorded", self.event_id)
                    continue
                self._persistence.record_payout(o.order_id, o.payout)
            self._persistence.record_settlement(
                self.event_id, result.outcome, result.total_payouts, result.profit_loss
            )
        except Exception as e:
            logger.exception("Persisting settlement of %s failed; reconcile store", self.event_id)
            raise PersistenceFailure(
                f"market {self.event_id} settled but was not persisted: {e}",
                result=result,
            ) from e

    def __repr__(self) -> str:
        return (
            f"Market({self.event_id!r}, risk_cap={self.risk_cap}, q_yes={self._q_yes:.4f}, "
            f"q_no={self._q_no:.4f}, deposits={self._total_deposits:.2f}, {self._resolution!r})"
        )


def create_market(
    event_id: str,
    risk_cap: float,
    q_yes: float = 0.0,
    q_no: float = 0.0,
    total_deposits: float = 0.0,
    persistence: Optional[Persistence] = None,
    name: Optional[str] = None,
    tag: Optional[str] = None,
    maturity: Optional[str] = None,
) -> Market:
    return Market(
        event_id,
        risk_cap,
        q_yes=q_yes,
        q_no=q_no,
        total_deposits=total_deposits,
        persistence=persistence,
        name=name,
        tag=tag,
        maturity=maturity,
    )
