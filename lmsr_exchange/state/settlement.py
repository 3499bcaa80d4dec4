"""Settlement arithmetic: pay winners their expected cashout, losers nothing."""

from __future__ import annotations

from typing import Iterable, List, Tuple

from ..core.types import Order, Side


def payout_for(order: Order, outcome: Side) -> float:
    return order.expected_cashout if order.side is outcome else 0.0


def settle_orders(orders: Iterable[Order], outcome: Side) -> Tuple[List[Order], float]:
    """Assign payouts to every unpaid order.

    Already-paid orders are passed through unchanged and count toward the total.
    """
    settled: List[Order] = []
    total = 0.0
    for o in orders:
        if not o.paid:
            o = o.with_payout(payout_for(o, outcome))
        settled.append(o)
        total += o.payout or 0.0
    return settled, total


def payouts_by_side(orders: Iterable[Order]) -> Tuple[float, float]:
    """Sum of expected cashouts owed if YES wins, and if NO wins."""
    if_yes = 0.0
    if_no = 0.0
    for o in orders:
        if o.side is Side.YES:
            if_yes += o.expected_cashout
        else:
            if_no += o.expected_cashout
    return if_yes, if_no
