"""Underwriting exposure of an LMSR market.

Exposure is the cost collected since the empty book, C(q) - C(0, 0). The risk
cap bounds it: once exposure reaches the cap neither side can trade.
"""

from __future__ import annotations

import math

from ..core.utils import bisect_increasing
from ..pricing.lmsr import LMSR


def exposure(model: LMSR, q_yes: float, q_no: float) -> float:
    return model.cost(q_yes, q_no) - model.cost(0.0, 0.0)


def remaining_risk(model: LMSR, risk_cap: float, q_yes: float, q_no: float) -> float:
    return risk_cap - exposure(model, q_yes, q_no)


def symmetric_capacity(model: LMSR, q_yes: float, q_no: float, remaining: float) -> float:
    """Largest d with C(qY + d, qN + d) - C(qY, qN) <= remaining.

    Found by expanding then bisecting; the returned bound never overshoots.
    """
    if remaining <= 0:
        return 0.0
    base = model.cost(q_yes, q_no)
    return bisect_increasing(
        lambda d: model.cost(q_yes + d, q_no + d) - base,
        remaining,
        high=max(1.0, remaining),
    )


def max_stake(model: LMSR, risk_cap: float, q_yes: float, q_no: float) -> float:
    """Largest stake either side may place without breaching ``risk_cap``.

    The symmetric capacity d is converted to money with the cheaper side's
    price, b * p * (exp(d / b) - 1), which is the tighter of the two sides.
    """
    remaining = remaining_risk(model, risk_cap, q_yes, q_no)
    if remaining <= 0:
        return 0.0
    delta = symmetric_capacity(model, q_yes, q_no, remaining)
    p_self = min(model.price(q_yes, q_no))
    stake = model.b * p_self * math.expm1(delta / model.b)
    return min(stake, remaining)
