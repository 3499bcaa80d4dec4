"""LMSR (Logarithmic Market Scoring Rule) pricing for binary markets.

Cost function: C(qY, qN) = b * log(exp(qY / b) + exp(qN / b))
Marginal price p_i = exp(q_i / b) / sum_j exp(q_j / b)

Everything is evaluated with the max quantity shifted out before
exponentiating, so large quantities never overflow.

Buying d shares of side s costs
    C(q + d) - C(q) = b * log(1 + p_s * (exp(d / b) - 1))
which inverts exactly to
    d = b * log(1 + (exp(money / b) - 1) / p_s).
"""

from __future__ import annotations

import math
from typing import Tuple

from .base import PricingModel
from ..core.errors import InvalidParameter
from ..core.types import Side
from ..core.utils import bisect_increasing

LN2 = math.log(2.0)


def _softplus(x: float) -> float:
    """log(1 + exp(x)) without overflow."""
    if x > 30.0:
        return x + math.log1p(math.exp(-x))
    return math.log1p(math.exp(x))


def _log_expm1(y: float) -> float:
    """log(exp(y) - 1) for y > 0."""
    if y > 30.0:
        return y + math.log1p(-math.exp(-y))
    return math.log(math.expm1(y))


class LMSR(PricingModel):
    def __init__(self, b: float = 100.0):
        if not (b > 0 and math.isfinite(b)):
            raise InvalidParameter(f"b must be positive, got {b}")
        self.b = b

    @classmethod
    def from_risk_cap(cls, risk_cap: float) -> "LMSR":
        """Liquidity parameter whose worst-case loss b * ln 2 equals ``risk_cap``."""
        if not (risk_cap > 0 and math.isfinite(risk_cap)):
            raise InvalidParameter(f"risk_cap must be positive, got {risk_cap}")
        return cls(b=risk_cap / LN2)

    @property
    def max_loss(self) -> float:
        return self.b * LN2

    def _shifted(self, q_yes: float, q_no: float) -> Tuple[float, float, float]:
        m = max(q_yes, q_no)
        return m, math.exp((q_yes - m) / self.b), math.exp((q_no - m) / self.b)

    def cost(self, q_yes: float, q_no: float) -> float:
        m, e_yes, e_no = self._shifted(q_yes, q_no)
        return m + self.b * math.log(e_yes + e_no)

    def price(self, q_yes: float, q_no: float) -> Tuple[float, float]:
        _, e_yes, e_no = self._shifted(q_yes, q_no)
        total = e_yes + e_no
        # derive the larger price from the smaller so the pair sums to one
        if e_yes <= e_no:
            p_yes = e_yes / total
            return p_yes, 1.0 - p_yes
        p_no = e_no / total
        return 1.0 - p_no, p_no

    def log_price(self, side: Side, q_yes: float, q_no: float) -> float:
        m, e_yes, e_no = self._shifted(q_yes, q_no)
        q_side = q_yes if side is Side.YES else q_no
        return (q_side - m) / self.b - math.log(e_yes + e_no)

    def cost_of_trade(self, side: Side, delta: float, q_yes: float, q_no: float) -> float:
        if side is Side.YES:
            return self.cost(q_yes + delta, q_no) - self.cost(q_yes, q_no)
        return self.cost(q_yes, q_no + delta) - self.cost(q_yes, q_no)

    def solve_delta_for_side(
        self, side: Side, money: float, q_yes: float, q_no: float
    ) -> float:
        if money < 0:
            raise InvalidParameter(f"money must be non-negative, got {money}")
        if money == 0:
            return 0.0
        x = _log_expm1(money / self.b) - self.log_price(side, q_yes, q_no)
        return self.b * _softplus(x)

    def solve_delta_bisect(
        self,
        side: Side,
        money: float,
        q_yes: float,
        q_no: float,
        iterations: int = 200,
        rel_tol: float = 1e-12,
    ) -> float:
        """Numeric inverse of ``cost_of_trade``; cross-check for the closed form."""
        if money < 0:
            raise InvalidParameter(f"money must be non-negative, got {money}")
        return bisect_increasing(
            lambda d: self.cost_of_trade(side, d, q_yes, q_no),
            money,
            high=max(1.0, money),
            iterations=max(40, iterations),
            rel_tol=rel_tol,
        )
