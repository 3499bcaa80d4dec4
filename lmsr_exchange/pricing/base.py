"""Pricing model abstraction."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Tuple

from ..core.types import Side


class PricingModel(ABC):
    @abstractmethod
    def cost(self, q_yes: float, q_no: float) -> float: ...

    @abstractmethod
    def price(self, q_yes: float, q_no: float) -> Tuple[float, float]: ...

    @abstractmethod
    def solve_delta_for_side(
        self, side: Side, money: float, q_yes: float, q_no: float
    ) -> float:
        """Shares of ``side`` that ``money`` buys at the current quantities."""
        ...

    def price_of(self, side: Side, q_yes: float, q_no: float) -> float:
        p_yes, p_no = self.price(q_yes, q_no)
        return p_yes if side is Side.YES else p_no
