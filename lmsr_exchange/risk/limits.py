"""Risk limits and checks."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from ..core.errors import InvalidParameter, InvalidStake, RiskCapExhausted, StakeExceedsCapacity
from ..pricing.lmsr import LMSR
from . import exposure as _exposure

# float slack allowed when re-checking the cap after a trade
CAP_TOLERANCE = 1e-9


def validate_stake(stake: float) -> float:
    if isinstance(stake, bool) or not isinstance(stake, (int, float)):
        raise InvalidStake(f"stake must be a number, got {stake!r}")
    if not math.isfinite(stake) or stake <= 0:
        raise InvalidStake(f"stake must be positive, got {stake}")
    return float(stake)


def check_capacity(event_id: str, remaining: float, stake: float, allowed: float) -> None:
    if remaining <= 0:
        raise RiskCapExhausted(event_id, remaining)
    if stake > allowed:
        raise StakeExceedsCapacity(event_id, stake, allowed)


@dataclass
class RiskBudget:
    risk_cap: float
    model: LMSR = field(init=False)

    def __post_init__(self):
        if isinstance(self.risk_cap, bool) or not isinstance(self.risk_cap, (int, float)):
            raise InvalidParameter(f"risk_cap must be a number, got {self.risk_cap!r}")
        self.model = LMSR.from_risk_cap(self.risk_cap)

    def exposure(self, q_yes: float, q_no: float) -> float:
        return _exposure.exposure(self.model, q_yes, q_no)

    def remaining(self, q_yes: float, q_no: float) -> float:
        return _exposure.remaining_risk(self.model, self.risk_cap, q_yes, q_no)

    def max_stake(self, q_yes: float, q_no: float) -> float:
        return _exposure.max_stake(self.model, self.risk_cap, q_yes, q_no)

    def within_cap(self, q_yes: float, q_no: float) -> bool:
        return self.exposure(q_yes, q_no) <= self.risk_cap * (1.0 + CAP_TOLERANCE)

    def check_trade(self, event_id: str, stake: float, q_yes: float, q_no: float) -> float:
        """Raise unless ``stake`` fits; returns the allowed maximum."""
        remaining = self.remaining(q_yes, q_no)
        allowed = self.max_stake(q_yes, q_no) if remaining > 0 else 0.0
        check_capacity(event_id, remaining, stake, allowed)
        return allowed
