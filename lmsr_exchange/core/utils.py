"""Small utilities."""

from __future__ import annotations

from typing import Callable


def round_figure(value: float, decimals: int = 2) -> float:
    factor = 10.0**decimals
    return round(value * factor) / factor


def bisect_increasing(
    fn: Callable[[float], float],
    target: float,
    high: float = 1.0,
    max_expansions: int = 1000,
    iterations: int = 200,
    rel_tol: float = 1e-12,
) -> float:
    """Largest x >= 0 with fn(x) <= target, for fn non-decreasing and fn(0) <= target.

    Expands ``high`` geometrically until fn(high) >= target, then bisects.
    Returns the lower end of the final bracket, so fn(result) never exceeds
    ``target``.
    """
    if target <= fn(0.0):
        return 0.0
    low = 0.0
    for _ in range(max_expansions):
        if fn(high) >= target:
            break
        low = high
        high *= 2.0
    else:
        raise ArithmeticError(f"could not bracket target {target}")
    for _ in range(iterations):
        mid = (low + high) / 2.0
        if fn(mid) < target:
            low = mid
        else:
            high = mid
        if high - low <= rel_tol * max(1.0, high):
            break
    return low
