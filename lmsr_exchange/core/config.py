"""Runtime settings read from the environment (and ``.env`` when present)."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv  # type: ignore

from .errors import InvalidParameter

DEFAULT_RISK_CAP = 10_000.0
DEFAULT_DATABASE_URL = "sqlite:///lmsr_exchange.db"


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise InvalidParameter(f"{key} must be a number, got {raw!r}") from None
    if not math.isfinite(value):
        raise InvalidParameter(f"{key} must be finite, got {raw!r}")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    default_risk_cap: float = DEFAULT_RISK_CAP
    log_level: str = "INFO"
    snapshot_path: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()
        risk_cap = _float_env("LMSR_DEFAULT_RISK_CAP", DEFAULT_RISK_CAP)
        if risk_cap <= 0:
            raise InvalidParameter("LMSR_DEFAULT_RISK_CAP must be positive")
        return cls(
            database_url=os.getenv("LMSR_DATABASE_URL") or DEFAULT_DATABASE_URL,
            default_risk_cap=risk_cap,
            log_level=(os.getenv("LMSR_LOG_LEVEL") or "INFO").upper(),
            snapshot_path=os.getenv("LMSR_SNAPSHOT_PATH") or None,
        )
