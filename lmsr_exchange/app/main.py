"""App bootstrap: settings, logging, store and market registry."""

from __future__ import annotations

import logging
from dataclasses import asdict
from pathlib import Path
from typing import Optional

from ..core.config import Settings
from ..io.persistence import SqlPersistence, write_json
from ..state.store import MarketRegistry


def configure_logging(level: str = "INFO") -> None:
    # basicConfig leaves an already configured root logger alone
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_environment(settings: Optional[Settings] = None) -> tuple[Settings, MarketRegistry]:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    store = SqlPersistence.connect(settings.database_url)
    registry = MarketRegistry(store, default_risk_cap=settings.default_risk_cap)
    registry.resume()
    return settings, registry


def export_snapshot(registry: MarketRegistry, path: str | Path) -> None:
    rows = []
    for market in registry.list_markets(include_resolved=True):
        m = asdict(market.metrics())
        m["event_id"] = market.event_id
        m["name"] = market.name
        m["tag"] = market.tag
        m["maturity"] = market.maturity
        m["outcome"] = m["outcome"].value if m["outcome"] else None
        rows.append(m)
    write_json(path, {"markets": rows})
