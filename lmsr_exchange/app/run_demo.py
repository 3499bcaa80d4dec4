"""Entry point for a reference trading session."""

from __future__ import annotations

from .main import build_environment, export_snapshot
from ..core.config import Settings
from ..core.errors import MarketError
from ..core.types import Side


def main():  # pragma: no cover - manual run
    settings, registry = build_environment(Settings.from_env())
    event_id = "DEMO_EVENT"
    if event_id in registry:
        market = registry.get(event_id)
    else:
        market = registry.create_market(event_id, risk_cap=settings.default_risk_cap)
    q = market.quote()
    print(f"YES {q.price_yes:.2f} / NO {q.price_no:.2f}, max stake {q.size:.2f}")
    for side, stake in [(Side.YES, 37.0), (Side.NO, 1010.0)]:
        try:
            order = market.buy(side, stake)
        except MarketError as e:
            print(f"{side.value} {stake:.2f} rejected: {e.message}")
            continue
        print(
            f"{order.side.value} stake {order.stake:.2f} at {order.price:.2f},"
            f" expected cashout {order.expected_cashout:.2f}"
        )
    m = market.metrics()
    print(f"deposits {m.total_deposits:.2f}, pnl if YES {m.pnl_if_yes:.2f}, pnl if NO {m.pnl_if_no:.2f}")
    if settings.snapshot_path:
        export_snapshot(registry, settings.snapshot_path)
    registry.persistence.close()


if __name__ == "__main__":  # pragma: no cover
    main()
