"""Prometheus instrumentation for trades, rejections and settlements."""

from __future__ import annotations

from prometheus_client import Counter

orders_total = Counter("lmsr_orders_total", "Accepted orders", ["side"])
stake_total = Counter("lmsr_stake_total", "Stake collected by accepted orders", ["side"])
rejections_total = Counter("lmsr_rejections_total", "Rejected orders", ["reason"])
settlements_total = Counter("lmsr_settlements_total", "Settled markets", ["outcome"])


def inc_order(side: str, stake: float) -> None:
    orders_total.labels(side=side).inc()
    stake_total.labels(side=side).inc(stake)


def inc_rejection(reason: str) -> None:
    rejections_total.labels(reason=reason).inc()


def inc_settlement(outcome: str) -> None:
    settlements_total.labels(outcome=outcome).inc()
