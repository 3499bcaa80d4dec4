"""Persistence collaborators for market state, orders and settlements.

The exchange core only talks to ``Persistence``. Two stores ship with it: an
in-process one for tests and simulations, and a SQL one built on a SQLAlchemy
``Engine``. Sides are always stored by name.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from ..core.errors import InvalidParameter, MarketNotFound
from ..core.types import MarketState, Order, Side

logger = logging.getLogger(__name__)


def write_json(path: str | Path, obj: Any):
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("w") as f:
        json.dump(obj, f, indent=2)


class Persistence(ABC):
    @abstractmethod
    def register_market(
        self,
        event_id: str,
        risk_cap: float,
        q_yes: float = 0.0,
        q_no: float = 0.0,
        total_deposits: float = 0.0,
        name: Optional[str] = None,
        tag: Optional[str] = None,
        maturity: Optional[str] = None,
    ) -> None:
        """Create the market row. Raises InvalidParameter on a duplicate id or tag."""
        ...

    @abstractmethod
    def load_market_state(self, event_id: str) -> MarketState: ...

    @abstractmethod
    def load_orders(self, event_id: str) -> List[Order]: ...

    @abstractmethod
    def find_by_tag(self, tag: str) -> str:
        """Return the event id registered under ``tag``."""
        ...

    @abstractmethod
    def list_markets(self, include_resolved: bool = False) -> List[MarketState]: ...

    def list_market_ids(self, include_resolved: bool = False) -> List[str]:
        return [s.event_id for s in self.list_markets(include_resolved)]

    @abstractmethod
    def record_order(
        self,
        event_id: str,
        side: Side,
        stake: float,
        price: float,
        expected_cashout: float,
        delta: float = 0.0,
    ) -> int:
        """Store an accepted order and return its id."""
        ...

    @abstractmethod
    def record_quantities(
        self, event_id: str, q_yes: float, q_no: float, total_deposits: float
    ) -> None: ...

    @abstractmethod
    def record_settlement(
        self, event_id: str, outcome: Side, total_payouts: float, profit_loss: float
    ) -> None: ...

    @abstractmethod
    def record_payout(self, order_id: int, payout: float) -> None: ...

    def close(self) -> None:
        pass


class MemoryPersistence(Persistence):
    def __init__(self):
        self._lock = threading.Lock()
        self._markets: Dict[str, MarketState] = {}
        self._tags: Dict[str, str] = {}
        self._settlements: Dict[str, Dict[str, Any]] = {}
        self._orders: Dict[int, Order] = {}
        self._ids = itertools.count(1)

    def register_market(
        self,
        event_id,
        risk_cap,
        q_yes=0.0,
        q_no=0.0,
        total_deposits=0.0,
        name=None,
        tag=None,
        maturity=None,
    ):
        with self._lock:
            if event_id in self._markets:
                raise InvalidParameter(f"market already exists: {event_id}")
            if tag is not None and tag in self._tags:
                raise InvalidParameter(f"tag already in use: {tag}")
            self._markets[event_id] = MarketState(
                event_id,
                risk_cap,
                q_yes,
                q_no,
                total_deposits,
                name=name,
                tag=tag,
                maturity=maturity,
            )
            if tag is not None:
                self._tags[tag] = event_id

    def _state(self, event_id: str) -> MarketState:
        try:
            state = self._markets[event_id]
        except KeyError:
            raise MarketNotFound(event_id) from None
        count = sum(1 for o in self._orders.values() if o.event_id == event_id)
        return replace(state, order_count=count)

    def load_market_state(self, event_id):
        with self._lock:
            return self._state(event_id)

    def load_orders(self, event_id):
        with self._lock:
            self._state(event_id)
            return [o for o in self._orders.values() if o.event_id == event_id]

    def find_by_tag(self, tag):
        with self._lock:
            try:
                return self._tags[tag]
            except KeyError:
                raise MarketNotFound(tag) from None

    def list_markets(self, include_resolved=False):
        with self._lock:
            return [
                self._state(event_id)
                for event_id, m in self._markets.items()
                if include_resolved or not m.resolved
            ]

    def record_order(self, event_id, side, stake, price, expected_cashout, delta=0.0):
        with self._lock:
            if event_id not in self._markets:
                raise MarketNotFound(event_id)
            order_id = next(self._ids)
            self._orders[order_id] = Order(
                event_id, side, stake, price, expected_cashout, delta, order_id
            )
            return order_id

    def record_quantities(self, event_id, q_yes, q_no, total_deposits):
        with self._lock:
            if event_id not in self._markets:
                raise MarketNotFound(event_id)
            self._markets[event_id] = replace(
                self._markets[event_id], q_yes=q_yes, q_no=q_no, total_deposits=total_deposits
            )

    def record_settlement(self, event_id, outcome, total_payouts, profit_loss):
        with self._lock:
            if event_id not in self._markets:
                raise MarketNotFound(event_id)
            self._markets[event_id] = replace(
                self._markets[event_id], resolved=True, outcome=outcome
            )
            self._settlements[event_id] = {
                "outcome": outcome.value,
                "total_payouts": total_payouts,
                "profit_loss": profit_loss,
            }

    def record_payout(self, order_id, payout):
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.payout is not None:
                raise InvalidParameter(f"order {order_id} missing or already paid")
            self._orders[order_id] = replace(order, payout=payout)

    def settlement(self, event_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._settlements.get(event_id)


metadata = MetaData()

markets = Table(
    "markets",
    metadata,
    Column("event_id", String, primary_key=True),
    Column("name", String),
    Column("tag", String, unique=True),
    Column("maturity", String),
    Column("risk_cap", Float, nullable=False),
    Column("q_yes", Float, nullable=False, default=0.0),
    Column("q_no", Float, nullable=False, default=0.0),
    Column("total_deposits", Float, nullable=False, default=0.0),
    Column("resolved", Boolean, nullable=False, default=False),
    Column("outcome", String(3)),
    Column("total_payouts", Float),
    Column("profit_loss", Float),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("resolved_at", DateTime(timezone=True)),
    CheckConstraint("risk_cap > 0", name="ck_markets_risk_cap"),
    CheckConstraint("outcome IN ('YES', 'NO')", name="ck_markets_outcome"),
)

orders = Table(
    "orders",
    metadata,
    Column("order_id", Integer, primary_key=True, autoincrement=True),
    Column("event_id", String, ForeignKey("markets.event_id"), nullable=False, index=True),
    Column("side", String(3), nullable=False),
    Column("stake", Float, nullable=False),
    Column("price", Float, nullable=False),
    Column("expected_cashout", Float, nullable=False),
    Column("delta", Float, nullable=False, default=0.0),
    Column("payout", Float),
    Column("created_at", DateTime(timezone=True), nullable=False),
    CheckConstraint("side IN ('YES', 'NO')", name="ck_orders_side"),
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_store_engine(url: str = "sqlite://") -> Engine:
    """Build an engine for ``url``.

    SQLite connections are shared across threads. An in-memory SQLite database
    lives on a single pooled connection, otherwise every checkout would see an
    empty database.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url)
    kwargs: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if parsed.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def _order_count():
    return (
        select(func.count(orders.c.order_id))
        .where(orders.c.event_id == markets.c.event_id)
        .scalar_subquery()
        .label("order_count")
    )


def _row_to_state(row) -> MarketState:
    return MarketState(
        event_id=row.event_id,
        risk_cap=row.risk_cap,
        q_yes=row.q_yes,
        q_no=row.q_no,
        total_deposits=row.total_deposits,
        resolved=bool(row.resolved),
        outcome=Side(row.outcome) if row.outcome else None,
        name=row.name,
        tag=row.tag,
        maturity=row.maturity,
        order_count=row.order_count,
    )


class SqlPersistence(Persistence):
    """SQL store over an injected SQLAlchemy engine.

    Every call runs in its own ``engine.begin()`` transaction. SQLite admits
    one writer at a time, so calls are serialized by an instance lock and the
    store may be shared by markets trading on different threads.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self._lock = threading.Lock()
        metadata.create_all(engine)

    @classmethod
    def connect(cls, url: str = "sqlite://") -> "SqlPersistence":
        engine = create_store_engine(url)
        logger.info("Opened SQL store at %s", engine.url.render_as_string(hide_password=True))
        return cls(engine)

    @contextmanager
    def _begin(self) -> Iterator[Connection]:
        with self._lock, self.engine.begin() as conn:
            yield conn

    def register_market(
        self,
        event_id,
        risk_cap,
        q_yes=0.0,
        q_no=0.0,
        total_deposits=0.0,
        name=None,
        tag=None,
        maturity=None,
    ):
        stmt = insert(markets).values(
            event_id=event_id,
            name=name,
            tag=tag,
            maturity=maturity,
            risk_cap=risk_cap,
            q_yes=q_yes,
            q_no=q_no,
            total_deposits=total_deposits,
            created_at=_utc_now(),
        )
        try:
            with self._begin() as conn:
                conn.execute(stmt)
        except IntegrityError as e:
            raise InvalidParameter(f"market already exists: {event_id} (tag={tag})") from e

    def load_market_state(self, event_id):
        stmt = select(markets, _order_count()).where(markets.c.event_id == event_id)
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        if row is None:
            raise MarketNotFound(event_id)
        return _row_to_state(row)

    def load_orders(self, event_id):
        stmt = select(orders).where(orders.c.event_id == event_id).order_by(orders.c.order_id)
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [
            Order(
                event_id=r.event_id,
                side=Side(r.side),
                stake=r.stake,
                price=r.price,
                expected_cashout=r.expected_cashout,
                delta=r.delta,
                order_id=r.order_id,
                payout=r.payout,
            )
            for r in rows
        ]

    def find_by_tag(self, tag):
        with self._begin() as conn:
            event_id = conn.execute(
                select(markets.c.event_id).where(markets.c.tag == tag)
            ).scalar_one_or_none()
        if event_id is None:
            raise MarketNotFound(tag)
        return event_id

    def list_markets(self, include_resolved=False):
        stmt = select(markets, _order_count()).order_by(
            markets.c.created_at, markets.c.event_id
        )
        if not include_resolved:
            stmt = stmt.where(markets.c.resolved.is_(False))
        with self._begin() as conn:
            rows = conn.execute(stmt).all()
        return [_row_to_state(r) for r in rows]

    def record_order(self, event_id, side, stake, price, expected_cashout, delta=0.0):
        stmt = insert(orders).values(
            event_id=event_id,
            side=Side(side).value,
            stake=stake,
            price=price,
            expected_cashout=expected_cashout,
            delta=delta,
            created_at=_utc_now(),
        )
        with self._begin() as conn:
            return int(conn.execute(stmt).inserted_primary_key[0])

    def _update_market(self, event_id: str, **values) -> None:
        stmt = update(markets).where(markets.c.event_id == event_id).values(**values)
        with self._begin() as conn:
            rowcount = conn.execute(stmt).rowcount
        if rowcount == 0:
            raise MarketNotFound(event_id)

    def record_quantities(self, event_id, q_yes, q_no, total_deposits):
        self._update_market(event_id, q_yes=q_yes, q_no=q_no, total_deposits=total_deposits)

    def record_settlement(self, event_id, outcome, total_payouts, profit_loss):
        self._update_market(
            event_id,
            resolved=True,
            outcome=Side(outcome).value,
            total_payouts=total_payouts,
            profit_loss=profit_loss,
            resolved_at=_utc_now(),
        )

    def record_payout(self, order_id, payout):
        stmt = (
            update(orders)
            .where(orders.c.order_id == order_id, orders.c.payout.is_(None))
            .values(payout=payout)
        )
        with self._begin() as conn:
            rowcount = conn.execute(stmt).rowcount
        if rowcount == 0:
            raise InvalidParameter(f"order {order_id} missing or already paid")

    def settlement(self, event_id: str) -> Optional[Dict[str, Any]]:
        stmt = select(markets.c.outcome, markets.c.total_payouts, markets.c.profit_loss).where(
            markets.c.event_id == event_id, markets.c.resolved.is_(True)
        )
        with self._begin() as conn:
            row = conn.execute(stmt).first()
        return dict(row._mapping) if row is not None else None

    def close(self) -> None:
        self.engine.dispose()
