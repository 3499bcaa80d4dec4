"""In-memory registry of live markets backed by a persistence collaborator."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from ..core.config import DEFAULT_RISK_CAP
from ..core.errors import InvalidParameter, MarketNotFound
from ..core.types import MarketState
from ..io.persistence import Persistence
from .market import Market

logger = logging.getLogger(__name__)


class MarketRegistry:
    def __init__(self, persistence: Persistence, default_risk_cap: float = DEFAULT_RISK_CAP):
        self.persistence = persistence
        self.default_risk_cap = default_risk_cap
        self._markets: Dict[str, Market] = {}
        self._lock = threading.Lock()

    def create_market(
        self,
        event_id: str,
        risk_cap: Optional[float] = None,
        q_yes: float = 0.0,
        q_no: float = 0.0,
        total_deposits: float = 0.0,
        name: Optional[str] = None,
        tag: Optional[str] = None,
        maturity: Optional[str] = None,
    ) -> Market:
        if risk_cap is None:
            risk_cap = self.default_risk_cap
        with self._lock:
            if event_id in self._markets:
                raise InvalidParameter(f"market already exists: {event_id}")
            # validate before touching the store
            market = Market(
                event_id,
                risk_cap,
                q_yes=q_yes,
                q_no=q_no,
                total_deposits=total_deposits,
                persistence=self.persistence,
                name=name,
                tag=tag,
                maturity=maturity,
            )
            self.persistence.register_market(
                event_id,
                risk_cap,
                q_yes,
                q_no,
                total_deposits,
                name=name,
                tag=tag,
                maturity=maturity,
            )
            self._markets[event_id] = market
        logger.info(
            "Created market %s (tag=%s, risk_cap=%s, b=%.4f)", event_id, tag, risk_cap, market.b
        )
        return market

    def get(self, event_id: str) -> Market:
        with self._lock:
            market = self._markets.get(event_id)
        if market is None:
            raise MarketNotFound(event_id)
        return market

    def open_market(self, event_id: str) -> Market:
        """Return the live market, loading it from persistence if needed."""
        with self._lock:
            market = self._markets.get(event_id)
            if market is None:
                state = self.persistence.load_market_state(event_id)
                orders = self.persistence.load_orders(event_id)
                market = Market.from_state(state, orders, persistence=self.persistence)
                self._markets[event_id] = market
        return market

    def get_by_tag(self, tag: str) -> Market:
        return self.open_market(self.persistence.find_by_tag(tag))

    def lookup(self, key: str) -> Market:
        """Find a market by event id, falling back to its tag."""
        try:
            return self.open_market(key)
        except MarketNotFound:
            return self.get_by_tag(key)

    def resume(self) -> List[Market]:
        """Restore every unresolved market known to persistence."""
        resumed = [self.open_market(i) for i in self.persistence.list_market_ids()]
        logger.info("Resumed %d ongoing markets from store", len(resumed))
        return resumed

    def list_markets(self, include_resolved: bool = False) -> List[Market]:
        with self._lock:
            markets = list(self._markets.values())
        return [m for m in markets if include_resolved or not m.resolved]

    def listing(self, include_resolved: bool = False) -> List[MarketState]:
        """Stored markets with their metadata and order counts."""
        return self.persistence.list_markets(include_resolved)

    def __contains__(self, event_id: str) -> bool:
        with self._lock:
            return event_id in self._markets

    def __len__(self) -> int:
        with self._lock:
            return len(self._markets)
