import pytest
from sqlalchemy.exc import OperationalError

from lmsr_exchange.core.errors import AlreadyResolved, PersistenceFailure
from lmsr_exchange.core.types import Order, Side
from lmsr_exchange.io.persistence import MemoryPersistence
from lmsr_exchange.state.market import Market
from lmsr_exchange.state.settlement import payout_for, settle_orders


def traded_market(persistence=None):
    if persistence is not None:
        persistence.register_market("E", 100)
    m = Market("E", risk_cap=100, persistence=persistence)
    m.buy(Side.YES, 10)
    m.buy(Side.NO, 20)
    m.buy(Side.YES, 5)
    return m


def test_payout_for():
    o = Order("E", Side.YES, 10.0, 0.55, 18.18)
    assert payout_for(o, Side.YES) == 18.18
    assert payout_for(o, Side.NO) == 0.0


def test_settle_orders_skips_paid_orders():
    paid = Order("E", Side.NO, 1.0, 0.5, 2.0, payout=2.0)
    fresh = Order("E", Side.YES, 3.0, 0.5, 6.0)
    settled, total = settle_orders([paid, fresh], Side.YES)
    assert settled[0] is paid
    assert settled[1].payout == 6.0
    assert total == pytest.approx(8.0)


def test_order_payout_is_written_once():
    o = Order("E", Side.YES, 3.0, 0.5, 6.0).with_payout(6.0)
    with pytest.raises(AlreadyResolved):
        o.with_payout(6.0)


@pytest.mark.parametrize("outcome", [True, False])
def test_settlement_conservation(outcome):
    m = traded_market()
    result = m.settle(outcome)
    winner = Side.from_outcome(outcome)
    winners = [o for o in result.orders if o.side is winner]
    losers = [o for o in result.orders if o.side is not winner]
    assert sum(o.payout for o in winners) == pytest.approx(
        sum(o.expected_cashout for o in winners)
    )
    assert all(o.payout == 0 for o in losers)
    assert result.total_payouts == pytest.approx(sum(o.payout for o in result.orders))
    assert result.profit_loss == pytest.approx(35 - result.total_payouts)
    assert m.resolved and m.outcome is winner
    assert m.orders == result.orders


def test_settle_twice_is_rejected_without_changes():
    m = traded_market()
    first = m.settle(Side.NO)
    with pytest.raises(AlreadyResolved):
        m.settle(Side.YES)
    assert m.outcome is Side.NO
    assert m.orders == first.orders


def test_settlement_is_persisted():
    store = MemoryPersistence()
    m = traded_market(store)
    result = m.settle("YES")
    assert store.load_market_state("E").resolved
    assert store.load_market_state("E").outcome is Side.YES
    assert store.settlement("E")["profit_loss"] == pytest.approx(result.profit_loss)
    stored = store.load_orders("E")
    assert [o.payout for o in stored] == [o.payout for o in result.orders]
    assert store.list_market_ids() == []


class FlakyStore(MemoryPersistence):
    def __init__(self):
        super().__init__()
        self.fail_quantities = False
        self.fail_settlement = False

    def record_quantities(self, event_id, q_yes, q_no, total_deposits):
        if self.fail_quantities:
            raise OperationalError("UPDATE markets", {}, Exception("disk I/O error"))
        super().record_quantities(event_id, q_yes, q_no, total_deposits)

    def record_settlement(self, event_id, outcome, total_payouts, profit_loss):
        if self.fail_settlement:
            raise OperationalError("UPDATE markets", {}, Exception("database is locked"))
        super().record_settlement(event_id, outcome, total_payouts, profit_loss)


def test_persistence_failure_after_buy_keeps_in_memory_trade():
    # the trade happened before the store failed; no rollback, caller reconciles
    store = FlakyStore()
    store.register_market("E", 100)
    m = Market("E", risk_cap=100, persistence=store)
    store.fail_quantities = True
    with pytest.raises(PersistenceFailure) as exc:
        m.buy(Side.YES, 10)
    order = exc.value.result
    assert isinstance(order, Order)
    assert order.order_id is not None
    assert m.total_deposits == 10
    assert m.q_yes > 0
    assert m.orders == (order,)
    assert store.load_market_state("E").total_deposits == 0
    assert isinstance(exc.value.__cause__, OperationalError)


def test_persistence_failure_after_settle_keeps_resolution():
    store = FlakyStore()
    m = traded_market(store)
    store.fail_settlement = True
    with pytest.raises(PersistenceFailure) as exc:
        m.settle(False)
    assert exc.value.result.outcome is Side.NO
    assert m.resolved
    with pytest.raises(AlreadyResolved):
        m.settle(False)
