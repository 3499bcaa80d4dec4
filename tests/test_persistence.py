import json
import threading

import pytest
from sqlalchemy import text

from lmsr_exchange.app.main import export_snapshot
from lmsr_exchange.core.errors import InvalidParameter, MarketNotFound
from lmsr_exchange.core.types import Side
from lmsr_exchange.io.persistence import MemoryPersistence, SqlPersistence, write_json
from lmsr_exchange.state.store import MarketRegistry


@pytest.fixture(params=["memory", "sql"])
def store(request):
    s = MemoryPersistence() if request.param == "memory" else SqlPersistence.connect("sqlite://")
    yield s
    s.close()


def test_unknown_market(store):
    with pytest.raises(MarketNotFound):
        store.load_market_state("nope")
    with pytest.raises(MarketNotFound):
        store.record_quantities("nope", 1.0, 0.0, 1.0)


def test_duplicate_market(store):
    store.register_market("E", 100)
    with pytest.raises(InvalidParameter):
        store.register_market("E", 100)


def test_round_trip_state_and_orders(store):
    store.register_market("E", 100)
    oid = store.record_order("E", Side.NO, 5.0, 0.47, 10.64, delta=9.8)
    store.record_quantities("E", 0.0, 9.8, 5.0)
    state = store.load_market_state("E")
    assert (state.q_yes, state.q_no, state.total_deposits) == (0.0, 9.8, 5.0)
    assert not state.resolved and state.outcome is None
    assert state.order_count == 1
    [order] = store.load_orders("E")
    assert order.order_id == oid
    assert order.side is Side.NO
    assert order.payout is None
    store.record_payout(oid, 10.64)
    assert store.load_orders("E")[0].payout == 10.64


def test_payout_written_once(store):
    store.register_market("E", 100)
    oid = store.record_order("E", Side.YES, 1.0, 0.5, 2.0)
    store.record_payout(oid, 2.0)
    with pytest.raises(InvalidParameter):
        store.record_payout(oid, 2.0)
    with pytest.raises(InvalidParameter):
        store.record_payout(oid + 100, 2.0)


def test_settlement_hides_market_from_listing(store):
    store.register_market("A", 100)
    store.register_market("B", 100)
    store.record_settlement("A", Side.YES, 0.0, 0.0)
    assert store.list_market_ids() == ["B"]
    assert sorted(store.list_market_ids(include_resolved=True)) == ["A", "B"]
    assert store.load_market_state("A").outcome is Side.YES
    assert store.settlement("A")["outcome"] == "YES"
    assert store.settlement("B") is None


def test_event_metadata_round_trip(store):
    store.register_market("E", 100, name="Rain in Paris", tag="RAIN", maturity="2026-12-31")
    state = store.load_market_state("E")
    assert (state.name, state.tag, state.maturity) == ("Rain in Paris", "RAIN", "2026-12-31")
    assert store.find_by_tag("RAIN") == "E"
    with pytest.raises(MarketNotFound):
        store.find_by_tag("SNOW")


def test_tag_is_unique(store):
    store.register_market("A", 100, tag="T")
    store.register_market("B", 100)
    store.register_market("C", 100)
    with pytest.raises(InvalidParameter):
        store.register_market("D", 100, tag="T")
    with pytest.raises(MarketNotFound):
        store.load_market_state("D")


def test_listing_reports_order_counts(store):
    store.register_market("A", 100, tag="TA")
    store.register_market("B", 100)
    store.record_order("A", Side.YES, 1.0, 0.5, 2.0)
    store.record_order("A", Side.NO, 1.0, 0.5, 2.0)
    counts = {s.event_id: s.order_count for s in store.list_markets()}
    assert counts == {"A": 2, "B": 0}
    assert [s.tag for s in store.list_markets()] == ["TA", None]


def test_sql_stores_side_by_name():
    store = SqlPersistence.connect("sqlite://")
    store.register_market("E", 100)
    store.record_order("E", Side.YES, 1.0, 0.5, 2.0)
    with store.engine.connect() as conn:
        sides = conn.execute(text("SELECT side FROM orders")).scalars().all()
    assert sides == ["YES"]
    store.close()


def test_sql_rejects_bad_rows():
    store = SqlPersistence.connect("sqlite://")
    with pytest.raises(InvalidParameter):
        store.register_market("E", -1)
    store.close()


def test_registry_resume_from_sql(tmp_path):
    url = f"sqlite:///{tmp_path / 'exchange.db'}"
    store = SqlPersistence.connect(url)
    registry = MarketRegistry(store)
    m = registry.create_market("E", risk_cap=100, name="Event", tag="EV")
    registry.create_market("DONE", risk_cap=50)
    m.buy(Side.YES, 12)
    m.buy(Side.NO, 3)
    registry.get("DONE").settle(True)
    store.close()

    store = SqlPersistence.connect(url)
    resumed = MarketRegistry(store)
    markets = resumed.resume()
    assert [x.event_id for x in markets] == ["E"]
    again = resumed.get("E")
    assert again.q_yes == pytest.approx(m.q_yes)
    assert again.q_no == pytest.approx(m.q_no)
    assert again.total_deposits == pytest.approx(15)
    assert [o.side for o in again.orders] == [Side.YES, Side.NO]
    assert again.price() == pytest.approx(m.price())
    assert (again.name, again.tag) == ("Event", "EV")
    assert resumed.get_by_tag("EV") is again
    done = resumed.open_market("DONE")
    assert done.resolved and done.outcome is Side.YES
    store.close()


def test_markets_on_threads_share_one_store(tmp_path):
    store = SqlPersistence.connect(f"sqlite:///{tmp_path / 'shared.db'}")
    registry = MarketRegistry(store)
    markets = [registry.create_market(f"M{i}", risk_cap=500) for i in range(6)]
    errors = []

    def worker(market, i):
        try:
            for k in range(25):
                side = Side.YES if (i + k) % 2 else Side.NO
                market.buy(side, 1.0 + (k % 4))
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(m, i)) for i, m in enumerate(markets)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    for m in markets:
        state = store.load_market_state(m.event_id)
        stored = store.load_orders(m.event_id)
        assert state.total_deposits == pytest.approx(m.total_deposits)
        assert state.q_yes == pytest.approx(m.q_yes)
        assert state.q_no == pytest.approx(m.q_no)
        assert state.order_count == len(m.orders) == len(stored) == 25
        assert [o.order_id for o in stored] == [o.order_id for o in m.orders]
    ids = [o.order_id for m in markets for o in m.orders]
    assert len(set(ids)) == len(ids)
    store.close()


def test_write_json_and_snapshot(tmp_path):
    write_json(tmp_path / "a" / "x.json", {"k": 1})
    assert json.loads((tmp_path / "a" / "x.json").read_text()) == {"k": 1}

    registry = MarketRegistry(MemoryPersistence())
    registry.create_market("E", 100, tag="E-TAG").buy(Side.YES, 4)
    out = tmp_path / "snap.json"
    export_snapshot(registry, out)
    data = json.loads(out.read_text())
    assert data["markets"][0]["event_id"] == "E"
    assert data["markets"][0]["tag"] == "E-TAG"
    assert data["markets"][0]["total_deposits"] == 4
