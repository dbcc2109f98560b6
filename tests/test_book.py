import asyncio

import pytest

from data.store import JsonFileStore
from engine.book import OrderRepository
from engine.models import ClosedOrder, FilledOrder, OrderRequest, PendingOrder, order_from_record
from engine.errors import MalformedRecord

NOW = 1_700_000_000


def _repo(tmp_path, now=NOW) -> OrderRepository:
    return OrderRepository(JsonFileStore(str(tmp_path)), clock=lambda: now)


def test_load_defaults_request_fields(tmp_path):
    repo = _repo(tmp_path)
    repo.store.overwrite(
        "requests_buy",
        [{"id": "b1", "ticker": "sber", "priceBuy": 250.5, "takeProfit": 255.52, "stopLoss": 249.24}],
    )
    repo.store.overwrite(
        "requests_sell",
        [{"id": "s1", "ticker": "GAZP", "priceSell": 120.0, "takeProfit": 117.6, "stopLoss": 120.6}],
    )
    assert repo.load() == 2
    buy = repo.get("b1")
    assert isinstance(buy, PendingOrder)
    assert (buy.ticker, buy.side, buy.limit_price, buy.quantity, buy.created_at) == ("SBER", "BUY", 250.5, 1.0, NOW)
    assert repo.get("s1").side == "SELL"


def test_load_skips_malformed_records(tmp_path):
    repo = _repo(tmp_path)
    repo.store.overwrite(
        "requests_buy",
        [
            {"id": "ok", "ticker": "SBER", "priceBuy": 100.0, "takeProfit": 102.0, "stopLoss": 99.5},
            {"id": "no-price", "ticker": "SBER", "takeProfit": 102.0, "stopLoss": 99.5},
            "garbage",
        ],
    )
    assert repo.load() == 1
    assert repo.get("no-price") is None


def test_load_prefers_snapshots_and_drops_closed(tmp_path):
    repo = _repo(tmp_path)
    base = {"ticker": "SBER", "priceBuy": 100.0, "takeProfit": 102.0, "stopLoss": 99.5}
    repo.store.overwrite("requests_buy", [{"id": "a", **base}, {"id": "b", **base}])
    repo.store.overwrite(
        "active",
        [{"id": "a", "ticker": "SBER", "side": "BUY", "status": "FILLED", "limitPrice": 100.0,
          "takeProfit": 102.0, "stopLoss": 99.5, "quantity": 1, "createdAt": NOW - 600,
          "entryPrice": 100.0, "filledAt": NOW - 300}],
    )
    repo.store.overwrite("takeprofit", [{"id": "b", "status": "TP_CLOSED"}])
    repo.load()
    assert isinstance(repo.get("a"), FilledOrder)
    assert repo.get("a").filled_at == NOW - 300
    assert repo.get("b") is None


def test_order_from_record_closed_requires_exit_price():
    record = {"id": "c", "ticker": "SBER", "side": "BUY", "status": "SL_CLOSED", "limitPrice": 100.0,
              "takeProfit": 102.0, "stopLoss": 99.5, "entryPrice": 100.0, "filledAt": NOW}
    with pytest.raises(MalformedRecord):
        order_from_record(record, "stoploss", NOW)
    closed = order_from_record({**record, "exitPrice": 99.5, "closedAt": NOW + 60}, "stoploss", NOW)
    assert isinstance(closed, ClosedOrder)
    assert closed.pnl_percent == pytest.approx(-0.5)


def test_submit_and_persist(tmp_path):
    repo = _repo(tmp_path)
    order_id = asyncio.run(repo.submit("BUY", "sber", 250.5, 255.5, 249.2, quantity=3))
    order = repo.get(order_id)
    assert order.status == "PENDING"
    assert order.created_at == NOW
    assert order.quantity == 3
    pending = repo.store.read("pending")
    assert [r["id"] for r in pending] == [order_id]
    assert pending[0]["ticker"] == "SBER"


def test_submit_rejects_unknown_side(tmp_path):
    with pytest.raises(ValueError):
        asyncio.run(_repo(tmp_path).submit("HOLD", "SBER", 1.0, 2.0, 0.5))


def test_add_rejects_duplicate_id(tmp_path):
    repo = _repo(tmp_path)
    order = PendingOrder(id="dup", ticker="SBER", side="BUY", limit_price=100.0, take_profit=102.0,
                         stop_loss=99.5, quantity=1.0, created_at=0)
    repo.add(order)
    with pytest.raises(ValueError):
        repo.add(order)


def test_replace_is_forward_only(tmp_path):
    repo = _repo(tmp_path)
    order = PendingOrder(id="x", ticker="SBER", side="BUY", limit_price=100.0, take_profit=102.0,
                         stop_loss=99.5, quantity=1.0, created_at=0)
    repo.add(order)
    filled = repo.get("x").fill(NOW)
    repo.replace(filled)
    with pytest.raises(ValueError):
        repo.replace(order)
    with pytest.raises(KeyError):
        repo.replace(PendingOrder(**{**order._common(), "id": "unknown"}))


def test_terminal_history_only_grows(tmp_path):
    repo = _repo(tmp_path)
    for i in range(2):
        repo.add(PendingOrder(id=f"o{i}", ticker="SBER", side="BUY", limit_price=100.0, take_profit=102.0,
                              stop_loss=99.5, quantity=1.0, created_at=0))
    repo.replace(repo.get("o0").fill(NOW).close(102.0, NOW + 60, "TP_CLOSED"))
    repo.persist()
    assert [r["id"] for r in repo.store.read("takeprofit")] == ["o0"]
    assert [r["id"] for r in repo.store.read("pending")] == ["o1"]

    repo.replace(repo.get("o1").fill(NOW).close(102.0, NOW + 120, "TP_CLOSED"))
    repo.persist()
    repo.persist()
    assert [r["id"] for r in repo.store.read("takeprofit")] == ["o0", "o1"]
    assert repo.store.read("pending") == []
    assert repo.store.read("takeprofit")[0]["exitPrice"] == 102.0


def test_persist_reports_failure_and_keeps_state(tmp_path):
    repo = _repo(tmp_path)
    repo.add(PendingOrder(id="o", ticker="SBER", side="BUY", limit_price=100.0, take_profit=102.0,
                          stop_loss=99.5, quantity=1.0, created_at=0))
    repo.replace(repo.get("o").fill(NOW).close(99.5, NOW, "SL_CLOSED"))
    (tmp_path / "stoploss.json").write_text("not json", encoding="utf-8")
    assert repo.persist() is False
    assert repo.get("o").status == "SL_CLOSED"
    (tmp_path / "stoploss.json").unlink()
    assert repo.persist() is True
    assert [r["id"] for r in repo.store.read("stoploss")] == ["o"]


def test_ingest_skips_known_and_closed(tmp_path):
    repo = _repo(tmp_path)
    repo.store.overwrite("stoploss", [{"id": "closed"}])
    requests = [
        OrderRequest(id="new", ticker="SBER", side="BUY", limit_price=100.0, take_profit=102.0, stop_loss=99.5),
        OrderRequest(id="closed", ticker="SBER", side="SELL", limit_price=90.0, take_profit=88.2, stop_loss=90.45),
    ]
    assert asyncio.run(repo.ingest(requests)) == 1
    assert asyncio.run(repo.ingest(requests)) == 0
    assert repo.get("new").created_at == NOW
    assert repo.get("closed") is None
