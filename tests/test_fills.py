import pytest

from engine.fills import advance, check_close
from engine.models import Bar, ClosedOrder, FilledOrder, PendingOrder, pnl_percent

T0 = 1_700_000_000


def _order(side="BUY", limit=100.0, tp=102.0, sl=99.5, created_at=T0) -> PendingOrder:
    return PendingOrder(
        id="o1",
        ticker="SBER",
        side=side,
        limit_price=limit,
        take_profit=tp,
        stop_loss=sl,
        quantity=1.0,
        created_at=created_at,
    )


def _bar(i, low, high) -> Bar:
    return Bar(ts=T0 + i * 60, high=high, low=low, close=(low + high) / 2)


def test_fill_and_stop_loss_in_same_bar():
    bars = [_bar(0, 99.0, 101.0), _bar(1, 99.4, 100.5), _bar(2, 99.3, 100.2)]
    order, events = advance(_order(), bars)
    assert isinstance(order, ClosedOrder)
    assert order.status == "SL_CLOSED"
    assert order.entry_price == 100.0
    assert order.filled_at == bars[0].ts
    assert order.exit_price == 99.5
    assert order.closed_at == bars[0].ts
    assert order.pnl_percent == pytest.approx(-0.5)
    assert [e.status for e in events] == ["FILLED", "SL_CLOSED"]


def test_fill_then_stop_loss_on_later_bar():
    bars = [_bar(0, 99.6, 101.0), _bar(1, 99.55, 100.5), _bar(2, 99.3, 100.2)]
    order, events = advance(_order(), bars)
    assert order.status == "SL_CLOSED"
    assert order.filled_at == bars[0].ts
    assert order.closed_at == bars[2].ts
    assert order.pnl_percent == pytest.approx(-0.5)
    assert len(events) == 2


def test_same_bar_fill_and_take_profit():
    order, events = advance(_order(), [_bar(0, 99.8, 102.5)])
    assert order.status == "TP_CLOSED"
    assert order.exit_price == 102.0
    assert order.pnl_percent == pytest.approx(2.0)
    assert events[0].ts == events[1].ts


def test_stop_loss_wins_when_both_bounds_hit():
    filled = _order().fill(T0)
    closed = check_close(filled, _bar(1, 99.0, 103.0))
    assert closed.status == "SL_CLOSED"
    assert closed.exit_price == 99.5


def test_sell_take_profit_has_positive_pnl():
    order = _order(side="SELL", limit=100.0, tp=98.0, sl=100.5)
    bars = [_bar(0, 99.9, 100.1), _bar(1, 99.0, 100.2), _bar(2, 97.5, 99.0)]
    order, _ = advance(order, bars)
    assert order.status == "TP_CLOSED"
    assert order.exit_price == 98.0
    assert order.pnl_percent == pytest.approx(2.0)


def test_sell_stop_loss_has_negative_pnl():
    order = _order(side="SELL", limit=100.0, tp=98.0, sl=100.5)
    order, _ = advance(order, [_bar(0, 99.9, 100.1), _bar(1, 100.0, 100.6)])
    assert order.status == "SL_CLOSED"
    assert order.pnl_percent == pytest.approx(-0.5)


def test_fill_is_containment_not_crossing():
    # bar entirely above a BUY limit does not fill it
    order, events = advance(_order(), [_bar(0, 100.5, 101.0)])
    assert isinstance(order, PendingOrder)
    assert events == []


def test_bars_before_created_at_are_ignored():
    order = _order(created_at=T0 + 120)
    result, events = advance(order, [_bar(0, 99.0, 101.0), _bar(1, 99.8, 100.2)])
    assert result == order
    assert events == []


def test_filled_order_only_sees_bars_from_fill_time():
    filled = _order().fill(T0 + 120)
    result, _ = advance(filled, [_bar(0, 90.0, 110.0), _bar(1, 90.0, 110.0), _bar(2, 99.8, 100.2)])
    assert isinstance(result, FilledOrder)
    assert result.entry_price == 100.0


def test_empty_bars_leave_order_unchanged():
    pending = _order()
    assert advance(pending, []) == (pending, [])
    filled = pending.fill(T0)
    assert advance(filled, []) == (filled, [])


def test_closed_order_is_terminal():
    closed = _order().fill(T0).close(102.0, T0 + 60, "TP_CLOSED")
    result, events = advance(closed, [_bar(2, 90.0, 110.0)])
    assert result is closed
    assert events == []


def test_close_requires_terminal_status():
    with pytest.raises(ValueError):
        _order().fill(T0).close(102.0, T0, "FILLED")


def test_pnl_sign_follows_direction():
    assert pnl_percent("BUY", 100.0, 101.0) > 0
    assert pnl_percent("SELL", 100.0, 101.0) < 0
    assert pnl_percent("SELL", 100.0, 99.0) == pytest.approx(1.0)
