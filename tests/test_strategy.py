import pytest

from engine.models import Bar, ExtremeLevel
from services.config_service import RuntimeConfig
from strategies.levels import (
    LevelRetestStrategy,
    build_request,
    ceil2,
    filter_unbroken_levels,
    find_retest,
    floor2,
    rolling_highs,
    rolling_lows,
)

T0 = 1_700_000_000
HIGHS = [100 + i for i in range(9)] + [150, 120, 121, 122, 123, 124, 149.8, 130, 125]


def _bars(highs=HIGHS) -> list[Bar]:
    return [Bar(ts=T0 + i * 900, high=h, low=h - 1, close=h - 0.5) for i, h in enumerate(highs)]


def _config(**kwargs) -> RuntimeConfig:
    values = dict(tickers=["SBER"], donchian_length=10, local_length=1, min_bars=5, bar_seconds=900)
    values.update(kwargs)
    return RuntimeConfig(**values)


def test_rolling_extrema_marks_window_max_and_min():
    bars = [Bar(ts=i, high=h, low=h - 1, close=h) for i, h in enumerate([1, 3, 2, 5, 4])]
    assert [lvl.price for lvl in rolling_highs(bars, 2)] == [3, 5]
    assert [lvl.price for lvl in rolling_lows(bars, 2)] == [1, 3]
    assert rolling_highs(bars, 10) == []


def test_filter_unbroken_levels_high():
    levels = [ExtremeLevel(ts=i, price=p, kind="HIGH") for i, p in enumerate([10, 12, 11, 13, 9])]
    assert [lvl.price for lvl in filter_unbroken_levels(levels, "HIGH")] == [9, 13]


def test_filter_unbroken_levels_low_keeps_ties():
    levels = [ExtremeLevel(ts=i, price=p, kind="LOW") for i, p in enumerate([5, 7, 5, 8, 6])]
    assert [lvl.price for lvl in filter_unbroken_levels(levels, "LOW")] == [6, 5, 5]


def test_retest_requires_min_bars():
    level = ExtremeLevel(ts=1000, price=150.0, kind="HIGH")
    late = ExtremeLevel(ts=1000 + 900 * 25, price=149.8, kind="HIGH")
    early = ExtremeLevel(ts=1000 + 900 * 10, price=149.8, kind="HIGH")
    assert find_retest(level, [late], 0.002, 20, 900) == late
    assert find_retest(level, [early], 0.002, 20, 900) is None
    assert find_retest(level, [early, late], 0.002, 20, 900) == late


def test_retest_must_come_from_inside():
    high = ExtremeLevel(ts=0, price=150.0, kind="HIGH")
    low = ExtremeLevel(ts=0, price=100.0, kind="LOW")
    above = ExtremeLevel(ts=900 * 30, price=150.1, kind="HIGH")
    equal = ExtremeLevel(ts=900 * 30, price=150.0, kind="HIGH")
    far = ExtremeLevel(ts=900 * 30, price=149.0, kind="HIGH")
    assert find_retest(high, [above, equal, far], 0.002, 20, 900) is None
    assert find_retest(low, [ExtremeLevel(ts=900 * 30, price=100.1, kind="LOW")], 0.002, 20, 900) is not None
    assert find_retest(low, [ExtremeLevel(ts=900 * 30, price=99.9, kind="LOW")], 0.002, 20, 900) is None


def test_rounding_helpers():
    assert ceil2(1.001) == 1.01
    assert floor2(1.009) == 1.0
    assert ceil2(150 * 1.02) == 153.0
    assert floor2(100 * 0.98) == 98.0


def test_build_request_sides():
    buy = build_request("SBER", ExtremeLevel(ts=0, price=150.0, kind="HIGH"), 2.0, 0.5)
    assert (buy.side, buy.limit_price, buy.take_profit, buy.stop_loss) == ("BUY", 150.0, 153.0, 149.25)
    sell = build_request("SBER", ExtremeLevel(ts=0, price=100.0, kind="LOW"), 2.0, 0.5)
    assert (sell.side, sell.limit_price, sell.take_profit, sell.stop_loss) == ("SELL", 100.0, 98.0, 100.5)


def test_scan_finds_buy_retest():
    scan = LevelRetestStrategy().scan("SBER", _bars(), _config())
    assert [(lvl.ts, lvl.price) for lvl in scan.global_highs] == [(T0 + 9 * 900, 150)]
    assert scan.global_lows == []
    assert [lvl.price for lvl in scan.local_highs] == [149.8, 130, 125]
    assert len(scan.requests) == 1
    request = scan.requests[0]
    assert request.side == "BUY"
    assert request.limit_price == 150
    assert request.take_profit == pytest.approx(153.0)
    assert request.stop_loss == pytest.approx(149.25)


def test_scan_respects_min_bars():
    assert LevelRetestStrategy().generate("SBER", _bars(), _config(min_bars=10)) == []


def test_scan_on_short_history_is_empty():
    scan = LevelRetestStrategy().scan("SBER", _bars()[:5], _config())
    assert scan.global_highs == []
    assert scan.requests == []
