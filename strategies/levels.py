from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal

import pandas as pd
from loguru import logger

from engine.models import Bar, ExtremeLevel, LevelKind, OrderRequest
from services.config_service import RuntimeConfig
from strategies.base import Strategy

_CENT = Decimal("0.01")


def _round2(value: float, rounding: str) -> float:
    # strip float noise first so 102.00000000000001 stays 102.00
    return float(Decimal(str(round(value, 9))).quantize(_CENT, rounding=rounding))


def ceil2(value: float) -> float:
    return _round2(value, ROUND_CEILING)


def floor2(value: float) -> float:
    return _round2(value, ROUND_FLOOR)


def rolling_extrema(bars: list[Bar], length: int, kind: LevelKind) -> list[ExtremeLevel]:
    """Bars whose high (low) equals the max (min) of the trailing ``length`` bars."""
    if length < 1 or len(bars) < length:
        return []
    if kind == "HIGH":
        prices = pd.Series([b.high for b in bars], dtype="float64")
        window = prices.rolling(length).max()
    else:
        prices = pd.Series([b.low for b in bars], dtype="float64")
        window = prices.rolling(length).min()
    hits = prices.eq(window)
    return [ExtremeLevel(ts=bars[i].ts, price=float(prices.iat[i]), kind=kind) for i in hits[hits].index]


def rolling_highs(bars: list[Bar], length: int = 50) -> list[ExtremeLevel]:
    return rolling_extrema(bars, length, "HIGH")


def rolling_lows(bars: list[Bar], length: int = 50) -> list[ExtremeLevel]:
    return rolling_extrema(bars, length, "LOW")


def filter_unbroken_levels(levels: list[ExtremeLevel], kind: LevelKind) -> list[ExtremeLevel]:
    """Walk from the newest level back and keep each one that extends the running extreme.

    The result is in scan order, newest first.
    """
    kept: list[ExtremeLevel] = []
    extreme = float("-inf") if kind == "HIGH" else float("inf")
    for level in reversed(levels):
        if (kind == "HIGH" and level.price >= extreme) or (kind == "LOW" and level.price <= extreme):
            kept.append(level)
            extreme = level.price
    return kept


def find_retest(
    level: ExtremeLevel,
    candidates: list[ExtremeLevel],
    tolerance: float,
    min_bars: int,
    bar_seconds: int,
) -> ExtremeLevel | None:
    """First candidate, in time order, that comes back to ``level`` from the inside.

    Highs must approach from below, lows from above, no further than
    ``tolerance`` (relative) and at least ``min_bars`` bars after the level.
    """
    min_gap = min_bars * bar_seconds
    for local in candidates:
        if local.ts <= level.ts or local.ts - level.ts < min_gap:
            continue
        if level.kind == "HIGH":
            if local.price >= level.price:
                continue
            diff = (level.price - local.price) / level.price
        else:
            if local.price <= level.price:
                continue
            diff = (local.price - level.price) / level.price
        if diff > tolerance:
            continue
        return local
    return None


def build_request(ticker: str, level: ExtremeLevel, take_profit_pct: float, stop_loss_pct: float) -> OrderRequest:
    tp = take_profit_pct / 100.0
    sl = stop_loss_pct / 100.0
    price = level.price
    if level.kind == "HIGH":
        side, take_profit, stop_loss = "BUY", ceil2(price * (1 + tp)), floor2(price * (1 - sl))
    else:
        side, take_profit, stop_loss = "SELL", floor2(price * (1 - tp)), ceil2(price * (1 + sl))
    return OrderRequest(
        id=str(uuid.uuid4()),
        ticker=ticker,
        side=side,
        limit_price=price,
        take_profit=take_profit,
        stop_loss=stop_loss,
    )


@dataclass
class LevelScan:
    global_highs: list[ExtremeLevel] = field(default_factory=list)
    global_lows: list[ExtremeLevel] = field(default_factory=list)
    local_highs: list[ExtremeLevel] = field(default_factory=list)
    local_lows: list[ExtremeLevel] = field(default_factory=list)
    requests: list[OrderRequest] = field(default_factory=list)


class LevelRetestStrategy(Strategy):
    """Buy retests of unbroken resistance, sell retests of unbroken support."""

    def scan(self, ticker: str, bars: list[Bar], config: RuntimeConfig) -> LevelScan:
        result = LevelScan()
        if not bars:
            return result
        bars = sorted(bars, key=lambda b: b.ts)
        result.global_highs = filter_unbroken_levels(rolling_highs(bars, config.donchian_length), "HIGH")
        result.global_lows = filter_unbroken_levels(rolling_lows(bars, config.donchian_length), "LOW")
        result.local_highs = self._locals(bars, config.local_length, "HIGH", result.global_highs)
        result.local_lows = self._locals(bars, config.local_length, "LOW", result.global_lows)

        for levels, candidates in (
            (result.global_highs, result.local_highs),
            (result.global_lows, result.local_lows),
        ):
            seen_prices: set[float] = set()
            for level in levels:
                local = find_retest(level, candidates, config.retest_tolerance, config.min_bars, config.bar_seconds)
                if local is None or level.price in seen_prices:
                    continue
                seen_prices.add(level.price)
                bars_passed = (local.ts - level.ts) // config.bar_seconds
                logger.debug(
                    "{} | bars: {} | price: {:.2f} vs {:.2f} | diff: {:.2f}%",
                    ticker,
                    bars_passed,
                    local.price,
                    level.price,
                    abs(level.price - local.price) / level.price * 100,
                )
                result.requests.append(
                    build_request(ticker, level, config.take_profit_pct, config.stop_loss_pct)
                )
        return result

    def _locals(
        self, bars: list[Bar], length: int, kind: LevelKind, envelope: list[ExtremeLevel]
    ) -> list[ExtremeLevel]:
        exclude = {level.key for level in envelope}
        levels = filter_unbroken_levels(rolling_extrema(bars, length, kind), kind)
        return sorted((lvl for lvl in levels if lvl.key not in exclude), key=lambda lvl: lvl.ts)

    def generate(self, ticker: str, bars: list[Bar], config: RuntimeConfig) -> list[OrderRequest]:
        return self.scan(ticker, bars, config).requests
