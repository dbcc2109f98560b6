from __future__ import annotations

import bisect

import pandas as pd
from loguru import logger

from adapters.base import BarSource
from engine.models import Bar


def read_bars_csv(csv_path: str) -> dict[str, list[Bar]]:
    """Read bars from a CSV with timestamp, high, low, close and an optional ticker column."""
    df = pd.read_csv(csv_path)
    if "ticker" not in df.columns:
        df["ticker"] = "DEFAULT"
    df = df.dropna(subset=["timestamp", "high", "low", "close"]).sort_values("timestamp")
    bars: dict[str, list[Bar]] = {}
    for _, row in df.iterrows():
        bars.setdefault(str(row["ticker"]).upper(), []).append(
            Bar(
                ts=int(row["timestamp"]),
                high=float(row["high"]),
                low=float(row["low"]),
                close=float(row["close"]),
            )
        )
    return bars


class StaticBarSource(BarSource):
    """Serves bars from memory. Used in mock mode and for replays."""

    def __init__(self, bars: dict[str, list[Bar]] | None = None) -> None:
        self._bars: dict[str, list[Bar]] = {}
        self._index: dict[str, list[int]] = {}
        for ticker, items in (bars or {}).items():
            self.add_bars(ticker, items)

    @classmethod
    def from_csv(cls, csv_path: str) -> StaticBarSource:
        bars = read_bars_csv(csv_path)
        logger.info("Mock bars loaded: {}", {t: len(b) for t, b in bars.items()})
        return cls(bars)

    def add_bars(self, ticker: str, bars: list[Bar]) -> None:
        merged = {b.ts: b for b in self._bars.get(ticker, [])}
        merged.update({b.ts: b for b in bars})
        ordered = sorted(merged.values(), key=lambda b: b.ts)
        self._bars[ticker] = ordered
        self._index[ticker] = [b.ts for b in ordered]

    async def fetch(self, tickers: list[str], start: int, end: int) -> dict[str, list[Bar]]:
        out: dict[str, list[Bar]] = {}
        for ticker in tickers:
            index = self._index.get(ticker)
            if not index:
                continue
            lo = bisect.bisect_left(index, start)
            hi = bisect.bisect_left(index, end)
            if hi > lo:
                out[ticker] = self._bars[ticker][lo:hi]
        return out
