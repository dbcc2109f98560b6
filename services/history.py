from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from adapters.base import BarSource
from adapters.http import to_bar
from data.store import BaseStore
from engine.models import Bar


def history_bucket(ticker: str) -> str:
    return f"history:{ticker}"


def bars_to_records(bars: list[Bar]) -> list[dict]:
    return [{"time": b.ts, "high": b.high, "low": b.low, "close": b.close} for b in bars]


def records_to_bars(records: list[dict]) -> list[Bar]:
    bars = []
    for r in records:
        if not isinstance(r, dict):
            continue
        bar = to_bar(r.get("time"), r.get("high"), r.get("low"), r.get("close"))
        if bar:
            bars.append(bar)
    bars.sort(key=lambda b: b.ts)
    return bars


class HistoryService:
    """Keeps a per-ticker bar history in the store, topped up incrementally."""

    def __init__(
        self,
        store: BaseStore,
        source: BarSource,
        history_days: int = 30,
        bar_seconds: int = 900,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.source = source
        self.history_days = history_days
        self.bar_seconds = bar_seconds
        self.clock = clock

    def load(self, ticker: str) -> list[Bar]:
        return records_to_bars(self.store.read(history_bucket(ticker)))

    async def sync(self, ticker: str) -> int:
        existing = self.load(ticker)
        now = int(self.clock())
        if existing:
            start = existing[-1].ts + self.bar_seconds
        else:
            start = now - self.history_days * 86400
        if start >= now:
            logger.info("{} history already up to date", ticker)
            return 0

        fetched = (await self.source.fetch([ticker], start, now)).get(ticker, [])
        if not fetched:
            logger.info("{} no new bars", ticker)
            return 0

        merged = {b.ts: b for b in existing}
        merged.update({b.ts: b for b in fetched})
        bars = sorted(merged.values(), key=lambda b: b.ts)
        self.store.overwrite(history_bucket(ticker), bars_to_records(bars))
        logger.info("{} history: +{} bars (total {})", ticker, len(fetched), len(bars))
        return len(fetched)
