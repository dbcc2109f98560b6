from __future__ import annotations

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable

from loguru import logger

from adapters.base import BarSource
from engine.book import OrderRepository
from engine.errors import PersistenceFailure
from engine.fills import OrderEvent, advance
from engine.models import Bar, Order
from engine.state import EngineStateStore
from services.notifier import Notifier


@dataclass
class TickReport:
    start: int
    end: int
    tickers: list[str] = field(default_factory=list)
    orders: int = 0
    skipped: int = 0
    events: list[OrderEvent] = field(default_factory=list)


class TradingEngine:
    """Advances simulated orders against fresh bars, one tick at a time."""

    def __init__(
        self,
        repo: OrderRepository,
        source: BarSource,
        state_store: EngineStateStore | None = None,
        notifier: Notifier | None = None,
        chat_id: str | None = None,
        lookback_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.repo = repo
        self.source = source
        self.state_store = state_store
        self.notifier = notifier
        self.chat_id = chat_id
        self.lookback_seconds = lookback_seconds
        self.clock = clock
        self.checkpoint: int | None = None

    async def run_once(self) -> TickReport:
        now = int(self.clock())
        start = self.checkpoint if self.checkpoint is not None else now - self.lookback_seconds
        report = TickReport(start=start, end=now)
        if self.state_store and self.state_store.load().paused:
            logger.debug("Engine paused, tick skipped")
            return report
        # advance unconditionally so a stalled ticker never replays forever
        self.checkpoint = now

        async with self.repo.lock:
            orders = self.repo.live()
            report.orders = len(orders)
            if not orders:
                logger.debug("No orders to track")
                return report
            grouped: dict[str, list[Order]] = defaultdict(list)
            for order in orders:
                grouped[order.ticker].append(order)
            report.tickers = sorted(grouped)

            try:
                bars = await self.source.fetch(report.tickers, start, now)
            except Exception as exc:
                logger.exception("Bar fetch failed for tick {}..{}: {}", start, now, exc)
                self._record_error(f"fetch: {exc}")
                bars = {}

            for ticker, group in grouped.items():
                data = bars.get(ticker)
                if not data:
                    logger.debug("No bar data for {}", ticker)
                    report.skipped += len(group)
                    continue
                for order in group:
                    report.events.extend(self._evaluate(order, data))

            self.repo.persist()

        logger.info(
            "Tick {}..{}: {} orders, {} tickers, {} events, {} skipped",
            start,
            now,
            report.orders,
            len(report.tickers),
            len(report.events),
            report.skipped,
        )
        if self.state_store:
            try:
                self.state_store.update(last_tick_at=now)
            except PersistenceFailure as exc:
                logger.error("Failed to save engine state: {}", exc)
        await self._notify(report.events)
        return report

    def _evaluate(self, order: Order, bars: list[Bar]) -> list[OrderEvent]:
        try:
            updated, events = advance(order, bars)
            if events:
                self.repo.replace(updated)
        except Exception as exc:
            logger.exception("Failed to evaluate order {}: {}", order.id, exc)
            self._record_error(f"order {order.id}: {exc}")
            return []
        for event in events:
            if event.status == "FILLED":
                logger.info("FILLED {} @ {}", event.order.id, event.order.limit_price)
            else:
                logger.info("CLOSED {} {} pnl={:.2f}%", event.order.id, event.status, event.order.pnl_percent)
        return events

    def _record_error(self, message: str) -> None:
        if not self.state_store:
            return
        try:
            self.state_store.update(last_error=message)
        except PersistenceFailure as exc:
            logger.error("Failed to save engine state: {}", exc)

    async def _notify(self, events: list[OrderEvent]) -> None:
        if not self.notifier or not self.chat_id:
            return
        for event in events:
            order = event.order
            if event.status == "FILLED":
                text = f"Filled: {order.ticker} {order.side} @ {order.limit_price}"
            else:
                outcome = "take profit" if event.status == "TP_CLOSED" else "stop loss"
                text = f"Closed by {outcome}: {order.ticker} {order.side} @ {order.exit_price}, pnl {order.pnl_percent:.2f}%"
            await self.notifier.send(self.chat_id, text)
