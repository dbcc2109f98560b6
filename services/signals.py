from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from data.store import BaseStore
from engine.book import REQUEST_BUCKETS, OrderRepository
from engine.models import ExtremeLevel, OrderRequest, request_to_record
from engine.state import EngineStateStore
from services.config_service import ConfigService, RuntimeConfig
from services.history import HistoryService
from services.notifier import Notifier
from strategies.levels import LevelRetestStrategy


def request_key(record: dict) -> tuple[str, float | None]:
    price = None
    for name in ("limitPrice", "priceBuy", "priceSell", "price"):
        value = record.get(name)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            price = float(value)
            break
    return (str(record.get("ticker") or "").upper(), price)


def levels_to_records(levels: list[ExtremeLevel]) -> list[dict]:
    return [{"time": lvl.ts, "price": lvl.price} for lvl in levels]


def merge_requests(store: BaseStore, requests: list[OrderRequest]) -> list[OrderRequest]:
    """Append requests with an unseen (ticker, limit price) to their side's bucket.

    Existing entries are never touched, so re-running detection is a no-op.
    """
    added: list[OrderRequest] = []
    for side, bucket in REQUEST_BUCKETS.items():
        records = [request_to_record(r) for r in requests if r.side == side]
        if not records:
            continue
        known = {request_key(r) for r in store.read(bucket)}
        fresh = []
        for request, record in zip((r for r in requests if r.side == side), records):
            key = request_key(record)
            if key in known:
                continue
            known.add(key)
            fresh.append((request, record))
        if not fresh:
            continue
        store.append_merge(bucket, [record for _, record in fresh], key=request_key)
        added.extend(request for request, _ in fresh)
    return added


class SignalPipeline:
    """History sync, level detection and request merge for every configured ticker."""

    def __init__(
        self,
        store: BaseStore,
        history: HistoryService,
        config_service: ConfigService,
        strategy: LevelRetestStrategy | None = None,
        repo: OrderRepository | None = None,
        state_store: EngineStateStore | None = None,
        notifier: Notifier | None = None,
        chat_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.history = history
        self.config_service = config_service
        self.strategy = strategy or LevelRetestStrategy()
        self.repo = repo
        self.state_store = state_store
        self.notifier = notifier
        self.chat_id = chat_id
        self.clock = clock

    async def run_once(self) -> list[OrderRequest]:
        config = self.config_service.load()
        found: list[OrderRequest] = []
        for ticker in config.tickers:
            try:
                await self.history.sync(ticker)
            except Exception as exc:
                logger.exception("History sync failed for {}: {}", ticker, exc)
            try:
                found.extend(await self.process(ticker, config))
            except Exception as exc:
                logger.exception("Signal detection failed for {}: {}", ticker, exc)
        if self.state_store:
            self.state_store.update(last_signal_run_at=int(self.clock()))
        logger.info("Signal run finished: {} new requests", len(found))
        return found

    async def process(self, ticker: str, config: RuntimeConfig) -> list[OrderRequest]:
        bars = self.history.load(ticker)
        if not bars:
            logger.info("{} no history, skipped", ticker)
            return []
        scan = self.strategy.scan(ticker, bars, config)
        self.store.overwrite(f"levels:high:{ticker}", levels_to_records(scan.global_highs))
        self.store.overwrite(f"levels:low:{ticker}", levels_to_records(scan.global_lows))
        self.store.overwrite(f"local:high:{ticker}", levels_to_records(scan.local_highs))
        self.store.overwrite(f"local:low:{ticker}", levels_to_records(scan.local_lows))
        if not scan.requests:
            return []

        added = merge_requests(self.store, scan.requests)
        for request in added:
            kind = "BUY LIMIT" if request.side == "BUY" else "SELL LIMIT"
            logger.info("{} -> {} {}", ticker, kind, request.limit_price)
        if added and self.repo:
            await self.repo.ingest(added)
        if added and self.notifier and self.chat_id:
            for request in added:
                await self.notifier.send(
                    self.chat_id,
                    f"{request.side} {request.ticker} @ {request.limit_price}\n"
                    f"TP: {request.take_profit}\nSL: {request.stop_loss}",
                )
        return added
