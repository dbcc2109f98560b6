from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from data.store import BaseStore
from engine.book import LIVE_BUCKETS, TERMINAL_BUCKETS
from engine.errors import MalformedRecord
from engine.models import TERMINAL_STATUSES, ClosedOrder, order_from_record, pnl_percent


@dataclass(frozen=True)
class Totals:
    trades: int
    pnl_percent: float


@dataclass(frozen=True)
class TradeStats:
    total: Totals
    daily: Totals


def day_start(now: float) -> int:
    local = datetime.fromtimestamp(now)
    return int(local.replace(hour=0, minute=0, second=0, microsecond=0).timestamp())


def _record_pnl(record: dict) -> float | None:
    pnl = record.get("pnl", record.get("pnlPercent"))
    if isinstance(pnl, (int, float)) and not isinstance(pnl, bool):
        return float(pnl)
    entry, exit_price = record.get("entryPrice"), record.get("exitPrice")
    if not isinstance(entry, (int, float)) or not isinstance(exit_price, (int, float)) or not entry:
        return None
    return pnl_percent(str(record.get("side") or "BUY").upper(), float(entry), float(exit_price))


def closed_records(store: BaseStore) -> list[dict]:
    """Closed orders from every bucket, each id counted once."""
    seen: dict[str, dict] = {}
    buckets = [*TERMINAL_BUCKETS.items(), *((None, b) for b in LIVE_BUCKETS.values())]
    for implied, bucket in buckets:
        for record in store.read(bucket):
            if not isinstance(record, dict):
                continue
            if implied and record.get("status") not in TERMINAL_STATUSES:
                record = {**record, "status": implied}
            if record.get("status") not in TERMINAL_STATUSES:
                continue
            key = str(record.get("id"))
            seen.setdefault(key, record)
    return list(seen.values())


def _totals(records: list[dict]) -> Totals:
    pnls = [p for p in (_record_pnl(r) for r in records) if p is not None]
    return Totals(trades=len(records), pnl_percent=sum(pnls))


def compute_stats(store: BaseStore, now: float) -> TradeStats:
    records = closed_records(store)
    start = day_start(now)
    today = [r for r in records if isinstance(r.get("closedAt"), (int, float)) and r["closedAt"] >= start]
    return TradeStats(total=_totals(records), daily=_totals(today))


def closed_orders(store: BaseStore) -> list[ClosedOrder]:
    orders: list[ClosedOrder] = []
    for record in closed_records(store):
        try:
            order = order_from_record(record, "closed", int(record.get("closedAt") or 0))
        except MalformedRecord as exc:
            logger.warning("Skipping malformed closed order: {}", exc.reason)
            continue
        if isinstance(order, ClosedOrder):
            orders.append(order)
    return orders
