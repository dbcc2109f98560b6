from __future__ import annotations

import asyncio
import time
import uuid
from typing import Callable, Iterable

from loguru import logger

from data.store import BaseStore
from engine.errors import MalformedRecord, PersistenceFailure
from engine.models import (
    LIVE_STATUSES,
    STATUSES,
    Order,
    OrderRequest,
    PendingOrder,
    Side,
    order_from_record,
    order_to_record,
)

REQUEST_BUCKETS: dict[str, str] = {"BUY": "requests_buy", "SELL": "requests_sell"}
LIVE_BUCKETS: dict[str, str] = {"PENDING": "pending", "FILLED": "active"}
TERMINAL_BUCKETS: dict[str, str] = {"TP_CLOSED": "takeprofit", "SL_CLOSED": "stoploss"}


def _record_id(record: dict) -> str:
    return str(record.get("id"))


class OrderRepository:
    """Owns the buy and sell order collections and their persisted buckets.

    Only the tracking tick and submit() mutate the collections, and both
    hold ``lock`` while doing so.
    """

    def __init__(self, store: BaseStore, clock: Callable[[], float] = time.time) -> None:
        self.store = store
        self.clock = clock
        self.lock = asyncio.Lock()
        self._orders: dict[str, dict[str, Order]] = {"BUY": {}, "SELL": {}}

    def _now(self) -> int:
        return int(self.clock())

    def _side_of(self, order_id: str) -> str | None:
        for side, orders in self._orders.items():
            if order_id in orders:
                return side
        return None

    def load(self) -> int:
        now = self._now()
        for side, bucket in REQUEST_BUCKETS.items():
            for record in self.store.read(bucket):
                self._load_record(record, bucket, now, side=side, replace=False)
        # snapshots carry fills that happened before a restart
        for bucket in LIVE_BUCKETS.values():
            for record in self.store.read(bucket):
                self._load_record(record, bucket, now, side=None, replace=True)
        closed = {_record_id(r) for bucket in TERMINAL_BUCKETS.values() for r in self.store.read(bucket)}
        for orders in self._orders.values():
            for order_id in closed & orders.keys():
                orders.pop(order_id)
        count = sum(len(o) for o in self._orders.values())
        logger.info(
            "Loaded orders BUY={} SELL={}",
            len(self._orders["BUY"]),
            len(self._orders["SELL"]),
        )
        return count

    def _load_record(self, record: object, bucket: str, now: int, side: str | None, replace: bool) -> None:
        try:
            order = order_from_record(record, bucket, now, side=side)
        except MalformedRecord as exc:
            logger.warning("Skipping malformed record in {}: {}", bucket, exc.reason)
            return
        owner = self._side_of(order.id)
        if owner is not None and (not replace or owner != order.side):
            if owner != order.side:
                logger.warning("Order {} listed on both sides, keeping {}", order.id, owner)
            return
        self._orders[order.side][order.id] = order

    def add(self, order: PendingOrder) -> PendingOrder:
        if self._side_of(order.id) is not None:
            raise ValueError(f"Duplicate order id: {order.id}")
        stamped = PendingOrder(**{**order._common(), "created_at": self._now()})
        self._orders[stamped.side][stamped.id] = stamped
        self.persist()
        return stamped

    async def submit(
        self,
        side: Side,
        ticker: str,
        limit_price: float,
        take_profit: float,
        stop_loss: float,
        quantity: float = 1.0,
    ) -> str:
        if side not in REQUEST_BUCKETS:
            raise ValueError(f"Unknown side: {side}")
        order = PendingOrder(
            id=str(uuid.uuid4()),
            ticker=ticker.upper(),
            side=side,
            limit_price=float(limit_price),
            take_profit=float(take_profit),
            stop_loss=float(stop_loss),
            quantity=float(quantity),
            created_at=self._now(),
        )
        async with self.lock:
            self.add(order)
        logger.info("Submitted {} {} @ {} (id {})", side, order.ticker, order.limit_price, order.id)
        return order.id

    def get(self, order_id: str) -> Order | None:
        side = self._side_of(order_id)
        return self._orders[side][order_id] if side else None

    def replace(self, order: Order) -> None:
        current = self._orders[order.side].get(order.id)
        if current is None:
            raise KeyError(order.id)
        if STATUSES.index(order.status) < STATUSES.index(current.status):
            raise ValueError(f"Order {order.id} cannot go from {current.status} to {order.status}")
        self._orders[order.side][order.id] = order

    def all(self) -> list[Order]:
        return [*self._orders["BUY"].values(), *self._orders["SELL"].values()]

    def snapshot(self, status: str) -> list[Order]:
        return [o for o in self.all() if o.status == status]

    def live(self) -> list[Order]:
        return [o for o in self.all() if o.status in LIVE_STATUSES]

    def persist(self) -> bool:
        """Write live snapshots and merge newly closed orders into history.

        Failures are logged and in-memory state is kept, so the next call
        retries the write.
        """
        ok = True
        orders = self.all()
        for status, bucket in LIVE_BUCKETS.items():
            records = [order_to_record(o) for o in orders if o.status == status]
            try:
                self.store.overwrite(bucket, records)
            except PersistenceFailure as exc:
                logger.error("Persist failed for {}: {}", bucket, exc)
                ok = False
        for status, bucket in TERMINAL_BUCKETS.items():
            records = [order_to_record(o) for o in orders if o.status == status]
            if not records:
                continue
            try:
                added = self.store.append_merge(bucket, records, key=_record_id)
            except PersistenceFailure as exc:
                logger.error("Persist failed for {}: {}", bucket, exc)
                ok = False
                continue
            if added:
                logger.info("Saved {} new orders to {}", added, bucket)
        return ok

    def closed_ids(self) -> set[str]:
        return {_record_id(r) for bucket in TERMINAL_BUCKETS.values() for r in self.store.read(bucket)}

    async def ingest(self, requests: Iterable[OrderRequest]) -> int:
        """Start tracking freshly detected requests that are not known yet."""
        async with self.lock:
            now = self._now()
            closed = self.closed_ids()
            added = 0
            for request in requests:
                if self._side_of(request.id) is not None or request.id in closed:
                    continue
                self._orders[request.side][request.id] = PendingOrder(
                    id=request.id,
                    ticker=request.ticker,
                    side=request.side,
                    limit_price=request.limit_price,
                    take_profit=request.take_profit,
                    stop_loss=request.stop_loss,
                    quantity=1.0,
                    created_at=now,
                )
                added += 1
            if added:
                self.persist()
            return added
