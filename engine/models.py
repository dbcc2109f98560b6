from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from typing import Any, Literal, Union

from loguru import logger

from engine.errors import MalformedRecord

Side = Literal["BUY", "SELL"]
Status = Literal["PENDING", "FILLED", "TP_CLOSED", "SL_CLOSED"]
LevelKind = Literal["HIGH", "LOW"]

SIDES: tuple[str, ...] = ("BUY", "SELL")
STATUSES: tuple[str, ...] = ("PENDING", "FILLED", "TP_CLOSED", "SL_CLOSED")
LIVE_STATUSES: tuple[str, ...] = ("PENDING", "FILLED")
TERMINAL_STATUSES: tuple[str, ...] = ("TP_CLOSED", "SL_CLOSED")


@dataclass(frozen=True)
class Bar:
    ts: int
    high: float
    low: float
    close: float


@dataclass(frozen=True)
class ExtremeLevel:
    ts: int
    price: float
    kind: LevelKind

    @property
    def key(self) -> tuple[int, float]:
        return (self.ts, self.price)


@dataclass(frozen=True)
class OrderRequest:
    """Limit order proposed by the level detector, before it is tracked."""

    id: str
    ticker: str
    side: Side
    limit_price: float
    take_profit: float
    stop_loss: float


@dataclass(frozen=True)
class _OrderBase:
    id: str
    ticker: str
    side: Side
    limit_price: float
    take_profit: float
    stop_loss: float
    quantity: float
    created_at: int

    @property
    def direction(self) -> int:
        return 1 if self.side == "BUY" else -1

    def _common(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticker": self.ticker,
            "side": self.side,
            "limit_price": self.limit_price,
            "take_profit": self.take_profit,
            "stop_loss": self.stop_loss,
            "quantity": self.quantity,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class PendingOrder(_OrderBase):
    @property
    def status(self) -> Status:
        return "PENDING"

    def fill(self, ts: int) -> FilledOrder:
        return FilledOrder(**self._common(), entry_price=self.limit_price, filled_at=ts)


@dataclass(frozen=True)
class FilledOrder(_OrderBase):
    entry_price: float
    filled_at: int

    @property
    def status(self) -> Status:
        return "FILLED"

    def close(self, exit_price: float, ts: int, status: Status) -> ClosedOrder:
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        pnl = pnl_percent(self.side, self.entry_price, exit_price)
        return ClosedOrder(
            **self._common(),
            entry_price=self.entry_price,
            filled_at=self.filled_at,
            exit_price=exit_price,
            closed_at=ts,
            pnl_percent=pnl,
            status=status,
        )


@dataclass(frozen=True)
class ClosedOrder(_OrderBase):
    entry_price: float
    filled_at: int
    exit_price: float
    closed_at: int
    pnl_percent: float
    status: Status


Order = Union[PendingOrder, FilledOrder, ClosedOrder]


def pnl_percent(side: str, entry_price: float, exit_price: float) -> float:
    direction = 1 if side == "BUY" else -1
    return ((exit_price - entry_price) / entry_price) * 100.0 * direction


def request_to_record(request: OrderRequest) -> dict[str, Any]:
    price_key = "priceBuy" if request.side == "BUY" else "priceSell"
    return {
        "id": request.id,
        "ticker": request.ticker,
        price_key: request.limit_price,
        "takeProfit": request.take_profit,
        "stopLoss": request.stop_loss,
    }


def order_to_record(order: Order) -> dict[str, Any]:
    record: dict[str, Any] = {
        "id": order.id,
        "ticker": order.ticker,
        "side": order.side,
        "status": order.status,
        "limitPrice": order.limit_price,
        "takeProfit": order.take_profit,
        "stopLoss": order.stop_loss,
        "quantity": order.quantity,
        "createdAt": order.created_at,
    }
    if isinstance(order, (FilledOrder, ClosedOrder)):
        record["entryPrice"] = order.entry_price
        record["filledAt"] = order.filled_at
    if isinstance(order, ClosedOrder):
        record["exitPrice"] = order.exit_price
        record["closedAt"] = order.closed_at
        record["pnl"] = order.pnl_percent
    return record


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _first_number(record: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        number = _number(record.get(key))
        if number is not None:
            return number
    return None


def order_from_record(record: Any, bucket: str, now: int, side: str | None = None) -> Order:
    """Rebuild an order from a persisted record.

    Missing bookkeeping fields (side, status, quantity, createdAt, id) are
    defaulted and logged. Missing prices cannot be defaulted and raise
    MalformedRecord.
    """
    if not isinstance(record, dict):
        raise MalformedRecord(bucket, record, "record is not an object")

    defaulted: list[str] = []
    order_id = str(record.get("id") or "").strip()
    if not order_id:
        order_id = str(uuid.uuid4())
        defaulted.append("id")

    ticker = str(record.get("ticker") or "").strip().upper()
    if not ticker:
        raise MalformedRecord(bucket, record, "missing ticker")

    resolved_side = side or str(record.get("side") or "").upper()
    if resolved_side not in SIDES:
        raise MalformedRecord(bucket, record, f"unknown side {resolved_side!r}")

    if resolved_side == "BUY":
        limit_price = _first_number(record, "limitPrice", "priceBuy", "price")
    else:
        limit_price = _first_number(record, "limitPrice", "priceSell", "price")
    take_profit = _first_number(record, "takeProfit", "takeProfitPrice", "take")
    stop_loss = _first_number(record, "stopLoss", "stopLossPrice", "stop")
    if limit_price is None or limit_price <= 0:
        raise MalformedRecord(bucket, record, "missing limit price")
    if take_profit is None or stop_loss is None:
        raise MalformedRecord(bucket, record, "missing take profit or stop loss")

    status = record.get("status")
    if status not in STATUSES:
        status = "PENDING"
        defaulted.append("status")

    quantity = _first_number(record, "quantity", "qty")
    if quantity is None or quantity <= 0:
        quantity = 1.0
        defaulted.append("quantity")

    created_at = _number(record.get("createdAt"))
    if created_at is None:
        created_at = now
        defaulted.append("createdAt")

    # request buckets never carry bookkeeping fields
    expected = {"status", "quantity", "createdAt"} if side else set()
    unexpected = [name for name in defaulted if name not in expected]
    if unexpected:
        logger.warning("Defaulted {} for order {} in {}", ", ".join(unexpected), order_id, bucket)
    elif defaulted:
        logger.debug("Defaulted {} for order {} in {}", ", ".join(defaulted), order_id, bucket)

    pending = PendingOrder(
        id=order_id,
        ticker=ticker,
        side=resolved_side,
        limit_price=limit_price,
        take_profit=take_profit,
        stop_loss=stop_loss,
        quantity=quantity,
        created_at=int(created_at),
    )
    if status == "PENDING":
        return pending

    entry_price = _number(record.get("entryPrice"))
    if entry_price is None:
        entry_price = limit_price
        logger.warning("Defaulted entryPrice for order {} in {}", order_id, bucket)
    filled_at = _number(record.get("filledAt"))
    if filled_at is None:
        filled_at = created_at
        logger.warning("Defaulted filledAt for order {} in {}", order_id, bucket)
    filled = FilledOrder(**pending._common(), entry_price=entry_price, filled_at=int(filled_at))
    if status == "FILLED":
        return filled

    exit_price = _number(record.get("exitPrice"))
    if exit_price is None:
        raise MalformedRecord(bucket, record, "closed order without exit price")
    closed_at = _number(record.get("closedAt"))
    if closed_at is None:
        closed_at = filled_at
    pnl = _first_number(record, "pnl", "pnlPercent")
    if pnl is None:
        pnl = pnl_percent(resolved_side, entry_price, exit_price)
    return ClosedOrder(
        **pending._common(),
        entry_price=entry_price,
        filled_at=int(filled_at),
        exit_price=exit_price,
        closed_at=int(closed_at),
        pnl_percent=pnl,
        status=status,
    )
