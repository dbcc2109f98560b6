from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from engine.models import Bar, ClosedOrder, FilledOrder, Order, PendingOrder, Status


@dataclass(frozen=True)
class OrderEvent:
    order: Order
    status: Status
    ts: int


def touches(bar: Bar, price: float) -> bool:
    return bar.low <= price <= bar.high


def check_close(order: FilledOrder, bar: Bar) -> ClosedOrder | None:
    # stop loss is checked first so it wins when both bounds fall in one bar
    if order.side == "BUY":
        if bar.low <= order.stop_loss:
            return order.close(order.stop_loss, bar.ts, "SL_CLOSED")
        if bar.high >= order.take_profit:
            return order.close(order.take_profit, bar.ts, "TP_CLOSED")
        return None
    if bar.high >= order.stop_loss:
        return order.close(order.stop_loss, bar.ts, "SL_CLOSED")
    if bar.low <= order.take_profit:
        return order.close(order.take_profit, bar.ts, "TP_CLOSED")
    return None


def advance(order: Order, bars: Iterable[Bar]) -> tuple[Order, list[OrderEvent]]:
    """Walk one order forward through chronologically ordered bars.

    A pending order fills on the first bar whose range contains the limit
    price. The scan keeps going from that same bar, so an order can fill
    and close within one call, even within one bar. At most one close is
    applied; bars after it are ignored.
    """
    events: list[OrderEvent] = []
    if isinstance(order, ClosedOrder):
        return order, events
    since = order.created_at if isinstance(order, PendingOrder) else order.filled_at

    for bar in bars:
        if bar.ts < since:
            continue
        if isinstance(order, PendingOrder) and touches(bar, order.limit_price):
            order = order.fill(bar.ts)
            events.append(OrderEvent(order=order, status="FILLED", ts=bar.ts))
        if isinstance(order, FilledOrder):
            closed = check_close(order, bar)
            if closed is not None:
                events.append(OrderEvent(order=closed, status=closed.status, ts=bar.ts))
                return closed, events
    return order, events
