from __future__ import annotations

from loguru import logger

from adapters.paper import read_bars_csv
from engine.fills import advance
from engine.models import Bar, ClosedOrder, PendingOrder
from services.config_service import RuntimeConfig
from strategies.levels import LevelRetestStrategy


def _checkpoints(total: int, step: int) -> list[int]:
    ends = list(range(step, total + 1, step))
    if total and (not ends or ends[-1] != total):
        ends.append(total)
    return ends


def replay(
    bars_by_ticker: dict[str, list[Bar]],
    config: RuntimeConfig,
    strategy: LevelRetestStrategy | None = None,
) -> list[ClosedOrder]:
    """Walk forward through the bars, running detection once per signal interval.

    Each new (side, price) signal becomes an order created on the bar after
    detection and is tracked through the rest of the history.
    """
    strategy = strategy or LevelRetestStrategy()
    step = max(1, config.signal_interval_seconds // config.bar_seconds)
    closed: list[ClosedOrder] = []
    still_open = 0
    for ticker, bars in bars_by_ticker.items():
        bars = sorted(bars, key=lambda b: b.ts)
        seen: set[tuple[str, float]] = set()
        orders: list[PendingOrder] = []
        for end in _checkpoints(len(bars), step):
            for request in strategy.generate(ticker, bars[:end], config):
                if (request.side, request.limit_price) in seen:
                    continue
                seen.add((request.side, request.limit_price))
                orders.append(
                    PendingOrder(
                        id=request.id,
                        ticker=request.ticker,
                        side=request.side,
                        limit_price=request.limit_price,
                        take_profit=request.take_profit,
                        stop_loss=request.stop_loss,
                        quantity=1.0,
                        created_at=bars[end - 1].ts + config.bar_seconds,
                    )
                )
        for order in orders:
            result, _ = advance(order, bars)
            if isinstance(result, ClosedOrder):
                closed.append(result)
            else:
                still_open += 1
        logger.info("{}: {} bars, {} signals", ticker, len(bars), len(orders))
    closed.sort(key=lambda o: o.closed_at)
    logger.info("Backtest finished: {} closed, {} still open", len(closed), still_open)
    return closed


def run_backtest(csv_path: str, config: RuntimeConfig) -> list[ClosedOrder]:
    return replay(read_bars_csv(csv_path), config)
