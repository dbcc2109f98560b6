from __future__ import annotations

from datetime import datetime

from engine.models import Order
from engine.state import EngineState
from services.config_service import RuntimeConfig
from services.stats import Totals


def main_menu_text() -> str:
    return "Level Tracker"


def _ts(value: int | None) -> str:
    if not value:
        return "n/a"
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S")


def status_text(config: RuntimeConfig, state: EngineState, pending: int, active: int) -> str:
    return (
        f"Running: {'no' if state.paused else 'yes'}\n"
        f"Mode: {'MOCK' if config.mock_mode else 'MOEX'}\n"
        f"Tickers: {', '.join(config.tickers) or 'none'}\n"
        f"Pending / active: {pending} / {active}\n"
        f"Last tick: {_ts(state.last_tick_at)}\n"
        f"Last signal run: {_ts(state.last_signal_run_at)}\n"
        f"Last error: {state.last_error or 'none'}"
    )


def order_line(order: Order) -> str:
    icon = "🟢" if order.side == "BUY" else "🔴"
    line = f"• {icon} {order.ticker} | {order.status} | price {order.limit_price} | TP {order.take_profit} | SL {order.stop_loss} | qty {order.quantity:g}"
    if order.status == "FILLED":
        line += f" | filled {_ts(order.filled_at)}"
    return line


def orders_text(title: str, orders: list[Order]) -> str:
    if not orders:
        return "No orders"
    return f"{title}:\n\n" + "\n".join(order_line(o) for o in orders)


def filter_orders(orders: list[Order], side: str | None, ticker: str) -> list[Order]:
    ticker = ticker.strip().upper()
    selected = [o for o in orders if side is None or o.side == side]
    if ticker and ticker != "ALL":
        selected = [o for o in selected if ticker in o.ticker]
    return sorted(selected, key=lambda o: (o.ticker, o.created_at))


def stats_text(label: str, totals: Totals) -> str:
    return f"📊 {label}\nTrades: {totals.trades}\nPnL: {totals.pnl_percent:+.2f}%"


def access_denied_text() -> str:
    return "Access denied. This bot is admin-only."


def ticker_prompt_text(allow_all: bool = True) -> str:
    return "Send a ticker or 'all'." if allow_all else "Send a ticker."


def order_usage_text() -> str:
    return "Usage: /order BUY|SELL TICKER PRICE TAKE_PROFIT STOP_LOSS [QTY]"
