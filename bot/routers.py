from __future__ import annotations

import time

from aiogram import Router
from aiogram.filters import Command, CommandStart
from aiogram.types import CallbackQuery, Message
from loguru import logger

from backtest.metrics import compute_metrics
from backtest.report import render_report
from backtest.runner import run_backtest
from bot import keyboards, messages
from data.store import BaseStore
from engine.book import OrderRepository
from engine.state import EngineStateStore
from services.config_service import ConfigService
from services.notifier import split_text
from services.orchestrator import EngineOrchestrator
from services.stats import closed_orders, compute_stats

_FILTERS = {"all": None, "buy": "BUY", "sell": "SELL", "ticker": None}


def parse_order_command(text: str) -> dict:
    """Parse ``/order BUY SBER 250.5 255.5 249.2 [qty]``; raises ValueError."""
    parts = text.split()[1:]
    if len(parts) not in (5, 6):
        raise ValueError(messages.order_usage_text())
    side, ticker = parts[0].upper(), parts[1].upper()
    if side not in ("BUY", "SELL"):
        raise ValueError(f"Unknown side: {parts[0]}")
    try:
        price, take_profit, stop_loss = (float(x.replace(",", ".")) for x in parts[2:5])
        quantity = float(parts[5].replace(",", ".")) if len(parts) == 6 else 1.0
    except ValueError:
        raise ValueError(messages.order_usage_text()) from None
    if min(price, take_profit, stop_loss, quantity) <= 0:
        raise ValueError("Prices and quantity must be positive")
    if side == "BUY" and not stop_loss < price < take_profit:
        raise ValueError("BUY needs stop loss < price < take profit")
    if side == "SELL" and not take_profit < price < stop_loss:
        raise ValueError("SELL needs take profit < price < stop loss")
    return {
        "side": side,
        "ticker": ticker,
        "limit_price": price,
        "take_profit": take_profit,
        "stop_loss": stop_loss,
        "quantity": quantity,
    }


def build_router(
    orchestrator: EngineOrchestrator,
    store: BaseStore,
    repo: OrderRepository,
    config_service: ConfigService,
    state_store: EngineStateStore,
) -> Router:
    router = Router()
    pending_filter: dict[int, str] = {}

    def _menu():
        return keyboards.main_menu(paused=state_store.load().paused)

    async def _answer_long(message: Message, text: str) -> None:
        for chunk in split_text(text):
            await message.answer(chunk)

    @router.message(CommandStart())
    async def start_cmd(message: Message) -> None:
        pending_filter.pop(message.from_user.id, None)
        await message.answer(messages.main_menu_text(), reply_markup=_menu())

    @router.callback_query(lambda c: c.data == "main_menu")
    async def main_menu_cb(query: CallbackQuery) -> None:
        pending_filter.pop(query.from_user.id, None)
        await query.message.edit_text(messages.main_menu_text(), reply_markup=_menu())

    @router.callback_query(lambda c: c.data == "status")
    async def status_cb(query: CallbackQuery) -> None:
        text = messages.status_text(
            config_service.load(),
            state_store.load(),
            pending=len(repo.snapshot("PENDING")),
            active=len(repo.snapshot("FILLED")),
        )
        await query.message.edit_text(text, reply_markup=_menu())

    @router.callback_query(lambda c: c.data == "orders")
    async def orders_cb(query: CallbackQuery) -> None:
        await query.message.edit_text("📋 Orders", reply_markup=keyboards.orders_menu())

    @router.callback_query(lambda c: c.data.startswith("orders:"))
    async def orders_filter_cb(query: CallbackQuery) -> None:
        choice = query.data.split(":", 1)[1]
        if choice not in _FILTERS:
            await query.answer()
            return
        pending_filter[query.from_user.id] = choice
        await query.message.answer(messages.ticker_prompt_text(allow_all=choice != "ticker"))
        await query.answer()

    @router.callback_query(lambda c: c.data == "active")
    async def active_cb(query: CallbackQuery) -> None:
        orders = messages.filter_orders(repo.snapshot("FILLED"), None, "all")
        await _answer_long(query.message, messages.orders_text("📌 Active orders", orders))
        await query.answer()

    @router.callback_query(lambda c: c.data == "pnl")
    async def pnl_cb(query: CallbackQuery) -> None:
        await query.message.edit_text("💰 PnL", reply_markup=keyboards.pnl_menu())

    @router.callback_query(lambda c: c.data in ("pnl:day", "pnl:total"))
    async def pnl_period_cb(query: CallbackQuery) -> None:
        stats = compute_stats(store, time.time())
        if query.data == "pnl:day":
            text = messages.stats_text("Today", stats.daily)
        else:
            text = messages.stats_text("Total", stats.total)
        await query.message.answer(text)
        await query.answer()

    @router.callback_query(lambda c: c.data == "pause")
    async def pause_cb(query: CallbackQuery) -> None:
        await orchestrator.pause()
        await query.message.edit_reply_markup(reply_markup=_menu())
        await query.answer("Engine paused")

    @router.callback_query(lambda c: c.data == "resume")
    async def resume_cb(query: CallbackQuery) -> None:
        await orchestrator.resume()
        await query.message.edit_reply_markup(reply_markup=_menu())
        await query.answer("Engine resumed")

    @router.message(Command("order"))
    async def order_cmd(message: Message) -> None:
        try:
            params = parse_order_command(message.text or "")
        except ValueError as exc:
            await message.answer(str(exc))
            return
        order_id = await repo.submit(**params)
        await message.answer(
            f"Tracking {params['side']} {params['ticker']} @ {params['limit_price']}\nid: {order_id}",
            reply_markup=keyboards.chart_button(params["ticker"]),
        )

    @router.message(Command("report"))
    async def report_cmd(message: Message) -> None:
        await _answer_long(message, render_report(compute_metrics(closed_orders(store))))

    @router.message(Command("backtest"))
    async def backtest_cmd(message: Message) -> None:
        parts = (message.text or "").split(maxsplit=1)
        if len(parts) < 2:
            await message.answer("Usage: /backtest /path/to/bars.csv")
            return
        try:
            orders = run_backtest(parts[1].strip(), config_service.load())
        except FileNotFoundError:
            await message.answer("CSV file not found.")
            return
        except Exception as exc:
            logger.exception("Backtest failed: {}", exc)
            await message.answer(f"Backtest failed: {exc}")
            return
        await _answer_long(message, render_report(compute_metrics(orders)))

    @router.message(Command("set"))
    async def set_cmd(message: Message) -> None:
        parts = (message.text or "").split(maxsplit=2)
        if len(parts) < 3:
            await message.answer("Usage: /set KEY VALUE")
            return
        key = parts[1].upper()
        try:
            value = config_service.update(key, parts[2].strip())
        except ValueError as exc:
            await message.answer(str(exc))
            return
        shown = ", ".join(value) if isinstance(value, list) else value
        await message.answer(f"Updated {key} = {shown}")

    @router.message()
    async def catch_all(message: Message) -> None:
        choice = pending_filter.pop(message.from_user.id, None)
        if not choice or not message.text:
            return
        orders = messages.filter_orders(repo.live(), _FILTERS[choice], message.text)
        await _answer_long(message, messages.orders_text("Orders", orders))

    return router
