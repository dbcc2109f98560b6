from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup


def main_menu(paused: bool = False) -> InlineKeyboardMarkup:
    toggle = (
        InlineKeyboardButton(text="▶️ Resume", callback_data="resume")
        if paused
        else InlineKeyboardButton(text="⏸ Pause", callback_data="pause")
    )
    buttons = [
        [InlineKeyboardButton(text="📋 Orders", callback_data="orders")],
        [InlineKeyboardButton(text="📌 Active orders", callback_data="active")],
        [InlineKeyboardButton(text="💰 PnL", callback_data="pnl")],
        [InlineKeyboardButton(text="✅ Status", callback_data="status")],
        [toggle],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def orders_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="📌 All", callback_data="orders:all")],
        [InlineKeyboardButton(text="🟢 BUY", callback_data="orders:buy")],
        [InlineKeyboardButton(text="🔴 SELL", callback_data="orders:sell")],
        [InlineKeyboardButton(text="🔍 By ticker", callback_data="orders:ticker")],
        [InlineKeyboardButton(text="⬅️ Back", callback_data="main_menu")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def pnl_menu() -> InlineKeyboardMarkup:
    buttons = [
        [InlineKeyboardButton(text="📆 Today", callback_data="pnl:day")],
        [InlineKeyboardButton(text="📈 Total", callback_data="pnl:total")],
        [InlineKeyboardButton(text="⬅️ Back", callback_data="main_menu")],
    ]
    return InlineKeyboardMarkup(inline_keyboard=buttons)


def chart_button(ticker: str) -> InlineKeyboardMarkup:
    url = f"https://ru.tradingview.com/chart/?symbol=RUS%3A{ticker}"
    return InlineKeyboardMarkup(inline_keyboard=[[InlineKeyboardButton(text="📊 Chart", url=url)]])
