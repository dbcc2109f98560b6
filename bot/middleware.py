from __future__ import annotations

import time
from typing import Any, Awaitable, Callable

from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message

from bot.messages import access_denied_text
from services.config_service import BotSettings


def admin_ids(settings: BotSettings) -> set[int]:
    return {int(x.strip()) for x in settings.ADMIN_TELEGRAM_IDS.split(",") if x.strip().lstrip("-").isdigit()}


def _is_admin(user_id: int, settings: BotSettings) -> bool:
    return user_id in admin_ids(settings)


def _is_allowed(user_id: int, settings: BotSettings) -> bool:
    return settings.ALLOW_ALL_USERS or _is_admin(user_id, settings)


def _user_id(event: Any) -> int | None:
    if isinstance(event, (Message, CallbackQuery)) and event.from_user:
        return event.from_user.id
    return None


class AdminOnlyMiddleware(BaseMiddleware):
    def __init__(self, settings: BotSettings) -> None:
        self.settings = settings

    async def __call__(self, handler: Callable[..., Awaitable[Any]], event: Any, data: dict) -> Any:
        user_id = _user_id(event)
        if user_id is not None and not _is_allowed(user_id, self.settings):
            if isinstance(event, CallbackQuery):
                await event.answer(access_denied_text(), show_alert=True)
            else:
                await event.answer(access_denied_text())
            return None
        return await handler(event, data)


class ThrottleMiddleware(BaseMiddleware):
    def __init__(self, cooldown: float = 1.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.cooldown = cooldown
        self.clock = clock
        self._last: dict[int, float] = {}

    async def __call__(self, handler: Callable[..., Awaitable[Any]], event: Any, data: dict) -> Any:
        user_id = _user_id(event)
        if user_id is not None:
            now = self.clock()
            if now - self._last.get(user_id, float("-inf")) < self.cooldown:
                if isinstance(event, CallbackQuery):
                    await event.answer("Slow down.")
                return None
            self._last[user_id] = now
        return await handler(event, data)
