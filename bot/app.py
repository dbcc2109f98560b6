from __future__ import annotations

import asyncio

from aiogram import Bot, Dispatcher
from loguru import logger

from bot.middleware import AdminOnlyMiddleware, ThrottleMiddleware, admin_ids
from bot.routers import build_router
from data.store import create_store
from engine.book import OrderRepository
from services.config_service import BotSettings
from services.logging_setup import setup_logging
from services.notifier import Notifier
from services.orchestrator import EngineOrchestrator


def notify_chat(settings: BotSettings) -> str:
    if settings.TELEGRAM_CHAT_ID:
        return settings.TELEGRAM_CHAT_ID
    ids = sorted(admin_ids(settings))
    return str(ids[0]) if ids else ""


async def main() -> None:
    settings = BotSettings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)
    store = create_store(settings.STORAGE, settings.DATA_DIR, settings.DATABASE_PATH, settings.DATABASE_URL)
    repo = OrderRepository(store)
    repo.load()
    notifier = Notifier()
    chat_id = notify_chat(settings)

    bot = Bot(token=settings.TELEGRAM_BOT_TOKEN)
    dp = Dispatcher()
    dp.message.middleware(AdminOnlyMiddleware(settings))
    dp.callback_query.middleware(AdminOnlyMiddleware(settings))
    dp.message.middleware(ThrottleMiddleware())
    dp.callback_query.middleware(ThrottleMiddleware())

    orchestrator = EngineOrchestrator(store, settings, notifier, chat_id=chat_id or None, repo=repo)
    router = build_router(orchestrator, store, repo, orchestrator.config_service, orchestrator.state_store)
    dp.include_router(router)

    await notifier.start(bot)
    await orchestrator.start()
    logger.info("Bot starting")
    if chat_id:
        await notifier.send(chat_id, "Bot startup")
    try:
        await dp.start_polling(bot)
    finally:
        await orchestrator.stop()
        if chat_id:
            await notifier.send(chat_id, "Bot shutdown")
        await notifier.flush()
        await notifier.stop()
        await bot.session.close()
        logger.info("Bot stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
