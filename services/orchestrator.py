from __future__ import annotations

import asyncio

from loguru import logger

from adapters.alor import AlorHistorySource
from adapters.base import BarSource
from adapters.moex import MoexBarSource
from adapters.paper import StaticBarSource
from data.store import BaseStore
from engine.book import OrderRepository
from engine.core import TradingEngine
from engine.state import EngineStateStore
from services.config_service import BotSettings, ConfigService
from services.history import HistoryService
from services.notifier import Notifier
from services.scheduler import TickScheduler
from services.signals import SignalPipeline


class EngineOrchestrator:
    def __init__(
        self,
        store: BaseStore,
        settings: BotSettings,
        notifier: Notifier | None = None,
        chat_id: str | None = None,
        repo: OrderRepository | None = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.notifier = notifier
        self.chat_id = chat_id
        self.config_service = ConfigService(store, settings)
        self.state_store = EngineStateStore(store)
        self.repo = repo or OrderRepository(store)
        config = self.config_service.load()
        self.tick_source, self.history_source = self._build_sources(config.mock_mode)
        self.engine = TradingEngine(
            self.repo,
            self.tick_source,
            state_store=self.state_store,
            notifier=notifier,
            chat_id=chat_id,
            lookback_seconds=config.lookback_seconds,
        )
        self.history = HistoryService(
            store,
            self.history_source,
            history_days=config.history_days,
            bar_seconds=config.bar_seconds,
        )
        self.pipeline = SignalPipeline(
            store,
            self.history,
            self.config_service,
            repo=self.repo,
            state_store=self.state_store,
            notifier=notifier,
            chat_id=chat_id,
        )
        self.tracker = TickScheduler("tracker", self.engine.run_once, config.track_interval_seconds)
        self.signals = TickScheduler("signals", self.pipeline.run_once, config.signal_interval_seconds)
        self._tasks: list[asyncio.Task] = []

    def _build_sources(self, mock_mode: bool) -> tuple[BarSource, BarSource]:
        if mock_mode:
            if self.settings.MOCK_BARS_CSV:
                source = StaticBarSource.from_csv(self.settings.MOCK_BARS_CSV)
            else:
                logger.warning("Mock mode without MOCK_BARS_CSV, no bars will be served")
                source = StaticBarSource()
            return source, source
        ticks = MoexBarSource(timeout=self.settings.MOEX_API_TIMEOUT, retries=self.settings.FETCH_RETRIES)
        history = AlorHistorySource(
            tf=self.settings.BAR_SECONDS,
            timeout=self.settings.ALOR_API_TIMEOUT,
            retries=self.settings.FETCH_RETRIES,
        )
        return ticks, history

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self.state_store.update(paused=False)
        self._tasks = [
            asyncio.create_task(self.tracker.run_forever()),
            asyncio.create_task(self.signals.run_forever()),
        ]
        logger.info("Engine started, tickers: {}", ", ".join(self.config_service.load().tickers))

    async def pause(self) -> None:
        self.state_store.update(paused=True)
        logger.info("Engine paused")

    async def resume(self) -> None:
        self.state_store.update(paused=False)
        await self.start()
        logger.info("Engine resumed")

    async def stop(self) -> None:
        self.tracker.stop()
        self.signals.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        await self.tick_source.close()
        if self.history_source is not self.tick_source:
            await self.history_source.close()
        logger.info("Engine stopped")
