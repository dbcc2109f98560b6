from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

from loguru import logger


def seconds_until_next(interval: int, now: float) -> float:
    """Time left until the next multiple of ``interval`` on the wall clock."""
    if interval <= 0:
        raise ValueError(f"Interval must be positive: {interval}")
    next_tick = ((int(now) // interval) + 1) * interval
    return max(0.0, next_tick - now)


class TickScheduler:
    """Runs ``tick`` on a fixed interval. Ticks never overlap and never kill the loop."""

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[object]],
        interval: int,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        align: bool = True,
    ) -> None:
        self.name = name
        self.tick = tick
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.align = align
        self.ticks = 0
        self.failures = 0
        self._running = False

    async def run_once(self) -> bool:
        self.ticks += 1
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            logger.exception("{} tick failed: {}", self.name, exc)
            return False
        return True

    async def run_forever(self, max_ticks: int | None = None) -> None:
        self._running = True
        logger.info("{} scheduler started, every {}s", self.name, self.interval)
        while self._running:
            await self.run_once()
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            if not self._running:
                break
            delay = seconds_until_next(self.interval, self.clock()) if self.align else self.interval
            await self.sleep(delay)
        self._running = False
        logger.info("{} scheduler stopped", self.name)

    def stop(self) -> None:
        self._running = False
