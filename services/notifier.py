from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

from aiogram.exceptions import TelegramRetryAfter
from loguru import logger

# Telegram rejects longer messages
MAX_MESSAGE_LEN = 4096


@dataclass
class Alert:
    chat_id: str
    text: str


def split_text(text: str, limit: int = MAX_MESSAGE_LEN) -> list[str]:
    if len(text) <= limit:
        return [text]
    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class Notifier:
    """Delivers alerts from a queue so engine ticks never wait on Telegram."""

    def __init__(self) -> None:
        self.queue: asyncio.Queue[Alert] = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None

    async def start(self, bot) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._deliver_forever(bot))

    async def send(self, chat_id: str, text: str) -> None:
        if not text.strip():
            return
        await self.queue.put(Alert(chat_id=chat_id, text=text))

    async def flush(self, timeout: float = 5.0) -> bool:
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("{} alerts still queued after {}s", self.queue.qsize(), timeout)
            return False
        return True

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None

    async def _deliver_forever(self, bot) -> None:
        while True:
            alert = await self.queue.get()
            try:
                for chunk in split_text(alert.text):
                    await self._deliver(bot, alert.chat_id, chunk)
            except Exception as exc:
                logger.exception("Failed to send alert to {}: {}", alert.chat_id, exc)
            finally:
                self.queue.task_done()

    async def _deliver(self, bot, chat_id: str, text: str) -> None:
        try:
            await bot.send_message(chat_id, text)
        except TelegramRetryAfter as exc:
            logger.warning("Telegram flood control, retrying in {}s", exc.retry_after)
            await asyncio.sleep(exc.retry_after)
            await bot.send_message(chat_id, text)
