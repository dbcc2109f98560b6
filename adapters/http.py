from __future__ import annotations

import asyncio
from typing import Any

import httpx
from loguru import logger

from adapters.base import BarSource
from engine.errors import DataUnavailable, PermanentNetworkError, TransientNetworkError
from engine.models import Bar


class HttpBarSource(BarSource):
    """Fans out one request per ticker; timeouts are retried, other errors are not."""

    name = "http"

    def __init__(
        self,
        timeout: float = 10.0,
        retries: int = 2,
        retry_delay: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.retries = max(1, retries)
        self.retry_delay = retry_delay
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def fetch(self, tickers: list[str], start: int, end: int) -> dict[str, list[Bar]]:
        if not tickers:
            return {}
        async with self._client() as client:
            results = await asyncio.gather(*(self._fetch_ticker(client, t, start, end) for t in tickers))
        bars = {ticker: data for ticker, data in zip(tickers, results) if data}
        if len(bars) < len(tickers):
            logger.warning("{}: received {}/{} tickers", self.name, len(bars), len(tickers))
        return bars

    async def fetch_one(self, ticker: str, start: int, end: int) -> list[Bar]:
        async with self._client() as client:
            return await self._get_with_retry(client, ticker, start, end)

    async def _fetch_ticker(self, client: httpx.AsyncClient, ticker: str, start: int, end: int) -> list[Bar] | None:
        try:
            return await self._get_with_retry(client, ticker, start, end)
        except DataUnavailable as exc:
            logger.warning("{} {}: {}", self.name, ticker, exc.reason)
        except PermanentNetworkError as exc:
            logger.warning("{} error {}: {}", self.name, ticker, exc.reason)
        except Exception as exc:
            logger.exception("{} {}: unexpected error, ticker skipped: {}", self.name, ticker, exc)
        return None

    async def _get_with_retry(self, client: httpx.AsyncClient, ticker: str, start: int, end: int) -> list[Bar]:
        for attempt in range(1, self.retries + 1):
            try:
                return await self._request(client, ticker, start, end)
            except httpx.TimeoutException as exc:
                if attempt >= self.retries:
                    raise TransientNetworkError(ticker, f"timeout after {attempt} attempts") from exc
                logger.debug("{} {}: timeout, attempt {}/{}", self.name, ticker, attempt, self.retries)
                await asyncio.sleep(self.retry_delay)
            except httpx.HTTPStatusError as exc:
                raise PermanentNetworkError(ticker, f"HTTP {exc.response.status_code}") from exc
            except (httpx.HTTPError, ValueError) as exc:
                raise PermanentNetworkError(ticker, str(exc) or type(exc).__name__) from exc
        raise TransientNetworkError(ticker, "no attempts made")

    async def _request(self, client: httpx.AsyncClient, ticker: str, start: int, end: int) -> list[Bar]:
        raise NotImplementedError


def to_bar(ts: Any, high: Any, low: Any, close: Any) -> Bar | None:
    try:
        return Bar(ts=int(ts), high=float(high), low=float(low), close=float(close))
    except (TypeError, ValueError):
        return None
