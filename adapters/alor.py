from __future__ import annotations

from typing import Any

import httpx

from adapters.http import HttpBarSource, to_bar
from engine.errors import DataUnavailable
from engine.models import Bar

_HISTORY_URL = "https://api.alor.ru/md/v2/history"


def parse_alor_history(ticker: str, payload: Any) -> list[Bar]:
    history = payload.get("history") if isinstance(payload, dict) else None
    if isinstance(history, dict):
        history = history.get("data") or history.get("candles") or []
    if not isinstance(history, list):
        raise DataUnavailable(ticker, "unexpected history payload")
    bars = []
    for row in history:
        if not isinstance(row, dict):
            continue
        bar = to_bar(row.get("time"), row.get("high"), row.get("low"), row.get("close"))
        if bar:
            bars.append(bar)
    bars.sort(key=lambda b: b.ts)
    return bars


class AlorHistorySource(HttpBarSource):
    """Intraday history from the ALOR market data API, 15 minute bars by default."""

    name = "ALOR"

    def __init__(self, board: str = "TQBR", tf: int = 900, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.board = board
        self.tf = tf

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            headers={"Accept-Encoding": "identity", "User-Agent": "level-tracker"},
        )

    async def _request(self, client: httpx.AsyncClient, ticker: str, start: int, end: int) -> list[Bar]:
        resp = await client.get(
            _HISTORY_URL,
            params={
                "exchange": "MOEX",
                "symbol": ticker,
                "board": self.board,
                "tf": self.tf,
                "from": start,
                "to": end,
            },
        )
        resp.raise_for_status()
        return parse_alor_history(ticker, resp.json())
