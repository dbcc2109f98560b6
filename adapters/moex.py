from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

import httpx

from adapters.http import HttpBarSource, to_bar
from engine.errors import DataUnavailable
from engine.models import Bar

MOSCOW = ZoneInfo("Europe/Moscow")
_ISS_URL = "https://iss.moex.com/iss/engines/stock/markets/shares/securities/{ticker}/candles.json"
_ISS_PAGE = 500
_ISS_FORMAT = "%Y-%m-%d %H:%M:%S"


def iss_time(ts: int) -> str:
    return datetime.fromtimestamp(ts, MOSCOW).strftime(_ISS_FORMAT)


def parse_iss_time(value: str) -> int:
    return int(datetime.strptime(value, _ISS_FORMAT).replace(tzinfo=MOSCOW).timestamp())


def parse_iss_candles(ticker: str, payload: Any) -> list[Bar]:
    candles = payload.get("candles") if isinstance(payload, dict) else None
    if not isinstance(candles, dict) or "data" not in candles or "columns" not in candles:
        raise DataUnavailable(ticker, f"unexpected payload {str(payload)[:100]}")
    cols = candles["columns"]
    try:
        bi, hi, lo, ci = (cols.index(name) for name in ("begin", "high", "low", "close"))
    except ValueError as exc:
        raise DataUnavailable(ticker, f"missing columns, got {', '.join(map(str, cols))}") from exc
    rows = candles["data"]
    if not isinstance(rows, list):
        raise DataUnavailable(ticker, f"candles data is {type(rows).__name__}, expected a list")
    bars = []
    for row in rows:
        try:
            bar = to_bar(parse_iss_time(row[bi]), row[hi], row[lo], row[ci])
        except (TypeError, ValueError, IndexError, KeyError):
            continue
        if bar:
            bars.append(bar)
    return bars


class MoexBarSource(HttpBarSource):
    """One-minute candles from the MOEX ISS API."""

    name = "MOEX"

    def __init__(self, interval: int = 1, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.interval = interval

    async def _request(self, client: httpx.AsyncClient, ticker: str, start: int, end: int) -> list[Bar]:
        bars: list[Bar] = []
        offset = 0
        while True:
            resp = await client.get(
                _ISS_URL.format(ticker=ticker),
                params={
                    "from": iss_time(start),
                    "till": iss_time(end),
                    "interval": self.interval,
                    "start": offset,
                },
            )
            resp.raise_for_status()
            page = parse_iss_candles(ticker, resp.json())
            bars.extend(page)
            if len(page) < _ISS_PAGE:
                break
            offset += len(page)
        bars.sort(key=lambda b: b.ts)
        return bars
