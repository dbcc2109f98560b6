from __future__ import annotations

from abc import ABC, abstractmethod

from engine.models import Bar


class BarSource(ABC):
    @abstractmethod
    async def fetch(self, tickers: list[str], start: int, end: int) -> dict[str, list[Bar]]:
        """Bars per ticker for [start, end), in UNIX seconds.

        Tickers that failed are simply missing from the result.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None
