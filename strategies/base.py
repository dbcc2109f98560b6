from __future__ import annotations

from abc import ABC, abstractmethod

from engine.models import Bar, OrderRequest
from services.config_service import RuntimeConfig


class Strategy(ABC):
    @abstractmethod
    def generate(self, ticker: str, bars: list[Bar], config: RuntimeConfig) -> list[OrderRequest]:
        raise NotImplementedError
