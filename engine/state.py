from __future__ import annotations

import time
from dataclasses import dataclass

from data.store import BaseStore

_BUCKET = "engine_state"


@dataclass
class EngineState:
    last_tick_at: int | None
    last_signal_run_at: int | None
    last_error: str | None
    paused: bool


class EngineStateStore:
    def __init__(self, store: BaseStore) -> None:
        self.store = store

    def _row(self) -> dict:
        rows = self.store.read(_BUCKET)
        return rows[0] if rows and isinstance(rows[0], dict) else {}

    def load(self) -> EngineState:
        row = self._row()
        return EngineState(
            last_tick_at=row.get("last_tick_at"),
            last_signal_run_at=row.get("last_signal_run_at"),
            last_error=row.get("last_error"),
            paused=bool(row.get("paused")),
        )

    def update(self, **kwargs) -> None:
        row = self._row()
        row.update(kwargs)
        row["updated_at"] = int(time.time())
        self.store.overwrite(_BUCKET, [row])
