from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd

from engine.models import ClosedOrder


@dataclass
class BacktestMetrics:
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    avg_pnl: float = 0.0
    best: float = 0.0
    worst: float = 0.0
    max_drawdown: float = 0.0
    pnl_by_month: dict[str, float] = field(default_factory=dict)


def compute_metrics(orders: list[ClosedOrder]) -> BacktestMetrics:
    if not orders:
        return BacktestMetrics()
    df = pd.DataFrame(
        {"closed_at": [o.closed_at for o in orders], "pnl": [o.pnl_percent for o in orders]}
    ).sort_values("closed_at")
    pnl = df["pnl"]
    equity = pnl.cumsum()
    # the curve starts flat at zero
    peak = equity.cummax().clip(lower=0.0)
    months = pd.to_datetime(df["closed_at"], unit="s").dt.strftime("%Y-%m")
    wins = int((pnl > 0).sum())
    return BacktestMetrics(
        total_trades=len(df),
        wins=wins,
        losses=len(df) - wins,
        win_rate=wins / len(df) * 100.0,
        total_pnl=float(pnl.sum()),
        avg_pnl=float(pnl.mean()),
        best=float(pnl.max()),
        worst=float(pnl.min()),
        max_drawdown=float((peak - equity).max()),
        pnl_by_month={month: float(value) for month, value in pnl.groupby(months).sum().items()},
    )
