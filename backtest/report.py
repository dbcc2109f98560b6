from __future__ import annotations

from backtest.metrics import BacktestMetrics


def render_report(metrics: BacktestMetrics) -> str:
    if not metrics.total_trades:
        return "No closed trades"
    lines = [
        f"Total trades: {metrics.total_trades}",
        f"Wins / losses: {metrics.wins} / {metrics.losses} ({metrics.win_rate:.1f}%)",
        f"Total PnL: {metrics.total_pnl:+.2f}%",
        f"Average PnL: {metrics.avg_pnl:+.2f}%",
        f"Best / worst: {metrics.best:+.2f}% / {metrics.worst:+.2f}%",
        f"Max drawdown: {metrics.max_drawdown:.2f}%",
    ]
    if metrics.pnl_by_month:
        lines.append("")
        lines.append("By month:")
        lines.extend(f"  {month}: {value:+.2f}%" for month, value in metrics.pnl_by_month.items())
    return "\n".join(lines)
