"""Ledger statistics — pure functions over a simulation's rows and balance."""

from typing import Optional, Sequence

import numpy as np

from cyclebot.backtest.models import EquitySample, Trade

# Substrings of reason codes grouped for the per-side breakdown
_REASON_GROUPS = {
    "stop_loss": ("sl_", "stop_loss", "max_loss"),
    "tp1": ("tp1",),
    "tp2": ("tp2",),
    "cycle": ("cycle_end", "opposite_cycle"),
}


def calculate_stats(
    trades: Sequence[Trade],
    equity_curve: Optional[Sequence[EquitySample]] = None,
) -> dict:
    """Compute summary statistics from a simulation ledger.

    Every ledger row counts as one trade, partial closes included.  The
    drawdown is measured on the account balance: the simulator's equity
    curve when given, otherwise the ``balance_after`` of each row.  Both
    curves are prefixed with the balance before the first row.

    Returns:
        Dict with ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``win_rate``, ``profit_factor``, ``avg_win``, ``avg_loss``,
        ``sharpe_ratio`` (mean over standard deviation of the per-row
        leveraged return, not annualised), ``max_drawdown`` (dollars),
        ``max_drawdown_pct``, ``avg_lag_open`` (bars), ``net_pnl`` and
        ``total_fees``.
    """
    if not trades:
        return {
            "total_trades": 0,
            "winning_trades": 0,
            "losing_trades": 0,
            "win_rate": 0.0,
            "profit_factor": None,
            "avg_win": 0.0,
            "avg_loss": 0.0,
            "sharpe_ratio": 0.0,
            "max_drawdown": 0.0,
            "max_drawdown_pct": 0.0,
            "avg_lag_open": 0.0,
            "net_pnl": 0.0,
            "total_fees": 0.0,
        }

    pnls = np.array([t.pnl for t in trades], dtype=float)
    winners = pnls[pnls > 0]
    losers = pnls[pnls <= 0]

    gross_loss = abs(float(losers.sum()))
    profit_factor: Optional[float] = (
        float(winners.sum()) / gross_loss if gross_loss > 0 else None
    )

    opening = trades[0].balance_after - trades[0].pnl
    if equity_curve:
        balances = [opening] + [s.balance for s in equity_curve]
    else:
        balances = [opening] + [t.balance_after for t in trades]
    drawdown, drawdown_pct = _max_drawdown(balances)

    return {
        "total_trades": len(trades),
        "winning_trades": int(winners.size),
        "losing_trades": int(losers.size),
        "win_rate": round(winners.size / len(trades), 4),
        "profit_factor": round(profit_factor, 4) if profit_factor is not None else None,
        "avg_win": round(float(winners.mean()), 2) if winners.size else 0.0,
        "avg_loss": round(float(losers.mean()), 2) if losers.size else 0.0,
        "sharpe_ratio": round(_per_row_sharpe([t.pnl_percent for t in trades]), 4),
        "max_drawdown": round(drawdown, 2),
        "max_drawdown_pct": round(drawdown_pct, 4),
        "avg_lag_open": round(float(np.mean([t.lag_open for t in trades])), 2),
        "net_pnl": round(float(pnls.sum()), 2),
        "total_fees": round(sum(t.fees for t in trades), 2),
    }


def summarize_by_side_and_reason(trades: Sequence[Trade]) -> dict:
    """Per-side breakdown of exit reasons and gains.

    Returns:
        ``{"long": {...}, "short": {...}, "total": {...}}`` where each
        entry holds ``qty``, ``stop_loss``, ``tp1``, ``tp2``, ``cycle``
        counts plus ``gain_tp1``, ``gain_tp2`` and ``loss`` (sum of
        negative P&L).
    """
    def _summary(rows: list[Trade]) -> dict:
        out = {"qty": len(rows)}
        for group, needles in _REASON_GROUPS.items():
            out[group] = sum(1 for t in rows if any(n in t.reason for n in needles))
        out["gain_tp1"] = sum(t.pnl for t in rows if "tp1" in t.reason)
        out["gain_tp2"] = sum(t.pnl for t in rows if "tp2" in t.reason)
        out["loss"] = sum(t.pnl for t in rows if t.pnl < 0)
        return out

    longs = [t for t in trades if t.side == "long"]
    shorts = [t for t in trades if t.side == "short"]
    return {
        "long": _summary(longs),
        "short": _summary(shorts),
        "total": _summary(list(trades)),
    }


# ── Helpers ──────────────────────────────────────────────────────────────


def _per_row_sharpe(returns: Sequence[float]) -> float:
    """Mean over sample standard deviation of per-row returns.

    Ledger rows are not evenly spaced in time, so no annualisation is
    applied.  Returns 0.0 for fewer than 2 rows or zero variance.
    """
    values = np.asarray(returns, dtype=float)
    if values.size < 2:
        return 0.0
    std = float(values.std(ddof=1))
    if std == 0:
        return 0.0
    return float(values.mean()) / std


def _max_drawdown(balances: Sequence[float]) -> tuple[float, float]:
    """Largest peak-to-trough balance decline, in dollars and in percent of
    the running peak.  The two maxima may come from different troughs."""
    curve = np.asarray(balances, dtype=float)
    if curve.size < 2:
        return 0.0, 0.0
    peaks = np.maximum.accumulate(curve)
    drops = peaks - curve
    pct = np.divide(drops, peaks, out=np.zeros_like(drops), where=peaks > 0) * 100.0
    return float(drops.max()), float(pct.max())
