"""CLI dashboard — prints simulation, cycle and ledger summaries to the console."""

from typing import Optional

_ORIENTATION_LABELS = (("inverted", "Inverted"), ("normal", "Normal"))
_SIDE_LABELS = (("long", "Long"), ("short", "Short"), ("total", "Total"))


def print_summary(result: dict, title: str = "Simulation") -> str:
    """Format and print a simulation result.

    Args:
        result: Dict returned by ``TradeSimulator.run_live`` /
            ``run_lookahead``.
        title: Header label.

    Returns:
        The formatted string (also printed to stdout).
    """
    stats = result.get("stats", {})
    cycles = result.get("cycles", {})
    balance = stats.get("balance")
    total_pnl = stats.get("total_pnl")
    win_rate = stats.get("win_rate")
    fees = stats.get("total_fees")
    position = stats.get("open_position")

    balance_str = f"${balance:,.2f}" if balance is not None else "N/A"
    pnl_str = f"${total_pnl:+,.2f}" if total_pnl is not None else "N/A"
    wr_str = f"{win_rate * 100:.1f}%" if win_rate is not None else "N/A"
    fees_str = f"${fees:,.2f}" if fees is not None else "N/A"

    lines = [
        f"──────────────── cyclebot {title} ────────────────",
        f"  Balance:         {balance_str}",
        f"  Total PnL:       {pnl_str}",
        f"  Win Rate:        {wr_str}",
        f"  Fees:            {fees_str}",
        f"  Ledger Rows:     {len(result.get('trades', []))}",
        f"  Inverted Cycles: {len(cycles.get('inverted', []))}",
        f"  Normal Cycles:   {len(cycles.get('normal', []))}",
        f"  Open Position:   {_position_str(position)}",
        "──────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output


def print_optimization(results: list[dict], limit: int = 5) -> str:
    """Format and print the top optimizer results."""
    lines = ["──────────────── cyclebot Optimizer ────────────────"]
    if not results:
        lines.append("  No combination produced enough trades.")
    for rank, r in enumerate(results[:limit], start=1):
        lines.append(
            f"  #{rank} dur {r['min_duration']}-{r['max_duration']} "
            f"tp1 {r['tp1_percent']:.0f}% lev {r['leverage']:.0f}x "
            f"cap {r['capital_percentage']:.0f}% "
            f"conf {'on' if r['require_confirmation'] else 'off'} "
            f"min {'on' if r['prefer_min_duration'] else 'off'} → "
            f"${r['pnl']:+,.2f} ({r['trades']} trades, {r['win_rate'] * 100:.0f}% WR)"
        )
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output


def print_cycle_stats(cycle_stats: dict, medians: Optional[dict] = None) -> str:
    """Format and print per-orientation cycle statistics.

    Args:
        cycle_stats: ``{"inverted": {...}, "normal": {...}}`` as returned by
            ``calculate_cycle_stats`` for each orientation.
        medians: Rolling median durations per orientation; the latest
            value is shown when present.

    Returns:
        The formatted string (also printed to stdout).
    """
    medians = medians or {}
    lines = ["──────────────── cyclebot Cycles ────────────────"]
    for key, label in _ORIENTATION_LABELS:
        s = cycle_stats.get(key)
        if not s or not s["count"]:
            lines.append(f"  {label + ':':<10}no cycles")
            continue
        rolling = medians.get(key) or []
        median_str = f"{rolling[-1]:.1f}" if rolling else "N/A"
        lines.append(
            f"  {label + ':':<10}{s['count']} cycles, "
            f"dur {s['avg_duration']:.1f} ± {s['std_duration']:.1f} (median {median_str}), "
            f"move {s['avg_move_pct']:.2f}% avg / {s['max_move_pct']:.2f}% max"
        )
        lines.append(
            f"  {'':<10}lag {s['avg_detection_lag']:.1f} bars, "
            f"volume {s['avg_volume_delta_pre']:+.1f}% before / "
            f"{s['avg_volume_delta_post']:+.1f}% after the end"
        )
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output


def print_trade_breakdown(summary: dict, stats: dict) -> str:
    """Format and print the per-side exit breakdown and ledger statistics.

    *summary* comes from ``summarize_by_side_and_reason``, *stats* from
    ``calculate_stats``.
    """
    lines = [
        "──────────────── cyclebot Ledger ────────────────",
        f"  {'Side':<6}{'Qty':>5}{'SL':>5}{'TP1':>5}{'TP2':>5}{'Cycle':>7}"
        f"{'Gain TP1':>12}{'Gain TP2':>12}{'Loss':>12}",
    ]
    for key, label in _SIDE_LABELS:
        row = summary.get(key)
        if row is None:
            continue
        lines.append(
            f"  {label:<6}{row['qty']:>5}{row['stop_loss']:>5}{row['tp1']:>5}"
            f"{row['tp2']:>5}{row['cycle']:>7}"
            f"{row['gain_tp1']:>12,.2f}{row['gain_tp2']:>12,.2f}{row['loss']:>12,.2f}"
        )
    pf = stats.get("profit_factor")
    lines.append(
        f"  Profit Factor: {pf:.2f}" if pf is not None else "  Profit Factor: N/A"
    )
    lines.append(
        f"  Max Drawdown:  ${stats.get('max_drawdown', 0.0):,.2f} "
        f"({stats.get('max_drawdown_pct', 0.0):.2f}%)"
    )
    lines.append(f"  Sharpe / Row:  {stats.get('sharpe_ratio', 0.0):.2f}")
    lines.append(f"  Avg Lag Open:  {stats.get('avg_lag_open', 0.0):.1f} bars")
    lines.append("──────────────────────────────────────────────────")
    output = "\n".join(lines)
    print(output)
    return output


def _position_str(position: Optional[object]) -> str:
    if position is None:
        return "none"
    return (
        f"{position.side} @ {position.entry_price:.5f} "
        f"(bar {position.entry_index}, capital ${position.capital_allocated:,.2f}"
        f"{', BE' if position.break_even_active else ''})"
    )
