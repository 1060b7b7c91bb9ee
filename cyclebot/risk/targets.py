"""Take-profit targets from recent cycle amplitude — pure math, no I/O.

TP levels are expressed as a percentage of the average move of the last
ten completed cycles of the orientation that drives the trade:

    avg_move   = mean(amplitude / start_price × 100) over the last 10 cycles
    target_pct = avg_move × tp_percent / 100
    long  TP   = entry × (1 + target_pct / 100)
    short TP   = entry × (1 − target_pct / 100)
"""

from typing import Optional, Sequence

from cyclebot.strategy.models import Cycle

AVERAGE_LOOKBACK = 10


def average_cycle_move(cycles: Sequence[Cycle], lookback: int = AVERAGE_LOOKBACK) -> float:
    """Mean amplitude (percent of start price) of the last *lookback* cycles.

    Returns ``0.0`` when there are no cycles.
    """
    recent = list(cycles)[-lookback:]
    if not recent:
        return 0.0
    return sum(c.amplitude_percent for c in recent) / len(recent)


def calculate_tp_price(
    entry_price: float,
    side: str,
    avg_move_pct: float,
    tp_percent: float,
) -> Optional[float]:
    """Return the take-profit price, or ``None`` when the target is not positive.

    Args:
        entry_price: Position entry price.
        side: ``"long"`` or ``"short"``.
        avg_move_pct: Average cycle move in percent (e.g. ``10.0``).
        tp_percent: Share of that move to target, in percent (e.g. ``50.0``).

    Raises:
        ValueError: If *side* is not ``"long"`` or ``"short"``.
    """
    target_pct = avg_move_pct * (tp_percent / 100.0)
    if side == "long":
        price = entry_price * (1 + target_pct / 100.0)
    elif side == "short":
        price = entry_price * (1 - target_pct / 100.0)
    else:
        raise ValueError(f"side must be 'long' or 'short', got '{side}'")
    if target_pct <= 0:
        return None
    return price
