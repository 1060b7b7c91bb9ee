"""Technical indicators — EMA. Pure functions, no I/O."""

from typing import Sequence

from cyclebot.strategy.models import CandleData


def calculate_ema(candles: Sequence[CandleData], period: int) -> list[float]:
    """Calculate an Exponential Moving Average series of closes.

    Uses the standard EMA formula:
        ``EMA_today = close × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    The first EMA value is seeded with the SMA of the first *period*
    closes, so each value depends only on bars up to its own index.

    Returns the full EMA series (same length as *candles*). Entries
    before the seed period are set to ``float('nan')``; a history shorter
    than *period* yields an all-NaN series.

    Raises ``ValueError`` if *period* is not positive.
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")

    closes = [c.close for c in candles]
    ema: list[float] = [float("nan")] * len(closes)
    if len(closes) < period:
        return ema

    k = 2.0 / (period + 1)

    # Seed: SMA of first *period* closes
    seed = sum(closes[:period]) / period
    ema[period - 1] = seed

    for i in range(period, len(closes)):
        ema[i] = closes[i] * k + ema[i - 1] * (1 - k)

    return ema
