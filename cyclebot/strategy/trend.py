"""Trend detection — dual-EMA directional bias for the entry filter.

``TrendFilter`` precomputes both EMA series once; because each EMA value
only depends on earlier closes, looking up bar *i* never uses later data.
"""

import math
from dataclasses import dataclass
from typing import Literal, Sequence

from cyclebot.strategy.indicators import calculate_ema
from cyclebot.strategy.models import CandleData

Direction = Literal["bullish", "bearish", "neutral"]


@dataclass(frozen=True)
class TrendState:
    """Snapshot of the trend direction and EMA values at one bar."""

    direction: Direction
    ema_fast_value: float
    ema_slow_value: float


class TrendFilter:
    """Dual-EMA bias lookup over a fixed candle history.

    Args:
        candles: Candle history, oldest-first.
        ema_fast: Fast EMA period (default 21).
        ema_slow: Slow EMA period (default 80).
    """

    def __init__(
        self,
        candles: Sequence[CandleData],
        ema_fast: int = 21,
        ema_slow: int = 80,
    ) -> None:
        self._fast = calculate_ema(candles, ema_fast)
        self._slow = calculate_ema(candles, ema_slow)

    def trend_at(self, index: int) -> TrendState:
        """Classify the bias at bar *index*.

        Rules:
            - **Bullish**: EMA(fast) > EMA(slow).
            - **Bearish**: EMA(fast) <= EMA(slow).
            - **Neutral**: either EMA not yet seeded.
        """
        fast = self._fast[index]
        slow = self._slow[index]
        if math.isnan(fast) or math.isnan(slow):
            return TrendState(direction="neutral", ema_fast_value=0.0, ema_slow_value=0.0)
        direction: Direction = "bullish" if fast > slow else "bearish"
        return TrendState(direction=direction, ema_fast_value=fast, ema_slow_value=slow)

    def is_counter_trend(self, side: str, index: int) -> bool:
        """``True`` for a long in a bearish regime or a short in a bullish one."""
        direction = self.trend_at(index).direction
        if side == "long":
            return direction == "bearish"
        return direction == "bullish"
