"""Strategy data models — typed representations for candles and cycles."""

from dataclasses import dataclass
from typing import Literal, Optional

Orientation = Literal["inverted", "normal"]
Side = Literal["long", "short"]

# Inverted (low → high → low) cycles drive longs, normal ones drive shorts.
ORIENTATION_SIDE: dict[str, str] = {
    "inverted": "long",
    "normal": "short",
}
SIDE_ORIENTATION: dict[str, str] = {v: k for k, v in ORIENTATION_SIDE.items()}


@dataclass(frozen=True)
class CandleData:
    """A single candlestick bar for strategy consumption."""

    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    time: Optional[str] = None


@dataclass(frozen=True)
class Cycle:
    """A completed swing between two same-type extremes.

    ``inverted`` cycles run from a local low through an intermediate high to
    a later low; ``normal`` cycles run high → low → high.
    """

    start_index: int
    extremum_index: int
    end_index: int
    duration: int
    amplitude: float
    start_price: float
    extremum_price: float
    end_price: float
    first_potential_end: int
    orientation: Orientation

    @property
    def amplitude_percent(self) -> float:
        """Amplitude as a percentage of the start price."""
        if not self.start_price:
            return 0.0
        return (self.amplitude / self.start_price) * 100.0

    @property
    def detection_lag(self) -> int:
        """Bars between the first qualifying end and the chosen end."""
        return self.end_index - self.first_potential_end


@dataclass(frozen=True)
class ManualCycle:
    """Caller-supplied cycle boundaries that override detection."""

    start_index: int
    end_index: int
