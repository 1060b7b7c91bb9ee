"""Live cycle tracking — replays detection one bar at a time.

Each call to :meth:`LiveCycleTracker.advance` exposes one more bar to the
detector.  Cycles are frozen the moment they first appear: later bars never
move, extend or remove them, and scanning continues from the end of the last
frozen cycle.  Only bars up to the current index are ever read.
"""

from typing import Optional, Sequence

from cyclebot.strategy.cycle_detector import scan_cycles
from cyclebot.strategy.models import CandleData, Cycle, Orientation


class LiveCycleTracker:
    """Append-only cycle list for one orientation over a growing prefix.

    Args:
        candles: The full candle history (read up to the current bar only).
        orientation: ``"inverted"`` or ``"normal"``.
        min_duration: Minimum cycle length in bars.
        max_duration: Maximum cycle length in bars.
        prefer_min_duration: Accept a valid end at exactly *min_duration*.
        use_momentum: Gate starts and ends on the momentum phase.
        momentum_values: Per-bar momentum, may contain ``None`` / NaN.
    """

    def __init__(
        self,
        candles: Sequence[CandleData],
        orientation: Orientation,
        min_duration: int,
        max_duration: int,
        prefer_min_duration: bool = True,
        use_momentum: bool = False,
        momentum_values: Optional[Sequence[Optional[float]]] = None,
    ) -> None:
        self._candles = candles
        self._orientation = orientation
        self._min_duration = min_duration
        self._max_duration = max_duration
        self._prefer_min = prefer_min_duration
        self._use_momentum = use_momentum
        self._momentum = momentum_values
        self._cycles: list[Cycle] = []
        self._resume: int = 0
        self._index: int = -1

    @property
    def cycles(self) -> list[Cycle]:
        """Cycles confirmed so far, oldest first (a copy)."""
        return list(self._cycles)

    @property
    def orientation(self) -> Orientation:
        return self._orientation

    @property
    def index(self) -> int:
        """Last bar index exposed to the detector (``-1`` before any)."""
        return self._index

    @property
    def last(self) -> Optional[Cycle]:
        return self._cycles[-1] if self._cycles else None

    def advance(self, index: int) -> list[Cycle]:
        """Expose bars up to *index* and return the newly confirmed cycles.

        Raises ``ValueError`` if *index* moves backwards or past the data.
        """
        if index < self._index:
            raise ValueError(
                f"Tracker already at bar {self._index}, cannot rewind to {index}"
            )
        if index >= len(self._candles):
            raise ValueError(
                f"Bar {index} outside {len(self._candles)} candles"
            )
        self._index = index
        n = index + 1

        found = scan_cycles(
            self._candles,
            self._resume,
            n,
            use_momentum=self._use_momentum,
            momentum_values=self._momentum,
            orientation=self._orientation,
            min_duration=self._min_duration,
            max_duration=self._max_duration,
            prefer_min_duration=self._prefer_min,
            n=n,
        )
        if found:
            self._cycles.extend(found)
            # The end bar may start the next cycle once its right neighbour exists
            self._resume = found[-1].end_index
        return found
