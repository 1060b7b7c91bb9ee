"""Simulation data models — positions, ledger rows and equity samples.

All records are frozen.  A partial close replaces the open ``Position``
with a shrunk copy; every close appends an immutable ``Trade`` carrying a
snapshot of the position and cycle fields needed for reporting.
"""

from dataclasses import dataclass
from typing import Literal, Optional

from cyclebot.strategy.models import Cycle, Side

Phase = Literal["flat", "pending", "open", "partially_closed"]

# Ledger reason codes
REASON_STOP_LOSS = "sl_cycle_extreme"
REASON_MAX_LOSS = "max_loss_hard_stop"
REASON_BREAK_EVEN = "break_even"
REASON_TP1 = "tp1_partial"
REASON_TP2 = "tp2_cycle_avg"
REASON_CYCLE_END = "cycle_end"
REASON_OPPOSITE_CYCLE = "opposite_cycle"
REASON_OPPOSITE_SIGNAL = "opposite_signal"
REASON_END_OF_DATA = "end_of_data"


@dataclass(frozen=True)
class CycleMetrics:
    """Cycle facts captured when a position opens.

    ``real_cycle_end_index`` is the start of the next opposite cycle after
    the entry.  Only lookahead runs know it; live runs leave it ``None``.
    """

    amplitude_percent: float
    cycle_end_index: int
    cycle_first_close_index: int
    cycle_duration: int
    real_cycle_end_index: Optional[int] = None

    @classmethod
    def from_cycle(cls, cycle: Cycle) -> "CycleMetrics":
        return cls(
            amplitude_percent=cycle.amplitude_percent,
            cycle_end_index=cycle.end_index,
            cycle_first_close_index=cycle.first_potential_end,
            cycle_duration=cycle.duration,
        )


@dataclass(frozen=True)
class EntrySignal:
    """A candidate entry raised by a newly confirmed cycle."""

    side: Side
    cycle: Cycle
    stop_price: float
    detected_index: int
    counter_trend: bool = False


@dataclass(frozen=True)
class PendingSignal:
    """An entry signal waiting for consecutive favourable bars."""

    signal: EntrySignal
    confirm_bars: int = 0


@dataclass(frozen=True)
class Position:
    """The single open position."""

    trade_id: int
    side: Side
    entry_price: float
    entry_index: int
    capital_allocated: float
    notional_size: float
    initial_capital: float
    stop_price: float
    cycle_metrics: CycleMetrics
    partial_closed: bool = False
    break_even_active: bool = False
    counter_trend: bool = False

    @property
    def cycle_amplitude_percent(self) -> float:
        return self.cycle_metrics.amplitude_percent

    @property
    def cycle_end_index(self) -> int:
        return self.cycle_metrics.cycle_end_index

    @property
    def cycle_first_close_index(self) -> int:
        return self.cycle_metrics.cycle_first_close_index

    @property
    def real_cycle_end_index(self) -> Optional[int]:
        return self.cycle_metrics.real_cycle_end_index


@dataclass(frozen=True)
class Trade:
    """A closed (or partially closed) execution.

    ``partial`` holds the fraction of the then-open capital that was closed
    for partial exits and is ``None`` for final closes.  ``closed_fraction``
    is the share of the position's initial capital closed by this row, so
    the rows of one ``trade_id`` sum to 1.
    """

    trade_id: int
    side: Side
    entry_price: float
    exit_price: float
    entry_index: int
    exit_index: int
    pnl: float
    pnl_percent: float
    fees: float
    reason: str
    capital_closed: float
    closed_fraction: float
    balance_after: float
    cycle_metrics: CycleMetrics
    partial: Optional[float] = None

    @property
    def is_partial(self) -> bool:
        return self.partial is not None

    @property
    def lag_open(self) -> int:
        """Bars from entry to the next opposite cycle start, or to the exit
        when that start is unknown."""
        end = self.cycle_metrics.real_cycle_end_index
        return (self.exit_index if end is None else end) - self.entry_index


@dataclass(frozen=True)
class EquitySample:
    """Account balance after processing bar ``index``."""

    index: int
    balance: float
