"""Trade simulator — replays candles through cycle signals and exit rules.

Two modes share the same entry and exit machinery:

- ``run_live``: cycles are discovered bar by bar through
  ``LiveCycleTracker``; nothing beyond the current bar is ever read.
- ``run_lookahead``: cycles are detected once over the full history and
  signals are scheduled from their final boundaries.  Fast, but it acts on
  information a live trader would not have had.

No real orders are placed.  Within a bar exits are always evaluated before
entries, and stop checks always precede take-profit checks.
"""

import bisect
import logging
from dataclasses import replace
from typing import Optional, Sequence

from cyclebot.backtest.models import (
    REASON_BREAK_EVEN,
    REASON_CYCLE_END,
    REASON_END_OF_DATA,
    REASON_MAX_LOSS,
    REASON_OPPOSITE_CYCLE,
    REASON_OPPOSITE_SIGNAL,
    REASON_STOP_LOSS,
    REASON_TP1,
    REASON_TP2,
    CycleMetrics,
    EntrySignal,
    EquitySample,
    PendingSignal,
    Phase,
    Position,
    Trade,
)
from cyclebot.config import SimulationConfig
from cyclebot.risk.position_sizer import calculate_capital, calculate_notional_size
from cyclebot.risk.sl_tp import (
    calculate_fees,
    calculate_pnl,
    max_loss_stop_price,
    price_move_pct,
    stop_loss_breached,
)
from cyclebot.risk.targets import average_cycle_move, calculate_tp_price
from cyclebot.strategy.cycle_detector import detect_cycles
from cyclebot.strategy.live_cycles import LiveCycleTracker
from cyclebot.strategy.models import (
    ORIENTATION_SIDE,
    SIDE_ORIENTATION,
    CandleData,
    Cycle,
    Side,
)
from cyclebot.strategy.trend import TrendFilter

logger = logging.getLogger("cyclebot.backtest")

_ORIENTATIONS = ("inverted", "normal")
# Favourable bars required before a pending signal opens
LIVE_CONFIRM_BARS = 2
LOOKAHEAD_CONFIRM_BARS = 1


class TradeSimulator:
    """Simulates the cycle strategy on a candle history.

    Each instance owns its balance, ledger and equity curve.  Every ``run_*``
    call starts from ``reset()``; new parameters mean a new simulator with
    a new ``SimulationConfig``.

    Args:
        config: Immutable strategy and account settings.
    """

    def __init__(self, config: SimulationConfig) -> None:
        self._config = config
        self.reset()

    # ── State ────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Restore the initial state: no trades, configured starting balance."""
        self._balance: float = self._config.starting_balance
        self._trades: list[Trade] = []
        self._equity_curve: list[EquitySample] = []
        self._position: Optional[Position] = None
        self._pending: Optional[PendingSignal] = None
        self._reversal: Optional[EntrySignal] = None
        self._total_pnl: float = 0.0
        self._total_fees: float = 0.0
        self._wins: int = 0
        self._losses: int = 0
        self._next_trade_id: int = 1
        self._avg_move: dict[str, float] = {o: 0.0 for o in _ORIENTATIONS}
        self._last_traded_end: dict[str, int] = {"long": -1, "short": -1}
        self._cycles: dict[str, list[Cycle]] = {o: [] for o in _ORIENTATIONS}
        self._trend: Optional[TrendFilter] = None
        self._opposite_starts: Optional[dict[str, list[int]]] = None

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def trades(self) -> list[Trade]:
        return list(self._trades)

    @property
    def equity_curve(self) -> list[EquitySample]:
        return list(self._equity_curve)

    @property
    def open_position(self) -> Optional[Position]:
        return self._position

    @property
    def pending_signal(self) -> Optional[PendingSignal]:
        return self._pending

    @property
    def phase(self) -> Phase:
        """Lifecycle phase: flat → pending → open → partially_closed → flat."""
        if self._position is not None:
            return "partially_closed" if self._position.partial_closed else "open"
        if self._pending is not None:
            return "pending"
        return "flat"

    @property
    def avg_long_move(self) -> float:
        """Average inverted-cycle move (percent) driving long targets."""
        return self._avg_move["inverted"]

    @property
    def avg_short_move(self) -> float:
        """Average normal-cycle move (percent) driving short targets."""
        return self._avg_move["normal"]

    # ── Public API ───────────────────────────────────────────────────────

    def run_live(
        self,
        candles: Sequence[CandleData],
        momentum_values: Optional[Sequence[Optional[float]]] = None,
    ) -> dict:
        """Bar-by-bar simulation without lookahead.

        Detection starts once ``max_duration`` bars of history exist.  A
        cycle can only trigger a trade on the bar where it is first
        confirmed.

        Returns:
            Dict with ``cycles`` (per orientation), ``trades``,
            ``equity_curve``, ``stats`` and ``final_balance``.
        """
        self.reset()
        cfg = self._config
        self._trend = TrendFilter(candles) if cfg.trend_filter_enabled else None

        trackers = {
            o: LiveCycleTracker(
                candles,
                o,
                cfg.min_duration,
                cfg.max_duration,
                prefer_min_duration=cfg.prefer_min_duration,
                use_momentum=cfg.use_momentum,
                momentum_values=momentum_values,
            )
            for o in _ORIENTATIONS
        }

        for i in range(cfg.max_duration, len(candles)):
            candle = candles[i]
            new_cycles = {o: trackers[o].advance(i) for o in _ORIENTATIONS}
            for o in _ORIENTATIONS:
                self._cycles[o] = trackers[o].cycles
                self._avg_move[o] = average_cycle_move(self._cycles[o])

            active = self._position is not None

            # 1 ── Deferred reversal: flatten at this bar's open
            if self._reversal is not None:
                active = self._apply_reversal(candle, i, fill_at_open=True) or active

            # 2 ── Exits for the open position
            if self._position is not None:
                if not self._check_exit(candle, i):
                    self._check_cycle_exit(candle, i, self._live_cycle_exit)

            # 3 ── Pending confirmation
            if self._pending is not None and self._position is None:
                self._confirm_pending(candle, i, LIVE_CONFIRM_BARS, fill_price=candle.close)

            # 4 ── New entry signals (inverted first)
            for o in _ORIENTATIONS:
                if new_cycles[o]:
                    self._on_new_cycle(new_cycles[o][-1], candles, i, fill_price=candle.close)

            if active or self._position is not None:
                self._record_equity(i)

        return self._finish(candles)

    def run_lookahead(
        self,
        candles: Sequence[CandleData],
        momentum_values: Optional[Sequence[Optional[float]]] = None,
        inverted_cycles: Optional[list[Cycle]] = None,
        normal_cycles: Optional[list[Cycle]] = None,
    ) -> dict:
        """Fast approximation driven by cycles detected on the full history.

        Entries are scheduled at ``first_potential_end + 1`` and filled at
        that bar's open; ``cycle_end`` exits fire at ``end_index + 1``.
        Precomputed cycle lists may be supplied to skip detection.  Each
        position records the start of the next opposite cycle after its
        entry as ``real_cycle_end_index`` (see ``Trade.lag_open``).

        Returns:
            Same shape as :meth:`run_live`.
        """
        self.reset()
        cfg = self._config
        self._trend = TrendFilter(candles) if cfg.trend_filter_enabled else None

        supplied = {"inverted": inverted_cycles, "normal": normal_cycles}
        for o in _ORIENTATIONS:
            cycles = supplied[o]
            if cycles is None:
                cycles = detect_cycles(
                    candles,
                    use_momentum=cfg.use_momentum,
                    momentum_values=momentum_values,
                    orientation=o,
                    min_duration=cfg.min_duration,
                    max_duration=cfg.max_duration,
                    prefer_min_duration=cfg.prefer_min_duration,
                )
            self._cycles[o] = list(cycles)
            self._avg_move[o] = average_cycle_move(self._cycles[o])
        self._opposite_starts = {
            o: sorted(c.start_index for c in self._cycles[o]) for o in _ORIENTATIONS
        }

        entries: dict[int, list[Cycle]] = {}
        exits: dict[int, set[str]] = {}
        for o in _ORIENTATIONS:
            for cycle in self._cycles[o]:
                entry_idx = cycle.first_potential_end + 1
                if entry_idx < len(candles):
                    entries.setdefault(entry_idx, []).append(cycle)
                exit_idx = cycle.end_index + 1
                if exit_idx < len(candles):
                    exits.setdefault(exit_idx, set()).add(o)

        for i, candle in enumerate(candles):
            active = self._position is not None

            if self._position is not None:
                if not self._check_exit(candle, i):
                    ended = exits.get(i, set())
                    self._check_cycle_exit(
                        candle, i, lambda o, pos: o in ended,
                    )

            if self._pending is not None and self._position is None:
                self._confirm_pending(
                    candle, i, LOOKAHEAD_CONFIRM_BARS, fill_price=candle.open,
                )

            for cycle in entries.get(i, []):
                if self._schedule_lookahead_entry(cycle, candles, i):
                    break

            if active or self._position is not None:
                self._record_equity(i)

        return self._finish(candles)

    def get_stats(self) -> dict:
        """Summary consumed by the display layer."""
        total = self._wins + self._losses
        start = self._config.starting_balance
        return {
            "balance": self._balance,
            "starting_balance": start,
            "total_pnl": self._total_pnl,
            "pnl_percent": ((self._balance - start) / start) * 100.0,
            "total_fees": self._total_fees,
            "total_trades": total,
            "wins": self._wins,
            "losses": self._losses,
            "win_rate": self._wins / total if total else 0.0,
            "open_position": self._position,
            "phase": self.phase,
            "avg_long_move": self.avg_long_move,
            "avg_short_move": self.avg_short_move,
        }

    # ── Entries ──────────────────────────────────────────────────────────

    def _make_signal(
        self,
        cycle: Cycle,
        candles: Sequence[CandleData],
        index: int,
        trend_index: int,
    ) -> EntrySignal:
        side: Side = ORIENTATION_SIDE[cycle.orientation]
        start = candles[cycle.start_index]
        stop = start.low if side == "long" else start.high
        counter = (
            self._trend is not None
            and trend_index >= 0
            and self._trend.is_counter_trend(side, trend_index)
        )
        return EntrySignal(
            side=side,
            cycle=cycle,
            stop_price=stop,
            detected_index=index,
            counter_trend=counter,
        )

    def _on_new_cycle(
        self,
        cycle: Cycle,
        candles: Sequence[CandleData],
        index: int,
        fill_price: float,
    ) -> None:
        """Raise an entry signal for a freshly confirmed live cycle."""
        side = ORIENTATION_SIDE[cycle.orientation]
        if cycle.start_index <= self._last_traded_end[side]:
            return
        if self._pending is not None or self._reversal is not None:
            return

        position = self._position
        if position is not None:
            if position.side != side:
                # Acted on at the next bar's open
                self._reversal = self._make_signal(cycle, candles, index, index)
            return

        signal = self._make_signal(cycle, candles, index, index)
        self._begin_signal(signal, index, fill_price)

    def _begin_signal(self, signal: EntrySignal, index: int, fill_price: float) -> None:
        """Turn a signal into a pending confirmation or an immediate entry."""
        self._last_traded_end[signal.side] = signal.cycle.end_index
        if self._config.require_confirmation:
            self._pending = PendingSignal(signal=signal)
            logger.debug(
                "Pending %s from cycle %d-%d at bar %d",
                signal.side, signal.cycle.start_index, signal.cycle.end_index, index,
            )
        else:
            self._open(signal, fill_price, index)

    def _apply_reversal(self, candle: CandleData, index: int, fill_at_open: bool) -> bool:
        """Close an opposite position at the open, then start the new signal.

        Returns ``True`` if a position was closed.
        """
        signal = self._reversal
        self._reversal = None
        closed = False
        position = self._position
        if position is not None and position.side != signal.side:
            self._close(position, candle.open, index, REASON_OPPOSITE_SIGNAL)
            closed = True
        if self._position is None and self._pending is None:
            fill = candle.open if fill_at_open else candle.close
            self._begin_signal(signal, index, fill)
        return closed

    def _schedule_lookahead_entry(
        self, cycle: Cycle, candles: Sequence[CandleData], index: int,
    ) -> bool:
        """Act on a scheduled lookahead signal.  Returns ``True`` if handled."""
        side = ORIENTATION_SIDE[cycle.orientation]
        if self._pending is not None:
            return False
        position = self._position
        if position is not None:
            if position.side == side:
                return False
            self._close(position, candles[index].open, index, REASON_OPPOSITE_SIGNAL)

        signal = self._make_signal(cycle, candles, index, index - 1)
        if self._config.require_confirmation:
            self._pending = PendingSignal(signal=signal)
        else:
            self._open(signal, candles[index].open, index)
        return True

    def _confirm_pending(
        self,
        candle: CandleData,
        index: int,
        required: int,
        fill_price: float,
    ) -> None:
        """Advance the pending signal by one bar; a single bad bar cancels it."""
        pending = self._pending
        signal = pending.signal
        if index <= signal.detected_index:
            return

        if signal.side == "long":
            favourable = candle.close > signal.stop_price
        else:
            favourable = candle.close < signal.stop_price

        if not favourable:
            logger.debug("Pending %s cancelled at bar %d", signal.side, index)
            self._pending = None
            return

        confirmed = pending.confirm_bars + 1
        if confirmed >= required:
            self._pending = None
            self._open(signal, fill_price, index)
        else:
            self._pending = replace(pending, confirm_bars=confirmed)

    def _open(self, signal: EntrySignal, price: float, index: int) -> None:
        cfg = self._config
        if self._balance <= 0:
            logger.warning("Balance exhausted (%.2f), skipping %s entry", self._balance, signal.side)
            return
        capital = calculate_capital(
            self._balance, cfg.capital_percentage, signal.counter_trend,
        )
        metrics = CycleMetrics.from_cycle(signal.cycle)
        if self._opposite_starts is not None:
            metrics = replace(
                metrics, real_cycle_end_index=self._next_opposite_start(signal.side, index),
            )
        self._position = Position(
            trade_id=self._next_trade_id,
            side=signal.side,
            entry_price=price,
            entry_index=index,
            capital_allocated=capital,
            notional_size=calculate_notional_size(capital, cfg.leverage, price),
            initial_capital=capital,
            stop_price=signal.stop_price,
            cycle_metrics=metrics,
            counter_trend=signal.counter_trend,
        )
        self._next_trade_id += 1
        logger.debug(
            "Opened %s #%d at %.5f (bar %d, capital %.2f%s)",
            signal.side, self._position.trade_id, price, index, capital,
            ", counter-trend" if signal.counter_trend else "",
        )

    def _next_opposite_start(self, side: Side, index: int) -> Optional[int]:
        """First opposite-orientation cycle start after bar *index*."""
        starts = self._opposite_starts["normal" if side == "long" else "inverted"]
        k = bisect.bisect_right(starts, index)
        return starts[k] if k < len(starts) else None

    # ── Exits ────────────────────────────────────────────────────────────

    def _check_exit(self, candle: CandleData, index: int) -> bool:
        """Apply price-based exits in priority order.

        Returns ``True`` when any exit (including a TP1 partial) fired.
        """
        cfg = self._config
        pos = self._position
        is_long = pos.side == "long"

        # 1 ── Close beyond the cycle-start extreme
        if not pos.break_even_active and stop_loss_breached(pos.side, candle.close, pos.stop_price):
            self._close(pos, candle.close, index, REASON_STOP_LOSS)
            return True

        # 2 ── Intrabar max-loss hard stop
        if cfg.max_loss_enabled:
            stop = max_loss_stop_price(
                pos.side, pos.entry_price, cfg.starting_balance,
                cfg.max_loss_percent, pos.capital_allocated, cfg.leverage,
            )
            if (candle.low <= stop) if is_long else (candle.high >= stop):
                self._close(pos, stop, index, REASON_MAX_LOSS)
                return True

        # 3 ── Break-even after TP1
        if pos.break_even_active:
            touched = candle.low <= pos.entry_price if is_long else candle.high >= pos.entry_price
            if touched:
                self._close(pos, pos.entry_price, index, REASON_BREAK_EVEN)
                return True

        avg_move = self._avg_move[SIDE_ORIENTATION[pos.side]]

        # 4 ── TP1 partial
        if not pos.partial_closed:
            tp1 = calculate_tp_price(pos.entry_price, pos.side, avg_move, cfg.tp1_percent)
            if tp1 is not None and _reached(pos.side, candle, tp1):
                self._close_partial(pos, tp1, index, cfg.tp1_close_fraction, REASON_TP1)
                return True
            return False

        # 5 ── TP2 on the remainder
        tp2 = calculate_tp_price(pos.entry_price, pos.side, avg_move, cfg.tp2_percent)
        if tp2 is not None and _reached(pos.side, candle, tp2):
            self._close(pos, tp2, index, REASON_TP2)
            return True
        return False

    def _live_cycle_exit(self, orientation: str, pos: Position) -> bool:
        last = self._cycles[orientation][-1] if self._cycles[orientation] else None
        return last is not None and last.end_index > pos.entry_index

    def _check_cycle_exit(self, candle: CandleData, index: int, cycle_ended) -> None:
        """Close on cycle completion; the opposite-cycle variant is checked first."""
        pos = self._position
        own = SIDE_ORIENTATION[pos.side]
        other = "normal" if own == "inverted" else "inverted"

        if self._config.close_on_opposite_cycle and cycle_ended(other, pos):
            self._close(pos, candle.close, index, REASON_OPPOSITE_CYCLE)
            return
        if cycle_ended(own, pos):
            self._close(pos, candle.close, index, REASON_CYCLE_END)

    def _close_partial(
        self,
        pos: Position,
        exit_price: float,
        index: int,
        fraction: float,
        reason: str,
    ) -> None:
        closed_capital = pos.capital_allocated * fraction
        closed_size = pos.notional_size * fraction
        self._record_trade(pos, exit_price, index, closed_capital, reason, partial=fraction)
        self._position = replace(
            pos,
            capital_allocated=pos.capital_allocated - closed_capital,
            notional_size=pos.notional_size - closed_size,
            partial_closed=True,
            break_even_active=True,
        )

    def _close(self, pos: Position, exit_price: float, index: int, reason: str) -> None:
        self._record_trade(pos, exit_price, index, pos.capital_allocated, reason)
        self._position = None

    def _record_trade(
        self,
        pos: Position,
        exit_price: float,
        index: int,
        capital: float,
        reason: str,
        partial: Optional[float] = None,
    ) -> None:
        cfg = self._config
        pnl = calculate_pnl(pos.side, pos.entry_price, exit_price, capital, cfg.leverage)
        fees = 0.0
        if cfg.fees_enabled:
            fees = calculate_fees(capital, cfg.leverage, cfg.taker_fee_percent)
            pnl -= fees
            self._total_fees += fees

        self._balance += pnl
        self._total_pnl += pnl
        if pnl > 0:
            self._wins += 1
        else:
            self._losses += 1

        self._trades.append(
            Trade(
                trade_id=pos.trade_id,
                side=pos.side,
                entry_price=pos.entry_price,
                exit_price=exit_price,
                entry_index=pos.entry_index,
                exit_index=index,
                pnl=pnl,
                pnl_percent=price_move_pct(pos.side, pos.entry_price, exit_price)
                * 100.0 * cfg.leverage,
                fees=fees,
                reason=reason,
                capital_closed=capital,
                closed_fraction=capital / pos.initial_capital,
                balance_after=self._balance,
                cycle_metrics=pos.cycle_metrics,
                partial=partial,
            )
        )
        logger.debug(
            "Closed %s #%d at %.5f (bar %d, %s): pnl %.2f",
            pos.side, pos.trade_id, exit_price, index, reason, pnl,
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _record_equity(self, index: int) -> None:
        self._equity_curve.append(EquitySample(index=index, balance=self._balance))

    def _finish(self, candles: Sequence[CandleData]) -> dict:
        """Apply the end-of-data policy and assemble the result."""
        if self._config.close_at_end_of_data and self._position is not None and candles:
            last = len(candles) - 1
            self._close(self._position, candles[last].close, last, REASON_END_OF_DATA)
            if not self._equity_curve or self._equity_curve[-1].index != last:
                self._record_equity(last)
            else:
                self._equity_curve[-1] = EquitySample(index=last, balance=self._balance)
        self._pending = None
        self._reversal = None

        stats = self.get_stats()
        logger.info(
            "Simulation finished: %d ledger rows, balance %.2f (pnl %.2f, fees %.2f)",
            len(self._trades), self._balance, self._total_pnl, self._total_fees,
        )
        return {
            "cycles": {o: list(self._cycles[o]) for o in _ORIENTATIONS},
            "trades": list(self._trades),
            "equity_curve": list(self._equity_curve),
            "stats": stats,
            "final_balance": self._balance,
        }


def _reached(side: str, candle: CandleData, target: float) -> bool:
    """Intrabar touch of a profit target."""
    if side == "long":
        return candle.high >= target
    return candle.low <= target
