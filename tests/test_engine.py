"""Tests for cyclebot.backtest.engine — the trade simulator.

Exit rules are exercised on hand-placed positions; full runs check the
ledger invariants on the synthetic swing series.
"""

from collections import defaultdict

import pytest

from cyclebot.backtest.engine import TradeSimulator
from cyclebot.backtest.models import CycleMetrics, EntrySignal, PendingSignal, Position
from cyclebot.config import ConfigurationError, SimulationConfig
from cyclebot.strategy.cycle_detector import detect_cycles
from cyclebot.strategy.models import Cycle
from conftest import make_candle


# ── Helpers ──────────────────────────────────────────────────────────────


def _sim(**overrides):
    params = dict(fees_enabled=False, min_duration=3, max_duration=12)
    params.update(overrides)
    return TradeSimulator(SimulationConfig(**params))


def _cycle(start, end, orientation="inverted", first_end=None, amplitude=0.0, start_price=100.0):
    return Cycle(
        start_index=start,
        extremum_index=start + 1,
        end_index=end,
        duration=end - start,
        amplitude=amplitude,
        start_price=start_price,
        extremum_price=start_price + amplitude,
        end_price=start_price,
        first_potential_end=end if first_end is None else first_end,
        orientation=orientation,
    )


def _position(side, entry, capital, stop, leverage=20.0):
    return Position(
        trade_id=1,
        side=side,
        entry_price=entry,
        entry_index=5,
        capital_allocated=capital,
        notional_size=capital * leverage / entry,
        initial_capital=capital,
        stop_price=stop,
        cycle_metrics=CycleMetrics(
            amplitude_percent=10.0, cycle_end_index=4,
            cycle_first_close_index=4, cycle_duration=4,
        ),
    )


def _fractions_by_trade(trades):
    fractions = defaultdict(float)
    for t in trades:
        fractions[t.trade_id] += t.closed_fraction
    return fractions


def _entries_with_balance(trades, start=1000.0):
    """First ledger row of each trade with the balance it was sized from."""
    out = []
    seen = set()
    balance = start
    for t in trades:
        if t.trade_id not in seen:
            seen.add(t.trade_id)
            out.append((t, balance))
        balance = t.balance_after
    return out


# ── Price exits ──────────────────────────────────────────────────────────


class TestPriceExits:
    def test_tp1_partial_then_break_even(self):
        """Long 100, $200 × 20x, avg move 10%, TP1 50% → 105; BE at 100."""
        sim = _sim(tp1_percent=50.0, tp1_close_fraction=0.6)
        sim._avg_move["inverted"] = 10.0
        sim._position = _position("long", 100.0, 200.0, stop=95.0)

        assert sim._check_exit(make_candle(101.0, 106.0, 100.5, 104.0), 10) is True
        tp1 = sim.trades[0]
        assert tp1.reason == "tp1_partial"
        assert tp1.exit_price == pytest.approx(105.0)
        assert tp1.capital_closed == pytest.approx(120.0)
        assert tp1.pnl == pytest.approx(120.0)
        assert tp1.partial == pytest.approx(0.6)
        assert sim.balance == pytest.approx(1120.0)

        pos = sim.open_position
        assert pos.capital_allocated == pytest.approx(80.0)
        assert pos.partial_closed and pos.break_even_active
        assert sim.phase == "partially_closed"

        assert sim._check_exit(make_candle(103.0, 104.0, 99.5, 100.5), 11) is True
        be = sim.trades[1]
        assert be.reason == "break_even"
        assert be.exit_price == pytest.approx(100.0)
        assert be.pnl == pytest.approx(0.0)
        assert sim.open_position is None
        assert tp1.closed_fraction + be.closed_fraction == pytest.approx(1.0)
        assert sim.get_stats()["wins"] == 1
        assert sim.get_stats()["losses"] == 1

    def test_break_even_replaces_cycle_stop(self):
        sim = _sim(tp1_percent=50.0)
        sim._avg_move["inverted"] = 10.0
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_exit(make_candle(101.0, 106.0, 100.5, 104.0), 10)

        sim._check_exit(make_candle(99.0, 99.5, 93.0, 94.0), 11)
        assert sim.trades[-1].reason == "break_even"
        assert sim.trades[-1].exit_price == pytest.approx(100.0)

    def test_tp2_closes_remainder(self):
        """TP2 150% of a 10% move → 115 on the remaining $80."""
        sim = _sim(tp1_percent=50.0, tp2_percent=150.0)
        sim._avg_move["inverted"] = 10.0
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_exit(make_candle(101.0, 106.0, 100.5, 104.0), 10)

        assert sim._check_exit(make_candle(105.0, 116.0, 101.0, 114.0), 11) is True
        tp2 = sim.trades[-1]
        assert tp2.reason == "tp2_cycle_avg"
        assert tp2.exit_price == pytest.approx(115.0)
        assert tp2.pnl == pytest.approx(240.0)
        assert tp2.closed_fraction == pytest.approx(0.4)

    def test_short_stop_loss(self):
        """Short 100, stop 103, close 104 → −$160 on $200 × 20x."""
        sim = _sim()
        sim._position = _position("short", 100.0, 200.0, stop=103.0)
        assert sim._check_exit(make_candle(101.0, 104.5, 100.5, 104.0), 10) is True
        sl = sim.trades[0]
        assert sl.reason == "sl_cycle_extreme"
        assert sl.exit_price == 104.0
        assert sl.pnl == pytest.approx(-160.0)
        assert sim.balance == pytest.approx(840.0)

    def test_stop_checked_before_take_profit(self):
        sim = _sim(tp1_percent=50.0)
        sim._avg_move["inverted"] = 10.0
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_exit(make_candle(100.0, 106.0, 94.0, 94.5), 10)
        assert [t.reason for t in sim.trades] == ["sl_cycle_extreme"]

    def test_max_loss_hard_stop(self):
        """5% of $1,000 on $300 × 20x → stop 1/120 below entry, −$50."""
        sim = _sim(max_loss_enabled=True, max_loss_percent=5.0)
        sim._position = _position("long", 100.0, 300.0, stop=90.0)
        sim._check_exit(make_candle(99.8, 100.2, 99.0, 99.5), 10)
        trade = sim.trades[0]
        assert trade.reason == "max_loss_hard_stop"
        assert trade.exit_price == pytest.approx(100.0 * (1 - 50.0 / 6000.0))
        assert trade.pnl == pytest.approx(-50.0)

    def test_max_loss_disabled_by_default(self):
        sim = _sim()
        sim._position = _position("long", 100.0, 300.0, stop=90.0)
        assert sim._check_exit(make_candle(99.8, 100.2, 99.0, 99.5), 10) is False

    def test_no_target_without_cycle_history(self):
        sim = _sim()
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        assert sim._check_exit(make_candle(100.0, 500.0, 99.0, 120.0), 10) is False
        assert sim.trades == []

    def test_fees_deducted(self):
        """Round-trip fees on $120 × 20x at 0.02% = $0.96."""
        sim = _sim(fees_enabled=True, taker_fee_percent=0.02, tp1_percent=50.0)
        sim._avg_move["inverted"] = 10.0
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_exit(make_candle(101.0, 106.0, 100.5, 104.0), 10)
        trade = sim.trades[0]
        assert trade.fees == pytest.approx(0.96)
        assert trade.pnl == pytest.approx(119.04)
        assert sim.get_stats()["total_fees"] == pytest.approx(0.96)


# ── Cycle exits ──────────────────────────────────────────────────────────


class TestCycleExits:
    def test_cycle_end(self):
        sim = _sim()
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_cycle_exit(make_candle(101, 103, 100, 102), 10, lambda o, pos: o == "inverted")
        assert sim.trades[0].reason == "cycle_end"
        assert sim.trades[0].exit_price == 102

    def test_opposite_cycle_checked_first(self):
        sim = _sim(close_on_opposite_cycle=True)
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_cycle_exit(make_candle(101, 103, 100, 102), 10, lambda o, pos: True)
        assert sim.trades[0].reason == "opposite_cycle"

    def test_opposite_cycle_ignored_when_disabled(self):
        sim = _sim(close_on_opposite_cycle=False)
        sim._position = _position("long", 100.0, 200.0, stop=95.0)
        sim._check_cycle_exit(make_candle(101, 103, 100, 102), 10, lambda o, pos: o == "normal")
        assert sim.open_position is not None

    def test_live_exit_needs_cycle_ending_after_entry(self):
        sim = _sim()
        pos = _position("long", 100.0, 200.0, stop=95.0)
        sim._cycles["inverted"] = [_cycle(0, 4)]
        assert sim._live_cycle_exit("inverted", pos) is False
        sim._cycles["inverted"].append(_cycle(4, 9))
        assert sim._live_cycle_exit("inverted", pos) is True


# ── Entries ──────────────────────────────────────────────────────────────


class TestEntries:
    def _pending(self, sim, stop=100.0):
        signal = EntrySignal(side="long", cycle=_cycle(0, 4), stop_price=stop, detected_index=5)
        sim._pending = PendingSignal(signal=signal)

    def test_confirmation_counts_bars_after_detection(self):
        sim = _sim()
        self._pending(sim)
        sim._confirm_pending(make_candle(100, 102, 99, 101), 5, 2, fill_price=101)
        assert sim.pending_signal.confirm_bars == 0
        sim._confirm_pending(make_candle(101, 102, 100, 101.5), 6, 2, fill_price=101.5)
        assert sim.pending_signal.confirm_bars == 1
        assert sim.phase == "pending"
        sim._confirm_pending(make_candle(101.5, 103, 101, 102), 7, 2, fill_price=102)

        pos = sim.open_position
        assert sim.pending_signal is None
        assert pos.entry_index == 7
        assert pos.entry_price == 102
        assert pos.capital_allocated == pytest.approx(300.0)
        assert pos.notional_size == pytest.approx(300.0 * 20.0 / 102.0)
        assert sim.phase == "open"

    def test_unfavourable_bar_cancels(self):
        sim = _sim()
        self._pending(sim)
        sim._confirm_pending(make_candle(100, 101, 99, 99.5), 6, 2, fill_price=99.5)
        assert sim.pending_signal is None
        assert sim.open_position is None
        assert sim.phase == "flat"

    def test_opposite_signal_deferred_then_reverses(self, flat_blocks):
        sim = _sim(require_confirmation=False)
        sim._position = _position("long", 100.0, 300.0, stop=95.0)

        sim._on_new_cycle(_cycle(2, 8, "normal"), flat_blocks, 8, fill_price=100.5)
        assert sim.open_position.side == "long"

        sim._apply_reversal(make_candle(101.0, 102.0, 100.0, 101.5), 9, fill_at_open=True)
        closed = sim.trades[0]
        assert closed.reason == "opposite_signal"
        assert closed.exit_price == 101.0
        assert closed.pnl == pytest.approx(60.0)
        short = sim.open_position
        assert short.side == "short"
        assert short.entry_price == 101.0
        assert short.stop_price == flat_blocks[2].high

    def test_same_side_signal_ignored_while_open(self, flat_blocks):
        sim = _sim(require_confirmation=False)
        sim._position = _position("long", 100.0, 300.0, stop=95.0)
        sim._on_new_cycle(_cycle(4, 8), flat_blocks, 8, fill_price=100.5)
        assert sim._reversal is None
        assert sim.open_position.entry_price == 100.0

    def test_cycle_traded_once(self, flat_blocks):
        sim = _sim(require_confirmation=False)
        cycle = _cycle(4, 8)
        sim._on_new_cycle(cycle, flat_blocks, 8, fill_price=100.5)
        sim._position = None
        sim._on_new_cycle(cycle, flat_blocks, 9, fill_price=102.5)
        assert sim.open_position is None

    def test_invalid_config_never_simulates(self):
        with pytest.raises(ConfigurationError):
            TradeSimulator(SimulationConfig(leverage=0))


# ── Live runs ────────────────────────────────────────────────────────────


class TestRunLive:
    def test_balance_reconciles(self, falling_blocks):
        sim = _sim(fees_enabled=True, require_confirmation=False)
        result = sim.run_live(falling_blocks)
        assert result["trades"]
        total = sum(t.pnl for t in result["trades"])
        assert result["final_balance"] == pytest.approx(1000.0 + total)
        assert result["stats"]["balance"] == result["final_balance"]

    def test_capital_conserved(self, falling_blocks):
        sim = _sim(require_confirmation=False, close_at_end_of_data=True, tp1_percent=10.0)
        result = sim.run_live(falling_blocks)
        assert result["stats"]["open_position"] is None
        for fraction in _fractions_by_trade(result["trades"]).values():
            assert fraction == pytest.approx(1.0)

    def test_no_entries_before_max_duration(self, falling_blocks):
        sim = _sim(require_confirmation=False)
        result = sim.run_live(falling_blocks)
        assert all(t.entry_index >= 12 for t in result["trades"])

    @pytest.mark.parametrize("cut", [40, 77, 120])
    def test_no_lookahead(self, falling_blocks, cut):
        full = _sim().run_live(falling_blocks)
        truncated = _sim().run_live(falling_blocks[:cut])
        assert truncated["trades"] == [t for t in full["trades"] if t.exit_index < cut]

    def test_deterministic(self, falling_blocks):
        a = _sim(require_confirmation=False).run_live(falling_blocks)
        b = _sim(require_confirmation=False).run_live(falling_blocks)
        assert a["trades"] == b["trades"]
        assert a["equity_curve"] == b["equity_curve"]

    def test_equity_curve_tracks_balance(self, falling_blocks):
        result = _sim(require_confirmation=False).run_live(falling_blocks)
        curve = result["equity_curve"]
        indices = [s.index for s in curve]
        assert indices == sorted(set(indices))
        assert curve[-1].balance == pytest.approx(result["final_balance"])

    def test_reset_restores_initial_state(self, falling_blocks):
        sim = _sim(require_confirmation=False)
        sim.run_live(falling_blocks)
        sim.reset()
        assert sim.balance == 1000.0
        assert sim.trades == []
        assert sim.equity_curve == []
        assert sim.open_position is None
        assert sim.phase == "flat"
        assert sim.get_stats()["total_trades"] == 0

    def test_repeated_runs_start_fresh(self, falling_blocks):
        sim = _sim(require_confirmation=False)
        first = sim.run_live(falling_blocks)
        second = sim.run_live(falling_blocks)
        assert first["trades"] == second["trades"]

    def test_cycles_reported(self, falling_blocks):
        result = _sim().run_live(falling_blocks)
        assert set(result["cycles"]) == {"inverted", "normal"}
        assert result["cycles"]["inverted"]

    def test_stats_shape(self, falling_blocks):
        stats = _sim().run_live(falling_blocks)["stats"]
        for key in ("balance", "total_pnl", "win_rate", "open_position", "total_fees", "phase"):
            assert key in stats
        assert 0.0 <= stats["win_rate"] <= 1.0

    @pytest.mark.parametrize("enabled, long_pct", [(True, 0.15), (False, 0.30)])
    def test_trend_filter_halves_counter_trend_longs(self, falling_blocks, enabled, long_pct):
        result = _sim(require_confirmation=False, trend_filter_enabled=enabled).run_live(falling_blocks)
        # Both EMAs are seeded and bearish well before bar 100
        late = [(t, bal) for t, bal in _entries_with_balance(result["trades"]) if t.entry_index >= 100]
        assert any(t.side == "long" for t, _ in late)
        for t, balance in late:
            pct = long_pct if t.side == "long" else 0.30
            assert t.capital_closed / t.closed_fraction == pytest.approx(balance * pct)

    def test_close_on_opposite_cycle(self, falling_blocks):
        on = _sim(require_confirmation=False, close_on_opposite_cycle=True).run_live(falling_blocks)
        off = _sim(require_confirmation=False).run_live(falling_blocks)
        on_reasons = {t.reason for t in on["trades"]}
        assert "opposite_cycle" in on_reasons
        assert "opposite_cycle" not in {t.reason for t in off["trades"]}
        for t in on["trades"]:
            if t.reason == "opposite_cycle":
                assert t.exit_price == falling_blocks[t.exit_index].close
                assert t.exit_index > t.entry_index

    def test_short_max_loss_hard_stop(self, flat_blocks):
        """Positive momentum blocks inverted cycles, so only shorts trade."""
        sim = _sim(
            require_confirmation=False, use_momentum=True,
            max_loss_enabled=True, max_loss_percent=0.5, max_duration=6,
        )
        result = sim.run_live(flat_blocks, [1.0] * len(flat_blocks))
        assert all(t.side == "short" for t in result["trades"])
        stops = [t for t in result["trades"] if t.reason == "max_loss_hard_stop"]
        assert stops
        for t in stops:
            # Loss limit: 0.5% of the $1000 starting balance
            assert t.pnl == pytest.approx(-5.0)
            assert t.exit_price > t.entry_price

    def test_lag_open_falls_back_to_exit(self, falling_blocks):
        result = _sim(require_confirmation=False).run_live(falling_blocks)
        assert result["trades"]
        for t in result["trades"]:
            assert t.cycle_metrics.real_cycle_end_index is None
            assert t.lag_open == t.exit_index - t.entry_index


# ── Lookahead runs ───────────────────────────────────────────────────────


class TestRunLookahead:
    def test_entry_after_first_potential_end(self, falling_blocks):
        cycles = detect_cycles(
            falling_blocks, orientation="inverted",
            min_duration=3, max_duration=12, prefer_min_duration=False,
        )
        sim = _sim(require_confirmation=False)
        result = sim.run_lookahead(falling_blocks, inverted_cycles=cycles, normal_cycles=[])
        first = result["trades"][0]
        assert first.entry_index == cycles[0].first_potential_end + 1
        assert first.entry_price == falling_blocks[first.entry_index].open

    def test_confirmation_fills_at_next_open(self, falling_blocks):
        cycles = detect_cycles(
            falling_blocks, orientation="inverted",
            min_duration=3, max_duration=12, prefer_min_duration=False,
        )
        sim = _sim(require_confirmation=True)
        result = sim.run_lookahead(falling_blocks, inverted_cycles=cycles, normal_cycles=[])
        first = result["trades"][0]
        assert first.entry_index == cycles[0].first_potential_end + 2
        assert first.entry_price == falling_blocks[first.entry_index].open

    def test_opposite_signal_then_cycle_end(self, flat_blocks):
        inverted = [_cycle(0, 30, "inverted", first_end=4)]
        normal = [_cycle(2, 30, "normal", first_end=10)]
        sim = _sim(require_confirmation=False)
        result = sim.run_lookahead(flat_blocks, inverted_cycles=inverted, normal_cycles=normal)
        trades = result["trades"]
        assert [t.reason for t in trades] == ["opposite_signal", "cycle_end"]
        assert [t.side for t in trades] == ["long", "short"]
        assert trades[0].exit_index == 11
        assert trades[0].exit_price == flat_blocks[11].open
        assert trades[1].entry_price == flat_blocks[11].open
        assert trades[1].exit_index == 31

    def test_open_position_kept_at_end_by_default(self, flat_blocks):
        sim = _sim(require_confirmation=False)
        result = sim.run_lookahead(
            flat_blocks, inverted_cycles=[_cycle(32, 36, first_end=36)], normal_cycles=[],
        )
        assert result["trades"] == []
        assert result["stats"]["open_position"].entry_index == 37

    def test_close_at_end_of_data(self, flat_blocks):
        sim = _sim(require_confirmation=False, close_at_end_of_data=True)
        result = sim.run_lookahead(
            flat_blocks, inverted_cycles=[_cycle(32, 36, first_end=36)], normal_cycles=[],
        )
        last = result["trades"][-1]
        assert last.reason == "end_of_data"
        assert last.exit_index == 39
        assert last.exit_price == flat_blocks[39].close
        assert result["stats"]["open_position"] is None
        assert result["equity_curve"][-1].index == 39

    def test_counter_trend_entry_halves_capital(self, falling_blocks):
        cycle = [_cycle(96, 120, first_end=99)]
        with_filter = _sim(require_confirmation=False, trend_filter_enabled=True).run_lookahead(
            falling_blocks, inverted_cycles=cycle, normal_cycles=[],
        )
        without = _sim(require_confirmation=False).run_lookahead(
            falling_blocks, inverted_cycles=cycle, normal_cycles=[],
        )
        assert with_filter["trades"][0].capital_closed == pytest.approx(150.0)
        assert without["trades"][0].capital_closed == pytest.approx(300.0)

    def test_detects_cycles_when_not_supplied(self, falling_blocks):
        result = _sim(require_confirmation=False).run_lookahead(falling_blocks)
        assert result["cycles"]["inverted"]
        total = sum(t.pnl for t in result["trades"])
        assert result["final_balance"] == pytest.approx(1000.0 + total)

    def test_lag_open_uses_next_opposite_start(self, flat_blocks):
        inverted = [_cycle(0, 30, "inverted", first_end=4)]
        normal = [_cycle(10, 30, "normal", first_end=20)]
        sim = _sim(require_confirmation=False)
        result = sim.run_lookahead(flat_blocks, inverted_cycles=inverted, normal_cycles=normal)
        long_row, short_row = result["trades"]
        assert (long_row.side, long_row.entry_index, long_row.exit_index) == ("long", 5, 21)
        assert long_row.cycle_metrics.real_cycle_end_index == 10
        assert long_row.lag_open == 5
        # No inverted cycle starts after the short's entry
        assert short_row.cycle_metrics.real_cycle_end_index is None
        assert short_row.lag_open == short_row.exit_index - short_row.entry_index

    def test_partial_rows_share_real_cycle_end(self, falling_blocks):
        result = _sim(require_confirmation=False, tp1_percent=10.0).run_lookahead(falling_blocks)
        by_trade = defaultdict(set)
        for t in result["trades"]:
            by_trade[t.trade_id].add(t.cycle_metrics.real_cycle_end_index)
        assert any(t.is_partial for t in result["trades"])
        assert all(len(ends) == 1 for ends in by_trade.values())
