"""Parameter optimizer — grid search over live simulations.

Every combination runs a full ``TradeSimulator.run_live`` with fees
enabled.  Combinations with an empty duration window are skipped, as are
runs producing too few ledger rows to be meaningful.
"""

import itertools
import logging
from dataclasses import dataclass, replace
from typing import Optional, Sequence

from cyclebot.backtest.engine import TradeSimulator
from cyclebot.config import ConfigurationError, SimulationConfig
from cyclebot.strategy.models import CandleData

logger = logging.getLogger("cyclebot.optimizer")


@dataclass(frozen=True)
class ParameterGrid:
    """Candidate values for each optimised setting."""

    min_durations: tuple[int, ...] = (6, 7, 8, 10, 12, 13, 14, 16, 18, 20, 22, 25, 28)
    max_durations: tuple[int, ...] = (
        20, 24, 26, 28, 32, 36, 38, 40, 44, 48, 52, 56, 60, 70, 80,
    )
    tp1_percents: tuple[float, ...] = (15.0, 20.0)
    leverages: tuple[float, ...] = (10.0, 20.0)
    capital_percentages: tuple[float, ...] = (20.0, 30.0)
    confirmation_options: tuple[bool, ...] = (True, False)
    momentum_options: tuple[bool, ...] = (False,)
    prefer_min_options: tuple[bool, ...] = (True, False)

    @property
    def size(self) -> int:
        """Number of raw combinations, invalid duration pairs included."""
        return (
            len(self.min_durations) * len(self.max_durations)
            * len(self.tp1_percents) * len(self.leverages)
            * len(self.capital_percentages) * len(self.confirmation_options)
            * len(self.momentum_options) * len(self.prefer_min_options)
        )


def optimize(
    candles: Sequence[CandleData],
    grid: ParameterGrid = ParameterGrid(),
    base_config: Optional[SimulationConfig] = None,
    momentum_values: Optional[Sequence[Optional[float]]] = None,
    min_trades: int = 5,
) -> list[dict]:
    """Run the grid and rank the results by P&L.

    Args:
        candles: Candle history, oldest-first.
        grid: Values to sweep.
        base_config: Settings not covered by the grid (defaults otherwise).
        momentum_values: Per-bar momentum for momentum-gated combinations.
        min_trades: Results need strictly more ledger rows than this.

    Returns:
        List of result dicts (settings plus ``pnl``, ``pnl_pct``,
        ``trades`` and ``win_rate``), best first.
    """
    base = base_config or SimulationConfig()
    results: list[dict] = []
    tested = 0

    combos = itertools.product(
        grid.min_durations,
        grid.max_durations,
        grid.tp1_percents,
        grid.leverages,
        grid.capital_percentages,
        grid.confirmation_options,
        grid.momentum_options,
        grid.prefer_min_options,
    )
    for min_dur, max_dur, tp1, leverage, capital, confirm, use_mom, prefer_min in combos:
        if max_dur <= min_dur:
            continue
        tested += 1
        try:
            config = replace(
                base,
                min_duration=min_dur,
                max_duration=max_dur,
                tp1_percent=tp1,
                leverage=leverage,
                capital_percentage=capital,
                require_confirmation=confirm,
                use_momentum=use_mom,
                prefer_min_duration=prefer_min,
                fees_enabled=True,
            )
        except ConfigurationError as exc:
            logger.debug("Skipping combination: %s", exc)
            continue

        sim = TradeSimulator(config)
        result = sim.run_live(candles, momentum_values)
        trades = result["trades"]
        if len(trades) <= min_trades:
            continue

        pnl = result["final_balance"] - config.starting_balance
        results.append({
            "min_duration": min_dur,
            "max_duration": max_dur,
            "tp1_percent": tp1,
            "leverage": leverage,
            "capital_percentage": capital,
            "require_confirmation": confirm,
            "use_momentum": use_mom,
            "prefer_min_duration": prefer_min,
            "pnl": pnl,
            "pnl_pct": pnl / config.starting_balance * 100.0,
            "trades": len(trades),
            "win_rate": result["stats"]["win_rate"],
        })

    results.sort(key=lambda r: r["pnl"], reverse=True)
    logger.info(
        "Optimizer tested %d combinations, %d qualified", tested, len(results),
    )
    return results


def best_config(results: list[dict], base_config: Optional[SimulationConfig] = None) -> Optional[SimulationConfig]:
    """Rebuild the ``SimulationConfig`` of the top result, or ``None``."""
    if not results:
        return None
    best = results[0]
    return replace(
        base_config or SimulationConfig(),
        min_duration=best["min_duration"],
        max_duration=best["max_duration"],
        tp1_percent=best["tp1_percent"],
        leverage=best["leverage"],
        capital_percentage=best["capital_percentage"],
        require_confirmation=best["require_confirmation"],
        use_momentum=best["use_momentum"],
        prefer_min_duration=best["prefer_min_duration"],
        fees_enabled=True,
    )
