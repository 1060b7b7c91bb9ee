"""cyclebot — command-line entry point.

Loads candles from CSV and runs the live simulation, the lookahead
approximation, or the parameter optimizer followed by a live run with the
best settings found.

Usage:
    python -m cyclebot.main --csv data/btc_15m.csv --mode live
"""

import argparse
import logging
from dataclasses import replace

logger = logging.getLogger("cyclebot")

# Cycles per rolling duration median
_MEDIAN_WINDOW = 10


def _run_cli(argv: list[str] | None = None) -> int:
    """Parse CLI arguments and dispatch to the selected mode."""
    from cyclebot.backtest.engine import TradeSimulator
    from cyclebot.backtest.optimizer import best_config, optimize
    from cyclebot.cli.dashboard import print_optimization
    from cyclebot.config import load_config
    from cyclebot.data.loader import load_candles_csv

    parser = argparse.ArgumentParser(description="cyclebot swing-cycle simulator")
    parser.add_argument("--csv", help="Candle CSV path (default: CYCLEBOT_CANDLES_PATH)")
    parser.add_argument(
        "--mode",
        choices=["live", "lookahead", "optimize"],
        default="live",
        help="Simulation mode (default: live)",
    )
    parser.add_argument(
        "--close-at-end",
        action="store_true",
        help="Force-close any open position on the last bar",
    )
    parser.add_argument("--env", help="Path to a .env file")
    args = parser.parse_args(argv)

    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    path = args.csv or config.candles_path
    if not path:
        parser.error("no candle file given (use --csv or CYCLEBOT_CANDLES_PATH)")

    sim_config = config.simulation
    if args.close_at_end:
        sim_config = replace(sim_config, close_at_end_of_data=True)

    candles, momentum = load_candles_csv(path)
    if sim_config.use_momentum and momentum is None:
        logger.warning("Momentum gating enabled but the CSV has no momentum column")

    if args.mode == "optimize":
        results = optimize(candles, base_config=sim_config, momentum_values=momentum)
        print_optimization(results)
        best = best_config(results, sim_config)
        if best is None:
            return 0
        logger.info(
            "Applying best settings: durations %d-%d, TP1 %.0f%%, %.0fx, capital %.0f%%",
            best.min_duration, best.max_duration, best.tp1_percent,
            best.leverage, best.capital_percentage,
        )
        result = TradeSimulator(best).run_live(candles, momentum)
        _report(result, candles, "Optimized Live")
        return 0

    sim = TradeSimulator(sim_config)
    if args.mode == "lookahead":
        result = sim.run_lookahead(candles, momentum)
    else:
        result = sim.run_live(candles, momentum)

    _report(result, candles, args.mode.capitalize())
    return 0


def _report(result: dict, candles: list, title: str) -> None:
    """Print the run summary, cycle statistics and ledger breakdown."""
    from cyclebot.backtest.cycle_stats import calculate_cycle_stats, rolling_median_durations
    from cyclebot.backtest.stats import calculate_stats, summarize_by_side_and_reason
    from cyclebot.cli.dashboard import print_cycle_stats, print_summary, print_trade_breakdown

    print_summary(result, title=title)

    cycles = result["cycles"]
    print_cycle_stats(
        {o: calculate_cycle_stats(cycles[o], candles) for o in cycles},
        {o: rolling_median_durations(cycles[o], _MEDIAN_WINDOW) for o in cycles},
    )

    stats = calculate_stats(result["trades"], result["equity_curve"])
    print_trade_breakdown(summarize_by_side_and_reason(result["trades"]), stats)
    logger.info(
        "%s run: %d rows, PnL: $%.2f, Win rate: %.1f%%, Max DD: %.2f%%",
        title, stats["total_trades"], stats["net_pnl"], stats["win_rate"] * 100,
        stats["max_drawdown_pct"],
    )


if __name__ == "__main__":
    raise SystemExit(_run_cli())
