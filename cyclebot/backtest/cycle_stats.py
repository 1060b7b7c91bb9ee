"""Cycle statistics — duration, move size, detection lag and volume shifts."""

from typing import Sequence

import numpy as np

from cyclebot.strategy.models import CandleData, Cycle

# Volume windows around a cycle end: 3 bars vs the 10 bars before them
_VOL_SHORT = 3
_VOL_BASE = 10


def calculate_cycle_stats(cycles: Sequence[Cycle], candles: Sequence[CandleData]) -> dict:
    """Summarise a set of cycles of one orientation.

    Returns:
        Dict with ``count``, ``avg_duration``, ``std_duration``
        (population), ``avg_move_pct``, ``max_move_pct``,
        ``avg_detection_lag`` (bars from first qualifying end to the chosen
        end), ``avg_volume_delta_pre`` and ``avg_volume_delta_post``
        (percent change of the 3 bars before / after the end versus the
        preceding 10-bar baseline).
    """
    if not cycles:
        return {
            "count": 0,
            "avg_duration": 0.0,
            "std_duration": 0.0,
            "avg_move_pct": 0.0,
            "max_move_pct": 0.0,
            "avg_detection_lag": 0.0,
            "avg_volume_delta_pre": 0.0,
            "avg_volume_delta_post": 0.0,
        }

    durations = np.array([c.duration for c in cycles], dtype=float)
    moves = np.array([c.amplitude_percent for c in cycles], dtype=float)
    lags = np.array([c.detection_lag for c in cycles if c.detection_lag >= 0], dtype=float)
    pre, post = _volume_deltas(cycles, candles)

    return {
        "count": len(cycles),
        "avg_duration": float(np.mean(durations)),
        "std_duration": float(np.std(durations)),
        "avg_move_pct": float(np.mean(moves)),
        "max_move_pct": float(np.max(moves)),
        "avg_detection_lag": float(np.mean(lags)) if lags.size else 0.0,
        "avg_volume_delta_pre": float(np.mean(pre)) if pre else 0.0,
        "avg_volume_delta_post": float(np.mean(post)) if post else 0.0,
    }


def _volume_deltas(
    cycles: Sequence[Cycle], candles: Sequence[CandleData],
) -> tuple[list[float], list[float]]:
    """Per-cycle volume deltas (percent) before and after the cycle end.

    Cycles too close to either edge of the history are skipped; a zero
    baseline contributes a delta of 0.
    """
    volumes = np.array([c.volume for c in candles], dtype=float)
    n = len(volumes)
    pre: list[float] = []
    post: list[float] = []
    for cycle in cycles:
        end = cycle.end_index
        if end < _VOL_SHORT + _VOL_BASE or end > n - (_VOL_SHORT + 1):
            continue
        recent = volumes[end - _VOL_SHORT:end].mean()
        baseline = volumes[end - _VOL_SHORT - _VOL_BASE:end - _VOL_SHORT].mean()
        after = volumes[end + 1:end + 1 + _VOL_SHORT].mean()
        if baseline > 0:
            pre.append((recent - baseline) / baseline * 100.0)
            post.append((after - baseline) / baseline * 100.0)
        else:
            pre.append(0.0)
            post.append(0.0)
    return pre, post


def rolling_median_durations(cycles: Sequence[Cycle], window: int) -> list[float]:
    """Rolling median of cycle durations; empty when fewer than *window* cycles.

    Raises ``ValueError`` if *window* is not positive.
    """
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    if len(cycles) < window:
        return []
    durations = np.array([c.duration for c in cycles], dtype=float)
    return [
        float(np.median(durations[i - window + 1:i + 1]))
        for i in range(window - 1, len(durations))
    ]
