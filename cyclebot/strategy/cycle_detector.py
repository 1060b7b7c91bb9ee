"""Swing-cycle detection — pure functions, no I/O.

A cycle starts at a local extremum, passes through an opposite extremum and
ends at the next extremum of the starting type, within a duration window:

- ``inverted``: local low → highest high → local low  (drives longs)
- ``normal``:   local high → lowest low → local high  (drives shorts)

Every helper takes an optional ``n`` bounding the visible prefix of
*candles*.  Bars at or beyond ``n`` are never read, so callers can replay a
growing history without copying it.
"""

import math
from typing import Optional, Sequence

from cyclebot.config import ConfigurationError
from cyclebot.strategy.models import CandleData, Cycle, ManualCycle, Orientation

_ORIENTATIONS = ("inverted", "normal")


# ── Local extrema ────────────────────────────────────────────────────────


def is_local_max(candles: Sequence[CandleData], index: int, n: Optional[int] = None) -> bool:
    """``True`` when the bar's high is strictly above its visible neighbours.

    The first bar is compared with its right neighbour only, the last
    visible bar with its left neighbour only.
    """
    n = len(candles) if n is None else n
    high = candles[index].high
    if index == 0:
        return n > 1 and high > candles[1].high
    if index == n - 1:
        return high > candles[index - 1].high
    return high > candles[index - 1].high and high > candles[index + 1].high


def is_local_min(candles: Sequence[CandleData], index: int, n: Optional[int] = None) -> bool:
    """``True`` when the bar's low is strictly below its visible neighbours."""
    n = len(candles) if n is None else n
    low = candles[index].low
    if index == 0:
        return n > 1 and low < candles[1].low
    if index == n - 1:
        return low < candles[index - 1].low
    return low < candles[index - 1].low and low < candles[index + 1].low


def _momentum_ok(
    momentum_values: Optional[Sequence[Optional[float]]],
    index: int,
    orientation: Orientation,
) -> bool:
    """Momentum phase gate: ``<= 0`` for inverted, ``>= 0`` for normal.

    Missing, NaN or out-of-range samples never qualify.
    """
    if momentum_values is None or index >= len(momentum_values):
        return False
    mom = momentum_values[index]
    if mom is None or math.isnan(mom):
        return False
    if orientation == "inverted":
        return mom <= 0
    return mom >= 0


def is_start_condition(
    candles: Sequence[CandleData],
    index: int,
    use_momentum: bool,
    momentum_values: Optional[Sequence[Optional[float]]],
    orientation: Orientation,
    n: Optional[int] = None,
) -> bool:
    """Return ``True`` if bar *index* can open a cycle of *orientation*."""
    n = len(candles) if n is None else n
    if index >= n - 1:
        return False
    if use_momentum and not _momentum_ok(momentum_values, index, orientation):
        return False
    if orientation == "inverted":
        return is_local_min(candles, index, n)
    return is_local_max(candles, index, n)


# ── End search ───────────────────────────────────────────────────────────


def _strong_trend(candles: Sequence[CandleData], j: int, orientation: Orientation) -> bool:
    """Two consecutive strictly trending bars before *j* (close and extreme)."""
    if j < 3:
        return False
    prev, prev2, prev3 = candles[j - 1], candles[j - 2], candles[j - 3]
    if orientation == "inverted":
        return (
            prev.close < prev2.close and prev.low < prev2.low
            and prev2.close < prev3.close and prev2.low < prev3.low
        )
    return (
        prev.close > prev2.close and prev.high > prev2.high
        and prev2.close > prev3.close and prev2.high > prev3.high
    )


def _interior_extremum(
    candles: Sequence[CandleData],
    start_index: int,
    end_index: int,
    orientation: Orientation,
) -> Optional[int]:
    """Index of the highest high (inverted) / lowest low (normal) strictly
    between *start_index* and *end_index*.  First occurrence wins ties."""
    best_index: Optional[int] = None
    if orientation == "inverted":
        best = -math.inf
        for k in range(start_index + 1, end_index):
            if candles[k].high > best:
                best = candles[k].high
                best_index = k
    else:
        best = math.inf
        for k in range(start_index + 1, end_index):
            if candles[k].low < best:
                best = candles[k].low
                best_index = k
    return best_index


def _valid_end(
    candles: Sequence[CandleData],
    start_index: int,
    j: int,
    use_momentum: bool,
    momentum_values: Optional[Sequence[Optional[float]]],
    orientation: Orientation,
    n: int,
) -> Optional[int]:
    """Validate end candidate *j*.

    Returns the intermediate extremum index when *j* qualifies, else ``None``.
    """
    if use_momentum and not _momentum_ok(momentum_values, j, orientation):
        return None

    candle = candles[j]
    if orientation == "inverted":
        if not is_local_min(candles, j, n):
            return None
        # Close must break the previous low unless a strong downtrend precedes
        if j > 0 and candle.close >= candles[j - 1].low:
            if not _strong_trend(candles, j, orientation):
                return None
    else:
        if not is_local_max(candles, j, n):
            return None
        if j > 0 and candle.close <= candles[j - 1].high:
            if not _strong_trend(candles, j, orientation):
                return None

    return _interior_extremum(candles, start_index, j, orientation)


def find_cycle_end(
    candles: Sequence[CandleData],
    start_index: int,
    use_momentum: bool,
    momentum_values: Optional[Sequence[Optional[float]]],
    orientation: Orientation,
    min_duration: int,
    max_duration: int,
    prefer_min_duration: bool = True,
    n: Optional[int] = None,
) -> Optional[Cycle]:
    """Search ``[start + min_duration, start + max_duration]`` for the cycle end.

    Selection:
        1. With *prefer_min_duration*, the bar exactly at ``start +
           min_duration`` is accepted outright when valid (normal cycles
           additionally need a bullish candle there).
        2. Otherwise the first valid end seeds a running best.  A later valid
           end replaces it only if its close breaks the best's extreme
           (lower than its low for inverted, higher than its high for
           normal); the threshold then moves to the new bar's extreme.

    Returns:
        The ``Cycle`` or ``None`` when no bar in the window qualifies.
    """
    n = len(candles) if n is None else n
    min_end = start_index + min_duration
    max_end = min(start_index + max_duration, n - 1)

    def check(j: int) -> Optional[int]:
        return _valid_end(
            candles, start_index, j, use_momentum, momentum_values, orientation, n,
        )

    first_valid: Optional[int] = None
    best_end: Optional[int] = None
    best_extremum_index: Optional[int] = None
    threshold = math.inf if orientation == "inverted" else -math.inf

    if prefer_min_duration and min_end <= max_end:
        extremum = check(min_end)
        if extremum is not None:
            first_valid = min_end
            if orientation == "inverted" or candles[min_end].close > candles[min_end].open:
                return build_cycle(
                    candles, start_index, extremum, min_end, orientation, first_valid,
                )
            # Bearish bar at the minimum: keep it as the baseline and go on
            best_end = min_end
            best_extremum_index = extremum
            threshold = candles[min_end].high

    loop_start = min_end + 1 if prefer_min_duration else min_end
    for j in range(loop_start, max_end + 1):
        extremum = check(j)
        if extremum is None:
            continue

        if first_valid is None:
            first_valid = j
            best_end = j
            best_extremum_index = extremum
            threshold = candles[j].low if orientation == "inverted" else candles[j].high
            continue

        if orientation == "inverted":
            if candles[j].close < threshold:
                best_end = j
                best_extremum_index = extremum
                threshold = candles[j].low
        else:
            if candles[j].close > threshold:
                best_end = j
                best_extremum_index = extremum
                threshold = candles[j].high

    if best_end is None:
        return None
    return build_cycle(
        candles, start_index, best_extremum_index, best_end, orientation, first_valid,
    )


# ── Cycle construction ───────────────────────────────────────────────────


def build_cycle(
    candles: Sequence[CandleData],
    start_index: int,
    extremum_index: int,
    end_index: int,
    orientation: Orientation,
    first_potential_end: Optional[int] = None,
) -> Cycle:
    """Assemble a ``Cycle`` from its three anchor bars."""
    if first_potential_end is None:
        first_potential_end = end_index
    start = candles[start_index]
    mid = candles[extremum_index]
    end = candles[end_index]
    if orientation == "inverted":
        start_price, extremum_price, end_price = start.low, mid.high, end.low
        amplitude = mid.high - start.low
    else:
        start_price, extremum_price, end_price = start.high, mid.low, end.high
        amplitude = start.high - mid.low
    return Cycle(
        start_index=start_index,
        extremum_index=extremum_index,
        end_index=end_index,
        duration=end_index - start_index,
        amplitude=amplitude,
        start_price=start_price,
        extremum_price=extremum_price,
        end_price=end_price,
        first_potential_end=first_potential_end,
        orientation=orientation,
    )


def build_manual_cycle(
    candles: Sequence[CandleData],
    start_index: int,
    end_index: int,
    orientation: Orientation,
) -> Cycle:
    """Synthesise a cycle over caller-chosen boundaries.

    The intermediate extremum is the highest high (inverted) or lowest low
    (normal) strictly inside the span.

    Raises ``ValueError`` if the span has no interior bar or falls outside
    *candles*.
    """
    if start_index < 0 or end_index >= len(candles):
        raise ValueError(
            f"Manual cycle [{start_index}, {end_index}] outside "
            f"{len(candles)} candles"
        )
    if end_index - start_index < 2:
        raise ValueError(
            f"Manual cycle needs at least one interior bar, got "
            f"[{start_index}, {end_index}]"
        )
    extremum = _interior_extremum(candles, start_index, end_index, orientation)
    return build_cycle(candles, start_index, extremum, end_index, orientation)


# ── Scanning ─────────────────────────────────────────────────────────────


def scan_cycles(
    candles: Sequence[CandleData],
    begin: int,
    limit: int,
    use_momentum: bool,
    momentum_values: Optional[Sequence[Optional[float]]],
    orientation: Orientation,
    min_duration: int,
    max_duration: int,
    prefer_min_duration: bool = True,
    barrier: Optional[int] = None,
    n: Optional[int] = None,
) -> list[Cycle]:
    """Scan candidate starts in ``[begin, limit - min_duration)``.

    Cycles ending beyond *barrier* are discarded.  After an accepted cycle
    scanning resumes at its end bar when that bar is itself a valid start,
    otherwise one bar later, so cycles never overlap.
    """
    n = len(candles) if n is None else n
    if n < min_duration + 2:
        return []

    cycles: list[Cycle] = []
    i = begin
    while i < limit - min_duration:
        if not is_start_condition(candles, i, use_momentum, momentum_values, orientation, n):
            i += 1
            continue

        cycle = find_cycle_end(
            candles, i, use_momentum, momentum_values, orientation,
            min_duration, max_duration, prefer_min_duration, n,
        )
        if cycle is None or cycle.duration < min_duration:
            i += 1
            continue
        if barrier is not None and cycle.end_index > barrier:
            i += 1
            continue

        cycles.append(cycle)
        if is_start_condition(
            candles, cycle.end_index, use_momentum, momentum_values, orientation, n,
        ):
            i = cycle.end_index
        else:
            i = cycle.end_index + 1
    return cycles


def detect_cycles(
    candles: Sequence[CandleData],
    use_momentum: bool = False,
    momentum_values: Optional[Sequence[Optional[float]]] = None,
    orientation: Orientation = "normal",
    min_duration: int = 24,
    max_duration: int = 44,
    prefer_min_duration: bool = True,
    manual_override: Optional[ManualCycle] = None,
) -> list[Cycle]:
    """Detect non-overlapping cycles over the whole of *candles*.

    With *manual_override* detection runs up to the override start, inserts
    the override span as a synthesised cycle, then resumes from its end.

    Returns:
        Cycles sorted by ``start_index``.  Sequences shorter than
        ``min_duration + 2`` yield an empty list.

    Raises:
        ConfigurationError: On an unknown orientation or an empty duration
            window.
    """
    if orientation not in _ORIENTATIONS:
        raise ConfigurationError(
            f"orientation must be 'inverted' or 'normal', got '{orientation}'"
        )
    if min_duration < 2 or max_duration <= min_duration:
        raise ConfigurationError(
            f"Need 2 <= min_duration < max_duration, got "
            f"{min_duration}/{max_duration}"
        )

    n = len(candles)
    if n < min_duration + 2:
        return []

    params = dict(
        use_momentum=use_momentum,
        momentum_values=momentum_values,
        orientation=orientation,
        min_duration=min_duration,
        max_duration=max_duration,
        prefer_min_duration=prefer_min_duration,
        n=n,
    )

    if manual_override is None:
        return scan_cycles(candles, 0, n, **params)

    manual = build_manual_cycle(
        candles, manual_override.start_index, manual_override.end_index, orientation,
    )
    cycles = scan_cycles(
        candles, 0, manual.start_index, barrier=manual.start_index, **params,
    )
    cycles.append(manual)
    cycles.extend(scan_cycles(candles, manual.end_index, n, **params))
    return cycles
