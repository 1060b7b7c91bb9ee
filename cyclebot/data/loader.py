"""Candle loading — CSV / DataFrame to ``CandleData``.

Expected columns: ``open``, ``high``, ``low``, ``close``; optional
``volume``, ``time`` and ``momentum``.  Column names are matched
case-insensitively.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Optional

import pandas as pd

from cyclebot.strategy.models import CandleData

logger = logging.getLogger("cyclebot.data")

_PRICE_COLUMNS = ["open", "high", "low", "close"]


def candles_from_frame(
    df: pd.DataFrame,
) -> tuple[list[CandleData], Optional[list[Optional[float]]]]:
    """Convert a candle DataFrame into candles and optional momentum.

    Rows with a missing price are dropped.  Momentum gaps stay ``None``.

    Raises:
        ValueError: If a price column is missing.
    """
    df = df.rename(columns={c: str(c).strip().lower() for c in df.columns})
    missing = [c for c in _PRICE_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing candle column(s): {', '.join(missing)}")

    before = len(df)
    df = df.dropna(subset=_PRICE_COLUMNS).reset_index(drop=True)
    if len(df) < before:
        logger.warning("Dropped %d candle row(s) with missing prices", before - len(df))

    has_volume = "volume" in df.columns
    has_time = "time" in df.columns

    candles = [
        CandleData(
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]) if has_volume and not pd.isna(row["volume"]) else 0.0,
            time=str(row["time"]) if has_time and not pd.isna(row["time"]) else None,
        )
        for _, row in df.iterrows()
    ]

    momentum: Optional[list[Optional[float]]] = None
    if "momentum" in df.columns:
        momentum = [
            None if pd.isna(v) or math.isnan(float(v)) else float(v)
            for v in df["momentum"]
        ]
    return candles, momentum


def load_candles_csv(
    path: str | Path,
) -> tuple[list[CandleData], Optional[list[Optional[float]]]]:
    """Read candles (and momentum, if present) from a CSV file."""
    df = pd.read_csv(path)
    candles, momentum = candles_from_frame(df)
    logger.info("Loaded %d candles from %s", len(candles), path)
    return candles, momentum
