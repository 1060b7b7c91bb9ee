"""Shared candle fixtures for the cyclebot test suite."""

import pytest

from cyclebot.config import _ENV_FIELDS
from cyclebot.strategy.models import CandleData


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Clear cyclebot env vars and undo anything load_dotenv sets during a test."""
    for var in list(_ENV_FIELDS) + ["CYCLEBOT_CANDLES_PATH", "LOG_LEVEL"]:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def make_candle(o, h, l, c, vol=1000.0):
    return CandleData(open=o, high=h, low=l, close=c, volume=vol)


def mirror(candles, axis=100.0):
    """Reflect a series around *axis*: lows become highs, bulls become bears."""
    return [
        make_candle(axis - c.open, axis - c.low, axis - c.high, axis - c.close, c.volume)
        for c in candles
    ]


def block_series(blocks, drift=0.0, base=100.0):
    """Repeating four-bar swing: a local low, two rising bars, one falling bar.

    Each block starts ``drift`` lower than the previous one.  Every block
    start is a local low whose close breaks the previous bar's low.
    """
    candles = []
    for k in range(blocks):
        b = base - drift * k
        candles.extend([
            make_candle(b + 0.2, b + 1, b, b + 0.5),
            make_candle(b + 1.2, b + 3, b + 1, b + 2.5),
            make_candle(b + 2.6, b + 5, b + 2, b + 4),
            make_candle(b + 3.8, b + 4, b + 1, b + 1.5),
        ])
    return candles


@pytest.fixture
def swing_candles():
    """Seven bars holding one inverted cycle: low 0 → high 2 → low 4."""
    return [
        make_candle(10.2, 11.0, 10.0, 10.5),
        make_candle(11.2, 13.0, 11.0, 12.5),
        make_candle(12.6, 15.0, 12.0, 14.0),
        make_candle(13.8, 14.0, 11.0, 11.5),
        make_candle(11.0, 11.5, 9.5, 9.6),
        make_candle(9.8, 12.0, 10.0, 11.5),
        make_candle(11.6, 13.0, 11.0, 12.5),
    ]


@pytest.fixture
def flat_blocks():
    """40 bars of the four-bar swing without drift."""
    return block_series(10)


@pytest.fixture
def falling_blocks():
    """160 bars of the four-bar swing, each block one point lower."""
    return block_series(40, drift=1.0)
