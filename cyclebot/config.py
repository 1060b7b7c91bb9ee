"""cyclebot — application configuration.

Loads .env variables into typed, immutable config objects.
Validates every simulation option on construction so a rejected
configuration never reaches a simulation run.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


class ConfigurationError(ValueError):
    """Raised when a configuration value is missing, malformed or out of range."""


@dataclass(frozen=True)
class SimulationConfig:
    """Strategy and account settings for one simulation run.

    Percentages are expressed in percent (``30.0`` = 30 %), except
    ``tp1_close_fraction`` which is a fraction of the open capital.
    """

    starting_balance: float = 1000.0
    leverage: float = 20.0
    capital_percentage: float = 30.0
    fees_enabled: bool = True
    taker_fee_percent: float = 0.02

    # Exits
    tp1_percent: float = 30.0
    tp1_close_fraction: float = 0.6
    tp2_percent: float = 150.0
    close_on_opposite_cycle: bool = False
    max_loss_enabled: bool = False
    max_loss_percent: float = 5.0
    close_at_end_of_data: bool = False

    # Entries
    require_confirmation: bool = True
    trend_filter_enabled: bool = False

    # Detection
    min_duration: int = 24
    max_duration: int = 44
    prefer_min_duration: bool = True
    use_momentum: bool = False

    def __post_init__(self) -> None:
        if self.starting_balance <= 0:
            raise ConfigurationError(
                f"starting_balance must be positive, got {self.starting_balance}"
            )
        if self.leverage <= 0:
            raise ConfigurationError(f"leverage must be positive, got {self.leverage}")
        if not 0 < self.capital_percentage <= 100:
            raise ConfigurationError(
                f"capital_percentage must be in (0, 100], got {self.capital_percentage}"
            )
        if self.taker_fee_percent < 0:
            raise ConfigurationError(
                f"taker_fee_percent must be non-negative, got {self.taker_fee_percent}"
            )
        if self.tp1_percent <= 0 or self.tp2_percent <= 0:
            raise ConfigurationError(
                f"tp1_percent and tp2_percent must be positive, got "
                f"{self.tp1_percent}/{self.tp2_percent}"
            )
        if not 0 < self.tp1_close_fraction < 1:
            raise ConfigurationError(
                f"tp1_close_fraction must be in (0, 1), got {self.tp1_close_fraction}"
            )
        if self.max_loss_percent <= 0:
            raise ConfigurationError(
                f"max_loss_percent must be positive, got {self.max_loss_percent}"
            )
        if self.min_duration < 2:
            raise ConfigurationError(
                f"min_duration must be at least 2, got {self.min_duration}"
            )
        if self.max_duration <= self.min_duration:
            raise ConfigurationError(
                f"max_duration ({self.max_duration}) must exceed "
                f"min_duration ({self.min_duration})"
            )


@dataclass(frozen=True)
class AppConfig:
    """Process-level settings wrapping the simulation config."""

    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    candles_path: Optional[str] = None
    log_level: str = "INFO"


# env var → (SimulationConfig field, parser)
_BOOL_TRUE = {"1", "true", "yes", "on"}
_BOOL_FALSE = {"0", "false", "no", "off"}


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _BOOL_TRUE:
        return True
    if lowered in _BOOL_FALSE:
        return False
    raise ValueError(f"not a boolean: {value!r}")


_ENV_FIELDS: dict[str, tuple[str, type]] = {
    "CYCLEBOT_STARTING_BALANCE": ("starting_balance", float),
    "CYCLEBOT_LEVERAGE": ("leverage", float),
    "CYCLEBOT_CAPITAL_PCT": ("capital_percentage", float),
    "CYCLEBOT_FEES_ENABLED": ("fees_enabled", bool),
    "CYCLEBOT_TAKER_FEE_PCT": ("taker_fee_percent", float),
    "CYCLEBOT_TP1_PCT": ("tp1_percent", float),
    "CYCLEBOT_TP1_CLOSE_FRACTION": ("tp1_close_fraction", float),
    "CYCLEBOT_TP2_PCT": ("tp2_percent", float),
    "CYCLEBOT_CLOSE_ON_OPPOSITE_CYCLE": ("close_on_opposite_cycle", bool),
    "CYCLEBOT_MAX_LOSS_ENABLED": ("max_loss_enabled", bool),
    "CYCLEBOT_MAX_LOSS_PCT": ("max_loss_percent", float),
    "CYCLEBOT_CLOSE_AT_END": ("close_at_end_of_data", bool),
    "CYCLEBOT_REQUIRE_CONFIRMATION": ("require_confirmation", bool),
    "CYCLEBOT_TREND_FILTER": ("trend_filter_enabled", bool),
    "CYCLEBOT_MIN_DURATION": ("min_duration", int),
    "CYCLEBOT_MAX_DURATION": ("max_duration", int),
    "CYCLEBOT_PREFER_MIN_DURATION": ("prefer_min_duration", bool),
    "CYCLEBOT_USE_MOMENTUM": ("use_momentum", bool),
}


def load_config(env_path: str | None = None) -> AppConfig:
    """Load configuration from environment variables.

    Every ``CYCLEBOT_*`` variable is optional; unset ones keep the
    ``SimulationConfig`` defaults.

    Raises ``ConfigurationError`` naming the variable when a value cannot be
    parsed, or describing the rejected option when validation fails.
    """
    load_dotenv(dotenv_path=env_path)

    overrides: dict = {}
    for var, (name, kind) in _ENV_FIELDS.items():
        raw = os.environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            overrides[name] = _parse_bool(raw) if kind is bool else kind(raw)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid value for {var}: {exc}") from exc

    return AppConfig(
        simulation=SimulationConfig(**overrides),
        candles_path=os.environ.get("CYCLEBOT_CANDLES_PATH") or None,
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )
