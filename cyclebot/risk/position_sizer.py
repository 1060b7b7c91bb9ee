"""Position sizing — pure math, no I/O.

Allocates a share of the account balance to a new position and converts
it into a leveraged notional size.
"""


def calculate_capital(
    balance: float,
    capital_pct: float,
    counter_trend: bool = False,
) -> float:
    """Capital committed to a new position.

    Formula::

        capital = balance × (capital_pct / 100)      (halved if counter-trend)

    Raises:
        ValueError: If *balance* or *capital_pct* is non-positive.
    """
    if balance <= 0:
        raise ValueError(f"balance must be positive, got {balance}")
    if capital_pct <= 0:
        raise ValueError(f"capital_pct must be positive, got {capital_pct}")
    if counter_trend:
        capital_pct *= 0.5
    return balance * (capital_pct / 100.0)


def calculate_notional_size(capital: float, leverage: float, entry_price: float) -> float:
    """Position size in units: ``capital × leverage / entry_price``.

    Raises:
        ValueError: If *entry_price* is non-positive.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return capital * leverage / entry_price
