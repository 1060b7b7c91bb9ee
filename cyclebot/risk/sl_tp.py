"""Stop levels, P&L and fees — pure math, no I/O.

P&L is computed on the capital being closed, scaled by leverage::

    long  pnl = ((exit − entry) / entry) × capital × leverage
    short pnl = ((entry − exit) / entry) × capital × leverage
    fees      = capital × leverage × taker_fee_pct / 100 × 2   (entry + exit)
"""


def _check_side(side: str) -> None:
    if side not in ("long", "short"):
        raise ValueError(f"side must be 'long' or 'short', got '{side}'")


def price_move_pct(side: str, entry_price: float, exit_price: float) -> float:
    """Favourable price move as a fraction of entry (negative on a loss)."""
    _check_side(side)
    if side == "long":
        return (exit_price - entry_price) / entry_price
    return (entry_price - exit_price) / entry_price


def calculate_pnl(
    side: str,
    entry_price: float,
    exit_price: float,
    capital: float,
    leverage: float,
) -> float:
    """Gross P&L for closing *capital* at *exit_price* (fees excluded)."""
    return price_move_pct(side, entry_price, exit_price) * capital * leverage


def calculate_fees(capital: float, leverage: float, taker_fee_pct: float) -> float:
    """Round-trip taker fees on the notional of *capital*."""
    return capital * leverage * (taker_fee_pct / 100.0) * 2


def max_loss_stop_price(
    side: str,
    entry_price: float,
    starting_balance: float,
    max_loss_pct: float,
    capital: float,
    leverage: float,
) -> float:
    """Price at which the open capital loses ``max_loss_pct`` of the
    starting balance.

    Formula::

        loss_limit = starting_balance × max_loss_pct / 100
        long  stop = entry × (1 − loss_limit / (capital × leverage))
        short stop = entry × (1 + loss_limit / (capital × leverage))

    Raises:
        ValueError: If *side* is invalid or *capital* / *leverage* is
            non-positive.
    """
    _check_side(side)
    if capital <= 0 or leverage <= 0:
        raise ValueError(
            f"capital and leverage must be positive, got {capital}/{leverage}"
        )
    loss_limit = starting_balance * (max_loss_pct / 100.0)
    offset = loss_limit / (capital * leverage)
    if side == "long":
        return entry_price * (1 - offset)
    return entry_price * (1 + offset)


def stop_loss_breached(side: str, close: float, stop_price: float) -> bool:
    """Close-based stop: below the start low for longs, above the start high
    for shorts."""
    _check_side(side)
    if side == "long":
        return close < stop_price
    return close > stop_price
