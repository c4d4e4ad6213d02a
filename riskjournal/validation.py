"""
validation.py
-------------

Checks applied before a trade is written. The stop rule is the one every
write path shares: a long stop sits below entry, a short stop above it.
"""

from dataclasses import replace
from typing import List, Optional

from .errors import TradeValidationError
from .markets import is_whole_lot, lot_size
from .models import DIRECTIONS, LONG, MARKETS, STATUSES, Trade


def is_valid_stop_price(entry: float, stop: float, direction: str) -> bool:
    if direction == LONG:
        return stop < entry
    return stop > entry


def stop_error_message(entry: float, direction: str) -> str:
    if direction == LONG:
        return f"Invalid stop: Stop must be below entry ({entry}) for long positions"
    return f"Invalid stop: Stop must be above entry ({entry}) for short positions"


def get_valid_stop_price(trade: Trade) -> Optional[float]:
    """The trade's stop if it is set and on the loss side, else None."""
    if trade.stop and is_valid_stop_price(trade.entry, trade.stop, trade.direction):
        return trade.stop
    return None


def fix_invalid_stop_price(trade: Trade) -> Trade:
    # nothing to repair automatically: an invalid stop needs the user
    valid_stop = get_valid_stop_price(trade)
    if valid_stop is None:
        return trade
    return replace(trade, stop=valid_stop)


def migrate_structure_stop(trade: Trade, structure_stop: Optional[float]) -> Trade:
    """Adopt a legacy structure stop when the trade's own stop is unusable."""
    if get_valid_stop_price(trade) is not None or not structure_stop:
        return trade
    if is_valid_stop_price(trade.entry, structure_stop, trade.direction):
        return replace(trade, stop=structure_stop)
    return trade


def validate_shares(shares: float, market: str) -> None:
    if shares is None or shares <= 0:
        raise TradeValidationError("Please enter a valid number of shares")
    if not is_whole_lot(shares, market):
        raise TradeValidationError(
            f"{market} share counts must be multiples of {lot_size(market)}"
        )


def validate_trade(trade: Trade) -> None:
    """Raise TradeValidationError listing every broken invariant."""
    errors: List[str] = []

    if not trade.symbol or not trade.symbol.strip():
        errors.append("Please enter a ticker symbol")
    if trade.direction not in DIRECTIONS:
        errors.append(f"Unknown direction: {trade.direction!r}")
    if trade.market not in MARKETS:
        errors.append(f"Unknown market: {trade.market!r}")
    if trade.status not in STATUSES:
        errors.append(f"Unknown status: {trade.status!r}")
    if not trade.entry or trade.entry <= 0:
        errors.append("Please enter a valid entry price")
    if not trade.stop or trade.stop <= 0:
        errors.append("Please enter a valid stop price")
    elif trade.entry and trade.direction in DIRECTIONS and not is_valid_stop_price(
        trade.entry, trade.stop, trade.direction
    ):
        errors.append(stop_error_message(trade.entry, trade.direction))
    if trade.position_size < 0:
        errors.append("Position size cannot be negative")
    if trade.market in MARKETS and not is_whole_lot(trade.position_size, trade.market):
        errors.append(f"{trade.market} share counts must be multiples of {lot_size(trade.market)}")

    for c in trade.contracts:
        if c.shares <= 0:
            errors.append(f"Contract {c.id} has no shares")
        elif trade.market in MARKETS and not is_whole_lot(c.shares, trade.market):
            errors.append(f"Contract {c.id} shares must be multiples of {lot_size(trade.market)}")
        if c.entry_price <= 0:
            errors.append(f"Contract {c.id} has an invalid entry price")

    if errors:
        raise TradeValidationError(errors)
