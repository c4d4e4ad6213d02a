"""
positions.py
------------

Lifecycle operations on a trade: logging it from the calculator, opening
a manual position, staging further entries, moving stops, resizing and
closing. Every function takes a :class:`Trade` and returns a new one;
persisting the result is the caller's job (see ``database.py``).
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Optional

from .calculator import TradeCalculation, TradeInputs
from .errors import TradeNotFoundError, TradeValidationError
from .markets import round_half_up, round_to_lot
from .models import ACTIVE, CLOSED, PLANNED, RiskContract, Trade
from .risk import calculate_avg_entry, calculate_trade_risk, contract_risk
from .validation import (
    is_valid_stop_price,
    stop_error_message,
    validate_shares,
    validate_trade,
)

logger = logging.getLogger(__name__)


def _today(today: Optional[date]) -> str:
    return (today or date.today()).isoformat()


def _recalculate(trade: Trade) -> Trade:
    """Refresh derived fields (size, risk, per-contract risk) from contracts."""
    contracts = [
        replace(c, risk_amount=contract_risk(c, trade.stop)) for c in trade.contracts
    ]
    trade = replace(trade, contracts=contracts)
    if contracts:
        trade = replace(trade, position_size=sum(c.shares for c in contracts))
    return replace(trade, risk_amount=calculate_trade_risk(trade))


def log_trade(
    inputs: TradeInputs,
    calculation: TradeCalculation,
    capital: float,
    market: str,
    status: str = PLANNED,
    today: Optional[date] = None,
) -> Trade:
    """Turn a valid calculator result into a journal entry."""
    if not calculation.can_calculate:
        raise TradeValidationError("Trade inputs are incomplete or invalid")
    if calculation.shares <= 0:
        raise TradeValidationError(
            f"Risk budget of {capital * inputs.risk_percent / 100:.2f} is too small for one lot"
        )

    contract = RiskContract(
        entry_price=inputs.entry,
        shares=calculation.shares,
        risk_amount=calculation.shares * calculation.risk_per_share_dollar,
    )
    trade = Trade(
        symbol=inputs.symbol.strip().upper(),
        direction=inputs.direction,
        entry=inputs.entry,
        stop=inputs.stop,
        target=inputs.target_value or None,
        position_size=calculation.shares,
        risk_amount=contract.risk_amount,
        contracts=[contract],
        status=status,
        market=market,
        setup=inputs.setup,
        date=_today(today),
        risk_percent=inputs.risk_percent,
        rr_ratio=calculation.rr_ratio,
    )
    # stored risk is the rounded position's, not the calculator's budget
    trade = _recalculate(trade)
    validate_trade(trade)
    return trade


def open_manual_position(
    symbol: str,
    direction: str,
    shares: float,
    entry: float,
    stop: float,
    market: str,
    today: Optional[date] = None,
) -> Trade:
    """Record a position that was opened outside the calculator."""
    if not symbol or not symbol.strip():
        raise TradeValidationError("Please enter a ticker symbol")
    if shares is None or shares <= 0:
        raise TradeValidationError("Please enter a valid number of shares")
    shares = round_to_lot(shares, market)
    validate_shares(shares, market)
    if not entry or entry <= 0:
        raise TradeValidationError("Please enter a valid entry price")
    if not stop or stop <= 0:
        raise TradeValidationError("Please enter a valid stop price")
    if not is_valid_stop_price(entry, stop, direction):
        raise TradeValidationError(stop_error_message(entry, direction))

    risk_amount = abs(entry - stop) * shares
    trade = Trade(
        symbol=symbol.strip().upper(),
        direction=direction,
        entry=entry,
        stop=stop,
        target=None,
        position_size=shares,
        risk_amount=risk_amount,
        contracts=[RiskContract(entry_price=entry, shares=shares, risk_amount=risk_amount)],
        status=ACTIVE,
        market=market,
        setup="Manual Entry",
        date=_today(today),
        risk_percent=0.0,
    )
    validate_trade(trade)
    return trade


def add_contract(
    trade: Trade,
    entry_price: float,
    shares: float,
    contract_stop: Optional[float] = None,
) -> Trade:
    """Stage another entry into an existing position.

    The trade entry becomes the share-weighted average of all contracts.
    A trade without contracts is first given one holding its current size.
    """
    if trade.status == CLOSED:
        raise TradeValidationError("Cannot add to a closed position")
    if not entry_price or entry_price <= 0:
        raise TradeValidationError("Please enter a valid entry price")
    validate_shares(shares, trade.market)
    if contract_stop is not None and not is_valid_stop_price(
        entry_price, contract_stop, trade.direction
    ):
        raise TradeValidationError(stop_error_message(entry_price, trade.direction))

    contracts = list(trade.contracts)
    if not contracts and trade.position_size > 0:
        contracts.append(RiskContract(entry_price=trade.entry, shares=trade.position_size))
    contracts.append(
        RiskContract(entry_price=entry_price, shares=shares, contract_stop=contract_stop)
    )

    updated = replace(trade, contracts=contracts, entry=calculate_avg_entry(contracts))
    if not is_valid_stop_price(updated.entry, updated.stop, updated.direction):
        raise TradeValidationError(stop_error_message(updated.entry, updated.direction))
    return _recalculate(updated)


def adjust_stop(trade: Trade, new_stop: float) -> Trade:
    if not new_stop or new_stop <= 0:
        raise TradeValidationError("Please enter a valid stop price")
    if not is_valid_stop_price(trade.entry, new_stop, trade.direction):
        raise TradeValidationError(stop_error_message(trade.entry, trade.direction))
    return _recalculate(replace(trade, stop=new_stop))


def set_contract_stop(trade: Trade, contract_id: str, stop: Optional[float]) -> Trade:
    """Set (or clear, with ``stop=None``) the stop override of one contract."""
    if not any(c.id == contract_id for c in trade.contracts):
        raise TradeNotFoundError(f"Contract {contract_id} not found on trade {trade.id}")
    if stop is not None and stop <= 0:
        raise TradeValidationError("Please enter a valid stop price")

    contracts = []
    for c in trade.contracts:
        if c.id == contract_id:
            if stop is not None and not is_valid_stop_price(c.entry_price, stop, trade.direction):
                raise TradeValidationError(stop_error_message(c.entry_price, trade.direction))
            c = replace(c, contract_stop=stop)
        contracts.append(c)
    return _recalculate(replace(trade, contracts=contracts))


def edit_shares(trade: Trade, new_shares: float) -> Trade:
    """Resize a position, scaling every contract by the same ratio."""
    if new_shares is None or new_shares <= 0:
        raise TradeValidationError("Please enter a valid number of shares")
    new_shares = round_to_lot(new_shares, trade.market)
    validate_shares(new_shares, trade.market)

    if new_shares == trade.position_size:
        return trade

    if not trade.contracts or not trade.position_size:
        contracts = [RiskContract(entry_price=trade.entry, shares=new_shares)]
    else:
        ratio = new_shares / trade.position_size
        scaled = [
            replace(c, shares=round_to_lot(round_half_up(c.shares * ratio), trade.market))
            for c in trade.contracts
        ]
        contracts = [c for c in scaled if c.shares > 0]
        if not contracts:
            # every lot rounded away; keep one lot at the average entry
            contracts = [
                RiskContract(entry_price=calculate_avg_entry(trade.contracts), shares=new_shares)
            ]
    return _recalculate(replace(trade, contracts=contracts))


def close_trade(trade: Trade) -> Trade:
    if trade.status == CLOSED:
        raise TradeValidationError(f"Trade {trade.id} is already closed")
    logger.info("Closing %s %s (%s shares)", trade.direction, trade.symbol, trade.position_size)
    return replace(trade, status=CLOSED)


def activate_trade(trade: Trade) -> Trade:
    if trade.status != PLANNED:
        raise TradeValidationError(f"Only planned trades can be activated (got {trade.status})")
    return replace(trade, status=ACTIVE)
