"""
risk.py
-------

The position-sizing and risk arithmetic. Everything here is a pure
function over :class:`~riskjournal.models.Trade` and
:class:`~riskjournal.models.RiskContract`, so it can be reused by the
calculator, the position-management helpers and the analytics without
touching storage.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .markets import floor_to_lot
from .models import ACTIVE, RiskContract, Trade


@dataclass(frozen=True)
class PositionSize:
    shares: float
    risk_amount: float
    risk_per_share: float


def calculate_position_size(
    capital: float,
    risk_percent: float,
    entry: float,
    stop: float,
    market: Optional[str] = None,
) -> PositionSize:
    """Size a position so that hitting ``stop`` loses ``risk_percent`` of capital.

    Shares are rounded down so the actual risk never exceeds the budget;
    CN positions are further rounded down to whole 100-share lots. The
    returned ``risk_amount`` is the risk of the rounded position, not the
    budget.
    """
    if not entry or not stop or entry == stop:
        return PositionSize(shares=0, risk_amount=0.0, risk_per_share=0.0)

    budget = capital * (risk_percent / 100)
    price_risk = abs(entry - stop)
    shares = math.floor(budget / price_risk)
    if market is not None:
        shares = floor_to_lot(shares, market)

    return PositionSize(
        shares=shares,
        risk_amount=shares * price_risk,
        risk_per_share=price_risk,
    )


def effective_stop(contract: RiskContract, trade_stop: float) -> float:
    """A contract's own stop wins over the trade stop."""
    return contract.contract_stop if contract.contract_stop is not None else trade_stop


def contract_risk(contract: RiskContract, trade_stop: float) -> float:
    return abs(contract.entry_price - effective_stop(contract, trade_stop)) * contract.shares


def calculate_trade_risk(trade: Trade) -> float:
    """Dollar risk of a trade if every stop is hit."""
    if not trade.contracts:
        # flat trade logged before any contract existed
        return trade.position_size * abs(trade.entry - trade.stop)
    return sum(contract_risk(c, trade.stop) for c in trade.contracts)


def calculate_portfolio_risk(trades: Iterable[Trade]) -> float:
    """Total risk across ACTIVE trades."""
    return sum(calculate_trade_risk(t) for t in trades if t.status == ACTIVE)


def calculate_avg_entry(contracts: List[RiskContract]) -> float:
    if not contracts:
        return 0.0
    total_shares = sum(c.shares for c in contracts)
    if total_shares == 0:
        return 0.0
    return sum(c.entry_price * c.shares for c in contracts) / total_shares


def weighted_effective_stop(trade: Trade) -> float:
    """Share-weighted stop across contracts, falling back to the trade stop."""
    total_shares = sum(c.shares for c in trade.contracts)
    if not trade.contracts or total_shares == 0:
        return trade.stop
    return sum(effective_stop(c, trade.stop) * c.shares for c in trade.contracts) / total_shares


def has_contract_stop_override(trade: Trade) -> bool:
    return any(c.contract_stop is not None for c in trade.contracts)


def risk_remaining(trade: Trade, capital: float) -> Tuple[float, float]:
    """Return (risk amount, risk as % of capital) for one trade."""
    amount = calculate_trade_risk(trade)
    percent = (amount / capital) * 100 if capital > 0 else 0.0
    return amount, percent


def total_shares(trade: Trade) -> float:
    if trade.contracts:
        return sum(c.shares for c in trade.contracts)
    return trade.position_size


def unrealized_pnl(trade: Trade) -> Optional[float]:
    """Open profit or loss at ``current_price``; None when no price is known."""
    if trade.current_price is None:
        return None
    avg_entry = calculate_avg_entry(trade.contracts) if trade.contracts else trade.entry
    pnl = (trade.current_price - avg_entry) * total_shares(trade)
    return pnl if trade.is_long else -pnl
