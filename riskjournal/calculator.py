"""
calculator.py
-------------

The interactive trade calculator: validates what the user typed and turns
it into a share count, position value, percentage risk per share and
reward/risk ratio. Unlike :func:`riskjournal.risk.calculate_position_size`
it rounds shares to the nearest integer and, for US trades, reports the
risk budget rather than the risk of the rounded position.
"""

from dataclasses import dataclass
from typing import Optional, Union

from .errors import TradeValidationError
from .markets import floor_to_lot, round_half_up
from .models import CN, LONG, SHORT


@dataclass
class TradeInputs:
    symbol: str = ""
    direction: str = LONG
    risk_percent: float = 0.75
    entry: float = 0.0
    stop: float = 0.0
    target: Union[float, str, None] = None
    setup: str = "TREND"

    @property
    def target_value(self) -> Optional[float]:
        """Parsed target; '' / None / unparsable text mean no target.

        Any other non-numeric value raises TradeValidationError.
        """
        if self.target is None:
            return None
        if isinstance(self.target, str):
            text = self.target.strip()
            if not text:
                return None
            try:
                return float(text)
            except ValueError:
                return None
        if isinstance(self.target, bool) or not isinstance(self.target, (int, float)):
            raise TradeValidationError("target must be a number")
        return float(self.target)


@dataclass(frozen=True)
class TradeCalculation:
    shares: float = 0
    value: float = 0.0
    unit_amount: float = 0.0
    risk_per_share: float = 0.0
    rr_ratio: Optional[float] = None
    can_calculate: bool = False
    risk_amount: float = 0.0
    risk_per_share_dollar: float = 0.0

    def to_dict(self) -> dict:
        return {
            "shares": self.shares,
            "value": self.value,
            "unit_amount": self.unit_amount,
            "risk_per_share": self.risk_per_share,
            "rr_ratio": self.rr_ratio,
            "can_calculate": self.can_calculate,
            "risk_amount": self.risk_amount,
            "risk_per_share_dollar": self.risk_per_share_dollar,
        }


EMPTY = TradeCalculation()


def is_stop_on_loss_side(direction: str, entry: float, stop: float) -> bool:
    if direction == LONG:
        return entry > stop
    if direction == SHORT:
        return entry < stop
    return False


def is_target_on_profit_side(direction: str, entry: float, target: Optional[float]) -> bool:
    # no target (or a zero target) never blocks the calculation
    if not target:
        return True
    if direction == LONG:
        return entry < target
    if direction == SHORT:
        return entry > target
    return False


def calculate_trade(inputs: TradeInputs, capital: float, market: str) -> TradeCalculation:
    """Compute the position for the calculator inputs.

    Returns an empty, non-calculable result when the symbol is blank, a
    price is missing, the stop sits on the wrong side of entry or the
    target sits on the wrong side of entry.
    """
    entry, stop = inputs.entry, inputs.stop
    target = inputs.target_value
    if not entry or not stop:
        return EMPTY

    has_required = inputs.symbol.strip() != "" and entry > 0 and stop > 0
    stop_ok = has_required and is_stop_on_loss_side(inputs.direction, entry, stop)
    target_ok = is_target_on_profit_side(inputs.direction, entry, target)

    if not (has_required and stop_ok and target_ok):
        return EMPTY

    risk_amount = capital * (inputs.risk_percent / 100)
    price_risk = abs(entry - stop)
    shares = round_half_up(risk_amount / price_risk)

    if market == CN:
        shares = floor_to_lot(shares, CN)
        risk_amount = shares * price_risk

    rr_ratio = None
    if target:
        rr_ratio = abs(target - entry) / price_risk

    return TradeCalculation(
        shares=shares,
        value=shares * entry,
        unit_amount=entry,
        risk_per_share=(price_risk / entry) * 100,
        rr_ratio=rr_ratio,
        can_calculate=True,
        risk_amount=risk_amount,
        risk_per_share_dollar=price_risk,
    )
