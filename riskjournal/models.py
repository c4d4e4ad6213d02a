"""
models.py
---------

Defines the core data model of the journal. A trade is a planned or live
position with an entry, a protective stop and an optional target; its
contracts are the individual execution lots that make up the position.
Keeping the model in its own module lets the risk engine, the database
layer and the broker integration share it without importing each other.
"""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .errors import TradeValidationError

LONG = "long"
SHORT = "short"
DIRECTIONS = (LONG, SHORT)

PLANNED = "PLANNED"
ACTIVE = "ACTIVE"
CLOSED = "CLOSED"
STATUSES = (PLANNED, ACTIVE, CLOSED)

US = "US"
CN = "CN"
MARKETS = (US, CN)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _opt_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


@dataclass
class RiskContract:
    """One execution lot inside a trade.

    Attributes
    ----------
    entry_price: float
        Fill price of this lot.
    shares: float
        Number of shares bought (long) or sold short in this lot.
    risk_amount: float
        Dollar risk of this lot against its effective stop.
    contract_stop: Optional[float]
        Per-lot stop that overrides the trade stop when set.
    id: str
        Random hex identifier, stable across updates.
    created_at: datetime
        When the lot was added.
    """

    entry_price: float
    shares: float
    risk_amount: float = 0.0
    contract_stop: Optional[float] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["created_at"] = self.created_at.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RiskContract":
        return cls(
            entry_price=float(data["entry_price"]),
            shares=float(data["shares"]),
            risk_amount=float(data.get("risk_amount") or 0.0),
            contract_stop=_opt_float(data.get("contract_stop")),
            id=str(data.get("id") or uuid.uuid4().hex),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class Trade:
    """A journal entry for one position.

    Attributes
    ----------
    symbol: str
        Ticker, e.g. 'AAPL' or '600519'.
    direction: str
        Either 'long' or 'short'. Decides which side of entry the stop
        and the target must sit on.
    entry: float
        Planned or average entry price.
    stop: float
        Trade-level protective stop. Contracts may override it.
    target: Optional[float]
        Profit target, if any.
    position_size: float
        Total shares across all contracts.
    risk_amount: float
        Dollar risk if every stop is hit.
    contracts: List[RiskContract]
        Execution lots; empty for trades logged before any fill.
    status: str
        PLANNED, ACTIVE or CLOSED.
    market: str
        'US' (whole shares) or 'CN' (100-share lots).
    """

    symbol: str
    direction: str
    entry: float
    stop: float
    target: Optional[float] = None
    position_size: float = 0.0
    risk_amount: float = 0.0
    contracts: List[RiskContract] = field(default_factory=list)
    status: str = PLANNED
    market: str = US
    setup: str = ""
    date: str = ""
    risk_percent: float = 0.0
    rr_ratio: Optional[float] = None
    current_price: Optional[float] = None
    synced_from_broker: bool = False
    has_working_stop: bool = False
    id: Optional[int] = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_long(self) -> bool:
        return self.direction == LONG

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["contracts"] = [c.to_dict() for c in self.contracts]
        d["created_at"] = self.created_at.isoformat() if self.created_at else None
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Trade":
        return cls(
            symbol=str(data["symbol"]).strip().upper(),
            direction=str(data.get("direction", LONG)).strip().lower(),
            entry=float(data["entry"]),
            stop=float(data["stop"]),
            target=_opt_float(data.get("target")),
            position_size=float(data.get("position_size") or 0.0),
            risk_amount=float(data.get("risk_amount") or 0.0),
            contracts=[RiskContract.from_dict(c) for c in data.get("contracts") or []],
            status=str(data.get("status") or PLANNED).upper(),
            market=str(data.get("market") or US).upper(),
            setup=data.get("setup") or "",
            date=data.get("date") or "",
            risk_percent=float(data.get("risk_percent") or 0.0),
            rr_ratio=_opt_float(data.get("rr_ratio")),
            current_price=_opt_float(data.get("current_price")),
            synced_from_broker=bool(data.get("synced_from_broker", False)),
            has_working_stop=bool(data.get("has_working_stop", False)),
            id=data.get("id"),
            user_id=data.get("user_id"),
            created_at=_parse_dt(data.get("created_at")),
        )


def _default_portfolio() -> Dict[str, float]:
    return {US: 0.0, CN: 0.0}


def _portfolio_update(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        raise TradeValidationError("default_portfolio must map markets to amounts")
    out = {}
    for market, amount in value.items():
        market = str(market).upper()
        if market not in MARKETS:
            raise TradeValidationError(f"Unknown market: {market!r}")
        if isinstance(amount, bool):
            raise TradeValidationError(f"default_portfolio.{market} must be a number")
        try:
            out[market] = float(amount)
        except (TypeError, ValueError):
            raise TradeValidationError(f"default_portfolio.{market} must be a number")
    return out


def _markets_update(value: Any) -> List[str]:
    if not isinstance(value, list) or not value:
        raise TradeValidationError("active_markets must list US and/or CN")
    markets = []
    for m in value:
        m = str(m).upper()
        if m not in MARKETS:
            raise TradeValidationError("active_markets must list US and/or CN")
        if m not in markets:
            markets.append(m)
    return markets


@dataclass
class UserPreferences:
    """Per-user settings. Guests start from the defaults too."""

    active_markets: List[str] = field(default_factory=lambda: [US, CN])
    single_market_mode: bool = False
    language_follows_market: bool = True
    default_portfolio: Dict[str, float] = field(default_factory=_default_portfolio)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def merged(self, updates: Dict[str, Any]) -> "UserPreferences":
        """Return a copy with ``updates`` applied; unknown keys are dropped.

        Raises TradeValidationError for values of the wrong shape.
        """
        data = self.to_dict()
        for key, value in (updates or {}).items():
            if key not in data:
                continue
            if key == "default_portfolio":
                data[key] = {**data[key], **_portfolio_update(value)}
            elif key == "active_markets":
                data[key] = _markets_update(value)
            elif not isinstance(value, bool):
                raise TradeValidationError(f"{key} must be true or false")
            else:
                data[key] = value
        return UserPreferences.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        base = cls()
        portfolio = _default_portfolio()
        portfolio.update(
            {str(k).upper(): float(v) for k, v in (data.get("default_portfolio") or {}).items()}
        )
        return cls(
            active_markets=[str(m).upper() for m in data.get("active_markets") or base.active_markets],
            single_market_mode=bool(data.get("single_market_mode", base.single_market_mode)),
            language_follows_market=bool(
                data.get("language_follows_market", base.language_follows_market)
            ),
            default_portfolio=portfolio,
        )
