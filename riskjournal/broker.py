"""
broker.py
---------

Brings live brokerage positions into the journal. The Schwab trader API
is queried for the account's positions and its working stop orders; each
position becomes an ACTIVE US trade whose stop is the matching stop order
(or a 5% placeholder when none is working).

Obtaining the OAuth access token is outside this module: callers pass a
valid bearer token in.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests

from .errors import BrokerError
from .models import ACTIVE, LONG, SHORT, US, RiskContract, Trade

logger = logging.getLogger(__name__)

BASE_URL = "https://api.schwabapi.com/trader/v1"
DEFAULT_TIMEOUT = 30

STOP_ORDER_TYPES = {"STOP", "STOP_LIMIT", "TRAILING_STOP"}
WORKING_STATUSES = ("WORKING", "AWAITING_STOP_CONDITION", "QUEUED", "PENDING_ACTIVATION")
SUPPORTED_ASSET_TYPES = {"EQUITY", "ETF"}
FALLBACK_STOP_PCT = 0.05
ORDER_LOOKBACK_DAYS = 60
SYNC_SETUP = "Synced from Schwab"


class SchwabClient:
    def __init__(self, access_token: str, session: Optional[requests.Session] = None,
                 timeout: float = DEFAULT_TIMEOUT) -> None:
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "Authorization": f"Bearer {access_token}"}
        )
        self.timeout = timeout

    def _request(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{BASE_URL}{path}"
        try:
            r = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise BrokerError(0, "timeout", f"Timeout calling {path}") from e
        except requests.RequestException as e:
            raise BrokerError(0, "connection_error", f"Network error calling {path}: {e}") from e

        if r.status_code >= 400:
            raise BrokerError(
                r.status_code, "http_error", f"{path} failed ({r.status_code}): {r.text[:200]}"
            )
        try:
            return r.json()
        except ValueError as e:
            raise BrokerError(r.status_code, "bad_json", "Response not JSON", {"text": r.text[:200]}) from e

    def get_account(self, account_hash: str) -> Dict[str, Any]:
        return self._request(f"/accounts/{account_hash}", {"fields": "positions"})

    def get_working_stop_orders(
        self, account_hash: str, now: Optional[datetime] = None
    ) -> List[Dict[str, Any]]:
        """Open stop orders from the last 60 days, de-duplicated by order id.

        A status that fails to load contributes nothing; the sync then falls
        back to placeholder stops for the affected positions.
        """
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(days=ORDER_LOOKBACK_DAYS)
        orders: Dict[Any, Dict[str, Any]] = {}
        for status in WORKING_STATUSES:
            try:
                batch = self._request(
                    f"/accounts/{account_hash}/orders",
                    {
                        "fromEnteredTime": start.isoformat(),
                        "toEnteredTime": now.isoformat(),
                        "status": status,
                    },
                )
            except BrokerError as e:
                logger.warning("Failed to fetch %s orders: %s", status, e)
                continue
            for order in batch or []:
                orders[order.get("orderId")] = order
        return [o for o in orders.values() if is_working_stop(o)]


def is_working_stop(order: Dict[str, Any]) -> bool:
    return order.get("orderType") in STOP_ORDER_TYPES and order.get("status") in WORKING_STATUSES


def _matching_stop(orders: List[Dict[str, Any]], symbol: str, direction: str) -> Optional[float]:
    closing = "SELL" if direction == LONG else "BUY"
    for order in orders:
        legs = order.get("orderLegCollection") or []
        if not legs:
            continue
        leg = legs[0]
        if (leg.get("instrument") or {}).get("symbol") == symbol and leg.get("instruction") == closing:
            return order.get("stopPrice") or None
    return None


def positions_to_trades(
    account: Dict[str, Any], orders: List[Dict[str, Any]], today: Optional[date] = None
) -> List[Trade]:
    """Map broker positions to ACTIVE trades (one contract per position)."""
    positions = (account.get("securitiesAccount") or {}).get("positions") or []
    trades = []
    for p in positions:
        instrument = p.get("instrument") or {}
        symbol = instrument.get("symbol", "")
        long_qty = float(p.get("longQuantity") or 0)
        direction = LONG if long_qty > 0 else SHORT
        quantity = long_qty if long_qty > 0 else float(p.get("shortQuantity") or 0)
        if quantity <= 0:
            continue
        avg_price = float(p.get("averagePrice") or 0)

        working_stop = _matching_stop(orders, symbol, direction)
        if working_stop is None:
            factor = 1 - FALLBACK_STOP_PCT if direction == LONG else 1 + FALLBACK_STOP_PCT
            stop = avg_price * factor
        else:
            stop = float(working_stop)

        risk_amount = abs(avg_price - stop) * quantity
        market_value = float(p.get("marketValue") or 0)
        trades.append(
            Trade(
                symbol=symbol,
                direction=direction,
                entry=avg_price,
                stop=stop,
                target=None,
                position_size=quantity,
                risk_amount=risk_amount,
                contracts=[
                    RiskContract(entry_price=avg_price, shares=quantity, risk_amount=risk_amount)
                ],
                status=ACTIVE,
                market=US,
                setup=SYNC_SETUP,
                date=(today or date.today()).isoformat(),
                current_price=abs(market_value / quantity),
                synced_from_broker=True,
                has_working_stop=working_stop is not None,
            )
        )
    return trades


def is_supported(account: Dict[str, Any], symbol: str) -> bool:
    for p in (account.get("securitiesAccount") or {}).get("positions") or []:
        instrument = p.get("instrument") or {}
        if instrument.get("symbol") == symbol:
            return instrument.get("assetType") in SUPPORTED_ASSET_TYPES
    return False


def account_summary(account: Dict[str, Any]) -> Dict[str, float]:
    balances = (account.get("securitiesAccount") or {}).get("currentBalances") or {}
    liquidation_value = float(balances.get("liquidationValue") or 0)
    return {
        "liquidation_value": liquidation_value,
        "equity": float(balances.get("equity") or liquidation_value),
        "cash": float(balances.get("cashBalance") or balances.get("availableFunds") or 0),
    }


def _key(trade: Trade) -> str:
    return f"{trade.symbol}-{trade.direction}"


def sync_positions(db, user_id: str, client: SchwabClient, account_hash: str) -> Dict[str, Any]:
    """Mirror the broker's open positions into the user's journal.

    Existing synced trades are updated in place (matched on symbol and
    direction); synced trades the broker no longer reports are deleted.
    The account's liquidation value becomes the user's US portfolio size.
    """
    account = client.get_account(account_hash)
    orders = client.get_working_stop_orders(account_hash)
    synced = positions_to_trades(account, orders)
    summary = account_summary(account)

    existing = {_key(t): t for t in db.find_synced_trades(user_id)}
    saved = 0
    for trade in synced:
        current = existing.get(_key(trade))
        if current is not None:
            trade.id = current.id
            trade.created_at = current.created_at
            db.replace_trade(user_id, trade)
        else:
            db.save_trade(user_id, trade)
        saved += 1

    live = {_key(t) for t in synced}
    removed = 0
    for key, trade in existing.items():
        if key not in live:
            db.delete_trade(user_id, trade.id)
            removed += 1

    db.update_preferences(user_id, {"default_portfolio": {US: summary["liquidation_value"]}})

    supported_risk = sum(t.risk_amount for t in synced if is_supported(account, t.symbol))
    logger.info(
        "Broker sync for %s: %d positions saved, %d removed, risk %.2f",
        user_id, saved, removed, supported_risk,
    )
    return {
        "positions": [
            {**t.to_dict(), "is_supported": is_supported(account, t.symbol)} for t in synced
        ],
        "portfolio_risk": supported_risk,
        "portfolio_value": summary["liquidation_value"],
        "account_equity": summary["equity"],
        "cash_balance": summary["cash"],
        "saved_count": saved,
        "removed_count": removed,
    }
