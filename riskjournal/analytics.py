"""
analytics.py
-------------

This module contains functions to summarise a list of Trade objects:
portfolio risk exposure, per-symbol and per-market breakdowns, and the
filtering, sorting, paging and export used by the trade history. They
are kept apart from storage and the HTTP layer so they can be reused
anywhere a list of trades is at hand.
"""

import csv
import io
import json
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import ACTIVE, MARKETS, US, Trade
from .risk import calculate_portfolio_risk, calculate_trade_risk, unrealized_pnl

ITEMS_PER_PAGE = 20

SORT_FIELDS = ("date", "symbol", "entry", "risk_percent", "rr_ratio")

EXPORT_COLUMNS = [
    "id",
    "date",
    "symbol",
    "market",
    "direction",
    "setup",
    "status",
    "entry",
    "stop",
    "target",
    "position_size",
    "risk_percent",
    "risk_amount",
    "rr_ratio",
]


def compute_risk_metrics(trades: List[Trade], capital: float) -> Dict[str, Any]:
    """Compute risk exposure statistics for the given trades.

    Parameters
    ----------
    trades: List[Trade]
        Trades to summarise. Only ACTIVE trades count towards exposure.
    capital: float
        Portfolio capital used to express risk as a percentage.

    Returns
    -------
    Dict[str, Any]
        Dictionary of computed metrics. Keys include:
        - total_trades: int
        - active_trades: int
        - total_risk: float (dollar risk of ACTIVE trades)
        - risk_percent: float (total_risk as % of capital)
        - largest_risk: float
        - average_rr: Optional[float]
        - unrealized_pnl: float
        - risk_by_symbol: list of {symbol, value}, largest first
    """
    metrics: Dict[str, Any] = {
        "total_trades": 0,
        "active_trades": 0,
        "total_risk": 0.0,
        "risk_percent": 0.0,
        "largest_risk": 0.0,
        "average_rr": None,
        "unrealized_pnl": 0.0,
        "risk_by_symbol": [],
    }
    if not trades:
        return metrics

    active = [t for t in trades if t.status == ACTIVE]
    risks = [calculate_trade_risk(t) for t in active]
    total_risk = calculate_portfolio_risk(trades)
    ratios = [t.rr_ratio for t in trades if t.rr_ratio is not None]
    pnls = [p for p in (unrealized_pnl(t) for t in active) if p is not None]

    by_symbol: Dict[str, float] = {}
    for trade, risk in zip(active, risks):
        by_symbol[trade.symbol] = by_symbol.get(trade.symbol, 0.0) + risk

    metrics.update(
        {
            "total_trades": len(trades),
            "active_trades": len(active),
            "total_risk": total_risk,
            "risk_percent": (total_risk / capital) * 100 if capital > 0 else 0.0,
            "largest_risk": max(risks) if risks else 0.0,
            "average_rr": sum(ratios) / len(ratios) if ratios else None,
            "unrealized_pnl": sum(pnls),
            "risk_by_symbol": [
                {"symbol": s, "value": v}
                for s, v in sorted(by_symbol.items(), key=lambda kv: kv[1], reverse=True)
            ],
        }
    )
    return metrics


def market_breakdown(trades: List[Trade], capitals: Dict[str, float]) -> Dict[str, Dict[str, Any]]:
    """Risk metrics per market; trades without a market count as US."""
    out = {}
    for market in MARKETS:
        market_trades = [t for t in trades if (t.market or US) == market]
        out[market] = compute_risk_metrics(market_trades, capitals.get(market, 0.0))
    return out


def unique_setups(trades: Iterable[Trade]) -> List[str]:
    return sorted({t.setup for t in trades})


def _sort_key(field: str):
    if field == "rr_ratio":
        return lambda t: t.rr_ratio if t.rr_ratio is not None else 0.0
    return lambda t: getattr(t, field)


def filter_and_sort_trades(
    trades: List[Trade],
    search: str = "",
    direction: str = "all",
    setup: str = "all",
    sort_field: str = "date",
    descending: bool = True,
) -> List[Trade]:
    if sort_field not in SORT_FIELDS:
        raise ValueError(f"Cannot sort by {sort_field!r}; choose one of {', '.join(SORT_FIELDS)}")

    filtered = list(trades)
    if search:
        q = search.lower()
        filtered = [t for t in filtered if q in t.symbol.lower() or q in t.setup.lower()]
    if direction != "all":
        filtered = [t for t in filtered if t.direction == direction]
    if setup != "all":
        filtered = [t for t in filtered if t.setup == setup]

    # stable sort keeps the incoming (most recent first) order for ties
    return sorted(filtered, key=_sort_key(sort_field), reverse=descending)


def paginate(items: List[Any], page: int, per_page: int = ITEMS_PER_PAGE) -> Tuple[List[Any], int]:
    """Return (items on ``page``, total pages). Pages start at 1."""
    total_pages = math.ceil(len(items) / per_page) if per_page > 0 else 0
    page = max(1, page)
    start = (page - 1) * per_page
    return items[start : start + per_page], total_pages


def _csv_value(value: Optional[Any]) -> Any:
    return "" if value is None else value


def trades_to_csv(trades: List[Trade]) -> str:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(EXPORT_COLUMNS)
    for t in trades:
        w.writerow([_csv_value(getattr(t, col)) for col in EXPORT_COLUMNS])
    return out.getvalue()


def trades_to_json(trades: List[Trade]) -> str:
    return json.dumps([t.to_dict() for t in trades], indent=2, ensure_ascii=False)
