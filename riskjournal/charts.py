"""
charts.py
---------

Chart helpers for a trade: the price scale of the stop/entry/target risk
line, and a plotly candlestick figure with the trade levels drawn on it.
"""

from typing import Any, Dict, List, Optional

import pandas as pd
import plotly.graph_objects as go

from .models import Trade
from .risk import weighted_effective_stop

PADDING_PERCENT = 15


def historical_range(rows: List[Dict[str, Any]]) -> Optional[Dict[str, float]]:
    """Price range to scale against: min/max or mean ± 2σ, whichever is wider."""
    if not rows:
        return None
    df = pd.DataFrame(rows)
    prices = pd.concat([df["low"], df["high"], df["close"]]).astype(float)
    lo, hi = float(prices.min()), float(prices.max())
    mean, std = float(prices.mean()), float(prices.std(ddof=0))
    std_lo, std_hi = max(0.0, mean - 2 * std), mean + 2 * std
    if std_hi - std_lo > hi - lo:
        return {"min": std_lo, "max": std_hi}
    return {"min": lo, "max": hi}


def risk_line_layout(trade: Trade, rows: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """Place stop, entry, current price and target on a 0-100 scale.

    The scale spans the trade's own prices, widened by the historical
    range when candles are given, with 15% padding on each side.
    """
    stop = weighted_effective_stop(trade)
    entry = trade.entry
    current = trade.current_price or entry
    target = trade.target

    prices = [p for p in (stop, entry, current, target) if p is not None]
    lo, hi = min(prices), max(prices)
    hist = historical_range(rows or [])
    if hist is not None:
        lo, hi = min(hist["min"], lo), max(hist["max"], hi)

    span = (hi - lo) or 1
    padding = span * PADDING_PERCENT / 100
    padded_lo = max(0.0, lo - padding)
    padded_hi = hi + padding
    padded_span = padded_hi - padded_lo

    def normalize(price: float) -> float:
        return (price - padded_lo) / padded_span * 100

    is_profit = current > entry if trade.is_long else current < entry
    return {
        "min_price": padded_lo,
        "max_price": padded_hi,
        "stop": normalize(stop),
        "entry": normalize(entry),
        "current": normalize(current),
        "target": normalize(target) if target else None,
        "is_profit": is_profit,
    }


def build_trade_figure(rows: List[Dict[str, Any]], trade: Optional[Trade] = None) -> go.Figure:
    """Candlestick chart of ``rows`` with the trade's levels as lines."""
    df = pd.DataFrame(rows, columns=["time", "open", "high", "low", "close", "volume"])
    title = trade.symbol if trade else ""

    fig = go.Figure(
        data=[
            go.Candlestick(
                x=df["time"],
                open=df["open"],
                high=df["high"],
                low=df["low"],
                close=df["close"],
                increasing_line_color="green",
                decreasing_line_color="red",
                name=title or "price",
            )
        ]
    )

    if trade is not None:
        levels = [
            ("Entry", trade.entry, "royalblue"),
            ("Stop", weighted_effective_stop(trade), "red"),
            ("Target", trade.target, "green"),
        ]
        for label, price, color in levels:
            if price:
                fig.add_hline(
                    y=price,
                    line_dash="dash",
                    line_color=color,
                    annotation_text=f"{label} {price:,.2f}",
                    annotation_position="top left",
                )

    fig.update_layout(
        title=title,
        xaxis_title="Date",
        yaxis_title="Price",
        xaxis_rangeslider_visible=False,
        height=500,
    )
    return fig
