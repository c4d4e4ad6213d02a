"""
app.py
------

Flask application exposing the risk journal as a JSON API. The calculator,
position management, history, portfolio metrics, quotes, preferences and
broker sync all live in their own modules; the routes here only parse
requests, call into them and persist the result through
:class:`~riskjournal.database.TradeJournalDB`.

Requests are scoped to a user by the ``X-User-Id`` header. Without it they
act on the guest journal, which can later be migrated to a user.

To run the application:
    1. Install the package (``pip install -e .``).
    2. Execute ``python -m riskjournal.app``.
    3. The API listens on http://localhost:5004.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import BadRequest

from . import positions
from .analytics import (
    ITEMS_PER_PAGE,
    compute_risk_metrics,
    filter_and_sort_trades,
    market_breakdown,
    paginate,
    trades_to_csv,
    trades_to_json,
    unique_setups,
)
from .broker import SchwabClient, sync_positions
from .calculator import TradeInputs, calculate_trade
from .charts import build_trade_figure, risk_line_layout
from .config import load_settings
from .database import TradeJournalDB
from .errors import BrokerError, QuoteError, TradeNotFoundError, TradeValidationError
from .log import setup_logger
from .markets import currency_symbol, default_market, detect_market_from_symbol, language_for_market
from .models import ACTIVE, DIRECTIONS, LONG, MARKETS, PLANNED, STATUSES, US
from .quotes import QuoteClient
from .risk import (
    calculate_position_size,
    has_contract_stop_override,
    risk_remaining,
    unrealized_pnl,
    weighted_effective_stop,
)
from .sessions import market_session_status


def _body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data


def _num(data: Dict[str, Any], key: str, required: bool = True) -> Optional[float]:
    value = data.get(key)
    if value is None or value == "":
        if required:
            raise TradeValidationError(f"{key} is required")
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise TradeValidationError(f"{key} must be a number")


def _user_id() -> Optional[str]:
    return request.headers.get("X-User-Id") or None


def _market(value: Optional[str], symbol: str = "") -> str:
    if value is not None and not isinstance(value, str):
        raise TradeValidationError(f"Unknown market: {value!r}")
    market =(value or detect_market_from_symbol(symbol) or US).upper()
    if market not in MARKETS:
        raise TradeValidationError(f"Unknown market: {market!r}")
    return market


def _direction(value: Optional[str]) -> str:
    if value is not None and not isinstance(value, str):
        raise TradeValidationError(f"Unknown direction: {value!r}")
    direction = (value or LONG).strip().lower()
    if direction not in DIRECTIONS:
        raise TradeValidationError(f"Unknown direction: {direction!r}")
    return direction


def create_app(config: Optional[Dict[str, Any]] = None) -> Flask:
    settings = load_settings(config)
    logger = setup_logger("riskjournal", settings.log_level_value)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.secret_key
    if config:
        app.config.update({k: v for k, v in config.items() if k.isupper()})

    db = TradeJournalDB(settings.db_path)
    quotes = QuoteClient(
        api_key=settings.alphavantage_api_key,
        db=db,
        cache_ttl=settings.chart_cache_ttl,
        timeout=settings.http_timeout,
    )
    app.extensions["riskjournal"] = {
        "settings": settings,
        "db": db,
        "quotes": quotes,
        "broker_factory": SchwabClient,
    }
    logger.info("Risk journal started (db=%s)", settings.db_path)

    def _capital(market: str, raw: Optional[float] = None) -> float:
        if raw is not None:
            return raw
        return db.get_preferences(_user_id()).default_portfolio.get(market, 0.0)

    def _save(trade) -> Dict[str, Any]:
        return db.replace_trade(_user_id(), trade).to_dict()

    # ---------- errors ----------
    @app.errorhandler(TradeValidationError)
    def handle_validation(e: TradeValidationError):
        return jsonify({"error": str(e), "messages": e.messages}), 400

    @app.errorhandler(TradeNotFoundError)
    def handle_not_found(e: TradeNotFoundError):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(QuoteError)
    @app.errorhandler(BrokerError)
    def handle_upstream(e):
        logger.error("Upstream failure on %s: %s", request.path, e)
        return jsonify({"error": e.message, "code": e.code, "upstream_status": e.status_code}), 502

    @app.errorhandler(BadRequest)
    def handle_bad_request(e: BadRequest):
        return jsonify({"error": e.description}), 400

    @app.errorhandler(ValueError)
    def handle_value_error(e: ValueError):
        return jsonify({"error": str(e)}), 400

    # ---------- routes ----------
    @app.route("/api/health")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/api/calculate", methods=["POST"])
    def calculate():
        data = _body()
        inputs = _inputs(data)
        market = _market(data.get("market"), inputs.symbol)
        capital = _capital(market, _num(data, "capital", required=False))
        calc = calculate_trade(inputs, capital, market)
        sizing = calculate_position_size(capital, inputs.risk_percent, inputs.entry, inputs.stop, market)
        return jsonify(
            {
                **calc.to_dict(),
                "market": market,
                "capital": capital,
                "currency": currency_symbol(market),
                "floored_shares": sizing.shares,
                "floored_risk_amount": sizing.risk_amount,
            }
        )

    def _inputs(data: Dict[str, Any]) -> TradeInputs:
        risk_percent = _num(data, "risk_percent", required=False)
        return TradeInputs(
            symbol=str(data.get("symbol") or "").strip().upper(),
            direction=_direction(data.get("direction")),
            risk_percent=settings.default_risk_percent if risk_percent is None else risk_percent,
            entry=_num(data, "entry", required=False) or 0.0,
            stop=_num(data, "stop", required=False) or 0.0,
            target=data.get("target"),
            setup=str(data.get("setup") or "TREND"),
        )

    @app.route("/api/trades", methods=["GET"])
    def list_trades():
        status = (request.args.get("status") or "").upper() or None
        if status is not None and status not in STATUSES:
            raise TradeValidationError(f"Unknown status: {status!r}")
        trades = db.list_trades(_user_id(), status=status)
        return jsonify([t.to_dict() for t in trades])

    @app.route("/api/trades", methods=["POST"])
    def log_trade():
        data = _body()
        inputs = _inputs(data)
        market = _market(data.get("market"), inputs.symbol)
        capital = _capital(market, _num(data, "capital", required=False))
        status = str(data.get("status") or PLANNED).upper()
        if status not in (PLANNED, ACTIVE):
            raise TradeValidationError("New trades must be PLANNED or ACTIVE")

        calc = calculate_trade(inputs, capital, market)
        trade = positions.log_trade(inputs, calc, capital, market, status=status)
        saved = db.save_trade(_user_id(), trade)
        return jsonify(saved.to_dict()), 201

    @app.route("/api/positions", methods=["POST"])
    def open_position():
        data = _body()
        symbol = str(data.get("symbol") or "").strip().upper()
        trade = positions.open_manual_position(
            symbol=symbol,
            direction=_direction(data.get("direction")),
            shares=_num(data, "shares"),
            entry=_num(data, "entry"),
            stop=_num(data, "stop"),
            market=_market(data.get("market"), symbol),
        )
        saved = db.save_trade(_user_id(), trade)
        return jsonify(saved.to_dict()), 201

    @app.route("/api/trades/<int:trade_id>", methods=["GET"])
    def get_trade(trade_id: int):
        trade = db.get_trade(_user_id(), trade_id)
        capital = _capital(trade.market, _num(request.args, "capital", required=False))
        amount, percent = risk_remaining(trade, capital)
        return jsonify(
            {
                "trade": trade.to_dict(),
                "risk_amount": amount,
                "risk_percent": percent,
                "weighted_stop": weighted_effective_stop(trade),
                "has_contract_stop_override": has_contract_stop_override(trade),
                "unrealized_pnl": unrealized_pnl(trade),
                "risk_line": risk_line_layout(trade),
            }
        )

    @app.route("/api/trades/<int:trade_id>", methods=["DELETE"])
    def delete_trade(trade_id: int):
        db.delete_trade(_user_id(), trade_id)
        return jsonify({"deleted": trade_id})

    @app.route("/api/trades/<int:trade_id>/stop", methods=["POST"])
    def adjust_stop(trade_id: int):
        data = _body()
        trade = db.get_trade(_user_id(), trade_id)
        return jsonify(_save(positions.adjust_stop(trade, _num(data, "stop"))))

    @app.route("/api/trades/<int:trade_id>/contracts", methods=["POST"])
    def add_contract(trade_id: int):
        data = _body()
        trade = db.get_trade(_user_id(), trade_id)
        updated = positions.add_contract(
            trade,
            entry_price=_num(data, "entry_price"),
            shares=_num(data, "shares"),
            contract_stop=_num(data, "contract_stop", required=False),
        )
        return jsonify(_save(updated)), 201

    @app.route("/api/trades/<int:trade_id>/contracts/<contract_id>/stop", methods=["POST"])
    def set_contract_stop(trade_id: int, contract_id: str):
        data = _body()
        trade = db.get_trade(_user_id(), trade_id)
        updated = positions.set_contract_stop(
            trade, contract_id, _num(data, "stop", required=False)
        )
        return jsonify(_save(updated))

    @app.route("/api/trades/<int:trade_id>/shares", methods=["POST"])
    def edit_shares(trade_id: int):
        data = _body()
        trade = db.get_trade(_user_id(), trade_id)
        return jsonify(_save(positions.edit_shares(trade, _num(data, "shares"))))

    @app.route("/api/trades/<int:trade_id>/close", methods=["POST"])
    def close_trade(trade_id: int):
        trade = db.get_trade(_user_id(), trade_id)
        return jsonify(_save(positions.close_trade(trade)))

    @app.route("/api/trades/<int:trade_id>/activate", methods=["POST"])
    def activate_trade(trade_id: int):
        trade = db.get_trade(_user_id(), trade_id)
        return jsonify(_save(positions.activate_trade(trade)))

    @app.route("/api/history")
    def history():
        args = request.args
        trades = db.list_trades(_user_id(), status=(args.get("status") or "").upper() or None)
        filtered = filter_and_sort_trades(
            trades,
            search=args.get("search", ""),
            direction=args.get("direction", "all"),
            setup=args.get("setup", "all"),
            sort_field=args.get("sort", "date"),
            descending=args.get("order", "desc").lower() != "asc",
        )
        try:
            page = int(args.get("page", 1))
        except ValueError:
            raise TradeValidationError("page must be an integer")
        items, total_pages = paginate(filtered, page, ITEMS_PER_PAGE)
        return jsonify(
            {
                "trades": [t.to_dict() for t in items],
                "page": max(1, page),
                "total_pages": total_pages,
                "total": len(filtered),
                "setups": unique_setups(trades),
            }
        )

    @app.route("/api/portfolio")
    def portfolio():
        user_id = _user_id()
        trades = db.list_trades(user_id)

        if request.args.get("refresh") in ("1", "true"):
            active = [t for t in trades if t.status == ACTIVE]
            prices = quotes.fetch_current_prices({(t.symbol, t.market) for t in active})
            for t in active:
                if t.symbol in prices:
                    db.update_trade(user_id, t.id, current_price=prices[t.symbol])
            trades = db.list_trades(user_id)

        market = request.args.get("market")
        if market:
            market = _market(market)
            capital = _capital(market, _num(request.args, "capital", required=False))
            metrics = compute_risk_metrics([t for t in trades if t.market == market], capital)
            return jsonify({"market": market, "capital": capital, **metrics})

        capitals = db.get_preferences(user_id).default_portfolio
        return jsonify(market_breakdown(trades, capitals))

    @app.route("/export", methods=["GET"], endpoint="export")
    def export_trades():
        trades = db.list_trades(_user_id())
        return Response(
            trades_to_csv(trades),
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=trades.csv"},
        )

    @app.route("/export.json", methods=["GET"])
    def export_trades_json():
        trades = db.list_trades(_user_id())
        return Response(
            trades_to_json(trades),
            mimetype="application/json",
            headers={"Content-Disposition": "attachment; filename=trades.json"},
        )

    # -------- quotes / charts / sessions --------

    def _symbol_arg() -> str:
        symbol = (request.args.get("symbol") or "").strip().upper()
        if not symbol:
            raise BadRequest("symbol query param required")
        return symbol

    @app.route("/api/price")
    def price():
        symbol = _symbol_arg()
        market = _market(request.args.get("market"), symbol)
        return jsonify(
            {
                "symbol": symbol,
                "market": market,
                "name": quotes.stock_name_cached(symbol, market),
                "price": quotes.fetch_current_price(symbol, market),
            }
        )

    def _days() -> int:
        try:
            return max(1, min(int(request.args.get("days", 90)), 365))
        except ValueError:
            raise TradeValidationError("days must be an integer")

    @app.route("/api/chart")
    def chart():
        symbol = _symbol_arg()
        market = _market(request.args.get("market"), symbol)
        return jsonify(quotes.fetch_chart_data(symbol, market, days=_days()))

    @app.route("/api/chart/figure")
    def chart_figure():
        symbol = _symbol_arg()
        market = _market(request.args.get("market"), symbol)
        rows = quotes.fetch_chart_data(symbol, market, days=_days())
        trade = None
        trade_id = request.args.get("trade_id")
        if trade_id:
            trade = db.get_trade(_user_id(), int(trade_id))
        fig = build_trade_figure(rows, trade)
        return Response(fig.to_json(), mimetype="application/json")

    @app.route("/api/session")
    def session_status():
        market = request.args.get("market")
        if market:
            market = _market(market)
        else:
            market = default_market(datetime.now().astimezone(), request.args.get("tz"))
        status = market_session_status(market)
        return jsonify({**status.to_dict(), "language": language_for_market(market)})

    # -------- preferences / guests / broker --------

    @app.route("/api/preferences", methods=["GET"])
    def get_preferences():
        return jsonify(db.get_preferences(_user_id()).to_dict())

    @app.route("/api/preferences", methods=["PUT"])
    def update_preferences():
        return jsonify(db.update_preferences(_user_id(), _body()).to_dict())

    @app.route("/api/guest/migrate", methods=["POST"])
    def migrate_guest():
        user_id = _user_id()
        if not user_id:
            raise BadRequest("X-User-Id header required")
        return jsonify({"migrated": db.migrate_guest_trades(user_id)})

    @app.route("/api/broker/sync", methods=["POST"])
    def broker_sync():
        user_id = _user_id()
        if not user_id:
            raise BadRequest("X-User-Id header required")
        data = _body()
        token = data.get("access_token")
        account_hash = data.get("account_hash")
        if not token or not account_hash:
            raise BadRequest("access_token and account_hash are required")
        client = app.extensions["riskjournal"]["broker_factory"](
            token, timeout=settings.http_timeout
        )
        return jsonify(sync_positions(db, user_id, client, account_hash))

    return app


# Run directly
if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=5004, debug=True, use_reloader=False)
