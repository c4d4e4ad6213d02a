import csv
import io
import json

import pytest

from conftest import FakeResponse, FakeSession
from riskjournal.errors import BrokerError, QuoteError

USER = {"X-User-Id": "u1"}


def _log(client, headers=None, **overrides):
    body = {
        "symbol": "AAPL",
        "entry": 150,
        "stop": 145,
        "target": "160",
        "capital": 100000,
    }
    body.update(overrides)
    return client.post("/api/trades", json=body, headers=headers or {})


def test_health(client):
    assert client.get("/api/health").get_json() == {"status": "ok"}


def test_calculate(client):
    r = client.post(
        "/api/calculate",
        json={"symbol": "AAPL", "entry": 150, "stop": 145, "target": "160", "capital": 100000},
    )
    data = r.get_json()
    assert r.status_code == 200
    assert data["can_calculate"] is True
    assert data["shares"] == 150
    assert data["rr_ratio"] == pytest.approx(2)
    assert data["market"] == "US"
    assert data["currency"] == "$"
    assert data["floored_shares"] == 150


def test_calculate_detects_cn_market_and_uses_preferences(client):
    client.put("/api/preferences", json={"default_portfolio": {"CN": 100000}})
    r = client.post(
        "/api/calculate", json={"symbol": "600519", "entry": 10, "stop": 9, "risk_percent": 0.753}
    )
    data = r.get_json()
    assert data["market"] == "CN"
    assert data["capital"] == 100000
    assert data["shares"] == 700
    assert data["risk_amount"] == pytest.approx(700)


def test_bad_json_and_bad_numbers(client):
    r = client.post("/api/calculate", data="nope", content_type="application/json")
    assert r.status_code == 400
    r = client.post("/api/calculate", json={"symbol": "AAPL", "entry": "abc", "stop": 1})
    assert r.status_code == 400
    assert "entry must be a number" in r.get_json()["error"]


def test_malformed_fields_are_400(client):
    base = {"symbol": "AAPL", "entry": 150, "stop": 145, "capital": 100000}
    assert client.post("/api/calculate", json={**base, "direction": 1}).status_code == 400
    assert client.post("/api/calculate", json={**base, "target": [1]}).status_code == 400
    assert client.post("/api/calculate", json={**base, "market": 1}).status_code == 400
    r = client.put("/api/preferences", json={"default_portfolio": [1, 2]})
    assert r.status_code == 400
    assert client.put("/api/preferences", json={"single_market_mode": "false"}).status_code == 400


def test_log_and_list_trades(client):
    r = _log(client)
    assert r.status_code == 201
    trade = r.get_json()
    assert trade["position_size"] == 150
    assert trade["status"] == "PLANNED"
    assert trade["user_id"] is None

    _log(client, symbol="MSFT", entry=300, stop=290, target="320", status="ACTIVE")
    listed = client.get("/api/trades").get_json()
    assert [t["symbol"] for t in listed] == ["MSFT", "AAPL"]
    active = client.get("/api/trades?status=active").get_json()
    assert [t["symbol"] for t in active] == ["MSFT"]
    assert client.get("/api/trades?status=bogus").status_code == 400


def test_log_invalid_trade_is_400(client):
    r = _log(client, stop=155)
    assert r.status_code == 400
    assert r.get_json()["messages"]


def test_trades_are_scoped_by_user_header(client):
    trade_id = _log(client, headers=USER).get_json()["id"]
    assert client.get("/api/trades").get_json() == []
    assert client.get(f"/api/trades/{trade_id}").status_code == 404
    assert client.get(f"/api/trades/{trade_id}", headers=USER).status_code == 200


def test_manual_position(client):
    r = client.post(
        "/api/positions",
        json={"symbol": "600519", "direction": "long", "shares": 250, "entry": 10, "stop": 9},
    )
    assert r.status_code == 201
    data = r.get_json()
    assert data["market"] == "CN"
    assert data["position_size"] == 300
    assert data["status"] == "ACTIVE"
    assert data["setup"] == "Manual Entry"

    r = client.post("/api/positions", json={"symbol": "AAPL", "shares": 10, "entry": 10})
    assert r.status_code == 400


def test_trade_detail(client):
    trade_id = _log(client).get_json()["id"]
    data = client.get(f"/api/trades/{trade_id}?capital=100000").get_json()
    assert data["trade"]["symbol"] == "AAPL"
    assert data["risk_amount"] == pytest.approx(750)
    assert data["risk_percent"] == pytest.approx(0.75)
    assert data["weighted_stop"] == 145
    assert data["has_contract_stop_override"] is False
    assert data["unrealized_pnl"] is None
    assert set(data["risk_line"]) >= {"stop", "entry", "target", "is_profit"}


def test_position_management_flow(client):
    trade_id = _log(client).get_json()["id"]
    base = f"/api/trades/{trade_id}"

    r = client.post(f"{base}/activate")
    assert r.get_json()["status"] == "ACTIVE"

    r = client.post(f"{base}/contracts", json={"entry_price": 160, "shares": 50})
    assert r.status_code == 201
    trade = r.get_json()
    assert trade["position_size"] == 200
    assert len(trade["contracts"]) == 2

    r = client.post(f"{base}/stop", json={"stop": 148})
    assert r.get_json()["stop"] == 148

    cid = trade["contracts"][1]["id"]
    r = client.post(f"{base}/contracts/{cid}/stop", json={"stop": 155})
    assert r.get_json()["contracts"][1]["contract_stop"] == 155
    assert client.post(f"{base}/contracts/nope/stop", json={"stop": 150}).status_code == 404

    r = client.post(f"{base}/shares", json={"shares": 100})
    assert r.get_json()["position_size"] == 100

    r = client.post(f"{base}/close")
    assert r.get_json()["status"] == "CLOSED"
    assert client.post(f"{base}/close").status_code == 400

    assert client.delete(base).get_json() == {"deleted": trade_id}
    assert client.delete(base).status_code == 404


def test_history_pagination_and_filters(client):
    for i in range(23):
        _log(client, symbol=f"S{i:02d}", setup="TREND" if i % 2 else "BREAKOUT")
    data = client.get("/api/history").get_json()
    assert len(data["trades"]) == 20
    assert data["total_pages"] == 2
    assert data["total"] == 23
    assert data["setups"] == ["BREAKOUT", "TREND"]

    page2 = client.get("/api/history?page=2").get_json()
    assert len(page2["trades"]) == 3

    data = client.get("/api/history?setup=TREND&sort=symbol&order=asc").get_json()
    assert [t["symbol"] for t in data["trades"]][:2] == ["S01", "S03"]
    assert client.get("/api/history?sort=nope").status_code == 400


def test_portfolio(client):
    client.put("/api/preferences", json={"default_portfolio": {"US": 50000}})
    _log(client, status="ACTIVE")
    _log(client, symbol="MSFT", entry=300, stop=290, target="320")

    data = client.get("/api/portfolio?market=US").get_json()
    assert data["capital"] == 50000
    assert data["active_trades"] == 1
    assert data["total_risk"] == pytest.approx(750)
    assert data["risk_percent"] == pytest.approx(1.5)

    breakdown = client.get("/api/portfolio").get_json()
    assert set(breakdown) == {"US", "CN"}
    assert breakdown["CN"]["total_trades"] == 0


def test_portfolio_refresh_updates_prices(app, client):
    _log(client, status="ACTIVE")
    csv_text = "Symbol,Date,Time,Open,High,Low,Close,Volume\nAAPL.US,2026-01-28,22:00:00,1,1,1,155,1\n"
    app.extensions["riskjournal"]["quotes"].session = FakeSession([FakeResponse(text=csv_text)])
    data = client.get("/api/portfolio?market=US&capital=100000&refresh=1").get_json()
    assert data["unrealized_pnl"] == pytest.approx(750)


def test_exports(client):
    _log(client)
    r = client.get("/export")
    assert r.mimetype == "text/csv"
    rows = list(csv.reader(io.StringIO(r.get_data(as_text=True))))
    assert rows[1][2] == "AAPL"

    r = client.get("/export.json")
    assert "attachment" in r.headers["Content-Disposition"]
    assert json.loads(r.get_data(as_text=True))[0]["symbol"] == "AAPL"


def test_price_and_chart(app, client):
    quotes = app.extensions["riskjournal"]["quotes"]
    daily = "Date,Open,High,Low,Close,Volume\n2026-01-27,1,2,0.5,1.5,10\n2026-01-28,1.5,2.5,1,2,11\n"
    quotes.session = FakeSession(
        [
            FakeResponse(text="Symbol,Date,Time,Open,High,Low,Close,Volume\nAAPL.US,d,t,1,1,1,151.5,1\n"),
            FakeResponse(text=daily),
        ]
    )
    price = client.get("/api/price?symbol=aapl").get_json()
    assert price == {"symbol": "AAPL", "market": "US", "name": "AAPL", "price": 151.5}

    rows = client.get("/api/chart?symbol=AAPL").get_json()
    assert len(rows) == 2

    # cached now, no further requests needed
    trade_id = _log(client).get_json()["id"]
    r = client.get(f"/api/chart/figure?symbol=AAPL&trade_id={trade_id}")
    fig = r.get_json()
    assert fig["data"][0]["type"] == "candlestick"
    assert len(fig["layout"]["shapes"]) == 3

    assert client.get("/api/chart").status_code == 400


def test_upstream_errors_are_502(app, client):
    quotes = app.extensions["riskjournal"]["quotes"]
    quotes.session = FakeSession([FakeResponse(status_code=503)])
    r = client.get("/api/chart?symbol=MSFT")
    assert r.status_code == 502
    assert r.get_json()["code"] == "http_error"


def test_session_status(client):
    data = client.get("/api/session?market=CN").get_json()
    assert data["market"] == "CN"
    assert data["language"] == "zh"
    assert data["session"] in ("OPEN", "CLOSED")
    data = client.get("/api/session?tz=America/New_York").get_json()
    assert data["market"] == "US"


def test_preferences_and_guest_migration(client):
    r = client.put("/api/preferences", json={"single_market_mode": True})
    assert r.get_json()["single_market_mode"] is True
    assert client.put("/api/preferences", json={"active_markets": ["JP"]}).status_code == 400
    r = client.put("/api/preferences", json={"active_markets": ["us"]})
    assert r.get_json()["active_markets"] == ["US"]

    _log(client)
    _log(client, symbol="MSFT", entry=300, stop=290, target="320")
    assert client.post("/api/guest/migrate").status_code == 400
    r = client.post("/api/guest/migrate", headers=USER)
    assert r.get_json() == {"migrated": 2}
    assert len(client.get("/api/trades", headers=USER).get_json()) == 2
    # guest preferences carried over on first read
    assert client.get("/api/preferences", headers=USER).get_json()["single_market_mode"] is True


class StubBroker:
    def __init__(self, token, timeout=None):
        self.token = token

    def get_account(self, account_hash):
        return {
            "securitiesAccount": {
                "positions": [
                    {
                        "instrument": {"symbol": "AAPL", "assetType": "EQUITY"},
                        "longQuantity": 10,
                        "shortQuantity": 0,
                        "averagePrice": 100.0,
                        "marketValue": 1050.0,
                    }
                ],
                "currentBalances": {"liquidationValue": 25000.0},
            }
        }

    def get_working_stop_orders(self, account_hash):
        return []


class FailingBroker(StubBroker):
    def get_account(self, account_hash):
        raise BrokerError(401, "http_error", "token expired")


def test_broker_sync(app, client):
    app.extensions["riskjournal"]["broker_factory"] = StubBroker
    body = {"access_token": "t", "account_hash": "h"}
    assert client.post("/api/broker/sync", json=body).status_code == 400

    r = client.post("/api/broker/sync", json=body, headers=USER)
    data = r.get_json()
    assert r.status_code == 200
    assert data["saved_count"] == 1
    assert data["portfolio_risk"] == pytest.approx(50)
    assert client.get("/api/preferences", headers=USER).get_json()["default_portfolio"]["US"] == 25000

    app.extensions["riskjournal"]["broker_factory"] = FailingBroker
    assert client.post("/api/broker/sync", json=body, headers=USER).status_code == 502


def test_quote_error_payload_shape():
    err = QuoteError(429, "rate_limited", "slow down")
    assert str(err) == "QuoteError [rate_limited]: slow down (HTTP 429)"
