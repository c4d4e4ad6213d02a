import pytest
import requests

from conftest import FakeResponse, FakeSession
from riskjournal.errors import QuoteError
from riskjournal.quotes import QuoteClient

US_QUOTE_CSV = (
    "Symbol,Date,Time,Open,High,Low,Close,Volume\n"
    "AAPL.US,2026-01-28,22:00:00,150,152,149,151.5,1000\n"
)

US_DAILY_CSV = (
    "Date,Open,High,Low,Close,Volume\n"
    "2026-01-26,100,102,99,101,1000\n"
    "2026-01-27,101,103,100,102,1100\n"
    "01/28/2026,102,104,101,103,\n"
)

CN_DAILY = {
    "Time Series (Daily)": {
        "2026-01-27": {
            "1. open": "10.0",
            "2. high": "10.5",
            "3. low": "9.8",
            "4. close": "10.2",
            "6. volume": "50000",
        },
        "2026-01-28": {
            "1. open": "10.2",
            "2. high": "10.9",
            "3. low": "10.1",
            "4. close": "10.8",
            "6. volume": "62000",
        },
    }
}


def _client(responses, **kw):
    sleeps = []
    session = FakeSession(responses)
    client = QuoteClient(session=session, sleep=sleeps.append, **kw)
    return client, session, sleeps


def test_us_price_from_stooq():
    client, session, _ = _client([FakeResponse(text=US_QUOTE_CSV)])
    assert client.fetch_current_price("AAPL", "US") == 151.5
    url, params = session.calls[0]
    assert url == "https://stooq.com/q/l/"
    assert params["s"] == "AAPL.US"


def test_us_price_missing_data_is_none():
    client, _, _ = _client([FakeResponse(text="No data")])
    assert client.fetch_current_price("ZZZZ", "US") is None


def test_cn_price_from_alphavantage():
    body = {"Global Quote": {"05. price": "1680.50"}}
    client, session, _ = _client([FakeResponse(json_data=body)], api_key="k")
    assert client.fetch_current_price("600519", "CN") == 1680.5
    _, params = session.calls[0]
    assert params["symbol"] == "600519.SHH"
    assert params["apikey"] == "k"


def test_cn_price_without_key_is_none():
    client, session, _ = _client([])
    assert client.fetch_current_price("600519", "CN") is None
    assert session.calls == []


def test_network_errors_become_none_for_prices():
    client, _, _ = _client([requests.Timeout("slow")])
    assert client.fetch_current_price("AAPL", "US") is None


def test_batched_prices_pause_between_batches():
    responses = [FakeResponse(text=US_QUOTE_CSV) for _ in range(6)] + [FakeResponse(status_code=500)]
    client, _, sleeps = _client(responses)
    symbols = [(f"S{i}", "US") for i in range(7)]
    prices = client.fetch_current_prices(symbols)
    assert len(prices) == 6
    assert "S6" not in prices
    assert sleeps == [0.2]


def test_us_chart_parses_csv_and_caches(db):
    client, session, _ = _client([FakeResponse(text=US_DAILY_CSV)], db=db)
    rows = client.fetch_chart_data("aapl", "US", days=2)
    assert [r["time"] for r in rows] == ["2026-01-27", "2026-01-28"]
    assert rows[-1]["close"] == 103.0
    assert rows[-1]["volume"] is None

    # served from the cache the second time
    again = client.fetch_chart_data("AAPL", "US", days=1)
    assert again == rows[-1:]
    assert len(session.calls) == 1


def test_cn_chart_is_chronological():
    client, _, _ = _client([FakeResponse(json_data=CN_DAILY)], api_key="k")
    rows = client.fetch_chart_data("600519", "CN")
    assert [r["time"] for r in rows] == ["2026-01-27", "2026-01-28"]
    assert rows[0]["volume"] == 50000.0


def test_alphavantage_rate_limit():
    note = {"Note": "Thank you for using Alpha Vantage!"}
    client, _, _ = _client([FakeResponse(json_data=note)], api_key="k")
    with pytest.raises(QuoteError) as exc:
        client.fetch_chart_data("600519", "CN")
    assert exc.value.code == "rate_limited"
    assert exc.value.status_code == 429


def test_alphavantage_error_message():
    body = {"Error Message": "Invalid API call"}
    client, _, _ = _client([FakeResponse(json_data=body)], api_key="k")
    with pytest.raises(QuoteError, match="Invalid API call"):
        client.fetch_chart_data("000001", "CN")


def test_chart_http_failures_raise():
    client, _, _ = _client([FakeResponse(status_code=503)])
    with pytest.raises(QuoteError) as exc:
        client.fetch_chart_data("AAPL", "US")
    assert exc.value.code == "http_error"

    client, _, _ = _client([requests.ConnectionError("down")])
    with pytest.raises(QuoteError) as exc:
        client.fetch_chart_data("AAPL", "US")
    assert exc.value.code == "connection_error"


def test_unsupported_cn_symbol():
    client, _, _ = _client([], api_key="k")
    with pytest.raises(QuoteError) as exc:
        client.fetch_chart_data("920001", "CN")
    assert exc.value.code == "bad_symbol"


def test_stock_names():
    overview = FakeResponse(json_data={"Name": "Some Holdings"})
    client, session, sleeps = _client([overview], api_key="k")
    names = client.stock_names([("AAPL", "US"), ("600519", "CN"), ("000002", "CN"), ("MSFT", "US")])
    assert names == {
        "AAPL": "AAPL",
        "600519": "贵州茅台",
        "000002": "Some Holdings",
        "MSFT": "MSFT",
    }
    assert len(session.calls) == 1
    assert sleeps == [0.5]
    assert client.stock_name_cached("000002", "CN") == "Some Holdings"
    assert client.stock_name_cached("000003", "CN") == "000003"


def test_stock_name_falls_back_to_symbol():
    client, _, _ = _client([FakeResponse(status_code=500)], api_key="k")
    assert client.stock_name("000002", "CN") == "000002"
