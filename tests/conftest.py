import sys
from pathlib import Path

import pytest

# make the repo root importable so tests can import the package directly
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from riskjournal.app import create_app  # noqa: E402
from riskjournal.database import TradeJournalDB  # noqa: E402


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


class FakeSession:
    """Stands in for requests.Session; answers from a list of responses."""

    def __init__(self, responses=None, handler=None):
        self.responses = list(responses or [])
        self.handler = handler
        self.headers = {}
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        if self.handler is not None:
            return self.handler(url, params or {})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def db(tmp_path):
    d = TradeJournalDB(str(tmp_path / "journal.db"))
    yield d
    d.close()


@pytest.fixture
def app(tmp_path):
    app = create_app({"TESTING": True, "db_path": str(tmp_path / "app.db")})
    yield app
    app.extensions["riskjournal"]["db"].close()


@pytest.fixture
def client(app):
    return app.test_client()
