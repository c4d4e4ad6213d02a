"""
database.py
-----------

This module encapsulates all interactions with the SQLite database that
persists the journal. Trades belong either to a user (``user_id``) or to
the guest partition (``user_id IS NULL``); guests can later hand their
trades over to an account with :meth:`TradeJournalDB.migrate_guest_trades`.

Besides trades and their contracts the database keeps per-user
preferences and a small chart-data cache with a fixed time-to-live.
"""

import json
import logging
import sqlite3
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import TradeNotFoundError
from .models import ACTIVE, RiskContract, Trade, UserPreferences, utcnow

logger = logging.getLogger(__name__)

GUEST_PREFS_KEY = ""

_TRADE_COLUMNS = (
    "symbol",
    "direction",
    "entry",
    "stop",
    "target",
    "position_size",
    "risk_amount",
    "status",
    "market",
    "setup",
    "date",
    "risk_percent",
    "rr_ratio",
    "current_price",
    "synced_from_broker",
    "has_working_stop",
)


class TradeJournalDB:
    """SQLite-backed repository for trades, preferences and chart data."""

    def __init__(self, db_path: str = "riskjournal.db") -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self._create_tables()

    # ---------- schema ----------
    def _create_tables(self) -> None:
        with self.conn:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS trades (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT,            -- NULL for guest trades
                    symbol TEXT NOT NULL,
                    direction TEXT NOT NULL CHECK (direction IN ('long','short')),
                    entry REAL NOT NULL,
                    stop REAL NOT NULL,
                    target REAL,
                    position_size REAL NOT NULL DEFAULT 0,
                    risk_amount REAL NOT NULL DEFAULT 0,
                    status TEXT NOT NULL CHECK (status IN ('PLANNED','ACTIVE','CLOSED')),
                    market TEXT NOT NULL CHECK (market IN ('US','CN')),
                    setup TEXT,
                    date TEXT,
                    risk_percent REAL NOT NULL DEFAULT 0,
                    rr_ratio REAL,
                    current_price REAL,
                    synced_from_broker INTEGER NOT NULL DEFAULT 0,
                    has_working_stop INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL -- ISO8601
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contracts (
                    id TEXT NOT NULL,
                    trade_id INTEGER NOT NULL REFERENCES trades(id) ON DELETE CASCADE,
                    seq INTEGER NOT NULL,
                    entry_price REAL NOT NULL,
                    shares REAL NOT NULL,
                    risk_amount REAL NOT NULL DEFAULT 0,
                    contract_stop REAL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (trade_id, id)
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS preferences (
                    user_id TEXT PRIMARY KEY, -- '' for the guest
                    payload TEXT NOT NULL
                )
                """
            )
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS chart_cache (
                    symbol TEXT NOT NULL,
                    market TEXT NOT NULL,
                    fetched_at REAL NOT NULL, -- epoch seconds
                    payload TEXT NOT NULL,
                    PRIMARY KEY (symbol, market)
                )
                """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id, created_at)"
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_contracts_trade ON contracts(trade_id, seq)"
            )

    # ---------- trades ----------
    def save_trade(self, user_id: Optional[str], trade: Trade) -> Trade:
        """Insert a new trade and return it with its id and timestamp."""
        created_at = trade.created_at or utcnow()
        with self.conn:
            cur = self.conn.execute(
                f"""
                INSERT INTO trades (user_id, {", ".join(_TRADE_COLUMNS)}, created_at)
                VALUES ({", ".join("?" * (len(_TRADE_COLUMNS) + 2))})
                """,
                (user_id, *self._trade_values(trade), created_at.isoformat()),
            )
            trade_id = cur.lastrowid
            self._write_contracts(trade_id, trade.contracts)
        logger.info("Saved %s %s as trade %s (user=%s)", trade.direction, trade.symbol, trade_id, user_id)
        return self.get_trade(user_id, trade_id)

    def list_trades(self, user_id: Optional[str], status: Optional[str] = None) -> List[Trade]:
        """Return the user's trades, most recent first."""
        sql = "SELECT * FROM trades WHERE user_id IS ?"
        params: List[Any] = [user_id]
        if status:
            sql += " AND status = ?"
            params.append(status)
        sql += " ORDER BY created_at DESC, id DESC"
        rows = self.conn.execute(sql, params).fetchall()
        return [self._row_to_trade(r) for r in rows]

    def get_trade(self, user_id: Optional[str], trade_id: int) -> Trade:
        row = self.conn.execute(
            "SELECT * FROM trades WHERE id = ? AND user_id IS ?", (trade_id, user_id)
        ).fetchone()
        if row is None:
            raise TradeNotFoundError(f"Trade {trade_id} not found")
        return self._row_to_trade(row)

    def update_trade(self, user_id: Optional[str], trade_id: int, **updates: Any) -> Trade:
        """Apply a partial update. ``contracts`` replaces every contract row."""
        self.get_trade(user_id, trade_id)
        contracts = updates.pop("contracts", None)
        unknown = set(updates) - set(_TRADE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown trade fields: {', '.join(sorted(unknown))}")
        with self.conn:
            if updates:
                assignments = ", ".join(f"{k} = ?" for k in updates)
                self.conn.execute(
                    f"UPDATE trades SET {assignments} WHERE id = ? AND user_id IS ?",
                    (*[self._to_db(v) for v in updates.values()], trade_id, user_id),
                )
            if contracts is not None:
                self.conn.execute("DELETE FROM contracts WHERE trade_id = ?", (trade_id,))
                self._write_contracts(trade_id, contracts)
        return self.get_trade(user_id, trade_id)

    def replace_trade(self, user_id: Optional[str], trade: Trade) -> Trade:
        """Persist every field of an already-saved trade."""
        if trade.id is None:
            raise TradeNotFoundError("Trade has no id; use save_trade")
        updates = {name: getattr(trade, name) for name in _TRADE_COLUMNS}
        return self.update_trade(user_id, trade.id, contracts=trade.contracts, **updates)

    def delete_trade(self, user_id: Optional[str], trade_id: int) -> None:
        with self.conn:
            cur = self.conn.execute(
                "DELETE FROM trades WHERE id = ? AND user_id IS ?", (trade_id, user_id)
            )
        if cur.rowcount == 0:
            raise TradeNotFoundError(f"Trade {trade_id} not found")

    def guest_trade_count(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) FROM trades WHERE user_id IS NULL").fetchone()
        return int(row[0])

    def migrate_guest_trades(self, user_id: str) -> int:
        """Hand every guest trade to ``user_id``; returns how many moved."""
        if not user_id:
            raise ValueError("user_id is required to migrate guest trades")
        with self.conn:
            cur = self.conn.execute(
                "UPDATE trades SET user_id = ? WHERE user_id IS NULL", (user_id,)
            )
        if cur.rowcount:
            logger.info("Migrated %d guest trades to user %s", cur.rowcount, user_id)
        return cur.rowcount

    def find_synced_trades(self, user_id: Optional[str]) -> List[Trade]:
        """ACTIVE trades that were imported from the broker."""
        rows = self.conn.execute(
            """
            SELECT * FROM trades
            WHERE user_id IS ? AND synced_from_broker = 1 AND status = ?
            ORDER BY created_at DESC, id DESC
            """,
            (user_id, ACTIVE),
        ).fetchall()
        return [self._row_to_trade(r) for r in rows]

    def _write_contracts(self, trade_id: int, contracts: List[RiskContract]) -> None:
        for seq, c in enumerate(contracts):
            self.conn.execute(
                """
                INSERT INTO contracts
                    (id, trade_id, seq, entry_price, shares, risk_amount, contract_stop, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    c.id,
                    trade_id,
                    seq,
                    c.entry_price,
                    c.shares,
                    c.risk_amount,
                    c.contract_stop,
                    c.created_at.isoformat(),
                ),
            )

    def _contracts_for(self, trade_id: int) -> List[RiskContract]:
        rows = self.conn.execute(
            "SELECT * FROM contracts WHERE trade_id = ? ORDER BY seq", (trade_id,)
        ).fetchall()
        return [
            RiskContract(
                id=r["id"],
                entry_price=r["entry_price"],
                shares=r["shares"],
                risk_amount=r["risk_amount"],
                contract_stop=r["contract_stop"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    @staticmethod
    def _to_db(value: Any) -> Any:
        return int(value) if isinstance(value, bool) else value

    def _trade_values(self, trade: Trade) -> List[Any]:
        return [self._to_db(getattr(trade, name)) for name in _TRADE_COLUMNS]

    def _row_to_trade(self, row: sqlite3.Row) -> Trade:
        """Convert DB row -> Trade."""
        return Trade(
            id=row["id"],
            user_id=row["user_id"],
            symbol=row["symbol"],
            direction=row["direction"],
            entry=row["entry"],
            stop=row["stop"],
            target=row["target"],
            position_size=row["position_size"],
            risk_amount=row["risk_amount"],
            contracts=self._contracts_for(row["id"]),
            status=row["status"],
            market=row["market"],
            setup=row["setup"] or "",
            date=row["date"] or "",
            risk_percent=row["risk_percent"],
            rr_ratio=row["rr_ratio"],
            current_price=row["current_price"],
            synced_from_broker=bool(row["synced_from_broker"]),
            has_working_stop=bool(row["has_working_stop"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ---------- preferences ----------
    def get_preferences(self, user_id: Optional[str]) -> UserPreferences:
        """Stored preferences, or the defaults.

        The first read for a signed-in user with nothing stored adopts the
        guest preferences (and clears them), so settings made before
        signing up carry over.
        """
        key = user_id or GUEST_PREFS_KEY
        row = self.conn.execute(
            "SELECT payload FROM preferences WHERE user_id = ?", (key,)
        ).fetchone()
        if row is not None:
            return UserPreferences.from_dict(json.loads(row["payload"]))
        if key == GUEST_PREFS_KEY:
            return UserPreferences()

        guest = self.conn.execute(
            "SELECT payload FROM preferences WHERE user_id = ?", (GUEST_PREFS_KEY,)
        ).fetchone()
        if guest is None:
            return UserPreferences()
        prefs = UserPreferences.from_dict(json.loads(guest["payload"]))
        with self.conn:
            self._write_preferences(key, prefs)
            self.conn.execute("DELETE FROM preferences WHERE user_id = ?", (GUEST_PREFS_KEY,))
        logger.info("Adopted guest preferences for user %s", user_id)
        return prefs

    def update_preferences(self, user_id: Optional[str], updates: Dict[str, Any]) -> UserPreferences:
        prefs = self.get_preferences(user_id).merged(updates)
        with self.conn:
            self._write_preferences(user_id or GUEST_PREFS_KEY, prefs)
        return prefs

    def _write_preferences(self, key: str, prefs: UserPreferences) -> None:
        self.conn.execute(
            """
            INSERT INTO preferences(user_id, payload) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET payload = excluded.payload
            """,
            (key, json.dumps(prefs.to_dict())),
        )

    # ---------- chart cache ----------
    def get_cached_chart(
        self, symbol: str, market: str, ttl: float, now: Optional[float] = None
    ) -> Optional[List[Dict[str, Any]]]:
        """Cached rows if younger than ``ttl`` seconds; stale entries are dropped."""
        now = time.time() if now is None else now
        row = self.conn.execute(
            "SELECT fetched_at, payload FROM chart_cache WHERE symbol = ? AND market = ?",
            (symbol.upper(), market),
        ).fetchone()
        if row is None:
            return None
        if now - row["fetched_at"] < ttl:
            return json.loads(row["payload"])
        self.clear_chart_cache(symbol, market)
        return None

    def save_chart(
        self, symbol: str, market: str, rows: List[Dict[str, Any]], now: Optional[float] = None
    ) -> None:
        now = time.time() if now is None else now
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO chart_cache(symbol, market, fetched_at, payload)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(symbol, market) DO UPDATE SET
                    fetched_at = excluded.fetched_at,
                    payload = excluded.payload
                """,
                (symbol.upper(), market, now, json.dumps(rows)),
            )

    def clear_chart_cache(self, symbol: str, market: str) -> None:
        with self.conn:
            self.conn.execute(
                "DELETE FROM chart_cache WHERE symbol = ? AND market = ?", (symbol.upper(), market)
            )

    def clear_all_chart_cache(self) -> None:
        with self.conn:
            self.conn.execute("DELETE FROM chart_cache")

    def purge_expired_charts(self, ttl: float, now: Optional[float] = None) -> int:
        now = time.time() if now is None else now
        with self.conn:
            cur = self.conn.execute("DELETE FROM chart_cache WHERE ? - fetched_at >= ?", (now, ttl))
        return cur.rowcount

    # ---------- housekeeping ----------
    def close(self) -> None:
        self.conn.close()
