import sqlite3
import logging
import os
import json
import threading
import uuid
from typing import Optional, List, Dict, Any, Iterable

logger = logging.getLogger(__name__)


class MarketDatabase:
    """Manages the SQLite store of bots, strategies, instruments, holdings and orders."""

    def __init__(self, db_path: Optional[str] = None):
        # Allow tests or env overrides to point at an isolated database
        self.db_path = db_path or os.getenv("BOT_DB_PATH", "market.db")
        self.conn = None
        # Snapshot queries run on worker threads; serialize access to the shared connection
        self._lock = threading.RLock()
        self.initialize_database()

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _placeholders(values: List[Any]) -> str:
        return ", ".join("?" for _ in values)

    def initialize_database(self):
        """Create database and tables if they don't exist."""
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row  # Return rows as dictionaries
        self.conn.execute("PRAGMA foreign_keys = ON")

        cursor = self.conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS strategies (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                name TEXT NOT NULL,
                rules TEXT NOT NULL DEFAULT '[]'
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS traders (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                is_bot INTEGER NOT NULL DEFAULT 0,
                balance_cents INTEGER NOT NULL DEFAULT 0 CHECK (balance_cents >= 0),
                strategy_id TEXT REFERENCES strategies(id) ON DELETE SET NULL,
                user_id TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS stocks (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                current_price_cents INTEGER NOT NULL DEFAULT 0,
                total_shares INTEGER NOT NULL DEFAULT 0
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS portfolios (
                trader_id TEXT NOT NULL REFERENCES traders(id) ON DELETE CASCADE,
                stock_id TEXT NOT NULL REFERENCES stocks(id) ON DELETE CASCADE,
                shares_owned INTEGER NOT NULL DEFAULT 0 CHECK (shares_owned >= 0),
                PRIMARY KEY (trader_id, stock_id)
            )
        """)

        # OPEN orders must carry a positive quantity; filled/cancelled ones may reach zero
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id TEXT PRIMARY KEY,
                stock_id TEXT NOT NULL REFERENCES stocks(id) ON DELETE CASCADE,
                trader_id TEXT NOT NULL REFERENCES traders(id) ON DELETE CASCADE,
                type TEXT NOT NULL CHECK (type IN ('BUY', 'SELL')),
                limit_price_cents INTEGER CHECK (limit_price_cents IS NULL OR limit_price_cents > 0),
                quantity INTEGER NOT NULL CHECK (quantity >= 0 AND (status <> 'OPEN' OR quantity > 0)),
                status TEXT NOT NULL DEFAULT 'OPEN' CHECK (status IN ('OPEN', 'FILLED', 'CANCELLED')),
                created_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """)
        try:
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_orders_trader_status ON orders (trader_id, status)"
            )
        except sqlite3.Error as exc:
            logger.debug(f"Could not create orders index: {exc}")

        self.conn.commit()

    # --- Snapshot reads ---
    def get_bots(self, owner_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return every bot trader, optionally restricted to one owner."""
        query = "SELECT * FROM traders WHERE is_bot = 1"
        params: tuple = ()
        if owner_id:
            query += " AND user_id = ?"
            params = (owner_id,)
        query += " ORDER BY name"
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    def get_instruments(self) -> List[Dict[str, Any]]:
        """Return every listed instrument."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT * FROM stocks ORDER BY symbol")
            return [dict(row) for row in cursor.fetchall()]

    def get_open_orders_for_bots(self, bot_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Return OPEN orders belonging to the given bots, oldest first."""
        ids = list(bot_ids)
        if not ids:
            return []
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                f"""
                    SELECT * FROM orders
                    WHERE status = 'OPEN' AND trader_id IN ({self._placeholders(ids)})
                    ORDER BY created_at, rowid
                """,
                ids,
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_holdings_for_bots(self, bot_ids: Iterable[str]) -> List[Dict[str, Any]]:
        """Return portfolio rows belonging to the given bots."""
        ids = list(bot_ids)
        if not ids:
            return []
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                f"""
                    SELECT * FROM portfolios
                    WHERE trader_id IN ({self._placeholders(ids)})
                    ORDER BY rowid
                """,
                ids,
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_strategies(self, strategy_ids: Iterable[str]) -> Dict[str, Any]:
        """Return raw rules payloads keyed by strategy id."""
        ids = [sid for sid in strategy_ids if sid]
        if not ids:
            return {}
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                f"SELECT id, rules FROM strategies WHERE id IN ({self._placeholders(ids)})",
                ids,
            )
            return {row["id"]: row["rules"] for row in cursor.fetchall()}

    # --- Bulk writes ---
    def apply_order_operations(self, cancel_ids: List[str], new_orders: List[Dict[str, Any]]) -> Dict[str, int]:
        """
        Cancel the given OPEN orders and insert new order rows in one transaction.
        Returns the number of rows cancelled and inserted.
        """
        cancelled = 0
        inserted = 0
        if not cancel_ids and not new_orders:
            return {"cancelled": cancelled, "inserted": inserted}

        with self._lock:
            with self.conn:
                cursor = self.conn.cursor()
                if cancel_ids:
                    cursor.execute(
                        f"""
                            UPDATE orders SET status = 'CANCELLED'
                            WHERE status = 'OPEN' AND id IN ({self._placeholders(cancel_ids)})
                        """,
                        list(cancel_ids),
                    )
                    cancelled = cursor.rowcount
                if new_orders:
                    cursor.executemany(
                        """
                            INSERT INTO orders (id, stock_id, trader_id, type, limit_price_cents, quantity, status)
                            VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        [
                            (
                                order.get("id") or self._new_id(),
                                order["stock_id"],
                                order["trader_id"],
                                order["type"],
                                order.get("limit_price_cents"),
                                order["quantity"],
                                order.get("status", "OPEN"),
                            )
                            for order in new_orders
                        ],
                    )
                    inserted = len(new_orders)
        return {"cancelled": cancelled, "inserted": inserted}

    # --- Seeding / admin helpers ---
    def create_strategy(self, name: str, rules: Any, user_id: Optional[str] = None, strategy_id: Optional[str] = None) -> str:
        """Store a strategy; rules may be a JSON string or a JSON-serializable list."""
        strategy_id = strategy_id or self._new_id()
        payload = rules if isinstance(rules, str) else json.dumps(rules)
        with self._lock:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO strategies (id, user_id, name, rules) VALUES (?, ?, ?, ?)",
                    (strategy_id, user_id, name, payload),
                )
        return strategy_id

    def create_bot(
        self,
        name: str,
        balance_cents: int,
        strategy_id: Optional[str] = None,
        user_id: Optional[str] = None,
        is_bot: bool = True,
        bot_id: Optional[str] = None,
    ) -> str:
        bot_id = bot_id or self._new_id()
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                        INSERT INTO traders (id, name, is_bot, balance_cents, strategy_id, user_id)
                        VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (bot_id, name, 1 if is_bot else 0, balance_cents, strategy_id, user_id),
                )
        return bot_id

    def create_instrument(self, symbol: str, price_cents: int, name: Optional[str] = None, total_shares: int = 0, instrument_id: Optional[str] = None) -> str:
        instrument_id = instrument_id or self._new_id()
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                        INSERT INTO stocks (id, symbol, name, current_price_cents, total_shares)
                        VALUES (?, ?, ?, ?, ?)
                    """,
                    (instrument_id, symbol, name or symbol, price_cents, total_shares),
                )
        return instrument_id

    def set_holding(self, bot_id: str, instrument_id: str, shares_owned: int):
        """Upsert a bot's share count for one instrument."""
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                        INSERT INTO portfolios (trader_id, stock_id, shares_owned)
                        VALUES (?, ?, ?)
                        ON CONFLICT(trader_id, stock_id) DO UPDATE SET
                            shares_owned=excluded.shares_owned
                    """,
                    (bot_id, instrument_id, shares_owned),
                )

    def create_order(
        self,
        bot_id: str,
        instrument_id: str,
        side: str,
        quantity: int,
        limit_price_cents: Optional[int] = None,
        status: str = "OPEN",
        order_id: Optional[str] = None,
    ) -> str:
        order_id = order_id or self._new_id()
        with self._lock:
            with self.conn:
                self.conn.execute(
                    """
                        INSERT INTO orders (id, stock_id, trader_id, type, limit_price_cents, quantity, status)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (order_id, instrument_id, bot_id, side, limit_price_cents, quantity, status),
                )
        return order_id

    def get_orders(self, bot_id: Optional[str] = None, status: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return orders in insertion order, optionally filtered by bot and status."""
        clauses = []
        params: list = []
        if bot_id is not None:
            clauses.append("trader_id = ?")
            params.append(bot_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f"SELECT * FROM orders {where} ORDER BY rowid", params)
            return [dict(row) for row in cursor.fetchall()]

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Database connection closed")
