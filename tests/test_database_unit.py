import os
import sqlite3
import tempfile
import unittest

from bot_logic.database import MarketDatabase


class TestMarketDatabase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "test.db")
        self.db = MarketDatabase(self.db_path)
        self.strategy_id = self.db.create_strategy("Momentum", [])
        self.bot_id = self.db.create_bot("alpha", 50_000, strategy_id=self.strategy_id, user_id="owner-1")
        self.stock_id = self.db.create_instrument("ACME", 1_000)

    def tearDown(self):
        self.db.close()
        self.tmpdir.cleanup()

    def test_get_bots_excludes_humans_and_filters_owner(self):
        self.db.create_bot("human", 10_000, is_bot=False)
        self.db.create_bot("beta", 10_000, user_id="owner-2")

        names = [row["name"] for row in self.db.get_bots()]
        self.assertEqual(names, ["alpha", "beta"])

        owned = self.db.get_bots(owner_id="owner-1")
        self.assertEqual([row["id"] for row in owned], [self.bot_id])

    def test_open_orders_restricted_to_bot_ids_and_status(self):
        other_bot = self.db.create_bot("beta", 10_000)
        mine = self.db.create_order(self.bot_id, self.stock_id, "BUY", 2, 1_000)
        self.db.create_order(self.bot_id, self.stock_id, "SELL", 1, 1_000, status="FILLED")
        self.db.create_order(other_bot, self.stock_id, "BUY", 1, 1_000)

        rows = self.db.get_open_orders_for_bots([self.bot_id])
        self.assertEqual([row["id"] for row in rows], [mine])
        self.assertEqual(self.db.get_open_orders_for_bots([]), [])

    def test_set_holding_upserts(self):
        self.db.set_holding(self.bot_id, self.stock_id, 5)
        self.db.set_holding(self.bot_id, self.stock_id, 7)

        rows = self.db.get_holdings_for_bots([self.bot_id])
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["shares_owned"], 7)

    def test_get_strategies_returns_raw_rules(self):
        strategies = self.db.get_strategies([self.strategy_id, None])
        self.assertEqual(strategies, {self.strategy_id: "[]"})
        self.assertEqual(self.db.get_strategies([]), {})

    def test_apply_order_operations_cancels_only_open_and_inserts(self):
        open_id = self.db.create_order(self.bot_id, self.stock_id, "BUY", 1, 1_000)
        filled_id = self.db.create_order(self.bot_id, self.stock_id, "SELL", 1, 1_000, status="FILLED")

        counts = self.db.apply_order_operations(
            [open_id, filled_id],
            [{"trader_id": self.bot_id, "stock_id": self.stock_id, "type": "SELL", "quantity": 3, "limit_price_cents": 990}],
        )

        self.assertEqual(counts, {"cancelled": 1, "inserted": 1})
        by_id = {row["id"]: row for row in self.db.get_orders(bot_id=self.bot_id)}
        self.assertEqual(by_id[open_id]["status"], "CANCELLED")
        self.assertEqual(by_id[filled_id]["status"], "FILLED")
        new_rows = self.db.get_orders(bot_id=self.bot_id, status="OPEN")
        self.assertEqual(len(new_rows), 1)
        self.assertEqual(new_rows[0]["quantity"], 3)

    def test_apply_order_operations_rolls_back_on_failure(self):
        open_id = self.db.create_order(self.bot_id, self.stock_id, "BUY", 1, 1_000)

        with self.assertRaises(sqlite3.IntegrityError):
            self.db.apply_order_operations(
                [open_id],
                [{"trader_id": self.bot_id, "stock_id": self.stock_id, "type": "BUY", "quantity": 0, "limit_price_cents": 1_000}],
            )

        rows = self.db.get_orders(bot_id=self.bot_id)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["status"], "OPEN")

    def test_apply_order_operations_noop_when_empty(self):
        self.assertEqual(self.db.apply_order_operations([], []), {"cancelled": 0, "inserted": 0})


if __name__ == "__main__":
    unittest.main()
