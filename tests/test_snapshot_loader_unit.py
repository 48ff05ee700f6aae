import pytest

from bot_logic.models import OrderStatus
from bot_logic.services.snapshot_loader import SnapshotLoader


class StubDB:
    """Returns canned rows and records which reads were made."""

    def __init__(self, bots=None, instruments=None, orders=None, holdings=None, strategies=None):
        self.bots = bots or []
        self.instruments = instruments or []
        self.orders = orders or []
        self.holdings = holdings or []
        self.strategies = strategies or {}
        self.calls = []

    def get_bots(self, owner_id=None):
        self.calls.append(("get_bots", owner_id))
        return self.bots

    def get_instruments(self):
        self.calls.append(("get_instruments",))
        return self.instruments

    def get_open_orders_for_bots(self, bot_ids):
        self.calls.append(("get_open_orders_for_bots", list(bot_ids)))
        return self.orders

    def get_holdings_for_bots(self, bot_ids):
        self.calls.append(("get_holdings_for_bots", list(bot_ids)))
        return self.holdings

    def get_strategies(self, strategy_ids):
        self.calls.append(("get_strategies", list(strategy_ids)))
        return self.strategies


@pytest.mark.asyncio
async def test_empty_market_skips_second_phase(fake_logger):
    db = StubDB(bots=[{"id": "bot-1", "name": "alpha", "balance_cents": 100}])

    snapshot = await SnapshotLoader(db, logger=fake_logger).load()

    assert snapshot.is_empty
    assert {call[0] for call in db.calls} == {"get_bots", "get_instruments"}
    fake_logger.info.assert_called_once()


@pytest.mark.asyncio
async def test_rows_outside_roster_are_dropped_and_values_coerced():
    db = StubDB(
        bots=[{"id": "bot-1", "name": "alpha", "balance_cents": "250000", "strategy_id": "strat-1"}],
        instruments=[{"id": "stk-1", "symbol": "ACME", "name": "Acme", "current_price_cents": "1200", "total_shares": "1000"}],
        orders=[
            {"id": "ord-1", "trader_id": "bot-1", "stock_id": "stk-1", "type": "BUY", "quantity": "3", "status": "OPEN", "limit_price_cents": "1200"},
            {"id": "ord-2", "trader_id": "someone", "stock_id": "stk-1", "type": "SELL", "quantity": 1, "status": "OPEN"},
            {"id": "ord-3", "trader_id": "bot-1", "stock_id": "stk-1", "type": "SELL", "quantity": 1, "status": "FILLED"},
        ],
        holdings=[
            {"trader_id": "bot-1", "stock_id": "stk-1", "shares_owned": "40"},
            {"trader_id": "someone", "stock_id": "stk-1", "shares_owned": 7},
        ],
        strategies={"strat-1": "[]"},
    )

    snapshot = await SnapshotLoader(db).load(owner_id="owner-1")

    assert ("get_bots", "owner-1") in db.calls
    assert ("get_strategies", ["strat-1"]) in db.calls
    assert snapshot.bots[0].balance_cents == 250_000
    assert snapshot.instruments[0].price_cents == 1_200
    assert [order.id for order in snapshot.open_orders] == ["ord-1"]
    assert snapshot.open_orders[0].quantity == 3
    assert snapshot.open_orders[0].status is OrderStatus.OPEN
    assert [(h.bot_id, h.shares_owned) for h in snapshot.holdings] == [("bot-1", 40)]
    assert snapshot.strategies == {"strat-1": "[]"}


@pytest.mark.asyncio
async def test_load_from_sqlite(db):
    strategy_id = db.create_strategy("Momentum", [])
    bot_id = db.create_bot("alpha", 10_000, strategy_id=strategy_id)
    stock_id = db.create_instrument("ACME", 500)
    db.set_holding(bot_id, stock_id, 2)
    db.create_order(bot_id, stock_id, "SELL", 1, 500)

    snapshot = await SnapshotLoader(db).load()

    assert not snapshot.is_empty
    assert snapshot.bots[0].id == bot_id
    assert snapshot.holdings[0].shares_owned == 2
    assert len(snapshot.open_orders) == 1
    assert snapshot.strategies[strategy_id] == "[]"
