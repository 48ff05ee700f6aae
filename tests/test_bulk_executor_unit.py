from unittest.mock import MagicMock

import pytest

from bot_logic.models import NewOrder, OrderSide
from bot_logic.services.bulk_executor import BulkExecutor


def _order(quantity=1):
    return NewOrder(bot_id="bot-1", instrument_id="stk-1", side=OrderSide.BUY, quantity=quantity, limit_price_cents=100)


@pytest.mark.asyncio
async def test_no_mutations_skips_database(fake_logger):
    db = MagicMock()
    executor = BulkExecutor(db, logger=fake_logger, actions_logger=fake_logger)

    result = await executor.apply([], [])

    db.apply_order_operations.assert_not_called()
    assert result["cancelled"] == 0
    assert result["inserted"] == 0


@pytest.mark.asyncio
async def test_cancel_ids_deduplicated_and_orders_serialized(fake_logger):
    db = MagicMock()
    db.apply_order_operations.return_value = {"cancelled": 2, "inserted": 1}
    executor = BulkExecutor(db, logger=fake_logger, actions_logger=fake_logger)

    result = await executor.apply(["ord-1", "ord-2", "ord-1"], [_order(4)])

    db.apply_order_operations.assert_called_once()
    ids, rows = db.apply_order_operations.call_args.args
    assert ids == ["ord-1", "ord-2"]
    assert rows == [{
        "trader_id": "bot-1",
        "stock_id": "stk-1",
        "type": "BUY",
        "quantity": 4,
        "limit_price_cents": 100,
        "status": "OPEN",
    }]
    assert result["cancelled"] == 2
    assert result["inserted"] == 1


@pytest.mark.asyncio
async def test_orders_capped_per_batch(fake_logger):
    db = MagicMock()
    db.apply_order_operations.return_value = {"cancelled": 0, "inserted": 2}
    executor = BulkExecutor(db, max_orders_per_batch=2, logger=fake_logger, actions_logger=fake_logger)

    result = await executor.apply([], [_order(1), _order(2), _order(3)])

    _, rows = db.apply_order_operations.call_args.args
    assert [row["quantity"] for row in rows] == [1, 2]
    assert len(result["orders"]) == 2
    fake_logger.warning.assert_called_once()


@pytest.mark.asyncio
async def test_persistence_error_propagates(fake_logger):
    db = MagicMock()
    db.apply_order_operations.side_effect = RuntimeError("disk full")
    executor = BulkExecutor(db, logger=fake_logger, actions_logger=fake_logger)

    with pytest.raises(RuntimeError):
        await executor.apply(["ord-1"], [])


@pytest.mark.asyncio
async def test_already_closed_orders_are_left_alone(db):
    bot_id = db.create_bot("alpha", 0)
    stock_id = db.create_instrument("ACME", 100)
    open_id = db.create_order(bot_id, stock_id, "BUY", 1, 100)
    filled_id = db.create_order(bot_id, stock_id, "BUY", 1, 100, status="FILLED")

    result = await BulkExecutor(db).apply([open_id, filled_id], [])

    assert result["cancelled"] == 1
    statuses = {row["id"]: row["status"] for row in db.get_orders(bot_id=bot_id)}
    assert statuses == {open_id: "CANCELLED", filled_id: "FILLED"}
