from bot_logic.market_index import organize_market_data
from tests.factories import make_bot, make_holding, make_instrument, make_order, make_snapshot


def _snapshot():
    return make_snapshot(
        bots=[make_bot("bot-1", balance_cents=5_000), make_bot("bot-2", balance_cents=0)],
        instruments=[make_instrument("stk-1"), make_instrument("stk-2", symbol="INIT")],
        open_orders=[
            make_order("ord-1", bot_id="bot-1", instrument_id="stk-1"),
            make_order("ord-2", bot_id="bot-1", instrument_id="stk-2", side="SELL"),
            make_order("ord-3", bot_id="bot-1", instrument_id="stk-1", status="FILLED"),
            make_order("ord-4", bot_id="ghost", instrument_id="stk-1"),
        ],
        holdings=[
            make_holding("bot-1", "stk-1", 12),
            make_holding("bot-2", "stk-2", 0),
            make_holding("ghost", "stk-1", 99),
        ],
    )


def test_orders_grouped_by_bot_and_filtered():
    index = organize_market_data(_snapshot())

    assert [order.id for order in index.orders_for("bot-1")] == ["ord-1", "ord-2"]
    assert [order.id for order in index.orders_for("bot-1", "stk-2")] == ["ord-2"]
    assert index.orders_for("bot-2") == []
    assert "ghost" not in index.orders_by_bot


def test_holdings_and_balances_seeded_from_snapshot():
    index = organize_market_data(_snapshot())

    assert index.shares_owned("bot-1", "stk-1") == 12
    assert index.shares_owned("bot-2", "stk-2") == 0
    assert index.shares_owned("bot-1", "stk-2") == 0
    assert ("ghost", "stk-1") not in index.holding_by_bot_instrument
    assert index.available_balance == {"bot-1": 5_000, "bot-2": 0}


def test_organize_is_pure_and_repeatable():
    snapshot = _snapshot()

    first = organize_market_data(snapshot)
    first.available_balance["bot-1"] = 1
    second = organize_market_data(snapshot)

    assert second.available_balance["bot-1"] == 5_000
    assert second.orders_by_bot == organize_market_data(snapshot).orders_by_bot


def test_orders_for_returns_a_copy():
    index = organize_market_data(_snapshot())

    index.orders_for("bot-1").clear()

    assert len(index.orders_for("bot-1")) == 2
