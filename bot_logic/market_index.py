from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from bot_logic.models import MarketSnapshot, Order, OrderStatus


@dataclass
class MarketIndex:
    """O(1) lookups derived from a snapshot for the duration of one tick."""

    orders_by_bot: Dict[str, List[Order]] = field(default_factory=dict)
    holding_by_bot_instrument: Dict[Tuple[str, str], int] = field(default_factory=dict)
    # Ephemeral per-tick spendable balance; seeded from stored balances, never persisted
    available_balance: Dict[str, int] = field(default_factory=dict)

    def orders_for(self, bot_id: str, instrument_id: str | None = None) -> List[Order]:
        orders = self.orders_by_bot.get(bot_id, [])
        if instrument_id is None:
            return list(orders)
        return [order for order in orders if order.instrument_id == instrument_id]

    def shares_owned(self, bot_id: str, instrument_id: str) -> int:
        return self.holding_by_bot_instrument.get((bot_id, instrument_id), 0)


def organize_market_data(snapshot: MarketSnapshot) -> MarketIndex:
    """Build per-tick lookup tables from a snapshot. Pure; does no I/O."""
    bot_ids = {bot.id for bot in snapshot.bots}

    orders_by_bot: Dict[str, List[Order]] = {}
    for order in snapshot.open_orders:
        if order.status is not OrderStatus.OPEN or order.bot_id not in bot_ids:
            continue
        orders_by_bot.setdefault(order.bot_id, []).append(order)

    holding_by_bot_instrument: Dict[Tuple[str, str], int] = {}
    for holding in snapshot.holdings:
        if holding.bot_id not in bot_ids:
            continue
        holding_by_bot_instrument[(holding.bot_id, holding.instrument_id)] = int(holding.shares_owned)

    available_balance = {bot.id: int(bot.balance_cents) for bot in snapshot.bots}

    return MarketIndex(
        orders_by_bot=orders_by_bot,
        holding_by_bot_instrument=holding_by_bot_instrument,
        available_balance=available_balance,
    )
