import asyncio
import logging
from typing import Any, Optional

from bot_logic.models import Bot, Holding, Instrument, MarketSnapshot, Order


class SnapshotLoader:
    """
    Loads the bot roster, instruments, open orders, holdings and strategies
    for one tick in two phases. Roster and instruments are independent and
    fetched together; everything else is filtered by the roster's ids.
    """

    def __init__(self, db: Any, logger: Optional[logging.Logger] = None):
        self.db = db
        self.logger = logger or logging.getLogger(__name__)

    async def load(self, owner_id: Optional[str] = None) -> MarketSnapshot:
        bot_rows, instrument_rows = await asyncio.gather(
            asyncio.to_thread(self.db.get_bots, owner_id),
            asyncio.to_thread(self.db.get_instruments),
        )

        if not bot_rows or not instrument_rows:
            self.logger.info(
                f"Empty market (bots={len(bot_rows)}, instruments={len(instrument_rows)}); nothing to evaluate"
            )
            return MarketSnapshot()

        bots = tuple(Bot.from_row(row) for row in bot_rows)
        instruments = tuple(Instrument.from_row(row) for row in instrument_rows)
        bot_ids = [bot.id for bot in bots]
        strategy_ids = sorted({bot.strategy_id for bot in bots if bot.strategy_id})

        order_rows, holding_rows, strategies = await asyncio.gather(
            asyncio.to_thread(self.db.get_open_orders_for_bots, bot_ids),
            asyncio.to_thread(self.db.get_holdings_for_bots, bot_ids),
            asyncio.to_thread(self.db.get_strategies, strategy_ids),
        )

        # Drop rows outside the roster
        roster = set(bot_ids)
        open_orders = tuple(
            Order.from_row(row)
            for row in order_rows
            if str(row["trader_id"]) in roster and row.get("status", "OPEN") == "OPEN"
        )
        holdings = tuple(
            Holding.from_row(row) for row in holding_rows if str(row["trader_id"]) in roster
        )

        self.logger.debug(
            f"Snapshot loaded: bots={len(bots)} instruments={len(instruments)} "
            f"open_orders={len(open_orders)} holdings={len(holdings)} strategies={len(strategies)}"
        )
        return MarketSnapshot(
            bots=bots,
            instruments=instruments,
            open_orders=open_orders,
            holdings=holdings,
            strategies=dict(strategies),
        )
