import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

from bot_logic.config import MAX_ORDERS_PER_BATCH
from bot_logic.models import NewOrder


class BulkExecutor:
    """
    Applies a tick's accumulated mutations in one round trip: a bulk cancel of
    stale order ids and a bulk insert of new orders. The only component that
    writes persisted state.
    """

    def __init__(
        self,
        db: Any,
        max_orders_per_batch: int = MAX_ORDERS_PER_BATCH,
        logger: Optional[logging.Logger] = None,
        actions_logger: Optional[logging.Logger] = None,
    ):
        self.db = db
        self.max_orders_per_batch = max_orders_per_batch
        self.logger = logger or logging.getLogger(__name__)
        self.actions_logger = actions_logger or logging.getLogger("bot_actions")

    def _prepare(self, cancel_ids: Sequence[str], new_orders: Sequence[NewOrder]) -> tuple[List[str], List[NewOrder]]:
        unique_ids = list(dict.fromkeys(cancel_ids))
        orders = list(new_orders)
        if self.max_orders_per_batch and len(orders) > self.max_orders_per_batch:
            self.logger.warning(
                f"⚠️ Too many orders ({len(orders)}), limiting to {self.max_orders_per_batch}"
            )
            orders = orders[: self.max_orders_per_batch]
        return unique_ids, orders

    async def apply(self, cancel_ids: Sequence[str], new_orders: Sequence[NewOrder]) -> Dict[str, Any]:
        """Cancel and insert in a single transaction; an empty half is skipped."""
        ids, orders = self._prepare(cancel_ids, new_orders)
        result: Dict[str, Any] = {"cancelled": 0, "inserted": 0, "orders": orders, "cancel_ids": ids}
        if not ids and not orders:
            self.logger.debug("No order mutations this tick")
            return result

        if ids:
            self.actions_logger.info(f"✂️ Cancelling {len(ids)} stale orders...")
        if orders:
            self.actions_logger.info(f"🚀 Placing {len(orders)} new orders...")

        counts = await asyncio.to_thread(
            self.db.apply_order_operations,
            ids,
            [order.to_row() for order in orders],
        )
        result.update(counts)
        if ids and counts.get("cancelled", 0) < len(ids):
            self.logger.info(
                f"{len(ids) - counts.get('cancelled', 0)} orders were no longer OPEN and were left untouched"
            )
        return result
