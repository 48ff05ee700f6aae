import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bot_logic.config import DEFAULT_SIZE_PCT, MIN_LIMIT_PRICE_CENTS, MIN_ORDER_QUANTITY
from bot_logic.models import NewOrder, Order, OrderSide, OrderStatus, Position
from bot_logic.rules import EventType, RuleEvent


@dataclass
class DecisionSummary:
    """What one call to ``apply_events`` added to the tick's mutations."""

    new_orders: List[NewOrder] = field(default_factory=list)
    cancel_ids: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class DecisionAccumulator:
    """
    Turns fired events into order mutations for a whole tick.

    Holds the two per-tick ledgers: remaining cash per bot and remaining
    sellable shares per (bot, instrument). Every accepted BUY/SELL is booked
    before the next call reads them, so later decisions in the same tick see
    the effect of earlier ones.
    """

    def __init__(
        self,
        available_balance: Dict[str, int],
        default_size_pct: float = DEFAULT_SIZE_PCT,
        min_quantity: int = MIN_ORDER_QUANTITY,
        logger: Optional[logging.Logger] = None,
    ):
        # Same dict as MarketIndex.available_balance; facts read the running value
        self._balance = available_balance
        self._sellable: Dict[Tuple[str, str], int] = {}
        self._cancel_ids: Dict[str, None] = {}
        self.new_orders: List[NewOrder] = []
        self.default_size_pct = default_size_pct
        self.min_quantity = max(1, int(min_quantity))
        self.logger = logger or logging.getLogger(__name__)

    @property
    def cancel_ids(self) -> List[str]:
        return list(self._cancel_ids)

    def remaining_balance(self, bot_id: str) -> int:
        return self._balance.get(bot_id, 0)

    def _size_pct(self, params: Dict[str, Any]) -> float:
        raw = params.get("sizePct", self.default_size_pct)
        if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
            raise ValueError(f"sizePct must be a number, got {raw!r}")
        pct = float(raw)
        if not math.isfinite(pct):
            raise ValueError(f"sizePct must be finite, got {raw!r}")
        return min(1.0, max(0.0, pct))

    def apply_events(
        self,
        bot_id: str,
        position: Optional[Position],
        events: Iterable[RuleEvent],
        bot_orders: Iterable[Order],
    ) -> DecisionSummary:
        """
        Apply the fired events of one (bot, position) evaluation in order.
        Either every event is booked or, if one raises, none of them are.
        """
        balance_before = self._balance.get(bot_id)
        sellable_before = dict(self._sellable)
        cancel_before = dict(self._cancel_ids)
        orders_before = len(self.new_orders)
        bot_orders = list(bot_orders)
        summary = DecisionSummary()

        try:
            for event in events:
                if event.type is EventType.CANCEL:
                    self._cancel(bot_id, position, event.params, bot_orders, summary)
                elif event.type is EventType.SELL:
                    self._sell(bot_id, position, event.params, summary)
                elif event.type is EventType.BUY:
                    self._buy(bot_id, position, event.params, summary)
                else:
                    raise ValueError(f"Unhandled event type: {event.type}")
        except Exception:
            if balance_before is None:
                self._balance.pop(bot_id, None)
            else:
                self._balance[bot_id] = balance_before
            self._sellable = sellable_before
            self._cancel_ids = cancel_before
            del self.new_orders[orders_before:]
            raise

        return summary

    def _cancel(self, bot_id: str, position: Optional[Position], params: Dict[str, Any], bot_orders: List[Order], summary: DecisionSummary):
        whole_bot = position is None or params.get("scope") == "all"
        side = None
        if params.get("side"):
            side = OrderSide(str(params["side"]).upper())

        for order in bot_orders:
            if order.bot_id != bot_id or order.status is not OrderStatus.OPEN:
                continue
            if not whole_bot and order.instrument_id != position.instrument_id:
                continue
            if side is not None and order.side is not side:
                continue
            if order.id not in self._cancel_ids:
                self._cancel_ids[order.id] = None
                summary.cancel_ids.append(order.id)

    def _sell(self, bot_id: str, position: Optional[Position], params: Dict[str, Any], summary: DecisionSummary):
        if position is None or position.price_cents <= 0:
            summary.skipped.append("SELL: no priced position")
            return
        pct = self._size_pct(params)

        key = (bot_id, position.instrument_id)
        sellable = self._sellable.setdefault(key, position.shares_owned)
        quantity = math.floor(sellable * pct)
        if quantity < self.min_quantity:
            summary.skipped.append(f"SELL: size rounds to zero ({sellable} sellable, sizePct={pct})")
            return

        self._sellable[key] = sellable - quantity
        order = NewOrder(
            bot_id=bot_id,
            instrument_id=position.instrument_id,
            side=OrderSide.SELL,
            quantity=quantity,
            limit_price_cents=max(MIN_LIMIT_PRICE_CENTS, position.price_cents),
        )
        self.new_orders.append(order)
        summary.new_orders.append(order)

    def _buy(self, bot_id: str, position: Optional[Position], params: Dict[str, Any], summary: DecisionSummary):
        if position is None or position.price_cents <= 0:
            summary.skipped.append("BUY: no priced position")
            return
        pct = self._size_pct(params)

        # Read the ledger as it stands now, after earlier decisions this tick
        remaining = self.remaining_balance(bot_id)
        limit_price = max(MIN_LIMIT_PRICE_CENTS, position.price_cents)
        budget = math.floor(remaining * pct)
        quantity = budget // limit_price
        if quantity < self.min_quantity:
            summary.skipped.append(f"BUY: size rounds to zero (balance {remaining}, price {limit_price})")
            return

        self._balance[bot_id] = remaining - quantity * limit_price
        order = NewOrder(
            bot_id=bot_id,
            instrument_id=position.instrument_id,
            side=OrderSide.BUY,
            quantity=quantity,
            limit_price_cents=limit_price,
        )
        self.new_orders.append(order)
        summary.new_orders.append(order)
