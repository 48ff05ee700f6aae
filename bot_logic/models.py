"""Domain records shared by the tick pipeline.

Rows come out of the database as plain dicts; the helpers here coerce them
into typed records once, at snapshot time, so later stages never deal with
numeric strings.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    OPEN = "OPEN"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"


def _to_int(value: Any, default: int = 0) -> int:
    """Coerce stored numeric values (often strings for BIGINT columns) to int."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return int(float(str(value).strip()))


@dataclass(frozen=True)
class Bot:
    id: str
    name: str
    balance_cents: int
    strategy_id: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Bot":
        return cls(
            id=str(row["id"]),
            name=row.get("name") or str(row["id"]),
            balance_cents=_to_int(row.get("balance_cents")),
            strategy_id=row.get("strategy_id"),
            user_id=row.get("user_id"),
        )


@dataclass(frozen=True)
class Instrument:
    id: str
    symbol: str
    name: str
    price_cents: int
    total_shares: int = 0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Instrument":
        return cls(
            id=str(row["id"]),
            symbol=row.get("symbol") or "",
            name=row.get("name") or "",
            price_cents=_to_int(row.get("current_price_cents")),
            total_shares=_to_int(row.get("total_shares")),
        )


@dataclass(frozen=True)
class Holding:
    bot_id: str
    instrument_id: str
    shares_owned: int

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Holding":
        return cls(
            bot_id=str(row["trader_id"]),
            instrument_id=str(row["stock_id"]),
            shares_owned=max(0, _to_int(row.get("shares_owned"))),
        )


@dataclass(frozen=True)
class Order:
    id: str
    bot_id: str
    instrument_id: str
    side: OrderSide
    quantity: int
    status: OrderStatus
    limit_price_cents: Optional[int] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Order":
        limit_price = row.get("limit_price_cents")
        return cls(
            id=str(row["id"]),
            bot_id=str(row["trader_id"]),
            instrument_id=str(row["stock_id"]),
            side=OrderSide(row["type"]),
            quantity=_to_int(row.get("quantity")),
            status=OrderStatus(row.get("status") or OrderStatus.OPEN.value),
            limit_price_cents=None if limit_price is None else _to_int(limit_price),
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class NewOrder:
    """An order row the bulk executor will insert."""

    bot_id: str
    instrument_id: str
    side: OrderSide
    quantity: int
    limit_price_cents: int
    status: OrderStatus = OrderStatus.OPEN

    @property
    def notional_cents(self) -> int:
        return self.quantity * self.limit_price_cents

    def to_row(self) -> Dict[str, Any]:
        return {
            "trader_id": self.bot_id,
            "stock_id": self.instrument_id,
            "type": self.side.value,
            "quantity": self.quantity,
            "limit_price_cents": self.limit_price_cents,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class Position:
    """A bot's holding joined with the instrument it refers to."""

    instrument_id: str
    symbol: str
    name: str
    shares_owned: int
    price_cents: int

    def describe(self) -> str:
        return f"{self.symbol} ({self.shares_owned} shares)"


@dataclass(frozen=True)
class MarketSnapshot:
    """Point-in-time view used for one whole tick. Never re-queried mid-tick."""

    bots: Tuple[Bot, ...] = ()
    instruments: Tuple[Instrument, ...] = ()
    open_orders: Tuple[Order, ...] = ()
    holdings: Tuple[Holding, ...] = ()
    # strategy id -> raw rules payload as stored
    strategies: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.bots or not self.instruments
