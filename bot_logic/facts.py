"""Fact builder for the rule engine.

Facts are derived for exactly one (bot, instrument) pair and thrown away after
the evaluation. Several of them are synthetic placeholders until a price
history feed exists:

- ``volatility`` grows with position size, capped at 10%. It is not a
  measure of real price movement.
- ``rsi`` is 65 while holding and 35 otherwise.
- ``emaFastAboveSlow`` is always ``True``.
- ``priceChangePercent`` is 0; no previous price survives between ticks.

Rule authors should not read these as financial signals.
"""

import random
from typing import Any, Dict, Optional

from bot_logic.models import Position

BASE_VOLATILITY = 0.02
MAX_POSITION_VOLATILITY = 0.05
MAX_VOLATILITY = 0.10
VOLATILITY_SHARE_SCALE = 10000

PLACEHOLDER_RSI_HOLDING = 65
PLACEHOLDER_RSI_FLAT = 35
PLACEHOLDER_PRICE_CHANGE_PCT = 0.0

RANDOM_CHANCE_SCALE = 100

FACT_NAMES = (
    "hasPosition",
    "sharesOwned",
    "currentPrice",
    "volatility",
    "openOrders",
    "rsi",
    "emaFastAboveSlow",
    "stockSymbol",
    "availableBalance",
    "botId",
    "stockId",
    "priceChangePercent",
    "randomChance",
)


def synthetic_volatility(shares_owned: int) -> float:
    position_volatility = min(MAX_POSITION_VOLATILITY, shares_owned / VOLATILITY_SHARE_SCALE) if shares_owned > 0 else 0.0
    return min(MAX_VOLATILITY, BASE_VOLATILITY + position_volatility)


def roll_random_chance(rng: Optional[random.Random] = None) -> float:
    """A uniform draw in [0, 100) for the ``randomChance`` fact."""
    return (rng or random).random() * RANDOM_CHANCE_SCALE


def build_facts(
    position: Optional[Position],
    open_orders: int = 0,
    available_balance: int = 0,
    bot_id: Optional[str] = None,
    random_chance: Optional[float] = None,
) -> Dict[str, Any]:
    """Return the fact set for one instrument (or for a bot evaluated without one)."""
    shares = position.shares_owned if position else 0
    price = position.price_cents if position else 0
    has_position = shares > 0

    return {
        "hasPosition": has_position,
        "sharesOwned": shares,
        "currentPrice": price,
        "volatility": synthetic_volatility(shares),
        "openOrders": max(0, int(open_orders or 0)),
        "rsi": PLACEHOLDER_RSI_HOLDING if has_position else PLACEHOLDER_RSI_FLAT,
        "emaFastAboveSlow": True,
        "stockSymbol": position.symbol if position else "unknown",
        "availableBalance": max(0, int(available_balance or 0)),
        "botId": bot_id or "",
        "stockId": position.instrument_id if position else "",
        "priceChangePercent": PLACEHOLDER_PRICE_CHANGE_PCT,
        "randomChance": roll_random_chance() if random_chance is None else float(random_chance),
    }
