"""Starter rule sets offered when a bot is created."""

import copy
from typing import Any, Dict, List

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "priority": 5,
        "conditions": {
            "all": [
                {"fact": "hasPosition", "operator": "equal", "value": False},
                {"fact": "volatility", "operator": "lessThan", "value": 0.035},
            ],
        },
        "event": {"type": "BUY", "params": {"sizePct": 1}},
    },
    {
        "priority": 10,
        "conditions": {
            "all": [{"fact": "hasPosition", "operator": "equal", "value": True}],
        },
        "event": {"type": "SELL", "params": {"sizePct": 1}},
    },
    {
        "priority": 20,
        "conditions": {
            "all": [
                {"fact": "openOrders", "operator": "greaterThan", "value": 0},
                {"fact": "volatility", "operator": "greaterThan", "value": 0.05},
            ],
        },
        "event": {"type": "CANCEL", "params": {"reason": "High volatility"}},
    },
]

BOT_PRESETS: Dict[str, Dict[str, Any]] = {
    "momentum": {"label": "Momentum Bot", "strategy_name": "Momentum", "rules": DEFAULT_RULES},
    "swing": {"label": "Swing Bot", "strategy_name": "Swing", "rules": DEFAULT_RULES},
    "random": {"label": "Random Bot", "strategy_name": "Random", "rules": DEFAULT_RULES},
}


def preset_rules(preset_id: str) -> List[Dict[str, Any]]:
    """Return a fresh copy of a preset's rules so callers can edit them safely."""
    try:
        preset = BOT_PRESETS[preset_id]
    except KeyError:
        raise ValueError(f"Unknown bot preset: {preset_id}") from None
    return copy.deepcopy(preset["rules"])
