import asyncio
import json
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from bot_logic.config import BOT_DB_PATH, BOT_OWNER_ID
from bot_logic.database import MarketDatabase
from bot_logic.facts import build_facts, roll_random_chance
from bot_logic.logger_config import bot_logging_context, set_logging_context, setup_logging
from bot_logic.market_index import MarketIndex, organize_market_data
from bot_logic.models import Bot, MarketSnapshot, NewOrder, Position
from bot_logic.rules import RuleEngine, RuleRegistrationError, RuleSetParseError, parse_rule_set
from bot_logic.services.bulk_executor import BulkExecutor
from bot_logic.services.decision_accumulator import DecisionAccumulator
from bot_logic.services.snapshot_loader import SnapshotLoader

logger = logging.getLogger(__name__)
telemetry_logger = logging.getLogger('telemetry')
bot_actions_logger = logging.getLogger('bot_actions')


@dataclass
class TickResult:
    tick_id: str
    empty_market: bool = False
    bots_evaluated: int = 0
    events_fired: int = 0
    skipped_bots: List[str] = field(default_factory=list)
    failed_bots: List[str] = field(default_factory=list)
    position_errors: List[Tuple[str, Optional[str]]] = field(default_factory=list)
    cancel_ids: List[str] = field(default_factory=list)
    new_orders: List[NewOrder] = field(default_factory=list)
    cancelled: int = 0
    inserted: int = 0


class TickRunner:
    """
    Runs one decision tick over every bot: snapshot, index, facts, rules,
    decisions, then a single bulk write. Holds no state between ticks.
    """

    def __init__(
        self,
        db: Any,
        owner_id: Optional[str] = None,
        loader: Optional[SnapshotLoader] = None,
        executor: Optional[BulkExecutor] = None,
        logger: Optional[logging.Logger] = None,
        actions_logger: Optional[logging.Logger] = None,
        rng: Optional[random.Random] = None,
    ):
        self.db = db
        self.owner_id = owner_id
        self.logger = logger or logging.getLogger(__name__)
        self.actions_logger = actions_logger or bot_actions_logger
        self.loader = loader or SnapshotLoader(db, logger=self.logger)
        self.executor = executor or BulkExecutor(db, logger=self.logger, actions_logger=self.actions_logger)
        # Source of the randomChance fact; seed it for reproducible ticks
        self.rng = rng or random.Random()

    def _emit_telemetry(self, record: dict):
        try:
            telemetry_logger.info(json.dumps(record, default=str))
        except Exception as exc:
            self.logger.debug(f"Telemetry emit failed: {exc}")

    @staticmethod
    def _positions_for(bot: Bot, snapshot: MarketSnapshot, index: MarketIndex) -> List[Position]:
        """One position per listed instrument; no holdings row means zero shares."""
        return [
            Position(
                instrument_id=instrument.id,
                symbol=instrument.symbol,
                name=instrument.name,
                shares_owned=index.shares_owned(bot.id, instrument.id),
                price_cents=instrument.price_cents,
            )
            for instrument in snapshot.instruments
        ]

    def _engine_for(self, strategy_id: str, raw_rules: Any, cache: Dict[str, Any]) -> RuleEngine:
        """Build (once per tick) the engine for a strategy; cached failures re-raise."""
        if strategy_id not in cache:
            try:
                cache[strategy_id] = RuleEngine(parse_rule_set(raw_rules))
            except (RuleSetParseError, RuleRegistrationError) as exc:
                cache[strategy_id] = exc
        cached = cache[strategy_id]
        if isinstance(cached, Exception):
            raise cached
        return cached

    def _decide_for_bot(
        self,
        bot: Bot,
        snapshot: MarketSnapshot,
        index: MarketIndex,
        accumulator: DecisionAccumulator,
        engines: Dict[str, Any],
        result: TickResult,
    ):
        label = bot.name or bot.id
        if not bot.strategy_id or bot.strategy_id not in snapshot.strategies:
            self.logger.debug(f"Bot {bot.id} has no strategy loaded, skipping")
            result.skipped_bots.append(bot.id)
            return

        try:
            engine = self._engine_for(bot.strategy_id, snapshot.strategies[bot.strategy_id], engines)
        except (RuleSetParseError, RuleRegistrationError) as exc:
            self.logger.error(f"Failed to add rules for bot {bot.id} strategy {bot.strategy_id}: {exc}")
            result.skipped_bots.append(bot.id)
            return

        if not engine.rules:
            self.logger.info(f"Strategy {bot.strategy_id} has no rules, skipping bot {bot.id}")
            result.skipped_bots.append(bot.id)
            return

        result.bots_evaluated += 1
        bot_orders = index.orders_for(bot.id)
        positions = self._positions_for(bot, snapshot, index) or [None]

        for position in positions:
            target = position.describe() if position else "no instruments"
            try:
                scoped_orders = index.orders_for(bot.id, position.instrument_id) if position else bot_orders
                facts = build_facts(
                    position,
                    open_orders=len(scoped_orders),
                    available_balance=accumulator.remaining_balance(bot.id),
                    bot_id=bot.id,
                    random_chance=roll_random_chance(self.rng),
                )
                events = engine.run(facts)

                if not events:
                    self.actions_logger.info(f"[{label}] {target} -> NO_ACTION")
                    continue

                for idx, event in enumerate(events):
                    suffix = f" ({idx + 1})" if idx > 0 else ""
                    self.actions_logger.info(f"[{label}] {target} -> {event.type.value}{suffix} {event.params}")

                summary = accumulator.apply_events(bot.id, position, events, bot_orders)
                result.events_fired += len(events)
                for reason in summary.skipped:
                    self.logger.debug(f"[{label}] {target}: skipped {reason}")
            except Exception as exc:
                self.logger.exception(
                    f"Error evaluating strategy {bot.strategy_id} for bot {bot.id} {target}: {exc}"
                )
                result.position_errors.append((bot.id, position.instrument_id if position else None))

    async def run_tick(self) -> TickResult:
        """Run one full tick. Persistence errors propagate to the caller."""
        tick_id = uuid.uuid4().hex[:8]
        set_logging_context(tick_id=tick_id, owner_id=self.owner_id)
        started = time.monotonic()
        result = TickResult(tick_id=tick_id)

        snapshot = await self.loader.load(self.owner_id)
        if snapshot.is_empty:
            self.actions_logger.info("🔸 Waiting for bots/instruments to be seeded...")
            result.empty_market = True
            self._emit_telemetry({"tick_id": tick_id, "status": "empty_market"})
            return result

        index = organize_market_data(snapshot)
        accumulator = DecisionAccumulator(index.available_balance, logger=self.logger)
        engines: Dict[str, Any] = {}

        # Bots run one after another; the balance ledger has a single writer
        for bot in snapshot.bots:
            with bot_logging_context(bot.id):
                try:
                    self._decide_for_bot(bot, snapshot, index, accumulator, engines, result)
                except Exception as exc:
                    self.logger.exception(f"Failed to evaluate bot {bot.id}: {exc}")
                    result.failed_bots.append(bot.id)

        applied = await self.executor.apply(accumulator.cancel_ids, accumulator.new_orders)
        result.cancel_ids = applied["cancel_ids"]
        result.new_orders = applied["orders"]
        result.cancelled = applied.get("cancelled", 0)
        result.inserted = applied.get("inserted", 0)

        self._emit_telemetry(
            {
                "tick_id": tick_id,
                "status": "ok",
                "bots": len(snapshot.bots),
                "instruments": len(snapshot.instruments),
                "open_orders": len(snapshot.open_orders),
                "bots_evaluated": result.bots_evaluated,
                "events_fired": result.events_fired,
                "skipped_bots": len(result.skipped_bots),
                "failed_bots": len(result.failed_bots),
                "position_errors": len(result.position_errors),
                "cancelled": result.cancelled,
                "inserted": result.inserted,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            }
        )
        return result


def main() -> int:
    """Run exactly one tick; return a non-zero status when the tick aborts."""
    setup_logging()
    db = None
    try:
        db = MarketDatabase(BOT_DB_PATH)
        runner = TickRunner(db, owner_id=BOT_OWNER_ID)
        result = asyncio.run(runner.run_tick())
    except Exception as e:
        logger.exception(f"Tick aborted: {e}")
        return 1
    finally:
        if db is not None:
            db.close()

    logger.info(
        f"Tick {result.tick_id} done: {result.inserted} placed, {result.cancelled} cancelled, "
        f"{len(result.failed_bots)} failed bots"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
