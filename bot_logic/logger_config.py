import logging
import os
import sys
from contextlib import contextmanager

from bot_logic.config import LOG_DIR, LOG_LEVEL


class TickContextFilter(logging.Filter):
    """
    Stamps every record with the tick being run, the owner scope and, while a
    bot is being evaluated, that bot's id. Attached to each handler, so records
    from third-party loggers carry the same fields.
    """

    def __init__(self):
        super().__init__()
        self.tick_id = None
        self.owner_id = os.getenv("BOT_OWNER_ID") or None
        self.bot_id = None

    def start_tick(self, tick_id, owner_id=None):
        self.tick_id = tick_id
        if owner_id is not None:
            self.owner_id = owner_id
        self.bot_id = None

    def filter(self, record):
        record.tick_id = self.tick_id or "-"
        record.owner_id = self.owner_id or "-"
        record.bot_id = getattr(record, "bot_id", None) or self.bot_id or "-"
        return True


_TICK_CONTEXT_FILTER = TickContextFilter()


def set_logging_context(tick_id=None, owner_id=None):
    """Start a new tick context; the bot id is cleared."""
    _TICK_CONTEXT_FILTER.start_tick(tick_id, owner_id)


@contextmanager
def bot_logging_context(bot_id):
    """Tag records emitted inside the block with ``bot_id``."""
    previous = _TICK_CONTEXT_FILTER.bot_id
    _TICK_CONTEXT_FILTER.bot_id = bot_id
    try:
        yield
    finally:
        _TICK_CONTEXT_FILTER.bot_id = previous


def _in_test_mode() -> bool:
    return (
        "PYTEST_RUNNING" in os.environ
        or "PYTEST_CURRENT_TEST" in os.environ
        or "pytest" in sys.modules
    )


def setup_logging(log_dir: str | None = None):
    """
    Configures the logging system.
    - console.log: technical DEBUG log of every module
    - decisions.log: per bot/position outcomes (via the bot_actions logger)
    - telemetry.log: one structured JSON line per tick
    - Terminal: LOG_LEVEL (INFO by default)
    """
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers to avoid duplicates if called multiple times
    if logger.hasHandlers():
        logger.handlers.clear()

    simple_formatter = logging.Formatter('%(asctime)s - %(message)s')
    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - tick=%(tick_id)s owner=%(owner_id)s bot=%(bot_id)s - %(message)s'
    )

    test_mode = _in_test_mode()
    target_dir = log_dir or (os.path.join("logs", "test") if test_mode else LOG_DIR)
    os.makedirs(target_dir, exist_ok=True)

    # 1. console.log - technical debug log
    console_filename = "console_test.log" if test_mode else "console.log"
    console_handler = logging.FileHandler(os.path.join(target_dir, console_filename), mode='a')
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(detailed_formatter)
    console_handler.addFilter(_TICK_CONTEXT_FILTER)
    logger.addHandler(console_handler)

    # 2. Terminal
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(logging.DEBUG if test_mode else getattr(logging, LOG_LEVEL, logging.INFO))
    stream_handler.setFormatter(detailed_formatter)
    stream_handler.addFilter(_TICK_CONTEXT_FILTER)
    logger.addHandler(stream_handler)

    # 3. Decisions log - readable per-position outcomes, also echoed to the root handlers
    bot_actions_logger = logging.getLogger('bot_actions')
    bot_actions_logger.setLevel(logging.INFO)
    bot_actions_logger.handlers.clear()
    decisions_filename = "decisions_test.log" if test_mode else "decisions.log"
    decisions_handler = logging.FileHandler(os.path.join(target_dir, decisions_filename), mode='a')
    decisions_handler.setLevel(logging.INFO)
    decisions_handler.setFormatter(simple_formatter)
    decisions_handler.addFilter(_TICK_CONTEXT_FILTER)
    bot_actions_logger.addHandler(decisions_handler)

    # 4. Telemetry log - structured JSON per tick
    telemetry_logger = logging.getLogger('telemetry')
    telemetry_logger.setLevel(logging.INFO)
    telemetry_logger.propagate = False
    telemetry_logger.handlers.clear()
    telemetry_filename = "telemetry_test.log" if test_mode else "telemetry.log"
    telemetry_handler = logging.FileHandler(os.path.join(target_dir, telemetry_filename), mode='a')
    telemetry_handler.setLevel(logging.INFO)
    telemetry_handler.setFormatter(logging.Formatter('%(message)s'))
    telemetry_handler.addFilter(_TICK_CONTEXT_FILTER)
    telemetry_logger.addHandler(telemetry_handler)

    logging.info(f"Logging initialized in {target_dir}")

    return bot_actions_logger
