import os
from dotenv import load_dotenv

load_dotenv()

# Storage
BOT_DB_PATH = os.getenv('BOT_DB_PATH', 'market.db')

# Restrict a tick to bots owned by this user id (blank = every bot)
BOT_OWNER_ID = os.getenv('BOT_OWNER_ID', '').strip() or None

# Order sizing
DEFAULT_SIZE_PCT = float(os.getenv('DEFAULT_SIZE_PCT', '1.0'))  # used when an event omits sizePct
MIN_ORDER_QUANTITY = int(os.getenv('MIN_ORDER_QUANTITY', '1'))  # smallest tradeable unit, in shares
MIN_LIMIT_PRICE_CENTS = int(os.getenv('MIN_LIMIT_PRICE_CENTS', '1'))

# Bulk execution
MAX_ORDERS_PER_BATCH = int(os.getenv('MAX_ORDERS_PER_BATCH', '500'))  # inserts per tick, excess dropped

# Logging
LOG_DIR = os.getenv('LOG_DIR', '.')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()  # terminal level
