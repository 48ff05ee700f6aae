import sys

from bot_logic.tick_runner import main


if __name__ == "__main__":
    sys.exit(main())
