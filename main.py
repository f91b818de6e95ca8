"""
Taskmate — Entry Point.

Single entry point: `python main.py` starts the Telegram bot.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# Telegram's HTTP client logs every poll request at INFO.
logging.getLogger("httpx").setLevel(logging.WARNING)

from src.bot.telegram_bot import main

if __name__ == "__main__":
    main()
