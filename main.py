"""
RemindMe — Entry Point.

`python main.py` starts Telegram long polling and the firing loop in one
process. The installed `remindme` script goes straight to
remindme.bot.telegram_bot.main.
"""

import logging

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
# python-telegram-bot's HTTP client logs every getUpdates poll at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)

from remindme.bot.telegram_bot import main

if __name__ == "__main__":
    main()
