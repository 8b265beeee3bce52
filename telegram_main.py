import os

from dotenv import load_dotenv

from infrastructure.wiring import build_economy, configure_logging
from interfaces.telegram.handlers import create_telegram_bot


load_dotenv()

TELEGRAM_TOKEN = os.environ.get("TELEGRAM_TOKEN")
TELEGRAM_ADMIN_IDS = os.environ.get("TELEGRAM_ADMIN_IDS", "")


def main() -> None:
    if not TELEGRAM_TOKEN:
        raise RuntimeError("TELEGRAM_TOKEN environment variable is not set.")

    configure_logging()
    economy = build_economy()

    admin_ids = [part.strip() for part in TELEGRAM_ADMIN_IDS.split(",") if part.strip()]
    bot = create_telegram_bot(
        TELEGRAM_TOKEN,
        economy.ledger,
        economy.leaderboard,
        economy.config,
        admin_ids=admin_ids,
    )
    try:
        bot.infinity_polling()
    finally:
        bot.giveaways.shutdown()


if __name__ == "__main__":
    main()
