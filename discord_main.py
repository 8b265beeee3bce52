import os

from dotenv import load_dotenv

from infrastructure.wiring import build_economy, configure_logging
from interfaces.discord.handlers import create_discord_bot


load_dotenv()

DISCORD_TOKEN = os.environ.get("DISCORD_TOKEN")


def main() -> None:
    if not DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN environment variable is not set.")

    configure_logging()
    economy = build_economy()

    bot = create_discord_bot(economy.ledger, economy.leaderboard, economy.config)
    # discord.py installs its own handler; keep the root config from above.
    bot.run(DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
