from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class EconomyConfig:
    """
    Server-wide economy settings.

    Passed explicitly to the ledger, leaderboard, giveaway scheduler and
    command services instead of living in module globals.
    """

    server_name: str = "Impulse"
    currency_name: str = "Pokédollar"
    currency_plural: str = "Pokédollars"
    anonymous_prefix: str = "guest"
    min_amount: int = 1
    max_amount: int = 1000
    min_giveaway_seconds: int = 30
    max_giveaway_seconds: int = 300
    tick_seconds: int = 10
    default_leaderboard_limit: int = 10
    max_leaderboard_limit: int = 100
    default_log_count: int = 10
    refund_on_cancel: bool = False

    def currency(self, amount: int) -> str:
        return self.currency_name if amount == 1 else self.currency_plural


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_config(environ: Optional[Mapping[str, str]] = None) -> EconomyConfig:
    """
    Build an `EconomyConfig` from `ECONOMY_*` environment variables.

    Unset variables fall back to the dataclass defaults. Entry points are
    expected to call `load_dotenv()` beforehand.
    """

    env = os.environ if environ is None else environ
    defaults = EconomyConfig()

    config = EconomyConfig(
        server_name=env.get("ECONOMY_SERVER_NAME", defaults.server_name),
        currency_name=env.get("ECONOMY_CURRENCY_NAME", defaults.currency_name),
        currency_plural=env.get("ECONOMY_CURRENCY_PLURAL", defaults.currency_plural),
        anonymous_prefix=env.get("ECONOMY_ANONYMOUS_PREFIX", defaults.anonymous_prefix),
        min_amount=_env_int(env, "ECONOMY_MIN_AMOUNT", defaults.min_amount),
        max_amount=_env_int(env, "ECONOMY_MAX_AMOUNT", defaults.max_amount),
        min_giveaway_seconds=_env_int(
            env, "ECONOMY_MIN_GIVEAWAY_SECONDS", defaults.min_giveaway_seconds
        ),
        max_giveaway_seconds=_env_int(
            env, "ECONOMY_MAX_GIVEAWAY_SECONDS", defaults.max_giveaway_seconds
        ),
        tick_seconds=_env_int(env, "ECONOMY_TICK_SECONDS", defaults.tick_seconds),
        default_leaderboard_limit=_env_int(
            env, "ECONOMY_LEADERBOARD_LIMIT", defaults.default_leaderboard_limit
        ),
        max_leaderboard_limit=_env_int(
            env, "ECONOMY_MAX_LEADERBOARD_LIMIT", defaults.max_leaderboard_limit
        ),
        default_log_count=_env_int(env, "ECONOMY_LOG_COUNT", defaults.default_log_count),
        refund_on_cancel=env.get("ECONOMY_REFUND_ON_CANCEL", "false").strip().lower()
        in _TRUE_VALUES,
    )

    if config.min_amount < 1 or config.max_amount < config.min_amount:
        raise ValueError("ECONOMY_MIN_AMOUNT/ECONOMY_MAX_AMOUNT form an empty range.")
    if config.tick_seconds < 1:
        raise ValueError("ECONOMY_TICK_SECONDS must be at least 1.")
    return config
