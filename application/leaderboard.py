from __future__ import annotations

from typing import Optional

from application.config import EconomyConfig
from application.ledger import AccountStore
from domain.exceptions import InvalidAmount
from domain.identity import is_anonymous
from domain.models import LeaderboardEntry, Standings


class Leaderboard:
    """Read-only ranking of the accounts in an `AccountStore`."""

    def __init__(self, store: AccountStore, config: Optional[EconomyConfig] = None) -> None:
        self._store = store
        self._config = config or EconomyConfig()

    def top_accounts(self, limit: int) -> Standings:
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidAmount(f"Limit must be an integer, received {limit!r}.")
        if limit < 1 or limit > self._config.max_leaderboard_limit:
            raise InvalidAmount(
                f"Limit must be between 1 and {self._config.max_leaderboard_limit}."
            )

        balances = [
            (account.identity, account.balance)
            for account in self._store.accounts()
            if not is_anonymous(account.identity, self._config.anonymous_prefix)
        ]
        # sorted() is stable, so ties keep enumeration order.
        ranked = sorted(
            (item for item in balances if item[1] > 0),
            key=lambda item: item[1],
            reverse=True,
        )[:limit]

        entries = [
            LeaderboardEntry(rank=index, identity=identity, balance=balance)
            for index, (identity, balance) in enumerate(ranked, start=1)
        ]
        return Standings(entries=entries, limit=limit)
