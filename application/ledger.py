from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Callable, Dict, List, Optional

from application.config import EconomyConfig
from domain.exceptions import InsufficientFunds, InvalidAmount, InvalidIdentity
from domain.identity import is_anonymous, to_id
from domain.models import Account
from domain.repositories import AuditSink, KeyValueStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_amount(value) -> int:
    """
    Return `value` as an int or raise `InvalidAmount`.

    Integral floats are accepted; NaN, infinities, fractions, bools and
    anything non-numeric are not.
    """

    if isinstance(value, bool):
        raise InvalidAmount(f"Expected a number, received {type(value).__name__}.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    raise InvalidAmount(f"Expected an integer amount, received {value!r}.")


class AccountStore:
    """
    Balance table keyed by folded identity.

    Thin layer over a `KeyValueStore`: absent keys read as zero and every
    key is normalised before it reaches the backend, so one real user can
    never own two entries.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def balance(self, identity: str) -> int:
        value = self._kv.get(to_id(identity))
        return 0 if value is None else int(value)

    def write(self, identity: str, balance: int) -> None:
        self._kv.set(to_id(identity), int(balance))

    def write_many(self, balances: Dict[str, int]) -> None:
        self._kv.set_many({to_id(k): int(v) for k, v in balances.items()})

    def identities(self) -> List[str]:
        return list(self._kv.keys())

    def accounts(self) -> List[Account]:
        return [Account(identity=key, balance=self.balance(key)) for key in self.identities()]


class AuditLog:
    """Append-only, timestamped record of balance changes."""

    def __init__(
        self,
        sink: AuditSink,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sink = sink
        self._clock = clock

    def record(self, description: Optional[str]) -> None:
        if not description or not description.strip():
            return
        stamp = format_datetime(self._clock(), usegmt=True)
        self._sink.append(f"[{stamp}] {description.strip()}")

    def entries(self) -> List[str]:
        return [line for line in self._sink.read_all().splitlines() if line.strip()]

    def recent(self, count: int) -> List[str]:
        """Return up to `count` entries, newest first."""

        if count < 1:
            return []
        return list(reversed(self.entries()))[:count]


class Ledger:
    """
    The only component allowed to change balances.

    Each committed write is followed by exactly one audit entry, and a
    rejected call leaves both the store and the log untouched. Funds are
    not checked by `adjust_balance`; callers that need a floor check it
    first (as `transfer` does).
    """

    def __init__(
        self,
        store: AccountStore,
        audit: AuditLog,
        config: Optional[EconomyConfig] = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._config = config or EconomyConfig()

    @property
    def config(self) -> EconomyConfig:
        return self._config

    @property
    def audit(self) -> AuditLog:
        return self._audit

    def is_anonymous(self, identity: str) -> bool:
        return is_anonymous(identity, self._config.anonymous_prefix)

    def read_balance(self, identity: str) -> int:
        userid = to_id(identity)
        if not userid or self.is_anonymous(userid):
            return 0
        return self._store.balance(userid)

    def adjust_balance(self, identity: str, delta, reason: Optional[str] = None) -> int:
        """
        Add `delta` to a balance and return the new value.

        Anonymous identities are ignored and keep reading as zero.
        """

        delta = coerce_amount(delta)
        userid = to_id(identity)
        if not userid:
            raise InvalidIdentity("Invalid username.")
        if self.is_anonymous(userid):
            logger.debug("Ignoring balance change for anonymous identity %s", userid)
            return 0

        new_balance = self._store.balance(userid) + delta
        self._store.write(userid, new_balance)
        logger.debug("Balance of %s changed by %+d to %d", userid, delta, new_balance)

        if not reason or not reason.strip():
            reason = (
                f"Balance of {userid} adjusted by {delta:+d} "
                f"{self._config.currency(abs(delta))}."
            )
        self._audit.record(reason)
        return new_balance

    def transfer(self, from_identity: str, to_identity: str, amount) -> None:
        amount = coerce_amount(amount)
        if amount <= 0:
            raise InvalidAmount("Transfer amount must be positive.")

        sender = self._require_target(from_identity)
        recipient = self._require_target(to_identity)
        if sender == recipient:
            raise InvalidIdentity("You cannot transfer to yourself.")

        sender_balance = self._store.balance(sender)
        if sender_balance < amount:
            raise InsufficientFunds(sender, sender_balance, amount)

        recipient_balance = self._store.balance(recipient)
        # Both sides commit together so the debit is never visible alone.
        self._store.write_many(
            {sender: sender_balance - amount, recipient: recipient_balance + amount}
        )
        logger.debug("Transferred %d from %s to %s", amount, sender, recipient)

        currency = self._config.currency(amount)
        self._audit.record(f"{sender} transferred {amount} {currency} to {recipient}.")
        self._audit.record(f"{recipient} received {amount} {currency} from {sender}.")

    def reset_balance(self, identity: str, actor: str) -> int:
        """Set a balance to zero and return what it was before."""

        userid = self._require_target(identity)
        previous = self._store.balance(userid)
        self._store.write(userid, 0)
        self._audit.record(
            f"{actor} reset the balance of {userid} to 0 "
            f"(was {previous} {self._config.currency(previous)})."
        )
        return previous

    def record_transaction(self, description: Optional[str]) -> None:
        self._audit.record(description)

    def _require_target(self, identity: str) -> str:
        userid = to_id(identity)
        if not userid:
            raise InvalidIdentity("Invalid username.")
        if self.is_anonymous(userid):
            raise InvalidIdentity(f"{userid} is not a registered user.")
        return userid
