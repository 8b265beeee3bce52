from __future__ import annotations

from typing import List, Mapping, Optional, Protocol

from .models import ChatUser, Giveaway


class KeyValueStore(Protocol):
    """
    Abstraction over balance persistence.

    Implementations are responsible for:
    - Making every write durable before returning.
    - Raising `StorageUnavailable` instead of leaking driver errors.
    """

    def get(self, key: str) -> Optional[int]:
        """Return the stored value for `key`, or None if it was never set."""

        ...

    def set(self, key: str, value: int) -> None:
        ...

    def set_many(self, values: Mapping[str, int]) -> None:
        """
        Write several keys as one unit.

        Either every value becomes visible or none does.
        """

        ...

    def keys(self) -> List[str]:
        """Return every key written so far, in first-write order."""

        ...


class AuditSink(Protocol):
    """Append-only text sink backing the transaction log."""

    def append(self, line: str) -> None:
        """Append one complete line; concurrent appends never interleave."""

        ...

    def read_all(self) -> str:
        ...


class UserDirectory(Protocol):
    """
    Read-only view of the chat host's user list.

    Used at giveaway resolution time to check which snapshot members can
    still be reached.
    """

    def find_user(self, identity: str) -> Optional[ChatUser]:
        ...


class GiveawayAnnouncer(Protocol):
    """Presentation hooks fired by the giveaway scheduler."""

    def started(self, giveaway: Giveaway) -> None:
        ...

    def progress(self, giveaway: Giveaway) -> None:
        ...

    def resolved(self, giveaway: Giveaway) -> None:
        """Announce the winner and notify both the winner and the initiator."""

        ...

    def canceled(self, giveaway: Giveaway) -> None:
        ...
