from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import FrozenSet, List, Optional


@dataclass
class Account:
    """
    A single user's balance as held by the account store.

    Accounts are created implicitly on first write and never deleted;
    a reset simply writes a balance of zero.
    """

    identity: str
    balance: int


@dataclass(frozen=True)
class ChatUser:
    """A user the chat host can currently resolve."""

    id: str
    name: str


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    identity: str
    balance: int


@dataclass(frozen=True)
class Standings:
    """
    Ranked snapshot of the richest accounts.

    `is_empty` is the explicit "no qualifying accounts" signal callers
    should check before rendering a table.
    """

    entries: List[LeaderboardEntry]
    limit: int

    @property
    def is_empty(self) -> bool:
        return not self.entries


class GiveawayStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"
    CANCELED = "canceled"


@dataclass
class Giveaway:
    """
    In-memory state of one running giveaway.

    The eligibility snapshot is frozen at creation time. Giveaways are
    never persisted; a restart loses them together with their stakes.
    """

    id: str
    room_id: str
    initiator: ChatUser
    stake: int
    duration: int
    remaining: int
    eligible: FrozenSet[str]
    status: GiveawayStatus = GiveawayStatus.PENDING
    winner: Optional[ChatUser] = None
    refunded: bool = False

    @property
    def is_finished(self) -> bool:
        return self.status in (GiveawayStatus.RESOLVED, GiveawayStatus.CANCELED)
