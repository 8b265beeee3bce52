from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from domain.models import ChatUser

# Telegram exposes no online status to bots; anyone who spoke within this
# window counts as present.
DEFAULT_ONLINE_WINDOW = 300.0


@dataclass
class _Seen:
    user: Optional[ChatUser]
    username: Optional[str]
    last_seen: Dict[str, float]


class ActivityDirectory:
    """
    `UserDirectory` built from the messages the bot has observed.

    Keeps the display name, @username and per-chat last-activity time of
    every user who has written in a chat the bot is in.
    """

    def __init__(
        self,
        window: float = DEFAULT_ONLINE_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._clock = clock
        self._lock = threading.Lock()
        self._users: Dict[str, _Seen] = {}

    def record(
        self,
        chat_id: str,
        user_id: str,
        display_name: str,
        username: Optional[str] = None,
    ) -> None:
        now = self._clock()
        with self._lock:
            seen = self._users.setdefault(user_id, _Seen(user=None, username=None, last_seen={}))
            seen.user = ChatUser(id=user_id, name=display_name)
            seen.username = username.lower() if username else None
            seen.last_seen[chat_id] = now

    def online(self, chat_id: str) -> List[str]:
        cutoff = self._clock() - self._window
        with self._lock:
            return [
                user_id
                for user_id, seen in self._users.items()
                if seen.last_seen.get(chat_id, float("-inf")) >= cutoff
            ]

    def find_user(self, identity: str) -> Optional[ChatUser]:
        with self._lock:
            seen = self._users.get(identity)
        return seen.user if seen is not None else None

    def find_by_username(self, username: str) -> Optional[ChatUser]:
        wanted = username.lstrip("@").lower()
        if not wanted:
            return None
        with self._lock:
            for seen in self._users.values():
                if seen.username == wanted:
                    return seen.user
        return None

    def display_name(self, identity: str) -> str:
        user = self.find_user(identity)
        return user.name if user is not None else identity
