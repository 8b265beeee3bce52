from __future__ import annotations

import re

_NON_ID_CHARS = re.compile(r"[^a-z0-9]+")


def to_id(text) -> str:
    """
    Fold a user name or id into its canonical identity.

    Lower-cases and drops everything outside `[a-z0-9]`, so "Ash Ketchum"
    and "ashketchum" refer to the same account.
    """

    if text is None:
        return ""
    return _NON_ID_CHARS.sub("", str(text).lower())


def is_anonymous(identity: str, prefix: str = "guest") -> bool:
    return to_id(identity).startswith(prefix)
