"""
Errors raised by the economy core.

Everything deriving from `EconomyError` is recoverable: the command layer
reports it back to the caller and no balance or audit entry has been
written. `StorageUnavailable` sits outside that hierarchy and always
propagates to the caller.
"""


class EconomyError(Exception):
    """Base class for user-facing economy errors."""


class InvalidAmount(EconomyError):
    """Non-numeric, non-integer or out-of-range amount."""


class InsufficientFunds(EconomyError):
    def __init__(self, identity: str, balance: int, requested: int) -> None:
        self.identity = identity
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"{identity} has {balance} but {requested} was requested"
        )


class InvalidIdentity(EconomyError):
    """Empty, anonymous or otherwise unusable target identity."""


class NoEligibleParticipants(EconomyError):
    """A giveaway was started with nobody else online."""


class Unauthorized(EconomyError):
    """The caller lacks the privilege required for a command."""


class StorageUnavailable(RuntimeError):
    """The persistence backend failed; the operation did not commit."""
