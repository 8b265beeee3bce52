from __future__ import annotations

import enum
import functools
import math
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from application.config import EconomyConfig
from application.giveaway import GiveawayScheduler
from application.leaderboard import Leaderboard
from application.ledger import Ledger
from domain.exceptions import (
    EconomyError,
    InsufficientFunds,
    InvalidAmount,
    InvalidIdentity,
    Unauthorized,
)
from domain.identity import to_id
from domain.models import ChatUser


class Privilege(enum.IntEnum):
    """Caller tiers, ordered so that `>=` means "at least"."""

    USER = 0
    MODERATOR = 1
    ROOM_OWNER = 2
    ADMINISTRATOR = 3


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object. Privilege is decided by the interface layer.
    """

    provider: str
    provider_user_id: str
    display_name: str
    privilege: Privilege = Privilege.USER
    room_id: Optional[str] = None
    command_prefix: str = "/"
    argument_separator: str = ", "

    @property
    def identity(self) -> str:
        return to_id(self.provider_user_id)

    @property
    def user(self) -> ChatUser:
        return ChatUser(id=self.identity, name=self.display_name)


@dataclass
class BroadcastMessage:
    """A message that should be delivered to a particular user."""

    user_id: str
    text: str


@dataclass
class OperationResult:
    """
    Generic result type for command operations.

    `reply` goes to wherever the command was issued, `private_reply` only
    to the caller.
    """

    success: bool
    error_message: Optional[str] = None
    reply: Optional[str] = None
    private_reply: Optional[str] = None
    broadcasts: List[BroadcastMessage] = field(default_factory=list)


def _reports_errors(func: Callable[..., OperationResult]) -> Callable[..., OperationResult]:
    """Turn recoverable economy errors into a failed `OperationResult`."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> OperationResult:
        try:
            return func(*args, **kwargs)
        except EconomyError as exc:
            return OperationResult(success=False, error_message=str(exc))

    return wrapper


def _usage(ctx: ExternalContext, command: str, *args: str) -> str:
    params = ctx.argument_separator.join(f"[{arg}]" for arg in args)
    return f"Usage: {ctx.command_prefix}economy {command} {params}"


def _require(ctx: ExternalContext, privilege: Privilege) -> None:
    if ctx.privilege < privilege:
        raise Unauthorized("Access denied.")


def _require_target(target: Optional[ChatUser], ledger: Ledger) -> ChatUser:
    if target is None or not to_id(target.id):
        raise InvalidIdentity("Invalid username.")
    if ledger.is_anonymous(target.id):
        raise InvalidIdentity(f"{target.name} is not a registered user.")
    return target


def parse_amount(text) -> int:
    """
    Parse a user-supplied number the way the chat host does.

    Surrounding whitespace is ignored and the value is rounded half up,
    so "2.5" becomes 3.
    """

    try:
        value = float(str(text).strip())
    except (TypeError, ValueError):
        raise InvalidAmount(f"{text!r} is not a number.") from None
    if not math.isfinite(value):
        raise InvalidAmount(f"{text!r} is not a number.")
    return int(math.floor(value + 0.5))


def _parse_bounded_amount(text, config: EconomyConfig) -> int:
    message = f"Amount must be a number between {config.min_amount} and {config.max_amount}."
    try:
        amount = parse_amount(text)
    except InvalidAmount:
        raise InvalidAmount(message) from None
    if amount < config.min_amount or amount > config.max_amount:
        raise InvalidAmount(message)
    return amount


def clamp_limit(text, config: EconomyConfig) -> int:
    """Leaderboard size from user input, clamped to [1, max_leaderboard_limit]."""

    try:
        limit = parse_amount(text) if text not in (None, "") else 0
    except InvalidAmount:
        limit = 0
    if not limit:
        limit = config.default_leaderboard_limit
    return max(1, min(limit, config.max_leaderboard_limit))


@_reports_errors
def check_wallet(
    ctx: ExternalContext,
    target: Optional[ChatUser],
    ledger: Ledger,
) -> OperationResult:
    """Report the balance of `target`, or of the caller when omitted."""

    user = target or ctx.user
    if not to_id(user.id):
        raise InvalidIdentity("Invalid username.")
    money = ledger.read_balance(user.id)
    return OperationResult(
        success=True,
        reply=f"{user.name} has {money} {ledger.config.currency(money)}.",
    )


@_reports_errors
def richest_users(
    limit_text,
    leaderboard: Leaderboard,
    config: EconomyConfig,
    display_name: Callable[[str], str] = lambda identity: identity,
) -> OperationResult:
    standings = leaderboard.top_accounts(clamp_limit(limit_text, config))
    title = f"Richest users in {config.server_name}"
    if standings.is_empty:
        return OperationResult(success=True, reply=f"{title}\nNo rich users found.")

    lines = [title]
    for entry in standings.entries:
        lines.append(
            f"{entry.rank}. {display_name(entry.identity)}: "
            f"{entry.balance} {config.currency(entry.balance)}"
        )
    return OperationResult(success=True, reply="\n".join(lines))


@_reports_errors
def give_currency(
    ctx: ExternalContext,
    target: Optional[ChatUser],
    amount_text,
    reason: str,
    ledger: Ledger,
) -> OperationResult:
    _require(ctx, Privilege.ADMINISTRATOR)
    if target is None or not str(amount_text or "").strip() or not (reason or "").strip():
        return OperationResult(
            success=False,
            error_message=_usage(ctx, "give", "user", "amount", "reason"),
        )
    config = ledger.config
    amount = _parse_bounded_amount(amount_text, config)
    user = _require_target(target, ledger)

    ledger.adjust_balance(
        user.id,
        amount,
        reason=(
            f"{ctx.display_name} gave {amount} {config.currency_plural} to {user.name}. "
            f"Reason: {reason.strip()}"
        ),
    )
    return OperationResult(
        success=True,
        reply=f"{user.name} has received {amount} {config.currency_plural}.",
    )


@_reports_errors
def take_currency(
    ctx: ExternalContext,
    target: Optional[ChatUser],
    amount_text,
    reason: str,
    ledger: Ledger,
) -> OperationResult:
    _require(ctx, Privilege.ADMINISTRATOR)
    if target is None or not str(amount_text or "").strip() or not (reason or "").strip():
        return OperationResult(
            success=False,
            error_message=_usage(ctx, "take", "user", "amount", "reason"),
        )
    config = ledger.config
    amount = _parse_bounded_amount(amount_text, config)
    user = _require_target(target, ledger)

    # Staff debits may push a balance below zero.
    ledger.adjust_balance(
        user.id,
        -amount,
        reason=(
            f"{ctx.display_name} took {amount} {config.currency_plural} from {user.name}. "
            f"Reason: {reason.strip()}"
        ),
    )
    return OperationResult(
        success=True,
        reply=f"You removed {amount} {config.currency_plural} from {user.name}.",
    )


@_reports_errors
def transfer_currency(
    ctx: ExternalContext,
    target: Optional[ChatUser],
    amount_text,
    ledger: Ledger,
) -> OperationResult:
    if target is None or not str(amount_text or "").strip():
        return OperationResult(
            success=False,
            error_message=_usage(ctx, "transfer", "user", "amount"),
        )
    config = ledger.config
    amount = _parse_bounded_amount(amount_text, config)
    user = _require_target(target, ledger)

    try:
        ledger.transfer(ctx.identity, user.id, amount)
    except InsufficientFunds:
        return OperationResult(
            success=False,
            error_message=f"You don't have enough {config.currency_plural}.",
        )

    text = f"{ctx.display_name} sent you {amount} {config.currency(amount)}."
    return OperationResult(
        success=True,
        reply=f"You transferred {amount} {config.currency_plural} to {user.name}.",
        broadcasts=[BroadcastMessage(user_id=user.id, text=text)],
    )


@_reports_errors
def reset_account(
    ctx: ExternalContext,
    target: Optional[ChatUser],
    ledger: Ledger,
) -> OperationResult:
    _require(ctx, Privilege.ADMINISTRATOR)
    user = _require_target(target, ledger)
    ledger.reset_balance(user.id, ctx.display_name)
    return OperationResult(
        success=True,
        reply=f"{user.name} now has 0 {ledger.config.currency_plural}.",
    )


@_reports_errors
def read_transaction_log(
    ctx: ExternalContext,
    count_text,
    ledger: Ledger,
) -> OperationResult:
    _require(ctx, Privilege.MODERATOR)
    try:
        count = parse_amount(count_text) if str(count_text or "").strip() else 0
    except InvalidAmount:
        count = 0
    if count <= 0:
        count = ledger.config.default_log_count

    entries = ledger.audit.recent(count)
    text = "\n".join(entries) if entries else "The transaction log is empty."
    return OperationResult(success=True, private_reply=text)


@_reports_errors
def start_giveaway(
    ctx: ExternalContext,
    amount_text,
    time_text,
    eligible_pool: Iterable[str],
    giveaways: GiveawayScheduler,
) -> OperationResult:
    """
    Start a giveaway in the caller's room.

    Progress and the outcome are announced by the scheduler's announcer,
    so a successful result carries no reply of its own.
    """

    if not ctx.room_id:
        return OperationResult(
            success=False,
            error_message="This command can only be used in a room.",
        )
    _require(ctx, Privilege.ROOM_OWNER)
    try:
        amount = parse_amount(amount_text)
    except InvalidAmount:
        raise InvalidAmount(_usage(ctx, "giveaway", "amount", "time in seconds")) from None
    try:
        seconds = parse_amount(time_text)
    except InvalidAmount:
        config = giveaways.config
        raise InvalidAmount(
            f"Time must be between {config.min_giveaway_seconds} and "
            f"{config.max_giveaway_seconds} seconds."
        ) from None

    try:
        giveaways.start(ctx.room_id, ctx.user, amount, seconds, eligible_pool)
    except InsufficientFunds:
        return OperationResult(
            success=False,
            error_message=(
                f"You don't have enough {giveaways.config.currency_plural} to give away."
            ),
        )
    return OperationResult(success=True)


def economy_help(ctx: ExternalContext, config: EconomyConfig) -> OperationResult:
    p, s = ctx.command_prefix, ctx.argument_separator
    lines = [
        f"{config.server_name} Economy System",
        "",
        "Commands:",
        f"{p}wallet [user] - Check balance.",
        f"{p}richestuser [limit] - View the richest users.",
        f"{p}economy transfer [user]{s}[amount] - Send {config.currency_plural}.",
        f"{p}economy giveaway [amount]{s}[time] - Start a giveaway (room owners only).",
        f"{p}economy help - View this help menu.",
    ]
    if ctx.privilege >= Privilege.MODERATOR:
        lines += [
            "",
            "Staff commands:",
            f"{p}economy give [user]{s}[amount]{s}[reason] - Give {config.currency_plural}.",
            f"{p}economy take [user]{s}[amount]{s}[reason] - Remove {config.currency_plural}.",
            f"{p}economy reset [user] - Reset a user's balance.",
            f"{p}economy log [count] - View the transaction log.",
        ]
    return OperationResult(success=True, reply="\n".join(lines))
