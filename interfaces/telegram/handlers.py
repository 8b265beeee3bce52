from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional, Tuple

import telebot
from telebot.apihelper import ApiTelegramException

from application.config import EconomyConfig
from application.giveaway import GiveawayScheduler
from application.leaderboard import Leaderboard
from application.ledger import Ledger
from application.scheduling import ThreadingScheduler
from application.services import (
    ExternalContext,
    OperationResult,
    Privilege,
    check_wallet,
    economy_help,
    give_currency,
    read_transaction_log,
    reset_account,
    richest_users,
    start_giveaway,
    take_currency,
    transfer_currency,
)
from domain.models import ChatUser, Giveaway
from interfaces.telegram.presence import ActivityDirectory

logger = logging.getLogger(__name__)

# Telegram rejects messages longer than this.
MESSAGE_LIMIT = 4096

GROUP_CHAT_TYPES = ("group", "supergroup")


def _display_name(user) -> str:
    name = " ".join(part for part in (user.first_name, user.last_name) if part)
    return name or user.username or str(user.id)


def split_command(text: str) -> Tuple[str, List[str]]:
    """
    Split "/economy give @bob, 50, thanks" into ("give", ["@bob", "50", "thanks"]).

    The leading command token (with any @botname suffix) is dropped.
    """

    parts = (text or "").split(None, 1)
    rest = parts[1] if len(parts) > 1 else ""
    head = rest.split(None, 1)
    if not head:
        return "", []
    subcommand = head[0].lower()
    args = head[1] if len(head) > 1 else ""
    return subcommand, [part.strip() for part in args.split(",")] if args.strip() else []


class TelegramGiveawayAnnouncer:
    """Posts one message per giveaway and edits it as the countdown runs."""

    def __init__(self, bot: telebot.TeleBot, config: EconomyConfig) -> None:
        self._bot = bot
        self._config = config
        self._messages: Dict[str, int] = {}

    def _prize(self, giveaway: Giveaway) -> str:
        return f"{giveaway.stake} {self._config.currency(giveaway.stake)}"

    def _edit(self, giveaway: Giveaway, text: str, final: bool = False) -> None:
        message_id = (
            self._messages.pop(giveaway.id, None) if final else self._messages.get(giveaway.id)
        )
        try:
            if message_id is None:
                self._bot.send_message(int(giveaway.room_id), text)
            else:
                self._bot.edit_message_text(
                    text, chat_id=int(giveaway.room_id), message_id=message_id
                )
        except ApiTelegramException as exc:
            logger.warning("Could not update giveaway %s: %s", giveaway.id, exc)

    def _direct_message(self, user_id: str, text: str) -> None:
        try:
            self._bot.send_message(int(user_id), text)
        except ApiTelegramException as exc:
            logger.info("Could not message user %s: %s", user_id, exc)

    def started(self, giveaway: Giveaway) -> None:
        try:
            message = self._bot.send_message(
                int(giveaway.room_id),
                f"🎁 A Giveaway Has Started! 🎁\n"
                f"{giveaway.initiator.name} is giving away {self._prize(giveaway)}!\n"
                f"The winner will be chosen in {giveaway.remaining} seconds. "
                "Stay active for a chance to win!",
            )
        except ApiTelegramException as exc:
            logger.warning("Could not announce giveaway %s: %s", giveaway.id, exc)
            return
        self._messages[giveaway.id] = message.message_id

    def progress(self, giveaway: Giveaway) -> None:
        self._edit(
            giveaway,
            f"🎁 A Giveaway Is Ongoing! 🎁\n"
            f"{giveaway.initiator.name} is giving away {self._prize(giveaway)}!\n"
            f"Time left: {giveaway.remaining} seconds. Stay active for a chance to win!",
        )

    def resolved(self, giveaway: Giveaway) -> None:
        winner = giveaway.winner
        prize = self._prize(giveaway)
        self._edit(
            giveaway,
            f"🎉 Giveaway Winner! 🎉\n"
            f"Congratulations, {winner.name}! You have won {prize} "
            f"from {giveaway.initiator.name}!",
            final=True,
        )
        self._direct_message(winner.id, f"🎉 You have won the giveaway of {prize}!")
        self._direct_message(
            giveaway.initiator.id,
            f"Your giveaway has ended! The winner is {winner.name}, "
            f"and they have received {prize}.",
        )

    def canceled(self, giveaway: Giveaway) -> None:
        text = "⚠ Giveaway Canceled ⚠\nNo eligible users were online. The giveaway has been canceled."
        if giveaway.refunded:
            text += f" {giveaway.initiator.name} has been refunded."
        self._edit(giveaway, text, final=True)


def create_telegram_bot(
    bot_token: str,
    ledger: Ledger,
    leaderboard: Leaderboard,
    config: EconomyConfig,
    admin_ids: Iterable[str] = (),
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages and mapping them to/from application services. Handlers and
    giveaway timers share one lock, so ledger mutations never interleave.
    """

    bot = telebot.TeleBot(bot_token, threaded=False)
    admins = {str(admin_id) for admin_id in admin_ids}
    lock = threading.RLock()
    directory = ActivityDirectory()
    giveaways = GiveawayScheduler(
        ledger,
        directory,
        TelegramGiveawayAnnouncer(bot, config),
        ThreadingScheduler(lock),
        config,
    )

    def track(message) -> None:
        user = message.from_user
        if user is None or user.is_bot:
            return
        directory.record(
            str(message.chat.id), str(user.id), _display_name(user), user.username
        )

    def privilege(message) -> Privilege:
        user_id = str(message.from_user.id)
        if user_id in admins:
            return Privilege.ADMINISTRATOR
        if message.chat.type not in GROUP_CHAT_TYPES:
            return Privilege.USER
        try:
            member = bot.get_chat_member(message.chat.id, message.from_user.id)
        except ApiTelegramException as exc:
            logger.warning("Could not read chat member %s: %s", user_id, exc)
            return Privilege.USER
        if member.status in ("creator", "administrator"):
            return Privilege.ROOM_OWNER
        return Privilege.USER

    def build_context(message) -> ExternalContext:
        return ExternalContext(
            provider="telegram",
            provider_user_id=str(message.from_user.id),
            display_name=_display_name(message.from_user),
            privilege=privilege(message),
            room_id=str(message.chat.id) if message.chat.type in GROUP_CHAT_TYPES else None,
            command_prefix="/",
        )

    def resolve_target(message, token: str) -> Optional[ChatUser]:
        token = (token or "").strip()
        if token:
            user = directory.find_by_username(token)
            # Unknown names still reach the service so it can reject them.
            return user or ChatUser(id="", name=token)
        reply = message.reply_to_message
        if reply is not None and reply.from_user is not None and not reply.from_user.is_bot:
            return ChatUser(id=str(reply.from_user.id), name=_display_name(reply.from_user))
        return None

    def send_chunks(chat_id, text: str) -> None:
        for start in range(0, len(text), MESSAGE_LIMIT):
            bot.send_message(chat_id, text[start:start + MESSAGE_LIMIT])

    def deliver(message, result: OperationResult) -> None:
        if not result.success:
            bot.send_message(message.chat.id, result.error_message or "Command failed.")
            return
        if result.reply:
            send_chunks(message.chat.id, result.reply)
        if result.private_reply:
            try:
                send_chunks(message.from_user.id, result.private_reply)
            except ApiTelegramException:
                bot.send_message(
                    message.chat.id, "Start a private chat with me to receive the log."
                )
        for broadcast in result.broadcasts:
            try:
                bot.send_message(int(broadcast.user_id), broadcast.text)
            except ApiTelegramException as exc:
                logger.info("Could not notify %s: %s", broadcast.user_id, exc)

    @bot.message_handler(commands=["wallet"])
    def handle_wallet(message):
        with lock:
            track(message)
            parts = message.text.split(None, 1)
            target = resolve_target(message, parts[1] if len(parts) > 1 else "")
            deliver(message, check_wallet(build_context(message), target, ledger))

    @bot.message_handler(commands=["richestuser"])
    def handle_richest(message):
        with lock:
            track(message)
            parts = message.text.split(None, 1)
            limit = parts[1] if len(parts) > 1 else ""
            deliver(
                message,
                richest_users(limit, leaderboard, config, directory.display_name),
            )

    @bot.message_handler(commands=["economy"])
    def handle_economy(message):
        with lock:
            track(message)
            ctx = build_context(message)
            subcommand, args = split_command(message.text)
            args += [""] * 3

            if subcommand == "give":
                result = give_currency(
                    ctx, resolve_target(message, args[0]), args[1], args[2], ledger
                )
            elif subcommand == "take":
                result = take_currency(
                    ctx, resolve_target(message, args[0]), args[1], args[2], ledger
                )
            elif subcommand == "transfer":
                result = transfer_currency(
                    ctx, resolve_target(message, args[0]), args[1], ledger
                )
            elif subcommand == "reset":
                result = reset_account(ctx, resolve_target(message, args[0]), ledger)
            elif subcommand == "log":
                result = read_transaction_log(ctx, args[0], ledger)
            elif subcommand == "giveaway":
                pool = [
                    user_id
                    for user_id in directory.online(str(message.chat.id))
                    if user_id != ctx.identity
                ]
                result = start_giveaway(ctx, args[0], args[1], pool, giveaways)
            else:
                result = economy_help(ctx, config)
            deliver(message, result)

    @bot.message_handler(func=lambda message: True)
    def handle_activity(message):
        # Registered last: only sees messages no command handler claimed.
        with lock:
            track(message)

    bot.giveaways = giveaways
    return bot
