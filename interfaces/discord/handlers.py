from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import discord
from discord.ext import commands

from application.config import EconomyConfig
from application.giveaway import GiveawayScheduler
from application.leaderboard import Leaderboard
from application.ledger import Ledger
from application.scheduling import AsyncioScheduler
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

logger = logging.getLogger(__name__)

# Discord rejects messages longer than this.
MESSAGE_LIMIT = 2000


def _privilege(user: discord.abc.User) -> Privilege:
    perms = getattr(user, "guild_permissions", None)
    if perms is None:
        return Privilege.USER
    if perms.administrator or perms.ban_members:
        return Privilege.ADMINISTRATOR
    if perms.manage_guild or perms.manage_channels:
        return Privilege.ROOM_OWNER
    if perms.kick_members or perms.manage_messages:
        return Privilege.MODERATOR
    return Privilege.USER


def _build_external_context(ctx: commands.Context) -> ExternalContext:
    """Create an `ExternalContext` from a Discord invocation."""

    user = ctx.author
    return ExternalContext(
        provider="discord",
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
        privilege=_privilege(user),
        room_id=str(ctx.channel.id) if ctx.guild is not None else None,
        command_prefix="!",
        argument_separator=" ",
    )


def _chat_user(member: Optional[discord.abc.User]) -> Optional[ChatUser]:
    if member is None:
        return None
    return ChatUser(id=str(member.id), name=member.display_name or member.name)


def _chunks(text: str, size: int = MESSAGE_LIMIT) -> List[str]:
    chunks: List[str] = []
    current = ""
    for line in text.splitlines():
        while len(line) > size:
            chunks.append(line[:size])
            line = line[size:]
        if current and len(current) + len(line) + 1 > size:
            chunks.append(current)
            current = ""
        current = f"{current}\n{line}" if current else line
    if current:
        chunks.append(current)
    return chunks


class GuildDirectory:
    """`UserDirectory` backed by the members of the guilds the bot is in."""

    def __init__(self, bot: commands.Bot) -> None:
        self._bot = bot

    def find_user(self, identity: str) -> Optional[ChatUser]:
        try:
            user_id = int(identity)
        except ValueError:
            return None
        for guild in self._bot.guilds:
            member = guild.get_member(user_id)
            if member is not None:
                return _chat_user(member)
        return None

    def display_name(self, identity: str) -> str:
        user = self.find_user(identity)
        return user.name if user is not None else identity


class DiscordGiveawayAnnouncer:
    """
    Posts one embed per giveaway and edits it as the countdown runs.

    Scheduler callbacks are synchronous, so every Discord call is spawned
    as a task on the running loop.
    """

    def __init__(self, bot: commands.Bot, config: EconomyConfig) -> None:
        self._bot = bot
        self._config = config
        self._messages: Dict[str, asyncio.Task] = {}

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        task.add_done_callback(self._report_failure)
        return task

    @staticmethod
    def _report_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Giveaway announcement failed", exc_info=exc)

    def _embed(self, title: str, description: str) -> discord.Embed:
        return discord.Embed(
            title=title,
            description=description,
            colour=discord.Colour.gold(),
        )

    def _prize(self, giveaway: Giveaway) -> str:
        return f"{giveaway.stake} {self._config.currency(giveaway.stake)}"

    async def _post(self, giveaway: Giveaway, embed: discord.Embed) -> discord.Message:
        channel = self._bot.get_channel(int(giveaway.room_id))
        if channel is None:
            channel = await self._bot.fetch_channel(int(giveaway.room_id))
        return await channel.send(embed=embed)

    async def _edit(self, giveaway_id: str, embed: discord.Embed, final: bool = False) -> None:
        task = self._messages.pop(giveaway_id, None) if final else self._messages.get(giveaway_id)
        if task is None:
            return
        message = await task
        await message.edit(embed=embed)

    async def _direct_message(self, identity: str, text: str) -> None:
        user = self._bot.get_user(int(identity))
        if user is None:
            user = await self._bot.fetch_user(int(identity))
        try:
            await user.send(text)
        except discord.Forbidden:
            logger.info("User %s does not accept direct messages", identity)

    def started(self, giveaway: Giveaway) -> None:
        embed = self._embed(
            "🎁 A Giveaway Has Started! 🎁",
            f"**{giveaway.initiator.name}** is giving away **{self._prize(giveaway)}**!\n"
            f"The winner will be chosen in **{giveaway.remaining} seconds**. "
            "Stay online for a chance to win!",
        )
        self._messages[giveaway.id] = self._spawn(self._post(giveaway, embed))

    def progress(self, giveaway: Giveaway) -> None:
        embed = self._embed(
            "🎁 A Giveaway Is Ongoing! 🎁",
            f"**{giveaway.initiator.name}** is giving away **{self._prize(giveaway)}**!\n"
            f"Time left: **{giveaway.remaining} seconds**. Stay online for a chance to win!",
        )
        self._spawn(self._edit(giveaway.id, embed))

    def resolved(self, giveaway: Giveaway) -> None:
        winner = giveaway.winner
        prize = self._prize(giveaway)
        embed = self._embed(
            "🎉 Giveaway Winner! 🎉",
            f"Congratulations, **{winner.name}**! You have won **{prize}** "
            f"from {giveaway.initiator.name}!",
        )
        self._spawn(self._edit(giveaway.id, embed, final=True))
        self._spawn(
            self._direct_message(winner.id, f"🎉 You have won the giveaway of **{prize}**!")
        )
        self._spawn(
            self._direct_message(
                giveaway.initiator.id,
                f"Your giveaway has ended! The winner is **{winner.name}**, "
                f"and they have received **{prize}**.",
            )
        )

    def canceled(self, giveaway: Giveaway) -> None:
        text = "No eligible users were online. The giveaway has been canceled."
        if giveaway.refunded:
            text += f" {giveaway.initiator.name} has been refunded."
        self._spawn(self._edit(giveaway.id, self._embed("⚠ Giveaway Canceled ⚠", text), final=True))


class EconomyBot(commands.Bot):
    """`commands.Bot` that drops pending giveaway timers on shutdown."""

    giveaways: Optional[GiveawayScheduler] = None

    async def close(self) -> None:
        if self.giveaways is not None:
            self.giveaways.shutdown()
        await super().close()


def create_discord_bot(
    ledger: Ledger,
    leaderboard: Leaderboard,
    config: EconomyConfig,
) -> EconomyBot:
    """
    Configure and return a Discord bot exposing the economy commands:
    !wallet, !richestuser and the !economy command group.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True
    intents.presences = True

    # Disable the default help command so `!economy help` is the only one.
    bot = EconomyBot(command_prefix="!", intents=intents, help_command=None)

    directory = GuildDirectory(bot)
    giveaways = GiveawayScheduler(
        ledger,
        directory,
        DiscordGiveawayAnnouncer(bot, config),
        AsyncioScheduler(),
        config,
    )

    async def deliver(ctx: commands.Context, result: OperationResult) -> None:
        if not result.success:
            await ctx.send(result.error_message or "Command failed.")
            return
        if result.reply:
            for chunk in _chunks(result.reply):
                await ctx.send(chunk)
        if result.private_reply:
            for chunk in _chunks(result.private_reply):
                await ctx.author.send(chunk)
        for broadcast in result.broadcasts:
            user = bot.get_user(int(broadcast.user_id))
            if user is None:
                continue
            try:
                await user.send(broadcast.text)
            except discord.Forbidden:
                logger.info("User %s does not accept direct messages", broadcast.user_id)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, (commands.MemberNotFound, commands.UserNotFound)):
            await ctx.send("Invalid username.")
        elif isinstance(error, commands.UserInputError):
            await ctx.send("Invalid arguments. Type !economy help to see usage.")
        elif isinstance(error, commands.CommandNotFound):
            return
        else:
            logger.error("Command %s failed", ctx.command, exc_info=error)
            await ctx.send("Something went wrong, please try again later.")

    @bot.command(name="wallet")
    async def wallet_cmd(ctx: commands.Context, member: Optional[discord.Member] = None):
        result = check_wallet(_build_external_context(ctx), _chat_user(member), ledger)
        await deliver(ctx, result)

    @bot.command(name="richestuser")
    async def richest_cmd(ctx: commands.Context, limit: str = ""):
        result = richest_users(limit, leaderboard, config, directory.display_name)
        await deliver(ctx, result)

    @bot.group(name="economy", invoke_without_command=True)
    async def economy_cmd(ctx: commands.Context):
        await deliver(ctx, economy_help(_build_external_context(ctx), config))

    @economy_cmd.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await deliver(ctx, economy_help(_build_external_context(ctx), config))

    @economy_cmd.command(name="give")
    async def give_cmd(
        ctx: commands.Context,
        member: discord.Member,
        amount: str,
        *,
        reason: str = "",
    ):
        """!economy give @user <amount> <reason>"""

        result = give_currency(
            _build_external_context(ctx), _chat_user(member), amount, reason, ledger
        )
        await deliver(ctx, result)

    @economy_cmd.command(name="take")
    async def take_cmd(
        ctx: commands.Context,
        member: discord.Member,
        amount: str,
        *,
        reason: str = "",
    ):
        result = take_currency(
            _build_external_context(ctx), _chat_user(member), amount, reason, ledger
        )
        await deliver(ctx, result)

    @economy_cmd.command(name="transfer")
    async def transfer_cmd(ctx: commands.Context, member: discord.Member, amount: str):
        result = transfer_currency(
            _build_external_context(ctx), _chat_user(member), amount, ledger
        )
        await deliver(ctx, result)

    @economy_cmd.command(name="reset")
    async def reset_cmd(ctx: commands.Context, member: discord.Member):
        result = reset_account(_build_external_context(ctx), _chat_user(member), ledger)
        await deliver(ctx, result)

    @economy_cmd.command(name="log")
    async def log_cmd(ctx: commands.Context, count: str = ""):
        result = read_transaction_log(_build_external_context(ctx), count, ledger)
        await deliver(ctx, result)

    @economy_cmd.command(name="giveaway")
    async def giveaway_cmd(ctx: commands.Context, amount: str = "", seconds: str = ""):
        """!economy giveaway <amount> <seconds>"""

        pool: List[str] = []
        if ctx.guild is not None:
            pool = [
                str(member.id)
                for member in ctx.guild.members
                if not member.bot
                and member.id != ctx.author.id
                and member.status != discord.Status.offline
            ]
        result = start_giveaway(
            _build_external_context(ctx), amount, seconds, pool, giveaways
        )
        await deliver(ctx, result)

    bot.giveaways = giveaways
    return bot
