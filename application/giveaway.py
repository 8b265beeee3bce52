from __future__ import annotations

import logging
import random
import time
from typing import Callable, Dict, Iterable, List, Optional

from application.config import EconomyConfig
from application.ledger import Ledger, coerce_amount
from application.scheduling import ScheduledTask, Scheduler
from domain.exceptions import (
    InsufficientFunds,
    InvalidAmount,
    NoEligibleParticipants,
    StorageUnavailable,
)
from domain.identity import to_id
from domain.models import ChatUser, Giveaway, GiveawayStatus
from domain.repositories import GiveawayAnnouncer, UserDirectory

logger = logging.getLogger(__name__)


class GiveawayScheduler:
    """
    Runs timed giveaways on top of the ledger.

    Lifecycle of one giveaway:
    - `start` validates, withdraws the stake and moves it to ACTIVE.
    - A progress tick fires every `tick_seconds` while time remains.
    - A single resolution fires after `duration` seconds and moves it to
      RESOLVED (winner credited) or CANCELED (nobody resolvable).

    Both callbacks check the status first, so a tick landing on the
    resolution boundary cannot resolve twice.
    """

    def __init__(
        self,
        ledger: Ledger,
        directory: UserDirectory,
        announcer: GiveawayAnnouncer,
        scheduler: Scheduler,
        config: Optional[EconomyConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._directory = directory
        self._announcer = announcer
        self._scheduler = scheduler
        self._config = config or ledger.config
        self._rng = rng or random.SystemRandom()
        self._clock = clock
        self._active: Dict[str, Giveaway] = {}
        self._tasks: Dict[str, List[ScheduledTask]] = {}

    @property
    def config(self) -> EconomyConfig:
        return self._config

    def active(self) -> List[Giveaway]:
        return list(self._active.values())

    def start(
        self,
        room_id: str,
        initiator: ChatUser,
        stake,
        duration,
        eligible_pool: Iterable[str],
    ) -> Giveaway:
        config = self._config
        stake = coerce_amount(stake)
        duration = coerce_amount(duration)
        if not config.min_amount <= stake <= config.max_amount:
            raise InvalidAmount(
                f"Amount must be a number between {config.min_amount} and {config.max_amount}."
            )
        if not config.min_giveaway_seconds <= duration <= config.max_giveaway_seconds:
            raise InvalidAmount(
                f"Time must be between {config.min_giveaway_seconds} and "
                f"{config.max_giveaway_seconds} seconds."
            )

        initiator_id = to_id(initiator.id)
        balance = self._ledger.read_balance(initiator_id)
        if balance < stake:
            raise InsufficientFunds(initiator_id, balance, stake)

        snapshot = frozenset(
            userid
            for userid in (to_id(member) for member in eligible_pool)
            if userid and userid != initiator_id and not self._ledger.is_anonymous(userid)
        )
        if not snapshot:
            raise NoEligibleParticipants(
                "At least two users must be online to start a giveaway."
            )

        giveaway = Giveaway(
            id=f"giveaway-{to_id(room_id)}-{initiator_id}-{int(self._clock() * 1000)}",
            room_id=room_id,
            initiator=ChatUser(id=initiator_id, name=initiator.name),
            stake=stake,
            duration=duration,
            remaining=duration,
            eligible=snapshot,
        )

        self._ledger.adjust_balance(
            initiator_id,
            -stake,
            reason=f"{initiator.name} started a giveaway of {stake} {config.currency(stake)}.",
        )
        giveaway.status = GiveawayStatus.ACTIVE
        self._active[giveaway.id] = giveaway
        self._tasks[giveaway.id] = []
        logger.info(
            "Giveaway %s started by %s: %d for %ds among %d users",
            giveaway.id,
            initiator_id,
            stake,
            duration,
            len(snapshot),
        )

        self._schedule_tick(giveaway)
        self._track(
            giveaway,
            self._scheduler.call_later(duration, lambda: self.resolve(giveaway.id)),
        )
        self._announce("started", giveaway)
        return giveaway

    def tick(self, giveaway_id: str) -> None:
        """Count down and re-announce; never touches balances."""

        giveaway = self._active.get(giveaway_id)
        if giveaway is None or giveaway.status is not GiveawayStatus.ACTIVE:
            return
        giveaway.remaining -= self._config.tick_seconds
        if giveaway.remaining <= 0:
            giveaway.remaining = 0
            return
        self._schedule_tick(giveaway)
        self._announce("progress", giveaway)

    def resolve(self, giveaway_id: str) -> Optional[Giveaway]:
        giveaway = self._active.get(giveaway_id)
        if giveaway is None or giveaway.status is not GiveawayStatus.ACTIVE:
            return None
        self._cancel_tasks(giveaway.id)
        giveaway.remaining = 0

        candidates = []
        for userid in sorted(giveaway.eligible):
            user = self._directory.find_user(userid)
            if user is not None:
                candidates.append(user)

        currency = self._config.currency(giveaway.stake)
        if not candidates:
            giveaway.status = GiveawayStatus.CANCELED
            del self._active[giveaway.id]
            if self._config.refund_on_cancel:
                self._ledger.adjust_balance(
                    giveaway.initiator.id,
                    giveaway.stake,
                    reason=(
                        f"{giveaway.initiator.name} was refunded {giveaway.stake} "
                        f"{currency} from a canceled giveaway."
                    ),
                )
                giveaway.refunded = True
            logger.info(
                "Giveaway %s canceled, no eligible users (refunded=%s)",
                giveaway.id,
                giveaway.refunded,
            )
            self._announce("canceled", giveaway)
            return giveaway

        winner = self._rng.choice(candidates)
        # Mark finished before crediting so a re-entrant call is a no-op.
        giveaway.status = GiveawayStatus.RESOLVED
        giveaway.winner = winner
        del self._active[giveaway.id]
        try:
            self._ledger.adjust_balance(
                winner.id,
                giveaway.stake,
                reason=f"{winner.name} won a giveaway of {giveaway.stake} {currency}.",
            )
        except StorageUnavailable:
            logger.error(
                "Giveaway %s: could not credit %d to winner %s (%s); manual payout needed",
                giveaway.id,
                giveaway.stake,
                winner.id,
                winner.name,
            )
            raise
        logger.info("Giveaway %s won by %s", giveaway.id, winner.id)
        self._announce("resolved", giveaway)
        return giveaway

    def shutdown(self) -> None:
        """
        Drop every pending timer.

        Stakes already withdrawn are not returned, matching what happens
        when the process restarts mid-giveaway.
        """

        for giveaway_id in list(self._tasks):
            self._cancel_tasks(giveaway_id)
        if self._active:
            logger.warning("Discarding %d in-flight giveaway(s)", len(self._active))
        self._active.clear()

    def _announce(self, event: str, giveaway: Giveaway) -> None:
        # Announcer failures never reach timers or balances.
        try:
            getattr(self._announcer, event)(giveaway)
        except Exception:
            logger.exception("Giveaway %s: %s announcement failed", giveaway.id, event)

    def _schedule_tick(self, giveaway: Giveaway) -> None:
        task = self._scheduler.call_later(
            self._config.tick_seconds, lambda: self.tick(giveaway.id)
        )
        self._track(giveaway, task)

    def _track(self, giveaway: Giveaway, task: ScheduledTask) -> None:
        self._tasks.setdefault(giveaway.id, []).append(task)

    def _cancel_tasks(self, giveaway_id: str) -> None:
        for task in self._tasks.pop(giveaway_id, []):
            task.cancel()
