import random
import unittest
from unittest import mock

from application.config import EconomyConfig
from application.giveaway import GiveawayScheduler
from application.ledger import AccountStore, AuditLog, Ledger
from domain.exceptions import (
    InsufficientFunds,
    InvalidAmount,
    NoEligibleParticipants,
    StorageUnavailable,
)
from domain.models import ChatUser, GiveawayStatus
from fakes import (
    FakeDirectory,
    InMemoryAuditSink,
    InMemoryKeyValueStore,
    ManualScheduler,
    RecordingAnnouncer,
)

OAK = ChatUser(id="oak", name="Oak")
ASH = ChatUser(id="ash", name="Ash")
MISTY = ChatUser(id="misty", name="Misty")


class UnreachableAnnouncer(RecordingAnnouncer):
    """Start and progress announcements fail like a dropped connection."""

    def started(self, giveaway):
        super().started(giveaway)
        raise ConnectionError("chat API unreachable")

    def progress(self, giveaway):
        super().progress(giveaway)
        raise ConnectionError("chat API unreachable")


class GiveawaySchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sink = InMemoryAuditSink()
        self.kv = InMemoryKeyValueStore()
        self.ledger = Ledger(AccountStore(self.kv), AuditLog(self.sink), EconomyConfig())
        self.ledger.adjust_balance("oak", 500)
        self.sink.lines.clear()
        self.directory = FakeDirectory(ASH, MISTY, OAK)
        self.announcer = RecordingAnnouncer()
        self.clock = ManualScheduler()
        self.giveaways = self._make_scheduler(EconomyConfig())

    def _make_scheduler(self, config: EconomyConfig) -> GiveawayScheduler:
        return GiveawayScheduler(
            self.ledger,
            self.directory,
            self.announcer,
            self.clock,
            config,
            rng=random.Random(7),
            clock=lambda: 1700000000.0,
        )

    def balances(self):
        return {name: self.ledger.read_balance(name) for name in ("oak", "ash", "misty")}

    def test_scenario_stake_moves_from_initiator_to_one_winner(self):
        giveaway = self.giveaways.start("lobby", OAK, 100, 30, ["ash", "misty"])
        self.assertEqual(giveaway.status, GiveawayStatus.ACTIVE)
        self.assertEqual(self.ledger.read_balance("oak"), 400)
        self.assertEqual(giveaway.eligible, frozenset({"ash", "misty"}))

        self.clock.advance(30)

        balances = self.balances()
        self.assertEqual(giveaway.status, GiveawayStatus.RESOLVED)
        self.assertEqual(sorted([balances["ash"], balances["misty"]]), [0, 100])
        self.assertEqual(balances[giveaway.winner.id], 100)
        self.assertEqual(sum(balances.values()), 500)
        self.assertEqual(self.giveaways.active(), [])

    def test_countdown_announcements_then_single_resolution(self):
        giveaway = self.giveaways.start("lobby", OAK, 50, 30, ["ash", "misty"])
        self.clock.advance(300)
        self.assertEqual(
            self.announcer.events,
            [
                ("started", 30),
                ("progress", 20),
                ("progress", 10),
                ("resolved", giveaway.winner.id),
            ],
        )
        self.assertEqual(self.clock.pending, 0)

    def test_duration_not_multiple_of_tick(self):
        self.giveaways.start("lobby", OAK, 50, 35, ["ash"])
        self.clock.advance(35)
        self.assertEqual(
            self.announcer.kinds(), ["started", "progress", "progress", "progress", "resolved"]
        )
        self.assertEqual(self.clock.pending, 0)

    def test_late_tick_and_resolution_are_no_ops(self):
        giveaway = self.giveaways.start("lobby", OAK, 100, 30, ["ash"])
        self.clock.advance(30)
        self.assertEqual(self.ledger.read_balance("ash"), 100)

        self.giveaways.tick(giveaway.id)
        self.assertIsNone(self.giveaways.resolve(giveaway.id))
        self.assertEqual(self.ledger.read_balance("ash"), 100)
        self.assertEqual(self.announcer.kinds().count("resolved"), 1)

    def test_audit_entries_follow_call_order(self):
        giveaway = self.giveaways.start("lobby", OAK, 100, 30, ["ash"])
        self.clock.advance(30)
        self.assertEqual(len(self.sink.lines), 2)
        self.assertTrue(self.sink.lines[0].endswith("Oak started a giveaway of 100 Pokédollars."))
        self.assertTrue(self.sink.lines[1].endswith("Ash won a giveaway of 100 Pokédollars."))
        self.assertEqual(giveaway.winner, ASH)

    def test_empty_pool_fails_without_debit(self):
        for pool in ([], ["oak"], ["Guest123", "guest9"], ["", "!!"]):
            with self.assertRaises(NoEligibleParticipants):
                self.giveaways.start("lobby", OAK, 100, 30, pool)
        self.assertEqual(self.ledger.read_balance("oak"), 500)
        self.assertEqual(self.sink.lines, [])
        self.assertEqual(self.clock.pending, 0)

    def test_insufficient_funds_fails_without_debit(self):
        with self.assertRaises(InsufficientFunds):
            self.giveaways.start("lobby", ASH, 10, 30, ["misty"])
        self.assertEqual(self.ledger.read_balance("ash"), 0)
        self.assertEqual(self.sink.lines, [])

    def test_out_of_range_inputs_are_rejected(self):
        for stake, duration in ((0, 30), (1001, 30), (10, 29), (10, 301), (1.5, 30)):
            with self.assertRaises(InvalidAmount):
                self.giveaways.start("lobby", OAK, stake, duration, ["ash"])
        self.assertEqual(self.ledger.read_balance("oak"), 500)

    def test_unresolvable_pool_cancels_and_burns_stake(self):
        self.directory.users.clear()
        giveaway = self.giveaways.start("lobby", OAK, 100, 30, ["ash", "misty"])
        self.clock.advance(30)

        self.assertEqual(giveaway.status, GiveawayStatus.CANCELED)
        self.assertFalse(giveaway.refunded)
        # Not conserving: the stake leaves the system entirely.
        self.assertEqual(self.balances(), {"oak": 400, "ash": 0, "misty": 0})
        self.assertEqual(len(self.sink.lines), 1)
        self.assertEqual(self.announcer.kinds()[-1], "canceled")

    def test_refund_on_cancel_returns_stake(self):
        self.directory.users.clear()
        giveaways = self._make_scheduler(EconomyConfig(refund_on_cancel=True))
        giveaway = giveaways.start("lobby", OAK, 100, 30, ["ash"])
        self.clock.advance(30)

        self.assertEqual(giveaway.status, GiveawayStatus.CANCELED)
        self.assertTrue(giveaway.refunded)
        self.assertEqual(self.ledger.read_balance("oak"), 500)
        self.assertIn("refunded 100 Pokédollars", self.sink.lines[-1])

    def test_winner_is_drawn_from_resolvable_users_only(self):
        del self.directory.users["ash"]
        for _ in range(5):
            giveaway = self.giveaways.start("lobby", OAK, 10, 30, ["ash", "misty"])
            self.clock.advance(30)
            self.assertEqual(giveaway.winner, MISTY)
        self.assertEqual(self.ledger.read_balance("misty"), 50)
        self.assertEqual(self.ledger.read_balance("ash"), 0)

    def test_snapshot_is_fixed_at_start(self):
        pool = ["ash"]
        giveaway = self.giveaways.start("lobby", OAK, 10, 30, pool)
        pool.append("misty")
        self.clock.advance(30)
        self.assertEqual(giveaway.eligible, frozenset({"ash"}))
        self.assertEqual(giveaway.winner, ASH)

    def test_shutdown_drops_pending_giveaways(self):
        self.giveaways.start("lobby", OAK, 100, 30, ["ash"])
        self.giveaways.shutdown()
        self.clock.advance(60)
        self.assertEqual(self.clock.pending, 0)
        self.assertEqual(self.giveaways.active(), [])
        self.assertEqual(self.balances(), {"oak": 400, "ash": 0, "misty": 0})
        self.assertEqual(self.announcer.kinds(), ["started"])

    def test_failed_announcements_do_not_stall_the_giveaway(self):
        self.announcer = UnreachableAnnouncer()
        giveaways = self._make_scheduler(EconomyConfig())
        with self.assertLogs("application.giveaway", level="ERROR"):
            giveaway = giveaways.start("lobby", OAK, 100, 30, ["ash"])
        self.assertEqual(self.ledger.read_balance("oak"), 400)

        with self.assertLogs("application.giveaway", level="ERROR"):
            self.clock.advance(600)

        self.assertEqual(giveaway.status, GiveawayStatus.RESOLVED)
        self.assertEqual(self.balances(), {"oak": 400, "ash": 100, "misty": 0})
        self.assertEqual(giveaways.active(), [])
        self.assertEqual(self.clock.pending, 0)
        self.assertEqual(self.announcer.kinds()[-1], "resolved")

    def test_failed_winner_credit_is_logged_for_manual_payout(self):
        giveaway = self.giveaways.start("lobby", OAK, 100, 30, ["ash"])
        failure = StorageUnavailable("disk on fire")
        with mock.patch.object(self.kv, "set_many", side_effect=failure):
            with self.assertLogs("application.giveaway", level="ERROR") as logs:
                with self.assertRaises(StorageUnavailable):
                    self.giveaways.resolve(giveaway.id)

        self.assertIn("100", logs.output[0])
        self.assertIn("ash", logs.output[0])
        self.assertIn(giveaway.id, logs.output[0])
        self.assertEqual(giveaway.status, GiveawayStatus.RESOLVED)
        self.assertEqual(self.ledger.read_balance("ash"), 0)
        self.assertEqual(self.clock.pending, 0)


if __name__ == "__main__":
    unittest.main()
