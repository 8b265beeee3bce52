import random
import unittest

from application.config import EconomyConfig
from application.giveaway import GiveawayScheduler
from application.leaderboard import Leaderboard
from application.ledger import AccountStore, AuditLog, Ledger
from application.services import (
    ExternalContext,
    Privilege,
    check_wallet,
    clamp_limit,
    economy_help,
    give_currency,
    parse_amount,
    read_transaction_log,
    reset_account,
    richest_users,
    start_giveaway,
    take_currency,
    transfer_currency,
)
from domain.exceptions import InvalidAmount
from domain.models import ChatUser
from fakes import (
    FakeDirectory,
    InMemoryAuditSink,
    InMemoryKeyValueStore,
    ManualScheduler,
    RecordingAnnouncer,
)


class ParsingTests(unittest.TestCase):
    def test_parse_amount_rounds_half_up(self):
        self.assertEqual(parse_amount("10"), 10)
        self.assertEqual(parse_amount(" 2.5 "), 3)
        self.assertEqual(parse_amount("2.4"), 2)
        self.assertEqual(parse_amount("-1.5"), -1)

    def test_parse_amount_rejects_garbage(self):
        for text in ("", "abc", "nan", "inf", None):
            with self.assertRaises(InvalidAmount):
                parse_amount(text)

    def test_clamp_limit(self):
        config = EconomyConfig()
        self.assertEqual(clamp_limit("", config), 10)
        self.assertEqual(clamp_limit("abc", config), 10)
        self.assertEqual(clamp_limit("0", config), 10)
        self.assertEqual(clamp_limit("500", config), 100)
        self.assertEqual(clamp_limit("-4", config), 1)
        self.assertEqual(clamp_limit("25", config), 25)


class ApplicationServicesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.config = EconomyConfig()
        self.kv = InMemoryKeyValueStore()
        self.sink = InMemoryAuditSink()
        store = AccountStore(self.kv)
        self.ledger = Ledger(store, AuditLog(self.sink), self.config)
        self.leaderboard = Leaderboard(store, self.config)
        self.clock = ManualScheduler()
        self.giveaways = GiveawayScheduler(
            self.ledger,
            FakeDirectory(ChatUser("12345", "John"), ChatUser("67890", "Jane")),
            RecordingAnnouncer(),
            self.clock,
            self.config,
            rng=random.Random(3),
        )
        self.admin = ExternalContext(
            provider="telegram",
            provider_user_id="1",
            display_name="Oak",
            privilege=Privilege.ADMINISTRATOR,
            room_id="-100",
        )
        self.user = ExternalContext(
            provider="telegram",
            provider_user_id="12345",
            display_name="John",
        )
        self.jane = ChatUser(id="67890", name="Jane")

    def test_wallet_defaults_to_caller_and_uses_singular(self):
        result = check_wallet(self.user, None, self.ledger)
        self.assertTrue(result.success)
        self.assertEqual(result.reply, "John has 0 Pokédollars.")

        self.ledger.adjust_balance("67890", 1)
        result = check_wallet(self.user, self.jane, self.ledger)
        self.assertEqual(result.reply, "Jane has 1 Pokédollar.")

    def test_wallet_rejects_invalid_username(self):
        result = check_wallet(self.user, ChatUser(id="", name="???"), self.ledger)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "Invalid username.")

    def test_give_requires_administrator(self):
        result = give_currency(self.user, self.jane, "50", "prize", self.ledger)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "Access denied.")
        self.assertEqual(self.ledger.read_balance("67890"), 0)
        self.assertEqual(self.sink.lines, [])

    def test_give_and_take_with_reason(self):
        result = give_currency(self.admin, self.jane, "200", "tournament prize", self.ledger)
        self.assertTrue(result.success)
        self.assertEqual(result.reply, "Jane has received 200 Pokédollars.")
        self.assertTrue(
            self.sink.lines[-1].endswith(
                "Oak gave 200 Pokédollars to Jane. Reason: tournament prize"
            )
        )

        result = take_currency(self.admin, self.jane, "50", "spam", self.ledger)
        self.assertTrue(result.success)
        self.assertEqual(self.ledger.read_balance("67890"), 150)
        self.assertEqual(len(self.sink.lines), 2)

    def test_give_requires_reason_and_bounded_amount(self):
        result = give_currency(self.admin, self.jane, "50", "  ", self.ledger)
        self.assertFalse(result.success)
        self.assertTrue(result.error_message.startswith("Usage: /economy give"))

        for amount in ("0", "1001", "lots"):
            result = give_currency(self.admin, self.jane, amount, "why", self.ledger)
            self.assertFalse(result.success)
            self.assertEqual(
                result.error_message, "Amount must be a number between 1 and 1000."
            )
        self.assertEqual(self.sink.lines, [])

    def test_give_to_guest_is_rejected(self):
        guest = ChatUser(id="guest42", name="Guest 42")
        result = give_currency(self.admin, guest, "10", "hi", self.ledger)
        self.assertFalse(result.success)
        self.assertEqual(self.kv.writes, 0)

    def test_transfer_moves_funds_and_notifies_recipient(self):
        self.ledger.adjust_balance("12345", 200)
        result = transfer_currency(self.user, self.jane, "50", self.ledger)
        self.assertTrue(result.success)
        self.assertEqual(result.reply, "You transferred 50 Pokédollars to Jane.")
        self.assertEqual(self.ledger.read_balance("12345"), 150)
        self.assertEqual(self.ledger.read_balance("67890"), 50)
        self.assertEqual(len(result.broadcasts), 1)
        self.assertEqual(result.broadcasts[0].user_id, "67890")

    def test_transfer_insufficient_funds(self):
        self.ledger.adjust_balance("12345", 20)
        result = transfer_currency(self.user, self.jane, "50", self.ledger)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "You don't have enough Pokédollars.")
        self.assertEqual(self.ledger.read_balance("12345"), 20)
        self.assertEqual(self.ledger.read_balance("67890"), 0)

    def test_reset_account(self):
        self.ledger.adjust_balance("67890", 80)
        self.assertFalse(reset_account(self.user, self.jane, self.ledger).success)
        result = reset_account(self.admin, self.jane, self.ledger)
        self.assertTrue(result.success)
        self.assertEqual(result.reply, "Jane now has 0 Pokédollars.")
        self.assertEqual(self.ledger.read_balance("67890"), 0)

    def test_transaction_log_is_private_and_newest_first(self):
        for amount in (1, 2, 3):
            self.ledger.adjust_balance("67890", amount, reason=f"entry {amount}")
        moderator = ExternalContext("discord", "9", "Mod", privilege=Privilege.MODERATOR)

        self.assertFalse(read_transaction_log(self.user, "", self.ledger).success)

        result = read_transaction_log(moderator, "2", self.ledger)
        self.assertTrue(result.success)
        self.assertIsNone(result.reply)
        lines = result.private_reply.splitlines()
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[0].endswith("entry 3"))

    def test_richest_users_empty_and_ranked(self):
        result = richest_users("", self.leaderboard, self.config)
        self.assertTrue(result.success)
        self.assertIn("No rich users found.", result.reply)

        self.ledger.adjust_balance("12345", 5)
        self.ledger.adjust_balance("67890", 9)
        names = {"12345": "John", "67890": "Jane"}
        result = richest_users("10", self.leaderboard, self.config, names.get)
        self.assertEqual(
            result.reply.splitlines(),
            [
                "Richest users in Impulse",
                "1. Jane: 9 Pokédollars",
                "2. John: 5 Pokédollars",
            ],
        )

    def test_start_giveaway_requires_room_and_room_owner(self):
        self.ledger.adjust_balance("12345", 500)
        private = ExternalContext("telegram", "12345", "John", privilege=Privilege.ROOM_OWNER)
        result = start_giveaway(private, "100", "30", ["67890"], self.giveaways)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "This command can only be used in a room.")

        in_room = ExternalContext("telegram", "12345", "John", room_id="-100")
        result = start_giveaway(in_room, "100", "30", ["67890"], self.giveaways)
        self.assertFalse(result.success)
        self.assertEqual(result.error_message, "Access denied.")
        self.assertEqual(self.ledger.read_balance("12345"), 500)

    def test_start_giveaway_runs_to_completion(self):
        self.ledger.adjust_balance("12345", 500)
        owner = ExternalContext(
            "telegram", "12345", "John", privilege=Privilege.ROOM_OWNER, room_id="-100"
        )
        result = start_giveaway(owner, "100", "30", ["12345", "67890"], self.giveaways)
        self.assertTrue(result.success)
        self.assertEqual(self.ledger.read_balance("12345"), 400)

        self.clock.advance(30)
        self.assertEqual(self.ledger.read_balance("67890"), 100)

    def test_start_giveaway_reports_domain_errors(self):
        owner = ExternalContext(
            "telegram", "12345", "John", privilege=Privilege.ROOM_OWNER, room_id="-100"
        )
        result = start_giveaway(owner, "100", "30", ["67890"], self.giveaways)
        self.assertEqual(
            result.error_message, "You don't have enough Pokédollars to give away."
        )

        self.ledger.adjust_balance("12345", 500)
        result = start_giveaway(owner, "100", "30", [], self.giveaways)
        self.assertEqual(
            result.error_message, "At least two users must be online to start a giveaway."
        )
        result = start_giveaway(owner, "100", "10", ["67890"], self.giveaways)
        self.assertEqual(result.error_message, "Time must be between 30 and 300 seconds.")
        result = start_giveaway(owner, "x", "30", ["67890"], self.giveaways)
        self.assertTrue(result.error_message.startswith("Usage: /economy giveaway"))
        self.assertEqual(self.ledger.read_balance("12345"), 500)

    def test_help_hides_staff_commands_from_users(self):
        user_help = economy_help(self.user, self.config).reply
        staff_help = economy_help(self.admin, self.config).reply
        self.assertNotIn("Staff commands", user_help)
        self.assertIn("Staff commands", staff_help)
        self.assertIn("/economy reset [user]", staff_help)


if __name__ == "__main__":
    unittest.main()
