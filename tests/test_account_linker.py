import unittest

from application.link_codes import InMemoryLinkCodeStore
from application.linking import AccountLinker
from domain.errors import ConflictError, ExpiredError, NotFoundError
from domain.models import Binding, User
from fakes import FakeClock, InMemoryBindingRepository, InMemoryUserRepository


def deep_link(code: str) -> str:
    return f"https://t.me/tracker_bot?start={code}"


class AccountLinkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FakeClock()
        self.codes = InMemoryLinkCodeStore(clock=self.clock)
        self.bindings = InMemoryBindingRepository()
        self.users = InMemoryUserRepository()
        self.users.add_user(User(id="u1", full_name="Anna Petrova"))
        self.users.add_user(User(id="u2", full_name="Boris Ivanov"))
        self.linker = AccountLinker(self.codes, self.bindings, self.users)

    def test_bind_creates_binding_and_consumes_code(self):
        code = self.codes.issue("u1")

        result = self.linker.bind(code, "555", "ann")

        self.assertEqual(result.user_id, "u1")
        self.assertEqual(result.user_name, "Anna Petrova")
        self.assertEqual(self.bindings.get_for_user("u1"), Binding("u1", "555", "ann"))
        with self.assertRaises(NotFoundError):
            self.linker.bind(code, "556")

    def test_bind_with_expired_code(self):
        code = self.codes.issue("u1")
        self.clock.advance(601)
        with self.assertRaises(ExpiredError):
            self.linker.bind(code, "555")
        self.assertIsNone(self.bindings.get_for_user("u1"))

    def test_rebinding_replaces_users_previous_chat(self):
        self.linker.bind(self.codes.issue("u1"), "555")
        self.linker.bind(self.codes.issue("u1"), "777")

        self.assertEqual(self.bindings.get_for_user("u1").chat_id, "777")
        self.assertIsNone(self.bindings.get_for_chat("555"))

    def test_chat_owned_by_another_user_is_a_conflict(self):
        self.linker.bind(self.codes.issue("u1"), "555")
        code = self.codes.issue("u2")

        with self.assertRaises(ConflictError) as ctx:
            self.linker.bind(code, "555")

        self.assertEqual(ctx.exception.owner_name, "Anna Petrova")
        self.assertEqual(self.bindings.get_for_chat("555").user_id, "u1")
        self.assertIsNone(self.bindings.get_for_user("u2"))

    def test_conflict_leaves_code_usable_from_another_chat(self):
        self.linker.bind(self.codes.issue("u1"), "555")
        code = self.codes.issue("u2")

        with self.assertRaises(ConflictError):
            self.linker.bind(code, "555")

        result = self.linker.bind(code, "666")
        self.assertEqual(result.user_id, "u2")
        self.assertEqual(self.bindings.get_for_user("u2").chat_id, "666")

    def test_conflict_found_by_claim_is_reported(self):
        code = self.codes.issue("u2")
        original_claim = self.bindings.claim

        def racing_claim(binding):
            # Another bind takes the chat between the check and the write.
            original_claim(Binding("u1", binding.chat_id))
            return original_claim(binding)

        self.bindings.claim = racing_claim

        with self.assertRaises(ConflictError) as ctx:
            self.linker.bind(code, "555")

        self.assertEqual(ctx.exception.owner_name, "Anna Petrova")
        self.assertEqual(self.bindings.get_for_chat("555").user_id, "u1")

    def test_same_user_may_relink_same_chat(self):
        self.linker.bind(self.codes.issue("u1"), "555", "ann")
        self.linker.bind(self.codes.issue("u1"), "555", "ann_new")
        self.assertEqual(self.bindings.get_for_user("u1").display_name, "ann_new")

    def test_unbind_returns_removed_binding(self):
        self.linker.bind(self.codes.issue("u1"), "555")

        removed = self.linker.unbind("u1")

        self.assertEqual(removed.chat_id, "555")
        self.assertIsNone(self.linker.unbind("u1"))

    def test_unbind_by_chat(self):
        self.linker.bind(self.codes.issue("u1"), "555")
        self.assertEqual(self.linker.unbind_by_chat("555").user_id, "u1")
        self.assertIsNone(self.linker.unbind_by_chat("555"))

    def test_status_for_user_and_chat(self):
        self.assertFalse(self.linker.status_for("u1").linked)
        self.linker.bind(self.codes.issue("u1"), "555", "ann")

        status = self.linker.status_for("u1")
        self.assertTrue(status.linked)
        self.assertEqual(status.display_name, "ann")
        self.assertEqual(status.user_name, "Anna Petrova")
        self.assertTrue(self.linker.status_for_chat("555").linked)
        self.assertFalse(self.linker.status_for_chat("999").linked)

    def test_request_link_issues_code_for_unlinked_user(self):
        offer = self.linker.request_link("u1", deep_link)

        self.assertFalse(offer.linked)
        self.assertEqual(offer.link_url, f"https://t.me/tracker_bot?start={offer.code}")
        self.assertEqual(self.codes.consume(offer.code), "u1")

    def test_request_link_for_linked_user_issues_nothing(self):
        self.linker.bind(self.codes.issue("u1"), "555", "ann")

        offer = self.linker.request_link("u1", deep_link)

        self.assertTrue(offer.linked)
        self.assertEqual(offer.display_name, "ann")
        self.assertIsNone(offer.code)
        self.assertEqual(len(self.codes), 0)


if __name__ == "__main__":
    unittest.main()
