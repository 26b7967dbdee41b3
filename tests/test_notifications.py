import unittest

from application.messaging import MessageDispatcher
from application.notifications import NotificationRouter, resolve_recipients
from application.templates import NotificationKinds, render_notification
from domain.models import Binding, NotificationEvent, TaskSnapshot
from fakes import FakeTransport, InMemoryBindingRepository

CUSTOMER = "cust"
EXECUTOR = "exec"


def make_task(**overrides) -> TaskSnapshot:
    values = dict(
        id="t1",
        title="Prepare report",
        customer_id=CUSTOMER,
        executor_id=EXECUTOR,
        number=42,
        description="Quarterly numbers",
        deadline="2026-11-01",
    )
    values.update(overrides)
    return TaskSnapshot(**values)


class ResolveRecipientsTests(unittest.TestCase):
    def test_assignment_goes_to_executor(self):
        event = NotificationEvent(NotificationKinds.TASK_ASSIGNED, make_task(), "Carol")
        self.assertEqual(resolve_recipients(event), [EXECUTOR])

    def test_self_assignment_notifies_nobody(self):
        task = make_task(executor_id=CUSTOMER)
        event = NotificationEvent(NotificationKinds.TASK_ASSIGNED, task, "Carol")
        self.assertEqual(resolve_recipients(event), [])

    def test_assignment_by_executor_notifies_nobody(self):
        event = NotificationEvent(
            NotificationKinds.TASK_ASSIGNED, make_task(), "Eve", actor_id=EXECUTOR
        )
        self.assertEqual(resolve_recipients(event), [])

    def test_reassignment_to_new_executor(self):
        event = NotificationEvent(
            NotificationKinds.TASK_REASSIGNED,
            make_task(executor_id="new"),
            "Carol",
            payload={"previous_executor_id": EXECUTOR},
        )
        self.assertEqual(resolve_recipients(event), ["new"])

    def test_reassignment_to_same_executor_is_silent(self):
        event = NotificationEvent(
            NotificationKinds.TASK_REASSIGNED,
            make_task(),
            "Carol",
            payload={"previous_executor_id": EXECUTOR},
        )
        self.assertEqual(resolve_recipients(event), [])

    def test_status_change_goes_to_the_other_party(self):
        by_executor = NotificationEvent(
            NotificationKinds.TASK_STATUS_CHANGED,
            make_task(),
            "Eve",
            actor_id=EXECUTOR,
            payload={"new_status": "in_progress"},
        )
        by_customer = NotificationEvent(
            NotificationKinds.TASK_STATUS_CHANGED,
            make_task(),
            "Carol",
            actor_id=CUSTOMER,
            payload={"new_status": "cancelled"},
        )
        self.assertEqual(resolve_recipients(by_executor), [CUSTOMER])
        self.assertEqual(resolve_recipients(by_customer), [EXECUTOR])

    def test_status_change_by_outsider_notifies_both(self):
        event = NotificationEvent(
            NotificationKinds.TASK_STATUS_CHANGED,
            make_task(),
            "Admin",
            actor_id="admin",
            payload={"new_status": "completed"},
        )
        self.assertEqual(resolve_recipients(event), [CUSTOMER, EXECUTOR])

    def test_comment_excludes_author(self):
        event = NotificationEvent(
            NotificationKinds.TASK_COMMENT,
            make_task(),
            "Carol",
            actor_id=CUSTOMER,
            payload={"comment": "Any news?"},
        )
        self.assertEqual(resolve_recipients(event), [EXECUTOR])

    def test_subtask_completion_goes_to_parent_executor(self):
        parent = make_task(id="t0", executor_id="lead", number=7)
        event = NotificationEvent(
            NotificationKinds.SUBTASK_COMPLETED,
            make_task(),
            "Eve",
            actor_id=EXECUTOR,
            payload={"parent_task": parent},
        )
        self.assertEqual(resolve_recipients(event), ["lead"])

    def test_deadline_reminders_go_to_everyone_once(self):
        task = make_task(executor_id=CUSTOMER)
        event = NotificationEvent(NotificationKinds.TASK_OVERDUE, task, "System")
        self.assertEqual(resolve_recipients(event), [CUSTOMER])

    def test_unknown_kind(self):
        with self.assertRaises(ValueError):
            resolve_recipients(NotificationEvent("task_exploded", make_task(), "Carol"))


class RenderNotificationTests(unittest.TestCase):
    def test_user_text_is_escaped(self):
        task = make_task(title="<script>alert(1)</script>", description="a & b")
        event = NotificationEvent(NotificationKinds.TASK_ASSIGNED, task, "Carol <admin>")

        text = render_notification(event)

        self.assertNotIn("<script>", text)
        self.assertIn("&lt;script&gt;alert(1)&lt;/script&gt;", text)
        self.assertIn("a &amp; b", text)
        self.assertIn("Carol &lt;admin&gt;", text)

    def test_long_description_is_truncated(self):
        event = NotificationEvent(
            NotificationKinds.TASK_ASSIGNED, make_task(description="x" * 400), "Carol"
        )

        text = render_notification(event)

        self.assertIn("x" * 150 + "...", text)
        self.assertNotIn("x" * 151, text)

    def test_task_link_is_appended(self):
        event = NotificationEvent(NotificationKinds.TASK_ASSIGNED, make_task(), "Carol")
        text = render_notification(event, task_url="https://tracker.example/tasks/t1")
        self.assertIn('<a href="https://tracker.example/tasks/t1">', text)

    def test_status_label(self):
        event = NotificationEvent(
            NotificationKinds.TASK_STATUS_CHANGED,
            make_task(),
            "Eve",
            payload={"new_status": "completed"},
        )
        text = render_notification(event)
        self.assertIn("Task #42 completed", text)
        self.assertIn("✅ Completed", text)


class NotificationRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.bindings = InMemoryBindingRepository()
        self.bindings.claim(Binding(CUSTOMER, "100"))
        self.bindings.claim(Binding(EXECUTOR, "200"))
        self.transport = FakeTransport()
        self.router = NotificationRouter(
            self.bindings,
            MessageDispatcher(self.transport),
            task_url=lambda task_id: f"https://tracker.example/tasks/{task_id}",
        )

    async def test_assignment_sends_one_message_to_executor(self):
        event = NotificationEvent(NotificationKinds.TASK_ASSIGNED, make_task(), "Carol")

        attempts = await self.router.notify(event)

        self.assertEqual([(a.user_id, a.chat_id, a.delivered) for a in attempts], [(EXECUTOR, "200", True)])
        [(chat_id, text)] = self.transport.sent
        self.assertEqual(chat_id, "200")
        self.assertIn("New task #42", text)
        self.assertIn("https://tracker.example/tasks/t1", text)

    async def test_self_assignment_sends_nothing(self):
        event = NotificationEvent(
            NotificationKinds.TASK_ASSIGNED, make_task(executor_id=CUSTOMER), "Carol"
        )
        self.assertEqual(await self.router.notify(event), [])
        self.assertEqual(self.transport.sent, [])

    async def test_unbound_recipient_is_skipped(self):
        event = NotificationEvent(
            NotificationKinds.TASK_REASSIGNED,
            make_task(executor_id="nobody"),
            "Carol",
            payload={"previous_executor_id": EXECUTOR},
        )
        self.assertEqual(await self.router.notify(event), [])
        self.assertEqual(self.transport.sent, [])

    async def test_failed_delivery_is_reported_and_others_still_sent(self):
        self.transport.failing_chats.add("100")
        event = NotificationEvent(NotificationKinds.TASK_DEADLINE_SOON, make_task(), "System")

        attempts = await self.router.notify(event)

        self.assertEqual([(a.user_id, a.delivered) for a in attempts], [(CUSTOMER, False), (EXECUTOR, True)])
        self.assertEqual([chat for chat, _ in self.transport.sent], ["200"])

    async def test_subtask_link_points_at_parent(self):
        self.bindings.claim(Binding("lead", "300"))
        parent = make_task(id="t0", executor_id="lead", number=7, title="Launch")
        event = NotificationEvent(
            NotificationKinds.SUBTASK_COMPLETED,
            make_task(),
            "Eve",
            actor_id=EXECUTOR,
            payload={"parent_task": parent},
        )

        await self.router.notify(event)

        [(chat_id, text)] = self.transport.sent
        self.assertEqual(chat_id, "300")
        self.assertIn("Parent task #7: Launch", text)
        self.assertIn("https://tracker.example/tasks/t0", text)

    async def test_notify_user(self):
        attempt = await self.router.notify_user(CUSTOMER, "hello")
        self.assertTrue(attempt.delivered)
        self.assertIsNone(await self.router.notify_user("nobody", "hello"))


if __name__ == "__main__":
    unittest.main()
