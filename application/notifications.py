from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from application.messaging import MessageDispatcher
from application.templates import NotificationKinds, render_notification
from domain.models import NotificationEvent, TaskSnapshot
from domain.repositories import BindingRepository

logger = logging.getLogger(__name__)


@dataclass
class DeliveryAttempt:
    """One send performed on behalf of a notification."""

    user_id: str
    chat_id: str
    delivered: bool


def _assigned(event: NotificationEvent) -> List[str]:
    # The creator of a task is its customer unless the caller says otherwise.
    actor = event.actor_id or event.task.customer_id
    if actor == event.task.executor_id:
        return []
    return [event.task.executor_id]


def _reassigned(event: NotificationEvent) -> List[str]:
    new_executor = event.recipient_user_id or event.task.executor_id
    if new_executor == event.payload.get("previous_executor_id"):
        return []
    return [new_executor]


def _counterparties(event: NotificationEvent) -> List[str]:
    return [p for p in event.task.participants if p != event.actor_id]


def _executor_unless_actor(event: NotificationEvent) -> List[str]:
    if event.task.executor_id == event.actor_id:
        return []
    return [event.task.executor_id]


def _parent_executor(event: NotificationEvent) -> List[str]:
    parent: TaskSnapshot = event.payload["parent_task"]
    return [parent.executor_id]


def _all_participants(event: NotificationEvent) -> List[str]:
    return list(event.task.participants)


RECIPIENT_RULES: Dict[str, Callable[[NotificationEvent], List[str]]] = {
    NotificationKinds.TASK_ASSIGNED: _assigned,
    NotificationKinds.TASK_REASSIGNED: _reassigned,
    NotificationKinds.TASK_STATUS_CHANGED: _counterparties,
    NotificationKinds.SUBTASK_COMPLETED: _parent_executor,
    NotificationKinds.TASK_COMMENT: _counterparties,
    NotificationKinds.TASK_REVISION: _executor_unless_actor,
    NotificationKinds.TASK_DEADLINE_SOON: _all_participants,
    NotificationKinds.TASK_OVERDUE: _all_participants,
}


def resolve_recipients(event: NotificationEvent) -> List[str]:
    """Return the user IDs that should hear about `event`, without duplicates."""

    try:
        rule = RECIPIENT_RULES[event.kind]
    except KeyError:
        raise ValueError(f"Unknown notification kind: {event.kind}") from None

    recipients: List[str] = []
    for user_id in rule(event):
        if user_id and user_id not in recipients:
            recipients.append(user_id)
    return recipients


class NotificationRouter:
    """
    Turns domain events into chat messages.

    Delivery is best-effort and at most once per trigger: recipients
    without a binding are skipped, failed sends are reported in the
    returned attempts and never retried.
    """

    def __init__(
        self,
        bindings: BindingRepository,
        dispatcher: MessageDispatcher,
        task_url: Optional[Callable[[str], str]] = None,
    ) -> None:
        self._bindings = bindings
        self._dispatcher = dispatcher
        self._task_url = task_url

    async def notify(self, event: NotificationEvent) -> List[DeliveryAttempt]:
        recipients = resolve_recipients(event)
        if not recipients:
            logger.debug("No recipients for %s on task %s", event.kind, event.task.id)
            return []

        link_task = event.task
        if event.kind == NotificationKinds.SUBTASK_COMPLETED:
            link_task = event.payload["parent_task"]
        url = self._task_url(link_task.id) if self._task_url else None
        text = render_notification(event, task_url=url)

        attempts: List[DeliveryAttempt] = []
        for user_id in recipients:
            attempt = await self.notify_user(user_id, text)
            if attempt is not None:
                attempts.append(attempt)

        logger.info(
            "Notification %s for task %s: %d recipient(s), %d delivered",
            event.kind,
            event.task.id,
            len(recipients),
            sum(1 for a in attempts if a.delivered),
        )
        return attempts

    async def notify_user(self, user_id: str, text: str) -> Optional[DeliveryAttempt]:
        """Send `text` to the user's chat; None when the user is not linked."""

        binding = await asyncio.to_thread(self._bindings.get_for_user, user_id)
        if binding is None:
            logger.debug("User %s has no linked chat, dropping message", user_id)
            return None

        delivered = await self._dispatcher.send(binding.chat_id, text)
        return DeliveryAttempt(user_id=user_id, chat_id=binding.chat_id, delivered=delivered)
