from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class User:
    """
    The part of an application user record this subsystem reads.

    Users are owned by the work-tracking application; the bot only needs
    their name for replies and notification templates.
    """

    id: str
    full_name: str


@dataclass
class Binding:
    """
    One-to-one association between an application user and a chat.

    At most one binding exists per `user_id` and at most one per `chat_id`.
    """

    user_id: str
    chat_id: str
    display_name: Optional[str] = None


@dataclass
class LinkCode:
    """Short-lived, single-use numeric token held only in memory."""

    code: str
    user_id: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass
class InboundUpdate:
    """
    Transport-agnostic view of one inbound chat message.

    The interface layer builds it from a Telegram update; command handling
    never sees SDK types.
    """

    update_id: int
    chat_id: str
    text: str
    chat_display_name: Optional[str] = None


@dataclass
class TaskSnapshot:
    """Fields of a task that recipient rules and templates depend on."""

    id: str
    title: str
    customer_id: str
    executor_id: str
    number: Optional[int] = None
    description: Optional[str] = None
    deadline: Optional[str] = None

    @property
    def participants(self) -> List[str]:
        """Customer and executor, without duplicates, in that order."""

        people = [self.customer_id]
        if self.executor_id != self.customer_id:
            people.append(self.executor_id)
        return people


@dataclass
class NotificationEvent:
    """
    A domain event raised by the task layer.

    `payload` carries kind-specific values such as `previous_executor_id`,
    `new_status`, `comment` or `parent_task`.
    """

    kind: str
    task: TaskSnapshot
    actor_name: str
    actor_id: Optional[str] = None
    recipient_user_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
