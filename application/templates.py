"""
Telegram HTML texts for notifications and bot replies.

Anything that originates from users (titles, names, descriptions, comments)
goes through `escape` and, where it can be long, `truncate`, so it can never
break or inject markup.
"""

from __future__ import annotations

import html
from typing import Callable, Dict, Optional, Tuple

from domain.models import NotificationEvent, TaskSnapshot


class NotificationKinds:
    TASK_ASSIGNED = "task_assigned"
    TASK_REASSIGNED = "task_reassigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    SUBTASK_COMPLETED = "subtask_completed"
    TASK_COMMENT = "task_comment"
    TASK_REVISION = "task_revision"
    TASK_DEADLINE_SOON = "task_deadline_soon"
    TASK_OVERDUE = "task_overdue"


DESCRIPTION_LIMIT = 150
COMMENT_LIMIT = 500

STATUS_LABELS = {
    "pending": "⏳ Pending",
    "in_progress": "🔄 In progress",
    "completed": "✅ Completed",
    "cancelled": "❌ Cancelled",
}


def escape(text: Optional[str]) -> str:
    return html.escape(text or "", quote=False)


def truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def _number(task: TaskSnapshot) -> str:
    return f" #{task.number}" if task.number is not None else ""


def _task_label(task: TaskSnapshot) -> str:
    return f"Task{_number(task)}: {escape(task.title)}"


def _headline(title: str, body: str, task_url: Optional[str]) -> str:
    text = f"<b>🔔 {escape(title)}</b>\n\n{body}"
    if task_url:
        text += f'\n\n<a href="{html.escape(task_url)}">Open in tracker →</a>'
    return text


def _task_body(task: TaskSnapshot, byline: str) -> str:
    lines = [f"📋 {_task_label(task)}"]
    description = truncate(task.description, DESCRIPTION_LIMIT)
    if description:
        lines.append(f"\n{escape(description)}")
    lines.append(f"\n👤 {byline}")
    if task.deadline:
        lines.append(f"⏰ Deadline: {escape(task.deadline)}")
    return "\n".join(lines)


def _assigned(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    return (
        f"New task{_number(task)}",
        _task_body(task, f"Customer: {escape(event.actor_name)}"),
    )


def _reassigned(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    return (
        f"Task{_number(task)} assigned to you",
        _task_body(task, f"Assigned by: {escape(event.actor_name)}"),
    )


def _status_changed(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    status = event.payload.get("new_status", "")
    label = STATUS_LABELS.get(status, status)
    if status == "completed":
        title = f"Task{_number(task)} completed"
    else:
        title = f"Task{_number(task)} status changed"
    body = (
        f"📋 {_task_label(task)}\n\n"
        f"{escape(event.actor_name)} changed the status to: {escape(label)}"
    )
    return title, body


def _subtask_completed(event: NotificationEvent) -> Tuple[str, str]:
    subtask = event.task
    parent: TaskSnapshot = event.payload["parent_task"]
    body = (
        f"✅ Subtask{_number(subtask)}: {escape(subtask.title)}\n"
        f"\n📋 Parent task{_number(parent)}: {escape(parent.title)}\n"
        f"\n👤 Completed by: {escape(event.actor_name)}"
    )
    return f"Subtask{_number(subtask)} completed", body


def _comment(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    comment = truncate(event.payload.get("comment"), COMMENT_LIMIT)
    body = f"📋 {_task_label(task)}\n\n💬 {escape(event.actor_name)}:\n{escape(comment)}"
    return f"New comment on task{_number(task)}", body


def _revision(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    comment = truncate(event.payload.get("comment"), COMMENT_LIMIT)
    body = (
        f"🔄 {_task_label(task)}\n\n"
        f"👤 {escape(event.actor_name)} sent the task back for revision\n\n"
        f"💬 Comment:\n{escape(comment)}"
    )
    return f"Task{_number(task)} returned for revision", body


def _deadline_soon(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    body = (
        f"⚠️ {_task_label(task)}\n\n"
        f"Deadline: {escape(task.deadline)}\nLess than 24 hours left!"
    )
    return f"Task{_number(task)} deadline is close", body


def _overdue(event: NotificationEvent) -> Tuple[str, str]:
    task = event.task
    body = (
        f"🚨 {_task_label(task)}\n\n"
        f"Deadline was: {escape(task.deadline)}\nThe task is overdue!"
    )
    return f"Task{_number(task)} is overdue!", body


RENDERERS: Dict[str, Callable[[NotificationEvent], Tuple[str, str]]] = {
    NotificationKinds.TASK_ASSIGNED: _assigned,
    NotificationKinds.TASK_REASSIGNED: _reassigned,
    NotificationKinds.TASK_STATUS_CHANGED: _status_changed,
    NotificationKinds.SUBTASK_COMPLETED: _subtask_completed,
    NotificationKinds.TASK_COMMENT: _comment,
    NotificationKinds.TASK_REVISION: _revision,
    NotificationKinds.TASK_DEADLINE_SOON: _deadline_soon,
    NotificationKinds.TASK_OVERDUE: _overdue,
}


def render_notification(event: NotificationEvent, task_url: Optional[str] = None) -> str:
    try:
        renderer = RENDERERS[event.kind]
    except KeyError:
        raise ValueError(f"Unknown notification kind: {event.kind}") from None
    title, body = renderer(event)
    return _headline(title, body, task_url)


# Bot replies.


def link_success(user_name: Optional[str]) -> str:
    return (
        "✅ <b>Account linked!</b>\n\n"
        "You will now receive task notifications in this chat.\n\n"
        f"👤 Linked to: <b>{escape(user_name or 'User')}</b>"
    )


def link_failure(reason: str) -> str:
    return f"❌ <b>Linking failed</b>\n\n{escape(reason)}"


def onboarding(first_name: Optional[str]) -> str:
    greeting = f", {escape(first_name)}" if first_name else ""
    return (
        f"👋 <b>Hello{greeting}!</b>\n\n"
        "This bot delivers notifications from the work tracker.\n\n"
        "📝 <b>How to link your account:</b>\n"
        "1. Open the Telegram settings in the tracker\n"
        "2. Copy the 6-digit code\n"
        "3. Send it here\n\n"
        "Once linked you will be notified about new tasks and changes."
    )


def status_linked(user_name: Optional[str]) -> str:
    return (
        "✅ <b>Telegram is linked</b>\n\n"
        f"Your account: <b>{escape(user_name or 'User')}</b>\n\n"
        "You are receiving task notifications."
    )


def status_unlinked() -> str:
    return (
        "⚠️ <b>Telegram is not linked</b>\n\n"
        "Use the link from your tracker profile to connect it."
    )


def unlink_done() -> str:
    return "✅ Telegram has been unlinked from your account."


def unlink_nothing() -> str:
    return "⚠️ This chat was not linked to any account."


def unlinked_from_web() -> str:
    return "🔓 Telegram was unlinked from your tracker account."


def sample_notification(user_name: str) -> str:
    return (
        "🧪 <b>Test notification</b>\n\n"
        f"Hi, {escape(user_name)}! If you can read this, notifications work. ✅"
    )
