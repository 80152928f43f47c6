"""
Message delivery state machine.

    SENT -> DELIVERED -> READ
    any  -> DELETED

Transitions only move forward. Every function works on a loaded ``Message``
and a caller-supplied ``now``; persisting and notifying is left to the caller.
The boolean results say whether anything changed, a repeated transition is a
no-op rather than an error.
"""
from datetime import datetime, timedelta
from collabnotes.core.config import settings
from collabnotes.core.errors import EditWindowExpired, Forbidden, NotFound
from collabnotes.models.messages import TOMBSTONE, Message, MessageStatus

_RANK = {
    MessageStatus.SENT.value: 0,
    MessageStatus.DELIVERED.value: 1,
    MessageStatus.READ.value: 2,
    MessageStatus.DELETED.value: 3,
}


def _advance(msg: Message, target: MessageStatus) -> bool:
    if _RANK.get(msg.status, 0) >= _RANK[target.value]:
        return False
    msg.status = target.value
    return True


def mark_delivered(msg: Message, now: datetime) -> bool:
    if msg.is_deleted:
        return False
    changed = _advance(msg, MessageStatus.DELIVERED)
    if changed:
        msg.delivered_at = now
    return changed


def mark_read(msg: Message, now: datetime) -> bool:
    """First read wins; ``read_at`` is never moved or cleared afterwards."""
    if msg.is_deleted or msg.read_at is not None:
        return False
    read_at = max(now, msg.created_at) if msg.created_at else now
    _advance(msg, MessageStatus.READ)
    msg.read_at = read_at
    if msg.delivered_at is None:
        msg.delivered_at = read_at
    return True


def soft_delete(msg: Message, now: datetime) -> bool:
    if msg.is_deleted:
        return False
    msg.content = TOMBSTONE
    msg.deleted_at = now
    msg.status = MessageStatus.DELETED.value
    return True


def edit_window() -> timedelta:
    return timedelta(hours=settings.EDIT_WINDOW_HOURS)


def can_edit(msg: Message, now: datetime) -> bool:
    return now - msg.created_at <= edit_window()


def edit(msg: Message, editor_id: int, new_content: str, now: datetime) -> bool:
    """
    Sender-only, inside the edit window. Keeps the body from before the first
    edit in ``original_content``. Returns False when the content is unchanged.
    """
    if msg.is_deleted:
        raise NotFound("Message not found")
    if msg.sender_id != editor_id:
        raise Forbidden("You can only edit your own messages")
    if not can_edit(msg, now):
        raise EditWindowExpired(f"Messages can only be edited within {settings.EDIT_WINDOW_HOURS} hours")
    if new_content == msg.content:
        return False
    if msg.original_content is None:
        msg.original_content = msg.content
    msg.content = new_content
    msg.edited_at = now
    return True
