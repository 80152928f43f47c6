# services/messages_service.py
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
import logging
import uuid
from fastapi import UploadFile
from sqlalchemy.orm import Session
from sqlalchemy import or_, and_, desc, func, select
from sqlalchemy.exc import IntegrityError
from collabnotes.core.clock import utcnow
from collabnotes.core.config import settings
from collabnotes.core.errors import Forbidden, NotFound, ValidationError
from collabnotes.core.permissions import Action, can
from collabnotes.models.group_members import GroupMembership
from collabnotes.models.messages import (
    Message, MessageAttachment, MessageReaction, MessageStatus, MessageType,
)
from collabnotes.models.user import User
from collabnotes.schemas.messages import (
    EditHistory, EditHistoryEntry, MessagePage, MessageResponse, MessageSearchPage,
    ReactionSummary, ReactionToggleResponse, summarize_reactions,
)
from collabnotes.services import delivery_ledger as ledger
from collabnotes.services import group_service
from collabnotes.websocket import events
from collabnotes.websocket.manager import manager

logger = logging.getLogger(__name__)

SEARCH_SCOPES = ("direct", "group", "all")


def upload_dir() -> Path:
    path = Path(settings.UPLOAD_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


async def _notify(user_ids: Iterable[int], event: events.ServerEvent, exclude: Optional[int] = None):
    # fan-out never fails the request that caused it
    try:
        await manager.dispatch(user_ids, event, exclude=exclude)
    except Exception as e:
        logger.error(f"Failed to push {event.EVENT}: {e}")


def participants(db: Session, msg: Message) -> List[int]:
    if msg.group_id is not None:
        return group_service.member_ids(db, msg.group_id)
    return [msg.sender_id, msg.recipient_id]


def get_company_user(db: Session, user_id: int, company_id: int) -> User:
    user = db.query(User).filter(User.id == user_id, User.company_id == company_id).first()
    if not user:
        raise NotFound("User not found")
    return user


# --------------------------------------------------
# Visibility
# --------------------------------------------------
def get_visible_message(db: Session, message_id: int, user: User) -> Message:
    """
    Load a message the caller may see. Anything outside the caller's tenant
    or conversations is reported as missing.
    """
    msg = db.query(Message).filter(
        Message.id == message_id,
        Message.company_id == user.company_id,
    ).first()
    if not msg:
        raise NotFound("Message not found")
    if can(user.role, Action.VIEW_COMPANY_MESSAGES):
        return msg
    if msg.group_id is not None:
        if not group_service.get_membership(db, msg.group_id, user.id):
            raise NotFound("Message not found")
    elif user.id not in (msg.sender_id, msg.recipient_id):
        raise NotFound("Message not found")
    return msg


def _check_parent(db: Session, parent_id: int, sender: User, recipient_id: Optional[int], group_id: Optional[int]):
    parent = db.query(Message).filter(
        Message.id == parent_id,
        Message.company_id == sender.company_id,
    ).first()
    if parent is None:
        raise NotFound("Parent message not found")
    if group_id is not None:
        same_thread = parent.group_id == group_id
    else:
        same_thread = {parent.sender_id, parent.recipient_id} == {sender.id, recipient_id}
    if not same_thread:
        raise NotFound("Parent message not found")


# --------------------------------------------------
# Send
# --------------------------------------------------
async def send_message(
    db: Session,
    sender: User,
    content: str,
    recipient_id: Optional[int] = None,
    group_id: Optional[int] = None,
    msg_type: MessageType = MessageType.TEXT,
    parent_id: Optional[int] = None,
    files: Optional[List[UploadFile]] = None,
) -> Message:
    files = [f for f in (files or []) if f is not None and f.filename]
    content = (content or "").strip()

    if not content and not files:
        raise ValidationError("Message content or attachments required")
    if len(content) > settings.MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message content exceeds {settings.MAX_MESSAGE_LENGTH} characters")
    if len(files) > settings.MAX_ATTACHMENTS:
        raise ValidationError(f"At most {settings.MAX_ATTACHMENTS} attachments per message")

    if recipient_id is not None and group_id is None:
        if recipient_id == sender.id:
            raise ValidationError("Cannot send a message to yourself")
        get_company_user(db, recipient_id, sender.company_id)
    elif group_id is not None and recipient_id is None:
        group_service.require_member(db, group_id, sender)

    if parent_id is not None:
        _check_parent(db, parent_id, sender, recipient_id, group_id)

    if files and msg_type == MessageType.TEXT:
        all_images = all((f.content_type or "").startswith("image/") for f in files)
        msg_type = MessageType.IMAGE if all_images else MessageType.FILE

    written: List[Path] = []
    try:
        # raises ValidationError when the target is both or neither
        new_message = Message(
            company_id=sender.company_id,
            sender_id=sender.id,
            recipient_id=recipient_id,
            group_id=group_id,
            parent_id=parent_id,
            content=content,
            type=MessageType(msg_type).value,
            status=MessageStatus.SENT.value,
            created_at=utcnow(),
        )
        db.add(new_message)
        db.flush()

        if files:
            target_dir = upload_dir()
            for upload in files:
                data = await upload.read()
                storage_key = f"{uuid.uuid4().hex}{Path(upload.filename).suffix}"
                path = target_dir / storage_key
                path.write_bytes(data)
                written.append(path)
                db.add(MessageAttachment(
                    message_id=new_message.id,
                    file_name=upload.filename,
                    storage_key=storage_key,
                    file_size=len(data),
                    mime_type=upload.content_type or "application/octet-stream",
                ))
        db.commit()
    except Exception:
        db.rollback()
        for path in written:
            path.unlink(missing_ok=True)
        raise

    db.refresh(new_message)
    logger.info(f"User {sender.id} sent message {new_message.id}")

    # the sender has the record from the response
    await _notify(
        participants(db, new_message),
        events.MessageNew(message=MessageResponse.from_message(new_message)),
        exclude=sender.id,
    )
    return new_message


# --------------------------------------------------
# Threads (cursor pagination, oldest to newest)
# --------------------------------------------------
def _page(query, last_id: Optional[int], limit: int) -> MessagePage:
    if last_id:
        query = query.filter(Message.id < last_id)

    messages = query.order_by(desc(Message.created_at), desc(Message.id)).limit(limit + 1).all()

    has_more = len(messages) > limit
    if has_more:
        messages = messages[:limit]

    last_message_id = messages[-1].id if messages else None
    return MessagePage(
        messages=[MessageResponse.from_message(msg) for msg in reversed(messages)],
        has_more=has_more,
        last_id=last_message_id,
    )


async def fetch_thread(
    db: Session,
    me: User,
    peer_user_id: int,
    last_id: Optional[int] = None,
    limit: int = 50,
) -> MessagePage:
    """Direct thread with a peer. Fetching counts as delivery for incoming messages."""
    get_company_user(db, peer_user_id, me.company_id)

    now = utcnow()
    undelivered = db.query(Message).filter(
        Message.company_id == me.company_id,
        Message.sender_id == peer_user_id,
        Message.recipient_id == me.id,
        Message.status == MessageStatus.SENT.value,
        Message.deleted_at.is_(None),
    ).all()
    delivered = [m for m in undelivered if ledger.mark_delivered(m, now)]
    if delivered:
        db.commit()

    query = db.query(Message).filter(
        Message.company_id == me.company_id,
        or_(
            and_(Message.sender_id == me.id, Message.recipient_id == peer_user_id),
            and_(Message.sender_id == peer_user_id, Message.recipient_id == me.id),
        ),
    )
    page = _page(query, last_id, limit)

    for msg in delivered:
        await _notify(
            [msg.sender_id],
            events.MessageDelivered(message_id=msg.id, user_id=me.id, delivered_at=msg.delivered_at),
        )
    return page


def fetch_group_thread(
    db: Session,
    group_id: int,
    me: User,
    last_id: Optional[int] = None,
    limit: int = 50,
) -> MessagePage:
    group_service.require_member(db, group_id, me)
    query = db.query(Message).filter(
        Message.company_id == me.company_id,
        Message.group_id == group_id,
    )
    return _page(query, last_id, limit)


# --------------------------------------------------
# Receipts
# --------------------------------------------------
async def mark_read(db: Session, message_id: int, me: User) -> Tuple[Message, bool]:
    msg = get_visible_message(db, message_id, me)
    if msg.recipient_id != me.id:
        raise Forbidden("Only the recipient can mark a message as read")

    changed = ledger.mark_read(msg, utcnow())
    if changed:
        db.commit()
        db.refresh(msg)
        await _notify(
            [msg.sender_id],
            events.MessageRead(message_id=msg.id, user_id=me.id, read_at=msg.read_at),
        )
    return msg, changed


async def acknowledge(db: Session, message_id: int, me: User, read: bool) -> bool:
    """
    Realtime receipt from a client. Direct messages advance the ledger; group
    messages have no per-member state, the ack is only relayed to the sender.
    """
    msg = get_visible_message(db, message_id, me)
    if msg.sender_id == me.id:
        return False

    if msg.group_id is not None:
        event_cls = events.MessageRead if read else events.MessageDelivered
        await _notify([msg.sender_id], event_cls(message_id=msg.id, user_id=me.id, group_id=msg.group_id))
        return False

    if msg.recipient_id != me.id:
        raise Forbidden("Only the recipient can acknowledge a message")

    if read:
        _, changed = await mark_read(db, message_id, me)
        return changed

    changed = ledger.mark_delivered(msg, utcnow())
    if changed:
        db.commit()
        await _notify(
            [msg.sender_id],
            events.MessageDelivered(message_id=msg.id, user_id=me.id, delivered_at=msg.delivered_at),
        )
    return changed


# --------------------------------------------------
# Unread counters
# --------------------------------------------------
def _unread_filter(current_user_id: int):
    return and_(
        Message.recipient_id == current_user_id,
        Message.read_at.is_(None),
        Message.deleted_at.is_(None),
    )


def get_total_unread_count(db: Session, current_user_id: int) -> int:
    return db.query(Message).filter(_unread_filter(current_user_id)).count()


def get_unread_counts_by_user(db: Session, current_user_id: int) -> dict[int, int]:
    rows = db.query(
        Message.sender_id,
        func.count(Message.id).label("unread_count")
    ).filter(_unread_filter(current_user_id)).group_by(Message.sender_id).all()
    return {sender_id: cnt for sender_id, cnt in rows}


# --------------------------------------------------
# Search
# --------------------------------------------------
def search_messages(
    db: Session,
    me: User,
    keyword: str,
    scope: str = "all",
    user_id: Optional[int] = None,
    group_id: Optional[int] = None,
    limit: int = 20,
    offset: int = 0,
) -> MessageSearchPage:
    """Case-insensitive search over the caller's own conversations, deleted messages excluded."""
    if scope not in SEARCH_SCOPES:
        raise ValidationError(f"type must be one of {', '.join(SEARCH_SCOPES)}")
    keyword = keyword.strip()
    if not keyword:
        raise ValidationError("Search query is required")

    direct = and_(
        Message.group_id.is_(None),
        or_(Message.sender_id == me.id, Message.recipient_id == me.id),
    )
    if user_id is not None:
        direct = and_(direct, or_(Message.sender_id == user_id, Message.recipient_id == user_id))

    my_groups = select(GroupMembership.group_id).where(GroupMembership.user_id == me.id)
    grouped = Message.group_id.in_(my_groups)
    if group_id is not None:
        grouped = and_(grouped, Message.group_id == group_id)
    if user_id is not None:
        grouped = and_(grouped, Message.sender_id == user_id)

    scoped = {"direct": direct, "group": grouped, "all": or_(direct, grouped)}[scope]

    query = db.query(Message).filter(
        Message.company_id == me.company_id,
        Message.deleted_at.is_(None),
        func.lower(Message.content).contains(keyword.lower(), autoescape=True),
        scoped,
    )
    total = query.count()
    messages = query.order_by(desc(Message.created_at), desc(Message.id)).offset(offset).limit(limit).all()
    return MessageSearchPage(
        messages=[MessageResponse.from_message(m) for m in messages],
        total=total,
        limit=limit,
        offset=offset,
    )


# --------------------------------------------------
# Reactions
# --------------------------------------------------
async def toggle_reaction(db: Session, message_id: int, me: User, emoji: str) -> ReactionToggleResponse:
    """Same (user, message, emoji) twice nets zero."""
    msg = get_visible_message(db, message_id, me)
    if msg.is_deleted:
        raise NotFound("Message not found")

    existing = db.query(MessageReaction).filter(
        MessageReaction.message_id == msg.id,
        MessageReaction.user_id == me.id,
        MessageReaction.emoji == emoji,
    ).first()
    if existing:
        db.delete(existing)
        action = "removed"
    else:
        db.add(MessageReaction(message_id=msg.id, user_id=me.id, emoji=emoji))
        action = "added"
    try:
        db.commit()
    except IntegrityError:
        # a concurrent identical toggle already added it
        db.rollback()
        action = "added"
    db.refresh(msg)

    summary = summarize_reactions(msg.reactions)
    await _notify(
        participants(db, msg),
        events.ReactionUpdated(message_id=msg.id, user_id=me.id, emoji=emoji, action=action, reactions=summary),
    )
    return ReactionToggleResponse(message_id=msg.id, action=action, emoji=emoji, reactions=summary)


def list_reactions(db: Session, message_id: int, me: User) -> List[ReactionSummary]:
    msg = get_visible_message(db, message_id, me)
    if msg.is_deleted:
        return []
    return summarize_reactions(msg.reactions)


# --------------------------------------------------
# Edit / delete
# --------------------------------------------------
async def edit_message(db: Session, message_id: int, me: User, content: str) -> Message:
    msg = get_visible_message(db, message_id, me)
    if len(content) > settings.MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message content exceeds {settings.MAX_MESSAGE_LENGTH} characters")

    if ledger.edit(msg, me.id, content, utcnow()):
        db.commit()
        db.refresh(msg)
        logger.info(f"User {me.id} edited message {msg.id}")
        await _notify(participants(db, msg), events.MessageEdited(message=MessageResponse.from_message(msg)))
    return msg


def get_edit_history(db: Session, message_id: int, me: User) -> EditHistory:
    msg = get_visible_message(db, message_id, me)
    if msg.is_deleted:
        raise NotFound("Message not found")

    history = [EditHistoryEntry(
        version=1,
        content=msg.original_content if msg.original_content is not None else msg.content,
        timestamp=msg.created_at,
        type="original",
    )]
    if msg.edited_at is not None:
        history.append(EditHistoryEntry(version=2, content=msg.content, timestamp=msg.edited_at, type="edited"))
    return EditHistory(message_id=msg.id, is_edited=msg.edited_at is not None, history=history)


async def delete_message(db: Session, message_id: int, me: User) -> Message:
    """Soft delete by the sender or a privileged role."""
    msg = get_visible_message(db, message_id, me)
    if msg.is_deleted:
        raise NotFound("Message not found")
    if msg.sender_id != me.id and not can(me.role, Action.DELETE_ANY_MESSAGE):
        raise Forbidden("You can only delete your own messages")

    ledger.soft_delete(msg, utcnow())
    db.commit()
    db.refresh(msg)
    logger.info(f"User {me.id} deleted message {msg.id}")

    await _notify(
        participants(db, msg),
        events.MessageDeleted(
            message_id=msg.id, deleted_by=me.id, recipient_id=msg.recipient_id, group_id=msg.group_id,
        ),
    )
    return msg


# --------------------------------------------------
# Attachments
# --------------------------------------------------
def get_attachment(db: Session, attachment_id: int, me: User) -> Tuple[MessageAttachment, Path]:
    attachment = db.query(MessageAttachment).filter(MessageAttachment.id == attachment_id).first()
    if not attachment:
        raise NotFound("Attachment not found")
    msg = get_visible_message(db, attachment.message_id, me)
    if msg.is_deleted:
        raise NotFound("Attachment not found")
    path = Path(settings.UPLOAD_DIR) / attachment.storage_key
    if not path.is_file():
        logger.warning(f"Attachment {attachment_id} has no file at {path}")
        raise NotFound("Attachment not found")
    return attachment, path
