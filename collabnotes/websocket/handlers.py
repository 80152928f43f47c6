"""
Client -> server event handling.

``handle_client_event`` is the one entry point for frames arriving on an
authenticated socket. It returns an optional event to answer the sending
session with; everything else goes out through the connection manager.
"""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from collabnotes.core.clock import utcnow
from collabnotes.core.config import settings
from collabnotes.core.errors import DomainError
from collabnotes.db.database import SessionLocal
from collabnotes.models.user import User
from collabnotes.services import group_service, messages_service
from collabnotes.websocket import events
from collabnotes.websocket.manager import manager

logger = logging.getLogger(__name__)


def typing_audience(db: Session, user_id: int, recipient_id: Optional[int], group_id: Optional[int]) -> List[int]:
    if group_id is not None:
        return [uid for uid in group_service.member_ids(db, group_id) if uid != user_id]
    return [recipient_id]


def _check_typing_target(db: Session, user: User, recipient_id: Optional[int], group_id: Optional[int]):
    if group_id is not None:
        group_service.require_member(db, group_id, user)
    else:
        messages_service.get_company_user(db, recipient_id, user.company_id)


async def handle_client_event(db: Session, user: User, event) -> Optional[events.ServerEvent]:
    try:
        if isinstance(event, events.Ping):
            return events.Pong(timestamp=event.timestamp)

        if isinstance(event, events.AuthFrame):
            return events.ErrorEvent(message="Already authenticated", code="ValidationError")

        if isinstance(event, events.DeliveredAck):
            await messages_service.acknowledge(db, event.message_id, user, read=False)
            return None

        if isinstance(event, events.ReadAck):
            await messages_service.acknowledge(db, event.message_id, user, read=True)
            return None

        if isinstance(event, (events.TypingStartFrame, events.TypingStopFrame)):
            _check_typing_target(db, user, event.recipient_id, event.group_id)
            audience = typing_audience(db, user.id, event.recipient_id, event.group_id)
            if isinstance(event, events.TypingStartFrame):
                manager.start_typing(user.id, event.recipient_id, event.group_id, utcnow())
                out = events.TypingStart(user_id=user.id, recipient_id=event.recipient_id, group_id=event.group_id)
            else:
                manager.stop_typing(user.id, event.recipient_id, event.group_id)
                out = events.TypingStop(user_id=user.id, recipient_id=event.recipient_id, group_id=event.group_id)
            await manager.dispatch(audience, out, exclude=user.id)
            return None
    except DomainError as e:
        return events.ErrorEvent(message=str(e.detail), code=e.code)

    return events.ErrorEvent(message="Unsupported event", code="ValidationError")


async def _send_typing_stops(db: Session, keys) -> int:
    sent = 0
    for user_id, recipient_id, group_id in keys:
        audience = typing_audience(db, user_id, recipient_id, group_id)
        await manager.dispatch(
            audience,
            events.TypingStop(user_id=user_id, recipient_id=recipient_id, group_id=group_id),
            exclude=user_id,
        )
        sent += 1
    return sent


async def stop_typing_for(db: Session, user_id: int) -> int:
    """Clear every indicator a user left behind, e.g. on disconnect."""
    return await _send_typing_stops(db, manager.pop_typing_of(user_id))


async def expire_typing() -> int:
    """Scheduled sweep: stop indicators whose typer went quiet."""
    expired = manager.pop_expired_typing(utcnow(), settings.TYPING_EXPIRY_SECONDS)
    if not expired:
        return 0
    db = SessionLocal()
    try:
        sent = await _send_typing_stops(db, expired)
        logger.debug(f"Expired {sent} typing indicator(s)")
        return sent
    except Exception as e:
        logger.error(f"Typing sweep failed: {e}")
        return 0
    finally:
        db.close()
