from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
from collabnotes.db.database import get_db
from collabnotes.core.dependencies import get_current_user
from collabnotes.core.errors import ConflictOrNoOp, ValidationError, field_errors
from collabnotes.models.messages import MessageType
from collabnotes.models.user import User
from collabnotes.schemas.messages import (
    EditHistory, EnhancedMessageCreate, MessageCreate, MessageEdit, MessagePage, MessageResponse,
    MessageSearchPage, ReactionSummary, ReactionToggle, ReactionToggleResponse, ReadResponse,
)
from collabnotes.services import messages_service as message_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=MessageResponse, status_code=201)
async def send_message(
    message_data: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Send a direct message.

    Body:
        - recipient_id: recipient user id (same company)
        - content: 1-2000 characters
    """
    try:
        message = await message_service.send_message(
            db, current_user, message_data.content, recipient_id=message_data.recipient_id
        )
        return MessageResponse.from_message(message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send message failed: {e}")
        raise HTTPException(500, detail=f"Failed to send message: {str(e)}")


@router.post("/enhanced", response_model=MessageResponse, status_code=201)
async def send_enhanced_message(
    recipient_id: Optional[int] = Form(None),
    group_id: Optional[int] = Form(None),
    content: str = Form(""),
    type: MessageType = Form(MessageType.TEXT),
    parent_id: Optional[int] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Send a direct or group message with optional attachments (multipart).

    Exactly one of recipient_id / group_id. At most 5 files.
    """
    try:
        payload = EnhancedMessageCreate(
            recipient_id=recipient_id,
            group_id=group_id,
            content=content,
            type=type,
            parent_id=parent_id,
        )
    except PydanticValidationError as e:
        raise ValidationError("Invalid message", errors=field_errors(e.errors()))

    try:
        message = await message_service.send_message(
            db,
            current_user,
            payload.content,
            recipient_id=payload.recipient_id,
            group_id=payload.group_id,
            msg_type=payload.type,
            parent_id=payload.parent_id,
            files=attachments,
        )
        return MessageResponse.from_message(message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send enhanced message failed: {e}")
        raise HTTPException(500, detail=f"Failed to send message: {str(e)}")


@router.get("/thread/{user_id}", response_model=MessagePage)
async def get_thread(
    user_id: int,
    last_id: Optional[int] = Query(None, description="Oldest message id of the previous page"),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Direct thread with a user, oldest to newest.

    Incoming messages on the way are marked delivered (not read).
    """
    return await message_service.fetch_thread(db, current_user, user_id, last_id, limit)


@router.get("/search", response_model=MessageSearchPage)
def search_messages(
    q: str = Query(..., min_length=1, description="Search text"),
    type: str = Query("all", pattern="^(direct|group|all)$"),
    user_id: Optional[int] = Query(None),
    group_id: Optional[int] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Search the caller's own conversations. Deleted messages never match."""
    return message_service.search_messages(db, current_user, q, type, user_id, group_id, limit, offset)


@router.get("/unread")
def get_all_unread_counts(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Unread direct messages.

    Returns:
        - total: total unread
        - by_user: {sender_id: count}
    """
    total = message_service.get_total_unread_count(db, current_user.id)
    by_user = message_service.get_unread_counts_by_user(db, current_user.id)

    return {
        "total": total,
        "by_user": by_user
    }


@router.get("/attachments/{attachment_id}")
def download_attachment(
    attachment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    attachment, path = message_service.get_attachment(db, attachment_id, current_user)
    return FileResponse(path, media_type=attachment.mime_type, filename=attachment.file_name)


@router.post("/{message_id}/react", response_model=ReactionToggleResponse)
async def toggle_reaction(
    message_id: int,
    body: ReactionToggle,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Add the reaction, or remove it if the caller already reacted with this emoji."""
    return await message_service.toggle_reaction(db, message_id, current_user, body.emoji)


@router.get("/{message_id}/reactions", response_model=List[ReactionSummary])
def get_reactions(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return message_service.list_reactions(db, message_id, current_user)


@router.patch("/{message_id}/edit", response_model=MessageResponse)
async def edit_message(
    message_id: int,
    body: MessageEdit,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Sender only, within 24 hours of sending."""
    message = await message_service.edit_message(db, message_id, current_user, body.content)
    return MessageResponse.from_message(message)


@router.get("/{message_id}/history", response_model=EditHistory)
def get_edit_history(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return message_service.get_edit_history(db, message_id, current_user)


@router.patch("/{message_id}/read", response_model=ReadResponse)
async def mark_message_as_read(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Mark one received message read.

    Repeating the call is harmless: changed=false and read_at keeps its first value.
    """
    message, changed = await message_service.mark_read(db, message_id, current_user)
    return ReadResponse(
        message=MessageResponse.from_message(message),
        changed=changed,
        code=None if changed else ConflictOrNoOp.code,
    )


@router.delete("/{message_id}", response_model=MessageResponse)
async def delete_message(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Soft delete: the row stays, the content becomes a tombstone."""
    message = await message_service.delete_message(db, message_id, current_user)
    return MessageResponse.from_message(message)
