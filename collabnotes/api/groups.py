from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging
from collabnotes.db.database import get_db
from collabnotes.core.dependencies import get_current_user
from collabnotes.models.user import User
from collabnotes.schemas.groups import GroupCreate, GroupMemberResponse, GroupMembersAdd, GroupResponse, GroupUpdate
from collabnotes.schemas.messages import GroupMessageCreate, MessagePage, MessageResponse
from collabnotes.services import group_service
from collabnotes.services import messages_service as message_service

logger = logging.getLogger(__name__)
router = APIRouter()


# ==================== groups ====================

@router.post("/create", response_model=GroupResponse, status_code=201)
async def create_group(
    group_data: GroupCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Create a group.

    Body:
        - name: 1-100 characters
        - description: optional, up to 500 characters
        - member_ids: colleagues to add (same company)

    The creator becomes the group admin.
    """
    try:
        return await group_service.create_group(db, group_data, current_user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Create group failed: {e}")
        raise HTTPException(500, detail=f"Failed to create group: {str(e)}")


@router.get("", response_model=list[GroupResponse])
def get_my_groups(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Groups the caller belongs to, newest first."""
    return group_service.get_user_groups(db, current_user)


@router.get("/{group_id}", response_model=GroupResponse)
def get_group_detail(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return group_service.get_group_detail(db, group_id, current_user)


@router.patch("/{group_id}", response_model=GroupResponse)
async def update_group(
    group_id: int,
    update_data: GroupUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Group admins only."""
    return await group_service.update_group(db, group_id, current_user, update_data)


# ==================== members ====================

@router.get("/{group_id}/members", response_model=list[GroupMemberResponse])
def get_group_members(
    group_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return group_service.get_group_members(db, group_id, current_user)


@router.post("/{group_id}/members", response_model=list[GroupMemberResponse], status_code=201)
async def add_group_members(
    group_id: int,
    body: GroupMembersAdd,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Group admins only. Users already in the group are skipped."""
    return await group_service.add_members(db, group_id, current_user, body.member_ids)


@router.delete("/{group_id}/members/{user_id}")
async def remove_group_member(
    group_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Admins remove anyone; members can remove themselves to leave."""
    await group_service.remove_member(db, group_id, current_user, user_id)
    return {"group_id": group_id, "user_id": user_id, "removed": True}


# ==================== messages ====================

@router.get("/{group_id}/messages", response_model=MessagePage)
def get_group_messages(
    group_id: int,
    last_id: Optional[int] = Query(None, description="Oldest message id of the previous page"),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return message_service.fetch_group_thread(db, group_id, current_user, last_id, limit)


@router.post("/{group_id}/messages", response_model=MessageResponse, status_code=201)
async def send_group_message(
    group_id: int,
    message_data: GroupMessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    try:
        message = await message_service.send_message(
            db, current_user, message_data.content, group_id=group_id, parent_id=message_data.parent_id
        )
        return MessageResponse.from_message(message)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send group message failed: {e}")
        raise HTTPException(500, detail=f"Failed to send message: {str(e)}")
