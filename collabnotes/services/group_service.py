from typing import Iterable, List, Optional
import logging
from sqlalchemy import desc, select
from sqlalchemy.orm import Session
from collabnotes.core.errors import Forbidden, NotFound, ValidationError
from collabnotes.models.group_members import GroupMembership, MembershipRole
from collabnotes.models.groups import MessageGroup
from collabnotes.models.user import User
from collabnotes.schemas.groups import GroupCreate, GroupMemberResponse, GroupResponse, GroupUpdate
from collabnotes.websocket import events
from collabnotes.websocket.manager import manager

logger = logging.getLogger(__name__)


# ==================== membership helpers ====================

def get_membership(db: Session, group_id: int, user_id: int) -> Optional[GroupMembership]:
    return db.scalar(
        select(GroupMembership).where(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id == user_id,
        )
    )


def member_ids(db: Session, group_id: int) -> List[int]:
    return list(db.scalars(
        select(GroupMembership.user_id)
        .where(GroupMembership.group_id == group_id)
        .order_by(GroupMembership.id)
    ))


def get_company_group(db: Session, group_id: int, user: User) -> MessageGroup:
    """Groups of other companies do not exist as far as the caller can tell."""
    group = db.scalar(
        select(MessageGroup).where(
            MessageGroup.id == group_id,
            MessageGroup.company_id == user.company_id,
        )
    )
    if not group:
        raise NotFound("Group not found")
    return group


def require_member(db: Session, group_id: int, user: User) -> GroupMembership:
    get_company_group(db, group_id, user)
    membership = get_membership(db, group_id, user.id)
    if not membership:
        raise Forbidden("You are not a member of this group")
    return membership


def _require_admin(db: Session, group_id: int, user: User) -> GroupMembership:
    membership = require_member(db, group_id, user)
    if membership.role != MembershipRole.ADMIN.value:
        raise Forbidden("Only group admins can do this")
    return membership


def _company_users(db: Session, user_ids: Iterable[int], company_id: int) -> List[User]:
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return []
    users = db.scalars(
        select(User).where(User.id.in_(ids), User.company_id == company_id).order_by(User.id)
    ).all()
    if len(users) != len(ids):
        raise ValidationError("Some users do not exist in your company")
    return list(users)


async def _notify(user_ids: Iterable[int], event: events.ServerEvent, exclude: Optional[int] = None):
    try:
        await manager.dispatch(user_ids, event, exclude=exclude)
    except Exception as e:
        logger.error(f"Failed to push {event.EVENT}: {e}")


# ==================== groups ====================

async def create_group(db: Session, group_data: GroupCreate, creator: User) -> MessageGroup:
    """Create a group; the creator joins as admin, listed users as members."""
    members = _company_users(db, [uid for uid in group_data.member_ids if uid != creator.id], creator.company_id)

    new_group = MessageGroup(
        name=group_data.name,
        description=group_data.description,
        company_id=creator.company_id,
        created_by=creator.id,
    )
    db.add(new_group)
    db.flush()  # need group.id

    db.add(GroupMembership(group_id=new_group.id, user_id=creator.id, role=MembershipRole.ADMIN.value))
    for member in members:
        db.add(GroupMembership(group_id=new_group.id, user_id=member.id, role=MembershipRole.MEMBER.value))
    db.commit()
    db.refresh(new_group)
    logger.info(f"User {creator.id} created group {new_group.id} with {len(members)} member(s)")

    payload = GroupResponse.model_validate(new_group).model_dump(mode="json")
    await _notify(member_ids(db, new_group.id), events.GroupCreated(group=payload))
    return new_group


def get_user_groups(db: Session, user: User) -> List[MessageGroup]:
    stmt = (
        select(MessageGroup)
        .join(GroupMembership, MessageGroup.id == GroupMembership.group_id)
        .where(GroupMembership.user_id == user.id, MessageGroup.company_id == user.company_id)
        .order_by(desc(MessageGroup.created_at), desc(MessageGroup.id))
    )
    return list(db.scalars(stmt).all())


def get_group_detail(db: Session, group_id: int, user: User) -> MessageGroup:
    require_member(db, group_id, user)
    return get_company_group(db, group_id, user)


async def update_group(db: Session, group_id: int, user: User, update_data: GroupUpdate) -> MessageGroup:
    _require_admin(db, group_id, user)
    group = get_company_group(db, group_id, user)

    if update_data.name is not None:
        group.name = update_data.name
    if update_data.description is not None:
        group.description = update_data.description
    db.commit()
    db.refresh(group)

    payload = GroupResponse.model_validate(group).model_dump(mode="json")
    await _notify(member_ids(db, group_id), events.GroupUpdated(group=payload))
    return group


# ==================== members ====================

def get_group_members(db: Session, group_id: int, user: User) -> List[GroupMemberResponse]:
    require_member(db, group_id, user)
    rows = db.scalars(
        select(GroupMembership).where(GroupMembership.group_id == group_id).order_by(GroupMembership.id)
    ).all()
    return [GroupMemberResponse.model_validate(m) for m in rows]


async def add_members(db: Session, group_id: int, user: User, user_ids: List[int]) -> List[GroupMemberResponse]:
    """Existing members are skipped; returns only the new memberships."""
    _require_admin(db, group_id, user)
    users = _company_users(db, user_ids, user.company_id)
    existing = set(member_ids(db, group_id))

    added = []
    for target in users:
        if target.id in existing:
            continue
        membership = GroupMembership(group_id=group_id, user_id=target.id, role=MembershipRole.MEMBER.value)
        db.add(membership)
        added.append(membership)
    db.commit()

    if added:
        added_ids = [m.user_id for m in added]
        logger.info(f"User {user.id} added {added_ids} to group {group_id}")
        await _notify(
            member_ids(db, group_id),
            events.GroupMemberAdded(group_id=group_id, user_ids=added_ids, added_by=user.id),
        )
    return [GroupMemberResponse.model_validate(m) for m in added]


async def remove_member(db: Session, group_id: int, user: User, target_user_id: int) -> None:
    """Admins remove anyone; members may only remove themselves (leave)."""
    if target_user_id == user.id:
        require_member(db, group_id, user)
    else:
        _require_admin(db, group_id, user)

    membership = get_membership(db, group_id, target_user_id)
    if not membership:
        raise NotFound("User is not a member of this group")

    db.delete(membership)
    db.commit()
    logger.info(f"User {user.id} removed {target_user_id} from group {group_id}")

    await _notify(
        member_ids(db, group_id),
        events.GroupMemberRemoved(group_id=group_id, user_id=target_user_id, removed_by=user.id),
    )
    await _notify([target_user_id], events.RemovedFromGroup(group_id=group_id, removed_by=user.id))
