import enum
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from collabnotes.core.clock import utcnow
from collabnotes.db.database import Base


class MembershipRole(str, enum.Enum):
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"


class GroupMembership(Base):
    __tablename__ = "group_memberships"
    __table_args__ = (UniqueConstraint("group_id", "user_id", name="uq_group_membership"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("message_groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(10), nullable=False, default=MembershipRole.MEMBER.value)
    joined_at = Column(DateTime, nullable=False, default=utcnow)

    group = relationship("MessageGroup", back_populates="members")
    user = relationship("User")
