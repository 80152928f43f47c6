from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from collabnotes.core.clock import utcnow
from collabnotes.db.database import Base


# Message group, scoped to one company
class MessageGroup(Base):
    __tablename__ = "message_groups"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(String(500), nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    members = relationship(
        "GroupMembership",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMembership.id",
    )
    messages = relationship("Message", back_populates="group", cascade="all, delete-orphan")
