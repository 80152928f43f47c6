import enum
from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from collabnotes.core.clock import utcnow
from collabnotes.core.errors import ValidationError
from collabnotes.db.database import Base


class MessageType(str, enum.Enum):
    TEXT = "TEXT"
    FILE = "FILE"
    IMAGE = "IMAGE"
    VOICE = "VOICE"


class MessageStatus(str, enum.Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    READ = "READ"
    DELETED = "DELETED"


TOMBSTONE = "[Message deleted]"


def check_message_target(recipient_id, group_id) -> None:
    """A message is either direct or group-scoped, never both and never neither."""
    if recipient_id is not None and group_id is not None:
        raise ValidationError("A message cannot have both a recipient and a group")
    if recipient_id is None and group_id is None:
        raise ValidationError("Either recipient_id or group_id must be provided")


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "(recipient_id IS NULL AND group_id IS NOT NULL) OR (recipient_id IS NOT NULL AND group_id IS NULL)",
            name="ck_message_direct_xor_group",
        ),
        Index("ix_messages_company_created", "company_id", "created_at"),
        Index("ix_messages_group_created", "group_id", "created_at"),
        Index("ix_messages_recipient_sender", "recipient_id", "sender_id"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    company_id   = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    sender_id    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # exactly one of recipient_id / group_id
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    group_id     = Column(Integer, ForeignKey("message_groups.id", ondelete="CASCADE"), nullable=True)
    parent_id    = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)

    content = Column(Text, nullable=False)
    original_content = Column(Text, nullable=True)
    type = Column(String(10), nullable=False, default=MessageType.TEXT.value)
    status = Column(String(10), nullable=False, default=MessageStatus.SENT.value)

    created_at   = Column(DateTime, nullable=False, default=utcnow)
    delivered_at = Column(DateTime, nullable=True)
    read_at      = Column(DateTime, nullable=True)
    edited_at    = Column(DateTime, nullable=True)
    deleted_at   = Column(DateTime, nullable=True)

    sender = relationship("User", foreign_keys=[sender_id])
    recipient = relationship("User", foreign_keys=[recipient_id])
    group = relationship("MessageGroup", back_populates="messages")
    attachments = relationship(
        "MessageAttachment", back_populates="message", cascade="all, delete-orphan", order_by="MessageAttachment.id"
    )
    reactions = relationship(
        "MessageReaction", back_populates="message", cascade="all, delete-orphan", order_by="MessageReaction.id"
    )

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        check_message_target(self.recipient_id, self.group_id)

    @property
    def is_direct(self) -> bool:
        return self.recipient_id is not None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class MessageAttachment(Base):
    __tablename__ = "message_attachments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    # storage locator, relative to settings.UPLOAD_DIR
    storage_key = Column(String(255), nullable=False, unique=True)
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="attachments")


class MessageReaction(Base):
    __tablename__ = "message_reactions"
    __table_args__ = (UniqueConstraint("message_id", "user_id", "emoji", name="uq_reaction_message_user_emoji"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="reactions")
