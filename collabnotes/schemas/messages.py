from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator
from datetime import datetime
from typing import List, Optional
from collabnotes.models.messages import Message, MessageType


class MessageCreate(BaseModel):
    recipient_id: int = Field(validation_alias=AliasChoices("recipient_id", "recipientId"))
    content: str = Field(min_length=1, max_length=2000)

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, v):
        return v.strip() if isinstance(v, str) else v


class MessageTarget(BaseModel):
    """Direct or group target; exactly one must be set."""
    recipient_id: Optional[int] = Field(None, validation_alias=AliasChoices("recipient_id", "recipientId"))
    group_id: Optional[int] = Field(None, validation_alias=AliasChoices("group_id", "groupId"))

    @model_validator(mode="after")
    def check_exclusive(self):
        if self.recipient_id is not None and self.group_id is not None:
            raise ValueError("recipient_id and group_id are mutually exclusive")
        if self.recipient_id is None and self.group_id is None:
            raise ValueError("Either recipient_id or group_id must be provided")
        return self


class EnhancedMessageCreate(MessageTarget):
    content: str = Field("", max_length=2000)
    type: MessageType = MessageType.TEXT
    parent_id: Optional[int] = Field(None, validation_alias=AliasChoices("parent_id", "parentId"))


class GroupMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    parent_id: Optional[int] = Field(None, validation_alias=AliasChoices("parent_id", "parentId"))


class MessageEdit(BaseModel):
    content: str = Field(min_length=1, max_length=2000)

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, v):
        return v.strip() if isinstance(v, str) else v


class ReactionToggle(BaseModel):
    emoji: str = Field(min_length=1, max_length=10)


class AttachmentResponse(BaseModel):
    id: int
    file_name: str
    file_size: int
    mime_type: str
    url: str

    class Config:
        from_attributes = True


class ReactionSummary(BaseModel):
    emoji: str
    count: int
    user_ids: List[int]


def summarize_reactions(reactions) -> List[ReactionSummary]:
    """Group reaction rows by emoji, in first-reacted order."""
    grouped: dict[str, list[int]] = {}
    for r in reactions:
        grouped.setdefault(r.emoji, []).append(r.user_id)
    return [ReactionSummary(emoji=e, count=len(uids), user_ids=uids) for e, uids in grouped.items()]


class MessageResponse(BaseModel):
    id: int
    company_id: int
    sender_id: int
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None
    parent_id: Optional[int] = None
    content: str
    type: str
    status: str
    created_at: datetime
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    edited_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    is_edited: bool = False
    is_deleted: bool = False
    attachments: List[AttachmentResponse] = []
    reactions: List[ReactionSummary] = []

    @classmethod
    def from_message(cls, msg: Message) -> "MessageResponse":
        # tombstoned messages keep their rows but render neither reactions nor attachments
        deleted = msg.deleted_at is not None
        return cls(
            id=msg.id,
            company_id=msg.company_id,
            sender_id=msg.sender_id,
            recipient_id=msg.recipient_id,
            group_id=msg.group_id,
            parent_id=msg.parent_id,
            content=msg.content,
            type=msg.type,
            status=msg.status,
            created_at=msg.created_at,
            delivered_at=msg.delivered_at,
            read_at=msg.read_at,
            edited_at=msg.edited_at,
            deleted_at=msg.deleted_at,
            is_edited=msg.edited_at is not None,
            is_deleted=deleted,
            attachments=[] if deleted else [
                AttachmentResponse(
                    id=a.id,
                    file_name=a.file_name,
                    file_size=a.file_size,
                    mime_type=a.mime_type,
                    url=f"/api/messages/attachments/{a.id}",
                )
                for a in msg.attachments
            ],
            reactions=[] if deleted else summarize_reactions(msg.reactions),
        )


class MessagePage(BaseModel):
    # oldest to newest
    messages: List[MessageResponse]
    has_more: bool
    last_id: Optional[int]


class MessageSearchPage(BaseModel):
    messages: List[MessageResponse]
    total: int
    limit: int
    offset: int


class ReactionToggleResponse(BaseModel):
    message_id: int
    action: str  # "added" | "removed"
    emoji: str
    reactions: List[ReactionSummary]


class ReadResponse(BaseModel):
    message: MessageResponse
    changed: bool
    # "NoOp" when the message was already read
    code: Optional[str] = None


class EditHistoryEntry(BaseModel):
    version: int
    content: str
    timestamp: datetime
    type: str  # "original" | "edited"


class EditHistory(BaseModel):
    message_id: int
    is_edited: bool
    history: List[EditHistoryEntry]
