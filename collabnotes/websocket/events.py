"""
Realtime event types.

Every frame on the socket is ``{"type": <event>, "data": {...}}``. Server
events are pydantic models carrying their event name in ``EVENT`` and render
themselves with ``to_wire()``. Client frames are a discriminated union on
``type`` and parse through ``parse_client_event``; clients read server frames
back with ``parse_server_event``.
"""
import json
from datetime import datetime
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from collabnotes.schemas.messages import MessageResponse, ReactionSummary


# ==================== server -> client ====================

class ServerEvent(BaseModel):
    EVENT: ClassVar[str] = ""

    def to_wire(self) -> dict:
        return {"type": self.EVENT, "data": self.model_dump(mode="json")}


class MessageNew(ServerEvent):
    EVENT: ClassVar[str] = "message:new"
    message: MessageResponse


class MessageDelivered(ServerEvent):
    EVENT: ClassVar[str] = "message:delivered"
    message_id: int
    user_id: int
    delivered_at: Optional[datetime] = None
    group_id: Optional[int] = None


class MessageRead(ServerEvent):
    EVENT: ClassVar[str] = "message:read"
    message_id: int
    user_id: int
    read_at: Optional[datetime] = None
    group_id: Optional[int] = None


class MessageEdited(ServerEvent):
    EVENT: ClassVar[str] = "message:edited"
    message: MessageResponse


class MessageDeleted(ServerEvent):
    EVENT: ClassVar[str] = "message:deleted"
    message_id: int
    deleted_by: int
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None


class ReactionUpdated(ServerEvent):
    EVENT: ClassVar[str] = "reaction:updated"
    message_id: int
    user_id: int
    emoji: str
    action: str
    reactions: List[ReactionSummary]


class TypingStart(ServerEvent):
    EVENT: ClassVar[str] = "typing:start"
    user_id: int
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None


class TypingStop(ServerEvent):
    EVENT: ClassVar[str] = "typing:stop"
    user_id: int
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None


class PresenceInitial(ServerEvent):
    EVENT: ClassVar[str] = "presence:initial"
    user_ids: List[int]


class PresenceUpdate(ServerEvent):
    EVENT: ClassVar[str] = "presence:update"
    user_id: int
    online: bool
    last_seen: Optional[datetime] = None


class GroupCreated(ServerEvent):
    EVENT: ClassVar[str] = "group:created"
    group: Dict[str, Any]


class GroupUpdated(ServerEvent):
    EVENT: ClassVar[str] = "group:updated"
    group: Dict[str, Any]


class GroupMemberAdded(ServerEvent):
    EVENT: ClassVar[str] = "group:memberAdded"
    group_id: int
    user_ids: List[int]
    added_by: int


class GroupMemberRemoved(ServerEvent):
    EVENT: ClassVar[str] = "group:memberRemoved"
    group_id: int
    user_id: int
    removed_by: int


class RemovedFromGroup(ServerEvent):
    EVENT: ClassVar[str] = "group:removedFromGroup"
    group_id: int
    removed_by: int


class Connected(ServerEvent):
    EVENT: ClassVar[str] = "connected"
    user_id: int


class Pong(ServerEvent):
    EVENT: ClassVar[str] = "pong"
    timestamp: Optional[Any] = None


class ErrorEvent(ServerEvent):
    EVENT: ClassVar[str] = "error"
    message: str
    code: Optional[str] = None


SERVER_EVENTS: Dict[str, Type[ServerEvent]] = {
    cls.EVENT: cls
    for cls in (
        MessageNew, MessageDelivered, MessageRead, MessageEdited, MessageDeleted, ReactionUpdated,
        TypingStart, TypingStop, PresenceInitial, PresenceUpdate,
        GroupCreated, GroupUpdated, GroupMemberAdded, GroupMemberRemoved, RemovedFromGroup,
        Connected, Pong, ErrorEvent,
    )
}


def parse_server_event(frame: str | dict) -> ServerEvent:
    """Raises KeyError for an unknown event type, pydantic.ValidationError for a bad payload."""
    if isinstance(frame, str):
        frame = json.loads(frame)
    cls = SERVER_EVENTS[frame["type"]]
    return cls.model_validate(frame.get("data") or {})


# ==================== client -> server ====================

class AuthFrame(BaseModel):
    type: Literal["auth"]
    token: str


class DeliveredAck(BaseModel):
    type: Literal["message:delivered"]
    message_id: int


class ReadAck(BaseModel):
    type: Literal["message:read"]
    message_id: int


class _TypingFrame(BaseModel):
    recipient_id: Optional[int] = None
    group_id: Optional[int] = None

    @model_validator(mode="after")
    def check_target(self):
        if (self.recipient_id is None) == (self.group_id is None):
            raise ValueError("Exactly one of recipient_id or group_id is required")
        return self


class TypingStartFrame(_TypingFrame):
    type: Literal["typing:start"]


class TypingStopFrame(_TypingFrame):
    type: Literal["typing:stop"]


class Ping(BaseModel):
    type: Literal["ping"]
    timestamp: Optional[Any] = None


ClientEvent = Annotated[
    Union[AuthFrame, DeliveredAck, ReadAck, TypingStartFrame, TypingStopFrame, Ping],
    Field(discriminator="type"),
]

_client_event_adapter = TypeAdapter(ClientEvent)


def _flatten(frame: dict) -> dict:
    # clients may send fields at the top level or wrapped in "data"
    data = frame.get("data")
    if isinstance(data, dict):
        return {**data, "type": frame.get("type")}
    return frame


def parse_client_event(raw: str | dict):
    """Raises pydantic.ValidationError (or ValueError for bad JSON)."""
    frame = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(frame, dict):
        raise ValueError("Frame must be a JSON object")
    return _client_event_adapter.validate_python(_flatten(frame))
