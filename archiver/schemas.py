# archiver/schemas.py
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, List, Optional, Union

class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    RESOLUTION_FAILURE = "resolution_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    CHANNEL_TYPE_UNSUPPORTED = "channel_type_unsupported"
    FETCH_FAILURE = "fetch_failure"

class ArchiveResult(BaseModel):
    success: bool
    message: str
    already_exists: bool = False
    count: Optional[int] = None
    channel: Optional[str] = None
    error: Optional[ErrorKind] = None

    @classmethod
    def failure(cls, error: ErrorKind, message: str, **kwargs) -> "ArchiveResult":
        return cls(success=False, message=message, error=error, **kwargs)

class ReactionCount(BaseModel):
    emoji_name: str
    count: int

class MessageSnapshot(BaseModel):
    """A fully loaded message as observed on the platform."""
    id: str
    channel_id: str
    guild_id: Optional[str] = None
    author: Optional[str] = None
    content: str = ""
    created_at: datetime
    edited_at: Optional[datetime] = None
    attachments: List[str] = []
    embeds: List[str] = []
    mentions: List[str] = []
    reactions: List[ReactionCount] = []
    pinned: bool = False
    type: str = "default"

class MessageReference(BaseModel):
    """Identifier-only message; content must be resolved before use."""
    id: str
    channel_id: str

AnyMessage = Union[MessageSnapshot, MessageReference]

class ChannelKind(str, Enum):
    TEXT = "text"
    THREAD = "thread"
    DM = "dm"
    OTHER = "other"

class ChannelHandle(BaseModel):
    id: str
    name: str = ""
    kind: ChannelKind = ChannelKind.TEXT
    raw: Any = Field(default=None, exclude=True)  # platform channel object

    @property
    def text_based(self) -> bool:
        return self.kind != ChannelKind.OTHER

    @property
    def label(self) -> str:
        if self.kind == ChannelKind.DM:
            return f"DM with {self.name or 'Unknown user'}"
        if self.kind == ChannelKind.THREAD:
            return f"thread #{self.name}"
        return f"channel #{self.name}"

class ReactionDirection(str, Enum):
    ADD = "add"
    REMOVE = "remove"

class EventKind(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    DELETED = "deleted"
    REACTION = "reaction"

class PendingEvent(BaseModel):
    kind: EventKind
    message: AnyMessage
    direction: Optional[ReactionDirection] = None

class ChannelCursor(BaseModel):
    channel_id: str
    last_message_id: str
    last_timestamp: Optional[datetime] = None
    message_count: int = 0

# --- API bodies ---

class ArchiveChannelRequest(BaseModel):
    channel_id: str
    resume: bool = True

class ArchiveGuildRequest(BaseModel):
    guild_id: str
    resume: bool = True
    delay_ms: Optional[int] = Field(default=None, ge=0)

class StatusResponse(BaseModel):
    enabled: bool
    state: Optional[str] = None
    pending_events: int = 0
