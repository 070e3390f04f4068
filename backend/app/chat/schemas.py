"""Pydantic schemas for the chat room wire protocol.

These models define every payload exchanged with clients and persisted to
the durable store:
    - ChatMessage: a chat event (message, join, leave), stored in history
    - HistoryPayload: the history batch sent to a newly joined session
    - PresencePayload: the roster sent to a newly joined session
    - InboundMessage: the only client payload the room accepts

Timestamps are integer milliseconds since the epoch.
"""
import json
import time
import uuid
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidRequest, MalformedPayload


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class MessageType(str, Enum):
    """Kind of chat event.

    Attributes:
        MESSAGE: Text sent by a participant.
        JOIN: A session was admitted to the room.
        LEAVE: A session left the room.
    """
    MESSAGE = "message"
    JOIN = "join"
    LEAVE = "leave"


class ChatMessage(BaseModel):
    """A single chat event as stored in history and broadcast to clients.

    Attributes:
        id: Unique event identifier (auto-generated UUID).
        type: Event kind.
        userId: Sender's user ID, taken from the session.
        username: Sender's display name, taken from the session.
        content: Message text. Present only for ``message`` events.
        timestamp: Creation time in epoch milliseconds.
    """
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique message ID"
    )
    type: MessageType = Field(..., description="Event kind")
    userId: str = Field(..., description="User ID of the sender")
    username: str = Field(..., description="Display name of the sender")
    content: Optional[str] = Field(default=None, description="Message content")
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")

    @model_validator(mode="after")
    def _content_only_for_messages(self) -> "ChatMessage":
        has_content = self.content is not None
        if has_content != (self.type == MessageType.MESSAGE.value):
            raise ValueError("content must be set for message events and only for them")
        return self

    def to_wire(self) -> dict:
        """Serialize for clients and storage, omitting absent content."""
        return self.model_dump(exclude_none=True)


class PresenceUser(BaseModel):
    """One roster entry, produced per live session."""
    userId: str
    username: str


class HistoryPayload(BaseModel):
    """History batch delivered to a session right after admission."""
    type: Literal["history"] = "history"
    messages: List[dict] = Field(default_factory=list)


class PresencePayload(BaseModel):
    """Live roster delivered to a session right after its join event."""
    type: Literal["presence"] = "presence"
    users: List[PresenceUser] = Field(default_factory=list)


class InboundMessage(BaseModel):
    """The only payload shape a client may send: ``{type: "message", content}``."""
    type: Literal["message"]
    content: str = Field(..., min_length=1)


class CallerIdentity(BaseModel):
    """Identity handed over by the upgrade layer. Not authenticated."""
    user_id: str
    username: str

    @classmethod
    def from_params(
        cls, user_id: Optional[str], username: Optional[str]
    ) -> "CallerIdentity":
        """Build an identity from raw request parameters.

        Raises:
            InvalidRequest: If either value is missing or empty.
        """
        if not user_id or not username:
            raise InvalidRequest()
        return cls(user_id=user_id, username=username)


def parse_inbound_frame(data: str) -> InboundMessage:
    """Parse and validate a client text frame.

    Args:
        data: Raw frame text.

    Returns:
        The validated InboundMessage.

    Raises:
        MalformedPayload: If the frame is not JSON (or nests too deeply to
            decode), not an object, not of type ``message``, or has missing
            or empty content.
    """
    try:
        parsed = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"invalid JSON ({e})") from e
    except RecursionError as e:
        raise MalformedPayload("JSON nested too deeply") from e

    if not isinstance(parsed, dict):
        raise MalformedPayload("expected a JSON object")

    try:
        return InboundMessage.model_validate(parsed)
    except ValidationError as e:
        raise MalformedPayload(f"{e.error_count()} validation error(s)") from e
