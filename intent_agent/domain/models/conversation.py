from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Author of a conversation turn"""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single turn in a session. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionMetadata(BaseModel):
    """Bookkeeping kept next to the messages of a session"""
    started_at: Optional[datetime] = Field(None, description="Timestamp of the first message ever appended")
    last_activity: Optional[datetime] = Field(None, description="Time of the last write to the session")
    message_count: int = Field(default=0, ge=0)


class SessionRecord(BaseModel):
    """Durable record for one session, one per store key"""
    session_id: str
    user_id: str = ""
    messages: List[Message] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    @field_validator("messages", mode="before")
    @classmethod
    def drop_unknown_roles(cls, value: Any) -> Any:
        """Skip stored messages whose role this service does not know"""

        if not isinstance(value, list):
            return value

        known = {role.value for role in MessageRole}
        kept = [m for m in value if not isinstance(m, dict) or m.get("role") in known]
        if len(kept) < len(value):
            logger.warning("Dropped stored messages with unknown role", dropped=len(value) - len(kept))
        return kept

    @classmethod
    def empty(cls, session_id: str) -> "SessionRecord":
        """The conceptual record of a session that was never written"""
        return cls(session_id=session_id)

    def append(self, message: Message, user_id: str, now: Optional[datetime] = None) -> None:
        """Append a message and recompute metadata"""

        if not self.user_id:
            self.user_id = user_id

        self.messages.append(message)
        self.metadata.message_count = len(self.messages)

        if self.metadata.message_count == 1 or self.metadata.started_at is None:
            self.metadata.started_at = message.timestamp

        self.touch(now or message.timestamp)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Move last_activity forward, never backwards"""

        now = now or utcnow()
        last = self.metadata.last_activity
        if last is None or now > last:
            self.metadata.last_activity = now

    @property
    def last_timestamp(self) -> Optional[datetime]:
        return self.messages[-1].timestamp if self.messages else None
