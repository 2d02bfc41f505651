"""
Value types passed between the transport, the pipeline and its components.

For the SQLAlchemy tables see models.py; for HTTP request/response schemas see
schemas.py.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


BROADCAST_ADDRESS = "status@broadcast"
TEXT_TYPE = "chat"


class Direction(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Outcome(str, Enum):
    """Terminal states of one pipeline run."""

    DELIVERED = "delivered"
    DROPPED = "dropped"
    ERRORED = "errored"


@dataclass(frozen=True)
class InboundMessage:
    """
    A message received from the transport.

    author is only set for messages posted in a group; direct chats leave it
    empty. message_type follows the transport's naming: "chat" for text,
    otherwise the media kind (image, video, audio, document, sticker, ...).
    """

    message_id: str
    sender_id: str
    text: Optional[str] = None
    author: Optional[str] = None
    display_name: Optional[str] = None
    message_type: str = TEXT_TYPE
    has_media: bool = False
    timestamp: Optional[datetime] = None

    @property
    def is_command(self) -> bool:
        return bool(self.text) and self.text.startswith("/")


@dataclass(frozen=True)
class ContextEntry:
    role: Role
    content: str


@dataclass(frozen=True)
class SendResult:
    """Result of a transport send; error is set when ok is False."""

    ok: bool
    error: Optional[Exception] = None

    @classmethod
    def success(cls) -> "SendResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: Exception) -> "SendResult":
        return cls(ok=False, error=error)


@dataclass
class User:
    id: int
    sender_id: str
    name: Optional[str]
    first_seen: datetime
    last_seen: datetime
    message_count: int
    is_blocked: bool = False


@dataclass(frozen=True)
class PipelineResult:
    outcome: Outcome
    reply: Optional[str] = None


@dataclass(frozen=True)
class BotStats:
    total_users: int
    total_messages: int
    today_messages: int


@dataclass(frozen=True)
class DailyAnalytics:
    date: date
    total_messages: int
    unique_users: int
    ai_responses: int
    errors: int = 0
