"""
Pydantic schemas for request/response validation.

This module contains:
- The inbound message model posted by the messaging gateway
- Response models for API responses
"""

from datetime import date as CalendarDate, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from wabot.domain import InboundMessage, TEXT_TYPE


# =============================================================================
# Pydantic Request Models
# =============================================================================

class WebhookRequest(BaseModel):
    """
    Inbound message posted by the messaging gateway.

    Validates:
    - message_id, from: non-empty strings without whitespace
    - ts: ISO-8601 UTC string with Z suffix
    - text: optional, max 4096 characters
    - type: "chat" for text, otherwise the media kind
    """
    message_id: str = Field(
        ...,
        min_length=1,
        description="Gateway message identifier"
    )
    # Note: 'from' is a reserved word in Python, so we use alias
    sender_id: str = Field(
        ...,
        alias="from",
        min_length=1,
        description="Sender address, e.g. 14155550100@c.us"
    )
    author: Optional[str] = Field(
        None,
        description="Group participant who wrote the message; absent for direct chats"
    )
    name: Optional[str] = Field(
        None,
        max_length=256,
        description="Sender display name, when the gateway knows it"
    )
    ts: str = Field(
        ...,
        description="Message timestamp in ISO-8601 UTC format (e.g., 2025-01-15T10:00:00Z)"
    )
    text: Optional[str] = Field(
        None,
        max_length=4096,
        description="Message text or media caption"
    )
    type: str = Field(
        TEXT_TYPE,
        min_length=1,
        description="Message type: chat, image, video, audio, ptt, document, sticker, ..."
    )
    has_media: bool = Field(
        False,
        description="Whether the message carries a media attachment"
    )

    @field_validator("message_id", "sender_id")
    @classmethod
    def validate_no_whitespace(cls, v: str, info) -> str:
        """Identifiers are opaque but never contain whitespace."""
        if any(ch.isspace() for ch in v):
            raise ValueError(f"{info.field_name} must not contain whitespace")
        return v

    @field_validator("ts")
    @classmethod
    def validate_iso8601_utc(cls, v: str) -> str:
        """Validate ISO-8601 UTC timestamp with Z suffix."""
        if not v.endswith("Z"):
            raise ValueError("ts must end with 'Z' (UTC timezone)")
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("ts must be a valid ISO-8601 UTC timestamp (e.g., 2025-01-15T10:00:00Z)")
        return v

    def to_inbound(self) -> InboundMessage:
        return InboundMessage(
            message_id=self.message_id,
            sender_id=self.sender_id,
            text=self.text,
            author=self.author,
            display_name=self.name,
            message_type=self.type,
            has_media=self.has_media,
            timestamp=datetime.fromisoformat(self.ts.replace("Z", "+00:00")),
        )

    model_config = {
        "populate_by_name": True,  # Allow both 'from' and 'sender_id'
        "json_schema_extra": {
            "examples": [
                {
                    "message_id": "m1",
                    "from": "14155550100@c.us",
                    "name": "Alice",
                    "ts": "2025-01-15T10:00:00Z",
                    "text": "Hello",
                    "type": "chat",
                    "has_media": False
                }
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for a processed webhook."""
    status: str = Field(default="ok", description="Operation status")
    outcome: str = Field(..., description="delivered, dropped or errored")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class StatsResponse(BaseModel):
    """
    Response model for GET /stats endpoint.

    - total_users: users ever seen
    - total_messages: inbound and outbound messages stored
    - today_messages: messages stored today (UTC)
    - uptime_seconds: process uptime
    """
    total_users: int = Field(..., ge=0, description="Number of known users")
    total_messages: int = Field(..., ge=0, description="Total number of messages")
    today_messages: int = Field(..., ge=0, description="Messages stored today")
    uptime_seconds: float = Field(..., ge=0, description="Process uptime in seconds")


class AnalyticsEntry(BaseModel):
    """One daily analytics row."""
    date: CalendarDate
    total_messages: int = Field(..., ge=0)
    unique_users: int = Field(..., ge=0)
    ai_responses: int = Field(..., ge=0)
    errors: int = Field(..., ge=0)

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
