"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)

from wabot.storage import Base


class User(Base):
    """
    One row per sender address.

    Table: users
    Unique: sender_id
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=True)
    first_seen = Column(DateTime, nullable=False)
    last_seen = Column(DateTime, nullable=False)
    message_count = Column(Integer, nullable=False, default=0)
    is_blocked = Column(Boolean, nullable=False, default=False)


class Message(Base):
    """
    Append-only log of inbound and outbound messages.

    Table: messages
    message_type: text, command or a media kind
    direction: inbound or outbound
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    text = Column(Text, nullable=True)
    message_type = Column(String, nullable=False, default="text")
    direction = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)


class DailyAnalytics(Base):
    """
    Daily usage rollup, one row per calendar date.

    Table: analytics
    Unique: date (rows are replaced, never accumulated)
    """
    __tablename__ = "analytics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, unique=True, index=True)
    total_messages = Column(Integer, nullable=False, default=0)
    unique_users = Column(Integer, nullable=False, default=0)
    ai_responses = Column(Integer, nullable=False, default=0)
    errors = Column(Integer, nullable=False, default=0)


class RateWindow(Base):
    """
    Fixed-window request counter per sender.

    Table: rate_windows
    window_start_ms: epoch milliseconds
    """
    __tablename__ = "rate_windows"

    sender_id = Column(String, primary_key=True)
    window_start_ms = Column(BigInteger, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)


class ConversationEntry(Base):
    """
    Persistent backing for conversation windows.

    Table: conversation_entries
    Ordered by id within a sender; trimmed to the window after every append.
    """
    __tablename__ = "conversation_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)


class ErrorEvent(Base):
    """
    One row per failed pipeline run or absorbed generation failure.

    Table: error_events
    """
    __tablename__ = "error_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sender_id = Column(String, nullable=True)
    kind = Column(String, nullable=False)
    detail = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, index=True)
