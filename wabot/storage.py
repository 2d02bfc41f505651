import logging
from datetime import date, datetime, time, timedelta
from typing import Generator, Optional

from sqlalchemy import create_engine, text, func
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from sqlalchemy.exc import SQLAlchemyError

from wabot.config import settings
from wabot.domain import BotStats, DailyAnalytics, Direction
from wabot.errors import PersistenceError

logger = logging.getLogger(__name__)

# check_same_thread=False is required because blocking calls run in worker threads
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {},
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from wabot import models  # noqa: F401

        logger.debug("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            # Schema is applied once the users and messages tables exist
            db.execute(text("SELECT COUNT(*) FROM users"))
            db.execute(text("SELECT COUNT(*) FROM messages"))
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Return the [start, end) datetimes covering a calendar day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


# =============================================================================
# Message Repository Functions
# =============================================================================

def save_message(
    db: Session,
    user_id: int,
    message_text: Optional[str],
    direction: Direction,
    message_type: str,
    timestamp: datetime,
) -> int:
    """
    Append a message row.

    Returns:
        The new row id

    Raises:
        PersistenceError: if the insert fails
    """
    from wabot.models import Message

    logger.debug(f"Saving {direction.value} message: user_id={user_id}, type={message_type}")

    try:
        message = Message(
            user_id=user_id,
            text=message_text,
            message_type=message_type,
            direction=direction.value,
            timestamp=timestamp,
        )
        db.add(message)
        db.commit()
        return message.id

    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save message for user {user_id}: {e}")
        raise PersistenceError(str(e)) from e


def record_error_event(
    db: Session,
    sender_id: Optional[str],
    kind: str,
    detail: Optional[str],
    timestamp: datetime,
) -> None:
    """Append an error event; failures are raised as PersistenceError."""
    from wabot.models import ErrorEvent

    try:
        db.add(ErrorEvent(sender_id=sender_id, kind=kind, detail=detail, timestamp=timestamp))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to record error event {kind}: {e}")
        raise PersistenceError(str(e)) from e


def get_stats(db: Session, today: date) -> BotStats:
    """
    Get bot statistics for the /stats command and endpoint.

    Computes:
    - total_users: count of all users
    - total_messages: count of all messages
    - today_messages: messages whose timestamp falls on `today`
    """
    from wabot.models import Message, User

    logger.info("Computing bot statistics")

    try:
        total_users = db.query(func.count(User.id)).scalar() or 0
        total_messages = db.query(func.count(Message.id)).scalar() or 0

        start, end = day_bounds(today)
        today_messages = (
            db.query(func.count(Message.id))
            .filter(Message.timestamp >= start, Message.timestamp < end)
            .scalar()
        ) or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to compute statistics: {e}")
        raise PersistenceError(str(e)) from e

    logger.debug(f"Stats: users={total_users}, messages={total_messages}, today={today_messages}")

    return BotStats(
        total_users=total_users,
        total_messages=total_messages,
        today_messages=today_messages,
    )


# =============================================================================
# Analytics Repository Functions
# =============================================================================

def count_daily_activity(db: Session, day: date) -> DailyAnalytics:
    """
    Count the activity of one calendar day.

    - total_messages: messages in the day, both directions
    - unique_users: distinct message owners in the day
    - ai_responses: outbound messages in the day
    - errors: error events in the day
    """
    from wabot.models import ErrorEvent, Message

    start, end = day_bounds(day)
    in_day = (Message.timestamp >= start, Message.timestamp < end)

    try:
        total_messages = db.query(func.count(Message.id)).filter(*in_day).scalar() or 0
        unique_users = (
            db.query(func.count(func.distinct(Message.user_id))).filter(*in_day).scalar()
        ) or 0
        ai_responses = (
            db.query(func.count(Message.id))
            .filter(*in_day, Message.direction == Direction.OUTBOUND.value)
            .scalar()
        ) or 0
        errors = (
            db.query(func.count(ErrorEvent.id))
            .filter(ErrorEvent.timestamp >= start, ErrorEvent.timestamp < end)
            .scalar()
        ) or 0
    except SQLAlchemyError as e:
        logger.error(f"Failed to count activity for {day}: {e}")
        raise PersistenceError(str(e)) from e

    return DailyAnalytics(
        date=day,
        total_messages=total_messages,
        unique_users=unique_users,
        ai_responses=ai_responses,
        errors=errors,
    )


def upsert_daily_analytics(db: Session, row: DailyAnalytics) -> None:
    """
    Insert or replace the analytics row for row.date.

    Replace semantics: re-running for the same date overwrites the counts.
    """
    from wabot.models import DailyAnalytics as DailyAnalyticsRow

    try:
        existing = db.query(DailyAnalyticsRow).filter(DailyAnalyticsRow.date == row.date).first()
        if existing is None:
            existing = DailyAnalyticsRow(date=row.date)
            db.add(existing)
        existing.total_messages = row.total_messages
        existing.unique_users = row.unique_users
        existing.ai_responses = row.ai_responses
        existing.errors = row.errors
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to upsert analytics for {row.date}: {e}")
        raise PersistenceError(str(e)) from e

    logger.info(f"Analytics upserted for {row.date}")


def get_recent_analytics(db: Session, limit: int = 30) -> list[DailyAnalytics]:
    """Return the latest `limit` analytics rows, newest first."""
    from wabot.models import DailyAnalytics as DailyAnalyticsRow

    try:
        rows = (
            db.query(DailyAnalyticsRow)
            .order_by(DailyAnalyticsRow.date.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to list analytics: {e}")
        raise PersistenceError(str(e)) from e

    return [
        DailyAnalytics(
            date=r.date,
            total_messages=r.total_messages,
            unique_users=r.unique_users,
            ai_responses=r.ai_responses,
            errors=r.errors,
        )
        for r in rows
    ]
