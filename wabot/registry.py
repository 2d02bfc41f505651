import logging
import threading
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wabot.domain import User
from wabot.errors import RegistryError

logger = logging.getLogger(__name__)


class UserRegistry:
    """
    Get-or-create of user records keyed by sender address.

    Users are never deleted here; blocking is an administrative change made
    directly in the users table.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def resolve(
        self,
        sender_id: str,
        display_name_hint: Optional[str],
        now: datetime,
        cancel: Optional[threading.Event] = None,
    ) -> User:
        """
        Resolve the user for sender_id, creating it on first contact.

        An existing user gets last_seen = now and message_count + 1; identity
        and first_seen are unchanged. A new user starts with message_count 1
        and first_seen = last_seen = now.

        If `cancel` is set by the time the changes are ready, they are rolled
        back instead of committed.

        Raises:
            RegistryError: if the users table cannot be read or written, or the
                call was cancelled
        """
        from wabot.models import User as UserRow

        try:
            with self.session_factory() as db:
                row = db.query(UserRow).filter(UserRow.sender_id == sender_id).first()

                if row is None:
                    row = UserRow(
                        sender_id=sender_id,
                        name=display_name_hint,
                        first_seen=now,
                        last_seen=now,
                        message_count=1,
                        is_blocked=False,
                    )
                    db.add(row)
                    logger.info(f"Registering new user {sender_id}")
                else:
                    row.last_seen = now
                    row.message_count = (row.message_count or 0) + 1
                    if not row.name and display_name_hint:
                        row.name = display_name_hint

                if cancel is not None and cancel.is_set():
                    db.rollback()
                    raise RegistryError(f"resolve for {sender_id} abandoned before commit")

                db.commit()
                db.refresh(row)
                return self._to_user(row)

        except SQLAlchemyError as e:
            logger.error(f"User resolve failed for {sender_id}: {e}")
            raise RegistryError(f"could not resolve user {sender_id}") from e

    @staticmethod
    def _to_user(row) -> User:
        return User(
            id=row.id,
            sender_id=row.sender_id,
            name=row.name,
            first_seen=row.first_seen,
            last_seen=row.last_seen,
            message_count=row.message_count,
            is_blocked=bool(row.is_blocked),
        )
