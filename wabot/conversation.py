"""
Bounded conversation history per sender.

Each sender's window holds at most `window` entries in arrival order; the
oldest entries are dropped first once an append overflows it.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wabot.domain import ContextEntry, Role
from wabot.errors import PersistenceError

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = 10


class ConversationBacking(ABC):

    @abstractmethod
    def append(self, sender_id: str, entry: ContextEntry, window: int) -> list[ContextEntry]:
        """Append entry, trim to the newest `window` entries and return them."""

    @abstractmethod
    def read(self, sender_id: str) -> list[ContextEntry]:
        pass


class InMemoryConversationBacking(ConversationBacking):
    """Windows live for the lifetime of the process."""

    def __init__(self):
        self._windows: dict[str, deque] = {}
        self._lock = threading.Lock()

    def append(self, sender_id: str, entry: ContextEntry, window: int) -> list[ContextEntry]:
        with self._lock:
            entries = self._windows.get(sender_id)
            if entries is None or entries.maxlen != window:
                entries = deque(entries or (), maxlen=window)
                self._windows[sender_id] = entries
            entries.append(entry)
            return list(entries)

    def read(self, sender_id: str) -> list[ContextEntry]:
        with self._lock:
            return list(self._windows.get(sender_id, ()))


class DatabaseConversationBacking(ConversationBacking):
    """Windows in the conversation_entries table, trimmed on every append."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def append(self, sender_id: str, entry: ContextEntry, window: int) -> list[ContextEntry]:
        from wabot.models import ConversationEntry

        try:
            with self.session_factory() as db:
                db.add(ConversationEntry(sender_id=sender_id, role=entry.role.value, content=entry.content))
                db.flush()

                rows = (
                    db.query(ConversationEntry)
                    .filter(ConversationEntry.sender_id == sender_id)
                    .order_by(ConversationEntry.id.asc())
                    .all()
                )
                trim = max(len(rows) - window, 0)
                kept = [self._to_entry(row) for row in rows[trim:]]
                for row in rows[:trim]:
                    db.delete(row)
                db.commit()
                return kept
        except SQLAlchemyError as e:
            logger.error(f"Conversation append failed for {sender_id}: {e}")
            raise PersistenceError(str(e)) from e

    def read(self, sender_id: str) -> list[ContextEntry]:
        from wabot.models import ConversationEntry

        try:
            with self.session_factory() as db:
                rows = (
                    db.query(ConversationEntry)
                    .filter(ConversationEntry.sender_id == sender_id)
                    .order_by(ConversationEntry.id.asc())
                    .all()
                )
                return [self._to_entry(row) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Conversation read failed for {sender_id}: {e}")
            raise PersistenceError(str(e)) from e

    @staticmethod
    def _to_entry(row) -> ContextEntry:
        return ContextEntry(role=Role(row.role), content=row.content)


class ConversationStore:
    """
    Per-sender rolling context used to build generation prompts.

    Appends for the same sender must be serialized by the caller; appends for
    different senders are independent.
    """

    def __init__(self, backing: ConversationBacking, window: int = DEFAULT_WINDOW):
        if window <= 0:
            raise ValueError("window must be positive")
        self.backing = backing
        self.window = window

    def append_and_window(self, sender_id: str, role: Role, content: str) -> list[ContextEntry]:
        entries = self.backing.append(sender_id, ContextEntry(role=role, content=content), self.window)
        logger.debug(f"Conversation window for {sender_id} now has {len(entries)} entries")
        return entries

    def get_context(self, sender_id: str) -> list[ContextEntry]:
        return self.backing.read(sender_id)
