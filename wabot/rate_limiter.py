"""
Fixed-window rate limiting per sender.

A sender gets at most max_requests accepted calls per window_ms. The first call
after a window has elapsed opens a new window starting at that call.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wabot.errors import RateLimitStoreError

logger = logging.getLogger(__name__)


@dataclass
class WindowState:
    window_start_ms: int
    request_count: int


class RateWindowStore(ABC):
    """Backing storage for rate windows, keyed by sender id."""

    @abstractmethod
    def load(self, sender_id: str) -> Optional[WindowState]:
        pass

    @abstractmethod
    def save(self, sender_id: str, state: WindowState, cancel: Optional[threading.Event] = None) -> None:
        """Store state for sender_id unless `cancel` is already set, which raises RateLimitStoreError."""


class InMemoryRateWindowStore(RateWindowStore):

    def __init__(self):
        self._windows: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    def load(self, sender_id: str) -> Optional[WindowState]:
        with self._lock:
            state = self._windows.get(sender_id)
            return WindowState(state.window_start_ms, state.request_count) if state else None

    def save(self, sender_id: str, state: WindowState, cancel: Optional[threading.Event] = None) -> None:
        with self._lock:
            if cancel is not None and cancel.is_set():
                raise RateLimitStoreError(f"rate window update for {sender_id} abandoned")
            self._windows[sender_id] = WindowState(state.window_start_ms, state.request_count)


class DatabaseRateWindowStore(RateWindowStore):
    """Rate windows in the rate_windows table, one row per sender."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def load(self, sender_id: str) -> Optional[WindowState]:
        from wabot.models import RateWindow

        try:
            with self.session_factory() as db:
                row = db.get(RateWindow, sender_id)
                if row is None:
                    return None
                return WindowState(row.window_start_ms, row.request_count)
        except SQLAlchemyError as e:
            logger.error(f"Rate window lookup failed for {sender_id}: {e}")
            raise RateLimitStoreError(str(e)) from e

    def save(self, sender_id: str, state: WindowState, cancel: Optional[threading.Event] = None) -> None:
        from wabot.models import RateWindow

        try:
            with self.session_factory() as db:
                row = db.get(RateWindow, sender_id)
                if row is None:
                    row = RateWindow(sender_id=sender_id)
                    db.add(row)
                row.window_start_ms = state.window_start_ms
                row.request_count = state.request_count

                if cancel is not None and cancel.is_set():
                    db.rollback()
                    raise RateLimitStoreError(f"rate window update for {sender_id} abandoned before commit")

                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Rate window update failed for {sender_id}: {e}")
            raise RateLimitStoreError(str(e)) from e


class RateLimiter:
    """
    Fixed-window counter keyed by sender.

    Calls for the same sender must not overlap; the pipeline serializes them
    with its per-sender lock.
    """

    def __init__(self, store: RateWindowStore, window_ms: int = 60000, max_requests: int = 10):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")
        self.store = store
        self.window_ms = window_ms
        self.max_requests = max_requests

    def allow(self, sender_id: str, now_ms: int, cancel: Optional[threading.Event] = None) -> bool:
        """
        Record a request from sender_id at now_ms and return whether it is allowed.

        Denied requests leave the window untouched, and so does a call whose
        `cancel` event is set before the window is saved.

        Raises:
            RateLimitStoreError: if the backing store fails or the call was cancelled
        """
        state = self.store.load(sender_id)

        if state is None or now_ms - state.window_start_ms >= self.window_ms:
            self.store.save(sender_id, WindowState(window_start_ms=now_ms, request_count=1), cancel)
            logger.debug(f"Opened rate window for {sender_id}")
            return True

        if state.request_count >= self.max_requests:
            logger.info(
                f"Rate limit reached for {sender_id}: "
                f"{state.request_count}/{self.max_requests} in window"
            )
            return False

        state.request_count += 1
        self.store.save(sender_id, state, cancel)
        return True
