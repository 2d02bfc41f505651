import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class SenderLocks:
    """
    One asyncio lock per sender id.

    Properties:
    - Runs for the same sender are serialized in arrival order
    - Runs for different senders never wait on each other
    - A lock is discarded once no run holds or waits for it, so the map only
      grows with the number of senders currently in flight
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per sender
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def locked(self, sender_id: str) -> AsyncIterator[None]:
        """Async context manager holding the lock for sender_id."""
        lock = self._locks.get(sender_id)
        if lock is None:
            lock = self._locks[sender_id] = asyncio.Lock()
        self._users[sender_id] = self._users.get(sender_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[sender_id] -= 1
            if self._users[sender_id] == 0:
                del self._users[sender_id]
                del self._locks[sender_id]

    def __len__(self) -> int:
        return len(self._locks)
