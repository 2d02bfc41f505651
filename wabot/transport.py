"""
Messaging transport collaborators.

GatewayTransport talks to an HTTP messaging gateway: inbound messages arrive on
the signed /webhook route and are handed to the registered handler, replies go
out as POST {gateway}/send. LoopbackTransport keeps replies in an in-process
outbox for local runs without a gateway.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import httpx

from wabot.domain import InboundMessage, SendResult
from wabot.errors import SendError, TransportError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[InboundMessage], Awaitable[Any]]
ConnectionLostHandler = Callable[[str], Any]


class Transport(ABC):

    def __init__(self):
        self._message_handler: Optional[MessageHandler] = None
        self._connection_lost_handlers: list[ConnectionLostHandler] = []

    def on_message(self, handler: MessageHandler) -> None:
        """Register the single inbound message handler."""
        if self._message_handler is not None:
            raise RuntimeError("a message handler is already registered")
        self._message_handler = handler

    def on_connection_lost(self, handler: ConnectionLostHandler) -> None:
        self._connection_lost_handlers.append(handler)

    async def deliver(self, message: InboundMessage) -> Any:
        """Hand an inbound message to the registered handler and return its result."""
        if self._message_handler is None:
            raise TransportError("no message handler registered")
        return await self._message_handler(message)

    def connection_lost(self, reason: str) -> None:
        logger.warning(f"Transport connection lost: {reason}")
        for handler in self._connection_lost_handlers:
            handler(reason)

    @abstractmethod
    async def send(self, recipient: str, text: str) -> SendResult:
        pass

    @abstractmethod
    async def download_media(self, message: InboundMessage) -> Optional[bytes]:
        pass

    async def aclose(self) -> None:
        pass


class GatewayTransport(Transport):

    def __init__(self, client: httpx.AsyncClient):
        super().__init__()
        self.client = client

    @classmethod
    def create(cls, base_url: str, token: str = "", timeout: float = 10.0) -> "GatewayTransport":
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return cls(httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout))

    async def send(self, recipient: str, text: str) -> SendResult:
        try:
            response = await self.client.post("/send", json={"to": recipient, "text": text})
            response.raise_for_status()
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            self.connection_lost(str(e))
            return SendResult.failure(SendError(f"gateway unreachable: {e}"))
        except httpx.HTTPError as e:
            return SendResult.failure(SendError(f"gateway rejected send: {e}"))

        logger.info(f"Message submitted to gateway for {recipient}")
        return SendResult.success()

    async def download_media(self, message: InboundMessage) -> Optional[bytes]:
        try:
            response = await self.client.get(f"/media/{message.message_id}")
            response.raise_for_status()
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            self.connection_lost(str(e))
            raise TransportError(f"gateway unreachable: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"media download failed for {message.message_id}: {e}") from e
        return response.content

    async def aclose(self) -> None:
        await self.client.aclose()


class LoopbackTransport(Transport):
    """Records every reply instead of sending it anywhere."""

    def __init__(self):
        super().__init__()
        self.outbox: list[tuple[str, str]] = []

    async def send(self, recipient: str, text: str) -> SendResult:
        self.outbox.append((recipient, text))
        logger.info(f"Loopback reply recorded for {recipient}")
        return SendResult.success()

    async def download_media(self, message: InboundMessage) -> Optional[bytes]:
        return None
