"""
Inbound message processing.

MessagePipeline.handle takes one InboundMessage to a terminal state:

- dropped: broadcast/status traffic, group messages, empty messages, blocked users
- delivered: a reply (throttle notice, command reply, media notice, generated
  reply or apology) was handed to the transport
- errored: the user could not be resolved, the reply could not be sent, or an
  unexpected failure occurred (one best-effort error reply is attempted)

All work for one sender runs under that sender's lock.
"""

import asyncio
import logging
import threading
import time
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from wabot import storage
from wabot.admin import AdminDispatcher
from wabot.config import Settings
from wabot.conversation import (
    ConversationStore,
    DatabaseConversationBacking,
    InMemoryConversationBacking,
)
from wabot.domain import (
    BROADCAST_ADDRESS,
    TEXT_TYPE,
    ContextEntry,
    Direction,
    InboundMessage,
    Outcome,
    PipelineResult,
    Role,
    SendResult,
    User,
)
from wabot.errors import (
    BotError,
    GenerationError,
    PersistenceError,
    RateLimitStoreError,
    RegistryError,
    SendError,
)
from wabot.generation import Generator
from wabot.locks import SenderLocks
from wabot.logging_utils import message_context
from wabot.metrics import (
    record_connection_lost,
    record_generation,
    record_pipeline_outcome,
    record_rate_limited,
    record_send_failure,
)
from wabot.rate_limiter import DatabaseRateWindowStore, InMemoryRateWindowStore, RateLimiter
from wabot.registry import UserRegistry
from wabot.transport import Transport
from wabot.utils import epoch_ms, process_uptime, utcnow

logger = logging.getLogger(__name__)


THROTTLE_REPLY = "⚠️ Too many messages! Please wait a minute before sending another message."
APOLOGY_REPLY = "Sorry, I encountered an error. Please try again later."
ERROR_REPLY = "❌ Sorry, I encountered an error. Please try again later."

COMMAND_TYPE = "command"
TEXT_MESSAGE_TYPE = "text"


def media_reply(kind: str) -> str:
    return (
        f"📎 I received a {kind} file. I'm primarily a text-based AI assistant, "
        "but I can help you describe or analyze content if you provide more details!"
    )


class MessagePipeline:

    def __init__(
        self,
        transport: Transport,
        registry: UserRegistry,
        rate_limiter: RateLimiter,
        conversations: ConversationStore,
        admin: AdminDispatcher,
        generator: Generator,
        session_factory: Callable[[], Session],
        clock: Callable = utcnow,
        generation_timeout: float = 30.0,
        persistence_timeout: float = 5.0,
    ):
        self.transport = transport
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.conversations = conversations
        self.admin = admin
        self.generator = generator
        self.session_factory = session_factory
        self.clock = clock
        self.generation_timeout = generation_timeout
        self.persistence_timeout = persistence_timeout
        self.locks = SenderLocks()

    def attach(self) -> None:
        """Register this pipeline as the transport's message handler."""
        self.transport.on_message(self.handle)
        self.transport.on_connection_lost(self._on_connection_lost)

    async def handle(self, message: InboundMessage) -> PipelineResult:
        with message_context(message.message_id, message.sender_id):
            result = await self._handle(message)
            record_pipeline_outcome(result.outcome.value)
            logger.info(f"Message from {message.sender_id} finished: {result.outcome.value}")
            return result

    async def _handle(self, message: InboundMessage) -> PipelineResult:
        if message.sender_id == BROADCAST_ADDRESS or message.author:
            logger.debug("Skipping broadcast or group message")
            return PipelineResult(Outcome.DROPPED)

        if not message.text and not message.has_media:
            logger.debug("Skipping empty message")
            return PipelineResult(Outcome.DROPPED)

        logger.info(f"Message received from {message.sender_id}: {message.text or '[Media]'}")

        async with self.locks.locked(message.sender_id):
            try:
                return await self._process(message)
            except Exception as e:
                logger.exception(f"Error processing message from {message.sender_id}: {e}")
                await self._record_error(message.sender_id, e)
                result = await self._send(message.sender_id, ERROR_REPLY)
                if not result.ok:
                    logger.error(f"Failed to send error message: {result.error}")
                return PipelineResult(Outcome.ERRORED, ERROR_REPLY if result.ok else None)

    async def _process(self, message: InboundMessage) -> PipelineResult:
        sender_id = message.sender_id
        now = self.clock()

        try:
            user = await self._blocking(
                self.registry.resolve, sender_id, message.display_name, now,
                error=RegistryError, cancellable=True,
            )
        except RegistryError as e:
            # No reply: a second failing action would only compound the first
            logger.error(f"Dropping message, user could not be resolved: {e}")
            await self._record_error(sender_id, e)
            return PipelineResult(Outcome.ERRORED)

        if user.is_blocked:
            logger.info(f"Ignoring message from blocked user {sender_id}")
            return PipelineResult(Outcome.DROPPED)

        if not await self._allow(sender_id, now):
            record_rate_limited()
            return await self._reply(sender_id, THROTTLE_REPLY)

        if message.is_command:
            return await self._handle_command(user, message, now)

        if message.has_media:
            return await self._handle_media(user, message, now)

        return await self._handle_text(user, message, now)

    async def _allow(self, sender_id: str, now) -> bool:
        try:
            return await self._blocking(
                self.rate_limiter.allow, sender_id, epoch_ms(now),
                error=RateLimitStoreError, cancellable=True,
            )
        except RateLimitStoreError as e:
            logger.error(f"Rate limit check failed, treating as denied: {e}")
            return False

    async def _handle_command(self, user: User, message: InboundMessage, now) -> PipelineResult:
        await self._persist(user, message.text, Direction.INBOUND, COMMAND_TYPE, now)
        reply = await self._blocking(self.admin.dispatch, message.text, user.sender_id)
        await self._persist(user, reply, Direction.OUTBOUND, COMMAND_TYPE, self.clock())
        return await self._reply(user.sender_id, reply)

    async def _handle_media(self, user: User, message: InboundMessage, now) -> PipelineResult:
        kind = message.message_type if message.message_type != TEXT_TYPE else "media"
        media = await self.transport.download_media(message)
        logger.info(f"Received {kind} media ({len(media) if media else 0} bytes)")

        await self._persist(user, f"[{kind} file]", Direction.INBOUND, kind, now)
        reply = media_reply(kind)
        await self._persist(user, reply, Direction.OUTBOUND, TEXT_MESSAGE_TYPE, self.clock())
        return await self._reply(user.sender_id, reply)

    async def _handle_text(self, user: User, message: InboundMessage, now) -> PipelineResult:
        sender_id = user.sender_id
        await self._persist(user, message.text, Direction.INBOUND, TEXT_MESSAGE_TYPE, now)

        context = await self._blocking(self.conversations.get_context, sender_id)
        try:
            reply = await self._generate(context, message.text)
        except GenerationError as e:
            logger.warning(f"Generation failed, sending apology: {e}")
            await self._record_error(sender_id, e)
            reply = APOLOGY_REPLY
        else:
            await self._blocking(self.conversations.append_and_window, sender_id, Role.USER, message.text)
            await self._blocking(self.conversations.append_and_window, sender_id, Role.ASSISTANT, reply)

        await self._persist(user, reply, Direction.OUTBOUND, TEXT_MESSAGE_TYPE, self.clock())
        return await self._reply(sender_id, reply)

    async def _generate(self, context: Sequence[ContextEntry], text: str) -> str:
        started = time.monotonic()
        try:
            reply = await asyncio.wait_for(
                self.generator.complete(context, text), timeout=self.generation_timeout
            )
        except asyncio.TimeoutError as e:
            record_generation("error", time.monotonic() - started)
            raise GenerationError(f"generation timed out after {self.generation_timeout}s") from e
        except GenerationError:
            record_generation("error", time.monotonic() - started)
            raise
        record_generation("ok", time.monotonic() - started)
        return reply

    async def _reply(self, sender_id: str, text: str) -> PipelineResult:
        result = await self._send(sender_id, text)
        if not result.ok:
            logger.error(f"Failed to send reply to {sender_id}: {result.error}")
            return PipelineResult(Outcome.ERRORED)
        logger.info(f"Response sent to {sender_id}")
        return PipelineResult(Outcome.DELIVERED, text)

    async def _send(self, recipient: str, text: str) -> SendResult:
        """Send once; exceptions from the transport are folded into the result."""
        try:
            result = await self.transport.send(recipient, text)
        except Exception as e:
            result = SendResult.failure(SendError(str(e)))
        if not result.ok:
            record_send_failure()
        return result

    async def _persist(
        self,
        user: User,
        text: Optional[str],
        direction: Direction,
        message_type: str,
        timestamp,
    ) -> None:
        try:
            await self._blocking(self._save_message, user.id, text, direction, message_type, timestamp)
        except PersistenceError as e:
            logger.error(f"Failed to persist {direction.value} {message_type} message: {e}")

    def _save_message(self, user_id, text, direction, message_type, timestamp) -> None:
        with self.session_factory() as db:
            storage.save_message(db, user_id, text, direction, message_type, timestamp)

    async def _record_error(self, sender_id: Optional[str], error: Exception) -> None:
        kind = error.kind if isinstance(error, BotError) else type(error).__name__
        try:
            await self._blocking(self._save_error_event, sender_id, kind, str(error), self.clock())
        except PersistenceError as e:
            logger.error(f"Failed to record {kind} event: {e}")

    def _save_error_event(self, sender_id, kind, detail, timestamp) -> None:
        with self.session_factory() as db:
            storage.record_error_event(db, sender_id, kind, detail, timestamp)

    async def _blocking(
        self,
        fn: Callable,
        *args,
        error: type = PersistenceError,
        cancellable: bool = False,
    ):
        """
        Run a blocking call in a worker thread, bounded by the persistence timeout.

        A call that overruns the timeout is reported as `error`, but only after
        its worker has finished, so nothing it does lands after the sender's
        lock is released. Cancellable calls take a `cancel` event and roll back
        instead of committing once it is set; if one committed before seeing
        the event, its result stands.
        """
        cancel = threading.Event()
        kwargs = {"cancel": cancel} if cancellable else {}
        worker = asyncio.ensure_future(asyncio.to_thread(fn, *args, **kwargs))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout=self.persistence_timeout)
        except asyncio.TimeoutError:
            cancel.set()

        name = getattr(fn, "__name__", "call")
        logger.warning(f"{name} timed out after {self.persistence_timeout}s, waiting for it to finish")
        try:
            result = await worker
        except Exception as e:
            raise error(f"{name} timed out after {self.persistence_timeout}s") from e

        if cancellable:
            logger.warning(f"{name} committed before it could be abandoned")
            return result
        raise error(f"{name} timed out after {self.persistence_timeout}s")

    def _on_connection_lost(self, reason: str) -> None:
        record_connection_lost()
        logger.warning(f"Transport disconnected: {reason}")


def build_pipeline(
    settings: Settings,
    transport: Transport,
    generator: Generator,
    session_factory: Callable[[], Session],
) -> MessagePipeline:
    """Wire the pipeline components from settings."""
    if settings.RATE_LIMIT_BACKEND == "memory":
        rate_store = InMemoryRateWindowStore()
    else:
        rate_store = DatabaseRateWindowStore(session_factory)

    if settings.CONVERSATION_BACKEND == "database":
        backing = DatabaseConversationBacking(session_factory)
    else:
        backing = InMemoryConversationBacking()

    def stats_provider():
        with session_factory() as db:
            return storage.get_stats(db, utcnow().date())

    admin = AdminDispatcher(
        admin_ids=settings.admin_numbers,
        stats_provider=stats_provider,
        uptime=process_uptime,
        restart_grace_seconds=settings.RESTART_GRACE_SECONDS,
    )

    pipeline = MessagePipeline(
        transport=transport,
        registry=UserRegistry(session_factory),
        rate_limiter=RateLimiter(
            rate_store,
            window_ms=settings.RATE_LIMIT_WINDOW_MS,
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        ),
        conversations=ConversationStore(backing, window=settings.CONTEXT_WINDOW),
        admin=admin,
        generator=generator,
        session_factory=session_factory,
        generation_timeout=settings.GENERATION_TIMEOUT_SECONDS,
        persistence_timeout=settings.PERSISTENCE_TIMEOUT_SECONDS,
    )
    pipeline.attach()
    return pipeline
