"""Generative reply collaborators."""

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from anthropic import AsyncAnthropic, APIError

from wabot.domain import ContextEntry
from wabot.errors import GenerationError

logger = logging.getLogger(__name__)


def build_prompt(context: Sequence[ContextEntry], new_message: str) -> str:
    """Render the windowed conversation and the new message as one prompt."""
    history = "\n".join(f"{entry.role.value}: {entry.content}" for entry in context)
    return (
        "You are a helpful AI assistant responding to WhatsApp messages.\n"
        "Previous conversation:\n"
        f"{history}\n\n"
        f"User's latest message: {new_message}\n\n"
        "Please provide a helpful, concise response:"
    )


class Generator(ABC):
    """Produces a reply for a message given the sender's recent context."""

    @abstractmethod
    async def complete(self, context: Sequence[ContextEntry], new_message: str) -> str:
        """
        Raises:
            GenerationError: on any upstream failure
        """


class AnthropicGenerator(Generator):

    def __init__(self, client: AsyncAnthropic, model: str, max_tokens: int = 1024):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    @classmethod
    def create(cls, api_key: str, model: str, max_tokens: int = 1024) -> "AnthropicGenerator":
        return cls(AsyncAnthropic(api_key=api_key), model, max_tokens)

    async def complete(self, context: Sequence[ContextEntry], new_message: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": build_prompt(context, new_message)}],
            )
        except APIError as e:
            logger.error(f"Anthropic API error: {e}")
            raise GenerationError(str(e)) from e

        text = " ".join(block.text for block in response.content if block.type == "text").strip()
        if not text:
            raise GenerationError("empty completion")
        return text


class UnconfiguredGenerator(Generator):
    """Used when no API key is set; every completion fails."""

    async def complete(self, context: Sequence[ContextEntry], new_message: str) -> str:
        raise GenerationError("no generative engine configured")


def create_generator(api_key: str, model: str, max_tokens: int = 1024) -> Generator:
    if not api_key:
        logger.warning("ANTHROPIC_API_KEY not set; generated replies will fall back to the apology text")
        return UnconfiguredGenerator()
    logger.info(f"Anthropic generator initialized with model: {model}")
    return AnthropicGenerator.create(api_key, model, max_tokens)
