"""
Exception hierarchy for the message pipeline and its collaborators.

Every failure is terminal for the single message being processed. A denied
rate-limit check is a normal outcome and has no exception type.
"""


class BotError(Exception):
    """Base class for all bot errors."""

    kind = "bot_error"


class TransportError(BotError):
    """Receiving from or talking to the messaging transport failed."""

    kind = "transport_error"


class SendError(TransportError):
    """A reply could not be delivered to the recipient."""

    kind = "send_error"


class RegistryError(BotError):
    """The sender's user record could not be resolved or updated."""

    kind = "registry_error"


class GenerationError(BotError):
    """The generative engine failed or timed out."""

    kind = "generation_error"


class PersistenceError(BotError):
    """A database read or write failed."""

    kind = "persistence_error"


class RateLimitStoreError(PersistenceError):
    """The rate window for a sender could not be read or written."""

    kind = "rate_limit_store_error"
