from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Bot settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Required from .env
    DATABASE_URL: str
    LOG_LEVEL: str
    WEBHOOK_SECRET: str

    # Comma-separated sender addresses allowed to run admin commands
    ADMIN_NUMBERS: str = ""

    # Rate limiting: RATE_LIMIT_MAX_REQUESTS messages per RATE_LIMIT_WINDOW_MS per sender
    RATE_LIMIT_WINDOW_MS: int = 60000
    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_BACKEND: str = "database"

    # Conversation window (entries, not exchange pairs)
    CONTEXT_WINDOW: int = 10
    CONVERSATION_BACKEND: str = "memory"

    # Bounds for calls that may block
    GENERATION_TIMEOUT_SECONDS: float = 30.0
    PERSISTENCE_TIMEOUT_SECONDS: float = 5.0

    RESTART_GRACE_SECONDS: float = 1.0

    # Messaging gateway; empty means replies go to an in-process outbox
    GATEWAY_URL: str = ""
    GATEWAY_TOKEN: str = ""

    # Generative engine
    ANTHROPIC_API_KEY: str = ""
    LLM_MODEL: str = "claude-sonnet-4-20250514"
    LLM_MAX_TOKENS: int = 1024

    ANALYTICS_SCHEDULE_ENABLED: bool = True

    @property
    def admin_numbers(self) -> frozenset[str]:
        """Admin allow-list parsed from ADMIN_NUMBERS."""
        return frozenset(
            number.strip() for number in self.ADMIN_NUMBERS.split(",") if number.strip()
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()


# Global settings instance
settings = get_settings()
