from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Key shared with the auth service; X-User-Signature is HMAC(user_id)
    AUTH_SECRET: str

    # Key shared with producer services posting to /webhook/notifications
    WEBHOOK_SECRET: str

    # Upper bound on a single durable write made by the dispatcher
    PERSISTENCE_TIMEOUT_SECONDS: float = 5.0

    # How long a client keeps a typing flag without a stop event
    TYPING_TIMEOUT_SECONDS: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
