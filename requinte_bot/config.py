from functools import lru_cache

from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from requinte_bot.errors import ConfigError


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    A .env file is read as fallback; real environment variables win.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required, startup aborts without it
    DATABASE_URL: str

    # HTTP server
    HOST: str = "0.0.0.0"
    PORT: int = 10000

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Evolution API (WhatsApp transport)
    EVOLUTION_API_URL: str = "http://localhost:8080"
    EVOLUTION_API_KEY: str = ""
    EVOLUTION_INSTANCE: str = "requinte"
    EVOLUTION_TIMEOUT_SECONDS: float = 15.0

    # Shared secret expected in X-Webhook-Secret; empty accepts any caller
    WEBHOOK_SECRET: str = ""

    # Pairing / credential persistence
    WHATSAPP_CONNECT_ON_STARTUP: bool = True
    AUTH_DIR: str = "./auth"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Raises:
        ConfigError: if a required variable (DATABASE_URL) is missing
            or a value cannot be parsed.
    """
    try:
        return Settings()
    except ValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigError(f"Invalid configuration: {', '.join(missing)}") from e
