# src/prompt_relay/settings.py
import logging
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .relay.errors import CredentialsNotConfigured

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s"


class Settings(BaseSettings):
    # core
    APP_NAME: str = Field(default="Prompt Relay")
    ENV: str = Field(default=os.getenv("APP_ENV", "dev"))
    DEBUG: bool = Field(default=True)
    LOG_LEVEL: str = Field(default="INFO")

    # upstream provider
    OPENAI_API_KEY: str | None = None
    OPENAI_BASE_URL: str | None = None
    DEFAULT_MODEL: str = Field(default="gemini-2.5-flash-preview-04-17")
    REQUEST_TIMEOUT: float = Field(default=120.0)

    # stream from the local echo client instead of the provider
    USE_ECHO: bool = Field(default=False)

    # prompt templates resolved by reference
    PROMPTS_PATH: str = Field(default="prompts.yaml")

    model_config = SettingsConfigDict(
        env_file=".env.dev",
        extra="ignore",
    )

    @property
    def app_name(self) -> str:
        return self.APP_NAME

    def require_credentials(self) -> str:
        """Return the provider key, or fail before any request is served."""
        key = (self.OPENAI_API_KEY or "").strip()
        if not key:
            raise CredentialsNotConfigured("API key not configured")
        return key


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stream handler to the package logger."""
    logger = logging.getLogger("prompt_relay")
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(h)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    return logger


settings = Settings()
