"""Configuration management for orderstream."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

DEFAULT_FALLBACK_MESSAGE = "Sorry, I encountered an error. Please try again."


class Settings(BaseSettings):
    """Engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORDERSTREAM_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Streaming
    flush_interval_ms: int = Field(default=30, ge=1, description="Render buffer flush interval in milliseconds")
    history_window: int = Field(default=6, ge=0, description="Number of prior messages sent with each turn")
    frame_prefix: str = Field(default="data:", description="Optional framing token in front of each line")
    done_sentinel: str = Field(default="[DONE]", description="Literal that ends the stream")
    encoding: str = Field(default="utf-8", description="Response body encoding")
    fallback_message: str = Field(default=DEFAULT_FALLBACK_MESSAGE, description="Text shown when a turn fails")

    # Transport
    endpoint_url: str | None = Field(None, description="Streaming chat endpoint")
    request_timeout_seconds: float = Field(default=60.0, gt=0, description="HTTP timeout for one turn")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def flush_interval_seconds(self) -> float:
        return self.flush_interval_ms / 1000

    def require_endpoint(self) -> str:
        if not self.endpoint_url:
            raise ConfigurationError("endpoint_url is not configured; set ORDERSTREAM_ENDPOINT_URL")
        return self.endpoint_url


def get_settings(**overrides: object) -> Settings:
    """Get engine settings.

    Args:
        **overrides: Explicit values that win over the environment and ``.env``

    Returns:
        Settings instance
    """
    return Settings(**overrides)  # type: ignore[arg-type]
