"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    port: int = 3000
    host: str = "0.0.0.0"
    environment: str = _ENVIRONMENT
    log_level: str = "INFO"
    sessions_dir: str = "temp_sessions"
    pairing_bridge_url: str = "http://localhost:8787"
    pairing_bridge_poll_interval_seconds: float = 1.0
    cors_allow_origins: str = "*"
    max_session_age_seconds: float = 300
    sweep_interval_seconds: float = 60
    adapter_settle_delay_seconds: float = 2
    code_wait_window_seconds: float = 3
    post_connect_teardown_delay_seconds: float = 2
    post_retrieval_cleanup_delay_seconds: float = 5

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_allowed_origins(raw: str | None) -> list[str]:
    """Parse CORS origins from a comma separated env value."""
    if raw is None:
        return []
    cleaned = raw.strip()
    if cleaned == "*":
        return ["*"]
    origins: list[str] = []
    for chunk in cleaned.split(","):
        value = chunk.strip().rstrip("/")
        if value:
            origins.append(value)
    return origins
