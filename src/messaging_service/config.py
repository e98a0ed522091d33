from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_DB: str
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432

    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_RECYCLE: int = 300

    REDIS_URL: str = "redis://localhost:6379/0"
    # Patterns the API process listens on to feed WebSocket connections
    REDIS_TOPIC_PATTERNS: list[str] = ["messages:*", "user_status:*", "call:*", "live_messages:*"]

    JWT_SECRET: str = ""
    JWT_VERIFY_MODE: Literal["hs256", "jwks"] = "hs256"
    JWT_ALGORITHM: str = "HS256"
    JWKS_URL: str | None = None

    CORS_ORIGINS: list[str] = ["*"]

    OUTBOX_POLL_INTERVAL: float = 1.0
    OUTBOX_BATCH_SIZE: int = 50
    OUTBOX_MAX_ATTEMPTS: int = 5

    WS_HEARTBEAT_SECONDS: int = 30

    # Without an explicit status row, a profile touched this recently counts as online.
    PRESENCE_STALE_SECONDS: int = 300

    CALL_MEDIA_TIMEOUT_SECONDS: float = 15.0
    CALL_NEGOTIATION_TIMEOUT_SECONDS: float = 30.0

    API_BASE_URL: str = "http://localhost:8000"
    API_TIMEOUT_SECONDS: float = 10.0

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
