from __future__ import annotations

from datetime import timedelta
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
    FEED_CHANNEL_PREFIX: str = "chat.feed"

    CORS_ORIGINS: list[str] = ["*"]

    OPTIMISTIC_SEND_POLICY: Literal["reject", "queue"] = "reject"
    OPTIMISTIC_DELETE: bool = True
    ECHO_MATCH_WINDOW_SECONDS: float = 30.0
    PLACEHOLDER_DISPLAY_NAME: str = "Anonymous User"
    RESYNC_DELAY_SECONDS: float = 1.0

    WS_HEARTBEAT_SECONDS: int = 30

    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def echo_window(self) -> timedelta:
        return timedelta(seconds=self.ECHO_MATCH_WINDOW_SECONDS)

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()  # type: ignore[call-arg]
