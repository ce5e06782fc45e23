from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

from chat_sync.domain.value_objects.enums import SenderRole


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8000/functions/v1/chat-server"
    API_TOKEN: str = ""
    HTTP_TIMEOUT_SECONDS: float = 20.0

    REDIS_URL: str = "redis://localhost:6379/0"
    PUSH_CHANNEL_PREFIX: str = "company_admin_messages"

    CACHE_BACKEND: Literal["memory", "redis"] = "memory"
    CACHE_SCHEMA_VERSION: str = "1.0.0"
    CACHE_PREFIX: str = "cache_"
    CACHE_MAX_BYTES: int | None = 5 * 1024 * 1024

    MESSAGES_CACHE_TTL: float = 5 * 60
    CONVERSATIONS_CACHE_TTL: float = 5.0

    MATCH_WINDOW_SECONDS: float = 5.0

    RECONNECT_DELAY_SECONDS: float = 3.0
    RECONNECT_MAX_ATTEMPTS: int = 5
    RECONNECT_FRESHNESS_SECONDS: float = 10.0

    AUTO_READ_DELAY_SECONDS: float = 0.5

    VIEWER_ROLE: SenderRole = SenderRole.ADMIN

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
