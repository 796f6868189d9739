from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Required
    database_url: str
    platform_api_key: str = Field(min_length=1)
    ai_api_key: str = Field(min_length=1)

    # Platform identity
    bot_user_id: str = ""
    bot_username: str = ""
    admin_user_id: str = ""
    admin_reset_command: str = Field(default="!reset", min_length=1)
    admin_api_token: str = ""

    # Endpoints
    platform_ws_url: str = "wss://ws-prod.whop.com/ws/developer"
    platform_api_url: str = "https://api.whop.com"
    ai_base_url: str = "https://openrouter.ai/api/v1"
    ai_model: str = "google/gemini-2.0-flash-001"
    ai_max_tokens: int = Field(default=300, ge=16, le=4000)
    ai_timeout_seconds: float = Field(default=30, ge=1, le=300)

    # Rate limiting
    ai_rate_limit_per_minute: int = Field(default=10, ge=1, le=1000)
    message_rate_limit_per_minute: int = Field(default=30, ge=1, le=1000)

    # Caching
    config_cache_ttl_seconds: float = Field(default=30, ge=1, le=86400)
    answer_cache_ttl_seconds: int = Field(default=300, ge=1, le=86400)
    answer_cache_enabled: bool = True
    redis_url: str = "redis://localhost:6379/0"
    redis_socket_timeout_seconds: float = Field(default=0.5, gt=0, le=30)

    # Retries
    max_retries: int = Field(default=3, ge=0, le=10)
    retry_delay_ms: int = Field(default=1000, ge=10, le=60000)

    # Pending buffer
    buffer_max_messages: int = Field(default=50, ge=1, le=10000)
    buffer_max_attempts: int = Field(default=5, ge=1, le=50)
    buffer_base_delay_ms: int = Field(default=500, ge=10, le=60000)
    buffer_max_delay_ms: int = Field(default=5000, ge=10, le=600000)

    # Conversation context
    context_window_size: int = Field(default=10, ge=1, le=200)
    context_idle_ttl_seconds: float = Field(default=1800, ge=1, le=86400)

    # Ingestion
    max_message_length: int = Field(default=2000, ge=50, le=20000)
    dedup_cache_size: int = Field(default=2000, ge=10, le=1000000)
    duplicate_window_seconds: float = Field(default=15, ge=0, le=3600)
    in_flight_grace_seconds: float = Field(default=5, ge=0, le=600)
    tracked_bot_messages: int = Field(default=500, ge=1, le=100000)

    # Background loops
    maintenance_interval_seconds: float = Field(default=300, ge=1, le=86400)
    reconnect_base_delay_ms: int = Field(default=1000, ge=10, le=60000)
    reconnect_max_delay_ms: int = Field(default=30000, ge=10, le=600000)
    reconnect_max_attempts: int = Field(default=10, ge=1, le=1000)

    log_level: str = "INFO"
    bot_worker_enabled: bool = True

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def check_delay_bounds(self) -> "Settings":
        if self.buffer_max_delay_ms < self.buffer_base_delay_ms:
            raise ValueError("buffer_max_delay_ms must be >= buffer_base_delay_ms")
        if self.reconnect_max_delay_ms < self.reconnect_base_delay_ms:
            raise ValueError("reconnect_max_delay_ms must be >= reconnect_base_delay_ms")
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
