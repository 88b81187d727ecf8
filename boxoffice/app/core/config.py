"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore", # Allow extra env vars without failing
    )

    # App
    app_name: str = "BoxOffice"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    front_end_url: str = "http://localhost:3000"

    # Database
    database_url: str = "sqlite+aiosqlite:///./boxoffice.db"
    database_pool_size: int = 10
    database_max_overflow: int = 10
    database_pool_timeout_seconds: float = 5.0

    # Domain action monitor
    domain_action_monitor_enabled: bool = True
    domain_action_poll_interval_seconds: float = 1.0
    domain_action_lease_seconds: int = 60
    domain_action_execution_timeout_seconds: float = 55.0
    domain_action_batch_size: Optional[int] = None  # None = derive from pool capacity
    domain_action_max_attempts: int = 5
    strict_executor_check: bool = False

    # Domain event publishing
    domain_event_poll_interval_seconds: float = 1.0
    domain_event_batch_size: int = 10
    webhook_timeout_seconds: float = 10.0

    # Communications. Blocks all external communications when set
    block_external_comms: bool = False
    communication_api_url: str = "http://localhost:8025"
    communication_api_key: Optional[str] = None
    communication_default_source_email: str = "noreply@boxoffice.local"
    communication_default_source_phone: str = "+10000000000"

    # Blockchain
    blockchain_api_url: str = "http://localhost:8545"
    blockchain_api_key: Optional[str] = None

    @model_validator(mode="after")
    def _lease_outlives_execution(self) -> "Settings":
        # A timed-out action must still hold its lease at the moment of timeout
        if self.domain_action_lease_seconds <= self.domain_action_execution_timeout_seconds:
            raise ValueError(
                "domain_action_lease_seconds must be greater than "
                "domain_action_execution_timeout_seconds"
            )
        return self

    @property
    def database_pool_capacity(self) -> int:
        return self.database_pool_size + self.database_max_overflow

    @property
    def dispatch_batch_limit(self) -> int:
        """Actions leased per dispatch pass.

        Half the pool by default. Each leased action holds a connection
        until its outcome is recorded, the rest serve polling and requests.
        """
        if self.domain_action_batch_size:
            return max(1, self.domain_action_batch_size)
        return max(1, self.database_pool_capacity // 2)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
