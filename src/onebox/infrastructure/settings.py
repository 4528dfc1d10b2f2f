"""Application settings using Pydantic Settings for configuration management."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "OneBox"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Milvus Vector Database (email search index)
    milvus_host: str = "localhost"
    milvus_port: int = 19530
    milvus_collection_name: str = "emails"

    # PostgreSQL (account registry)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: SecretStr = Field(default=SecretStr("postgres"))
    postgres_db: str = "onebox"

    # LLM Configuration
    llm_provider: Literal["groq", "openai", "local", "rules"] = "groq"
    groq_api_key: SecretStr | None = None
    groq_model_name: str = "llama-3.3-70b-versatile"
    openai_api_key: SecretStr | None = None
    openai_model_name: str = "gpt-4o-mini"

    # Local vLLM (for local inference)
    vllm_base_url: str = "http://localhost:8000/v1"
    vllm_model_name: str = "gpt-oss-20b"

    # Enrichment
    enrichment_timeout_seconds: float = 30.0
    enrichment_llm_concurrency: int = 5
    enrichment_llm_batch_delay_seconds: float = 1.0
    enrichment_rules_concurrency: int = 10
    enrichment_rules_batch_delay_seconds: float = 0.1
    product_context: str = (
        "I am applying for a job position. If the lead is interested, share the meeting "
        "booking link: https://cal.com/example"
    )

    # Embeddings
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = 384

    # Notifications
    slack_bot_token: SecretStr | None = None
    slack_channel: str = "#general"
    webhook_url: str | None = None
    notification_timeout_seconds: float = 10.0

    # IMAP
    imap_folder: str = "INBOX"
    imap_read_timeout_seconds: float = 60.0

    # Sync engine
    sync_chunk_size: int = 10
    sync_retention_days: int = 730
    sync_poll_interval_seconds: float = 60.0
    sync_idle_refresh_seconds: float = 300.0
    sync_reconnect_backoff_seconds: float = 120.0
    sync_max_connect_attempts: int = 5
    sync_connect_timeout_seconds: float = 60.0
    sync_fetch_timeout_seconds: float = 120.0
    sync_change_wait_seconds: float = 30.0
    sync_stop_timeout_seconds: float = 10.0

    @computed_field
    @property
    def postgres_dsn(self) -> str:
        """Construct PostgreSQL connection string."""
        password = self.postgres_password.get_secret_value()
        return f"postgresql://{self.postgres_user}:{password}@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"

    @computed_field
    @property
    def milvus_uri(self) -> str:
        """Construct Milvus connection URI."""
        return f"http://{self.milvus_host}:{self.milvus_port}"


@dataclass(frozen=True)
class SyncPolicy:
    """Timing and sizing knobs for the sync engine."""

    chunk_size: int = 10
    retention_days: int = 730
    poll_interval: float = 60.0
    idle_refresh: float = 300.0
    reconnect_backoff: float = 120.0
    max_connect_attempts: int = 5
    connect_timeout: float = 60.0
    fetch_timeout: float = 120.0
    change_wait: float = 30.0
    stop_timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncPolicy":
        return cls(
            chunk_size=settings.sync_chunk_size,
            retention_days=settings.sync_retention_days,
            poll_interval=settings.sync_poll_interval_seconds,
            idle_refresh=settings.sync_idle_refresh_seconds,
            reconnect_backoff=settings.sync_reconnect_backoff_seconds,
            max_connect_attempts=settings.sync_max_connect_attempts,
            connect_timeout=settings.sync_connect_timeout_seconds,
            fetch_timeout=settings.sync_fetch_timeout_seconds,
            change_wait=settings.sync_change_wait_seconds,
            stop_timeout=settings.sync_stop_timeout_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
