from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="ALLOPS_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    HOST: str = Field(default="0.0.0.0", description="Bind host")
    PORT: int = Field(default=5000, description="Bind port")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///allops_pm_dev.db")
    SCHEMA_MODE: str = Field(
        default="create_all",
        description="create_all: auto-create tables (dev), migrations: use Alembic only (prod)",
    )

    # External workflow (n8n webhook) defaults; persisted app_settings override these
    WEBHOOK_MODE: str = Field(default="PRD", description="TEST|PRD")
    WEBHOOK_TEST_URL: str = Field(default="", description="Default test webhook URL")
    WEBHOOK_PRD_URL: str = Field(default="", description="Default production webhook URL")
    WORKFLOW_TIMEOUT_SECONDS: float = Field(
        default=30.0, description="Timeout for the diagram dispatch call"
    )
    WORKFLOW_HEALTH_TIMEOUT_SECONDS: float = Field(
        default=10.0, description="Timeout for the webhook health check"
    )

    # Diagram ingestion
    DIAGRAM_MAX_FILE_MB: float = Field(default=5.0, description="Max diagram upload size (MB)")
    DIAGRAM_POLL_TIMEOUT_SECONDS: float = Field(
        default=20.0, description="Total time to wait for the workflow to record a share link"
    )
    DIAGRAM_POLL_INTERVAL_SECONDS: float = Field(default=1.5)
    DIAGRAM_POLL_MIN_DIFF_MS: int = Field(
        default=250,
        description="Minimum created_at advance that counts as a new share link",
    )

    # Diagram proxy
    DIAGRAM_PROXY_TIMEOUT_SECONDS: float = Field(default=15.0)
    DIAGRAM_PROXY_MAX_REDIRECTS: int = Field(default=5)

    HTTP_USER_AGENT: str = Field(default="AllOps PM Importer/1.0")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
