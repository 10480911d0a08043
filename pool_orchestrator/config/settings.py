"""
Application configuration using Pydantic Settings.
Loads configuration from environment variables with validation.
"""
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings with environment variable loading."""

    model_config = SettingsConfigDict(
        env_prefix="POOL_ORCHESTRATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Elastic Pool Orchestrator", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="auto", description="Log renderer (auto/json/console)")

    # Server
    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, ge=1, le=65535, description="API server port")

    # Provider binding
    resource_backend: str = Field(
        default="memory", description="Resource store backend (memory/http)"
    )
    provider_base_url: Optional[str] = Field(
        default=None, description="Base URL of the HTTP control plane (http backend only)"
    )
    provider_token: Optional[SecretStr] = Field(
        default=None, description="Bearer token for the HTTP control plane"
    )
    provider_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-request timeout for provider calls"
    )
    provider_max_retries: int = Field(
        default=3, ge=0, le=10, description="Transport-level retries for provider calls"
    )

    # Migration
    migration_poll_interval_seconds: float = Field(
        default=30.0, gt=0, description="Seconds between migration status checks"
    )
    migration_timeout_seconds: float = Field(
        default=1800.0, gt=0, description="Default migration timeout in seconds"
    )

    # Query channel / optimization
    query_timeout_seconds: float = Field(
        default=300.0, gt=0, description="Timeout for a single maintenance or diagnostic statement"
    )
    fragmentation_page_count_floor: int = Field(
        default=1000, ge=0, description="Indexes at or below this page count are ignored"
    )
    rebuild_online: bool = Field(
        default=False, description="Issue index rebuilds with ONLINE = ON"
    )
    top_queries_limit: int = Field(
        default=10, ge=1, le=100, description="Number of expensive queries to report"
    )

    # Provisioning
    owner_tag: str = Field(default="dba-team", description="Owner tag applied to created resources")
    public_ip_lookup_url: str = Field(
        default="https://api.ipify.org", description="Service used to resolve the caller's public address"
    )

    # Notifications
    notification_channel: Optional[str] = Field(
        default=None, description="Notification channel (e.g. webhook URL) for run summaries"
    )

    # Reports
    report_dir: str = Field(default="reports", description="Directory for generated reports")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["auto", "json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"Log format must be one of {valid_formats}")
        return v.lower()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Environment must be one of {valid_envs}")
        return v.lower()

    @field_validator("resource_backend")
    @classmethod
    def validate_resource_backend(cls, v: str) -> str:
        """Validate resource backend."""
        valid_backends = ["memory", "http"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Resource backend must be one of {valid_backends}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
