"""Configuration management for HookRelay."""

import logging
import socket
import uuid
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _default_worker_id() -> str:
    """Build a worker identity unique to this process.

    Returns:
        "<hostname>:<8 hex>" identifying the claiming worker in RetryJob rows.
    """
    return f"{socket.gethostname()}:{uuid.uuid4().hex[:8]}"


class RetryDefaults(BaseModel):
    """Defaults applied to new subscriptions that omit a retry policy.

    Mirrors the admin form defaults: three attempts, a one-minute base
    delay and a thirty-second request timeout.

    Attributes:
        max_attempts: Total attempts per delivery, including the first.
        base_delay_seconds: Delay before the first retry.
        timeout_seconds: Hard bound on a single HTTP request.
        max_delay_seconds: Ceiling for exponential backoff.
    """

    max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts per delivery")
    base_delay_seconds: float = Field(
        default=60.0, gt=0, le=86400, description="Delay before the first retry"
    )
    timeout_seconds: float = Field(
        default=30.0, gt=0, le=300, description="Per-request timeout in seconds"
    )
    max_delay_seconds: float = Field(
        default=3600.0, gt=0, le=86400, description="Ceiling for exponential backoff"
    )

    @model_validator(mode="after")
    def _check_ceiling(self) -> "RetryDefaults":
        """The ceiling must not be lower than the base delay."""
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError(
                f"max_delay_seconds ({self.max_delay_seconds}) must be >= "
                f"base_delay_seconds ({self.base_delay_seconds})"
            )
        return self


class Settings(BaseSettings):
    """HookRelay configuration loaded from environment variables.

    All settings can be overridden via environment variables with
    the HOOKRELAY_ prefix. For example:
        HOOKRELAY_QDRANT_URL=http://localhost:6333
        HOOKRELAY_RETRY_POLL_INTERVAL_SECONDS=5

    Security Notes:
        - In production (HOOKRELAY_ENV=production), the admin API key is required
        - Setting HOOKRELAY_QDRANT_LOCATION=":memory:" keeps everything in-process
    """

    # Environment
    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Environment: development, production, or test",
    )

    # Storage
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant connection URL",
    )
    qdrant_api_key: str | None = Field(
        default=None,
        description="Qdrant API key (for cloud)",
    )
    qdrant_location: str | None = Field(
        default=None,
        description="Local Qdrant location (':memory:' or a path). Overrides qdrant_url.",
    )
    collection_prefix: str = Field(
        default="hookrelay",
        description="Prefix for Qdrant collection names",
    )

    # Outbound requests
    user_agent: str = Field(
        default="HookRelay-Webhook/1.0",
        description="User-Agent sent with every delivery",
    )
    event_source: str = Field(
        default="hookrelay",
        description="Value of the X-Event-Source header",
    )
    response_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=65536,
        description="Response bodies are truncated to this length before storage",
    )
    signature_tolerance_seconds: int = Field(
        default=300,
        ge=1,
        description="Freshness window receivers should enforce on X-Timestamp",
    )

    # Retry
    retry_defaults: RetryDefaults = Field(
        default_factory=RetryDefaults,
        description="Retry policy applied when a subscription omits one",
    )
    retry_poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        le=3600,
        description="How often the retry worker looks for due jobs",
    )
    retry_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum due jobs a worker picks up per poll",
    )
    claim_lease_seconds: float = Field(
        default=120.0,
        gt=0,
        description=(
            "Minimum claim lease. The effective lease is never shorter than the "
            "subscription timeout plus a margin, so a running attempt is not re-claimed."
        ),
    )
    retry_after_max_seconds: int = Field(
        default=86400,
        ge=0,
        description="Upper bound applied to a receiver's Retry-After hint",
    )
    worker_id: str = Field(
        default_factory=_default_worker_id,
        description="Identity recorded on claimed retry jobs",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format",
    )

    # Admin API
    admin_api_key: str | None = Field(
        default=None,
        description="Key required in X-API-Key on the admin API. REQUIRED in production.",
    )
    cors_enabled: bool = Field(
        default=False,
        description="Enable CORS middleware on the admin API",
    )
    cors_allow_origins: list[str] = Field(
        default_factory=list,
        description="Allowed origins for CORS requests",
    )

    model_config = {
        "env_prefix": "HOOKRELAY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
    }

    @model_validator(mode="after")
    def validate_security_settings(self) -> "Settings":
        """Fail fast when production runs without an admin API key."""
        if self.env == "production" and not self.admin_api_key:
            raise ValueError(
                "HOOKRELAY_ADMIN_API_KEY must be set in production. "
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )
        if self.env != "production" and not self.admin_api_key:
            logger.debug("Admin API key not set; admin API is unauthenticated")
        return self


# Global settings instance
settings = Settings()
