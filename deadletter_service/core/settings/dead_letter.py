"""Dead-letter and retry settings.

The design follows the RabbitSettings pattern with:
- Pydantic BaseSettings for environment variable support
- Field constraints plus cross-field validation
- Frozen models for thread safety

Two presets mirror the deployment profiles the service ships with:

    ==========================  ===========  ==========
    Setting                     Development  Production
    ==========================  ===========  ==========
    max_retry_attempts          3            5
    initial_retry_delay         2s           5s
    backoff_multiplier          2.0          2.0
    max_retry_delay             60s          300s
    dead_letter_ttl             24h          72h
    admin notifications         off          on
    ==========================  ===========  ==========
"""

from __future__ import annotations

import json
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .yaml_sources import create_dlq_yaml_source

if TYPE_CHECKING:
    from deadletter_service.infra.messaging.dlq.policy import RetryPolicy


class BackendKind(StrEnum):
    """Dead-letter backend variants.

    - NOOP: logs intended actions only (tests)
    - RABBITMQ: self-hosted broker via aio-pika (local/development)
    - SQS: managed cloud broker via aioboto3 (staging/production)
    """

    NOOP = "noop"
    RABBITMQ = "rabbitmq"
    SQS = "sqs"


class DeadLetterSettings(BaseSettings):
    """Configuration for retry decisions and the dead-letter store.

    Environment variables use DLQ_ prefix (e.g., DLQ_MAX_RETRY_ATTEMPTS=5).

    Example:
        settings = DeadLetterSettings(
            max_retry_attempts=5,
            initial_retry_delay_seconds=5,
            max_retry_delay_seconds=300,
            source_queues=["users-events", "documents-events"],
        )
        policy = settings.retry_policy()
    """

    # ─────────────────────────────────────────────────────
    # Enable/disable toggle and backend override
    # ─────────────────────────────────────────────────────
    enabled: bool = Field(
        default=True,
        description="Enable dead-letter routing.",
    )
    backend: BackendKind | None = Field(
        default=None,
        description="Force a backend; None derives it from APP_ENVIRONMENT.",
    )

    # ─────────────────────────────────────────────────────
    # Retry policy
    # ─────────────────────────────────────────────────────
    max_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Attempts after which a message is dead-lettered.",
    )
    initial_retry_delay_seconds: float = Field(
        default=2.0,
        ge=0.0,
        le=3600.0,
        description="Delay before the first retry.",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Multiplier applied to the delay on each further attempt.",
    )
    max_retry_delay_seconds: float = Field(
        default=300.0,
        ge=0.0,
        le=86400.0,
        description="Ceiling for any single retry delay.",
    )

    # ─────────────────────────────────────────────────────
    # Dead-letter store
    # ─────────────────────────────────────────────────────
    dead_letter_ttl_hours: int = Field(
        default=24,
        ge=1,
        le=24 * 14,
        description="Retention of dead-letter messages in hours.",
    )
    dead_letter_queue_prefix: str = Field(
        default="dlq",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_.-]+$",
        description="RabbitMQ dead-letter queue prefix ({prefix}.{source_queue}).",
    )
    dead_letter_queue_suffix: str = Field(
        default="-dlq",
        min_length=1,
        max_length=20,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="SQS dead-letter queue suffix ({source_queue}{suffix}).",
    )
    dead_letter_exchange: str = Field(
        default="dlx",
        min_length=1,
        max_length=100,
        pattern=r"^[a-zA-Z0-9_.-]+$",
        description="RabbitMQ topic exchange receiving dead-letter messages.",
    )
    dead_letter_routing_key: str = Field(
        default="deadletter",
        min_length=1,
        max_length=100,
        description="Routing key prefix ({routing_key}.{source_queue}).",
    )
    enable_persistence: bool = Field(
        default=True,
        description="Publish dead-letter messages as persistent.",
    )

    # ─────────────────────────────────────────────────────
    # Known queues (statistics)
    # ─────────────────────────────────────────────────────
    source_queues: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: [
            "users-events",
            "providers-events",
            "documents-events",
            "catalogs-events",
            "locations-events",
        ],
        description="Source queues whose dead-letter queues are reported in statistics.",
    )
    default_queue: str = Field(
        default="default",
        min_length=1,
        max_length=100,
        description="Fallback source queue, always included in statistics.",
    )
    statistics_sample_size: int = Field(
        default=0,
        ge=0,
        le=500,
        description="Envelopes sampled per queue for per-exception statistics (0 disables).",
    )
    fetch_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Timeout for fetching a single dead-letter message.",
    )

    # ─────────────────────────────────────────────────────
    # Notifications and logging
    # ─────────────────────────────────────────────────────
    enable_admin_notifications: bool = Field(
        default=False,
        description="Notify administrators when a message is dead-lettered.",
    )
    admin_webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving admin notifications (LOG channel always on).",
    )
    notification_rate_limit_seconds: int = Field(
        default=300,
        ge=0,
        le=86400,
        description="Minimum interval between notifications for the same queue and failure.",
    )
    enable_detailed_logging: bool = Field(
        default=True,
        description="Log stack traces and payload sizes when dead-lettering.",
    )

    model_config = SettingsConfigDict(
        env_prefix="DLQ_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_dlq_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    # ─────────────────────────────────────────────────────
    # Validation
    # ─────────────────────────────────────────────────────
    @field_validator("source_queues", mode="before")
    @classmethod
    def _split_queues(cls, value: Any) -> Any:
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(value, str):
            if value.lstrip().startswith("["):
                return json.loads(value)
            return [q.strip() for q in value.split(",") if q.strip()]
        return value

    @model_validator(mode="after")
    def _validate_delays(self) -> DeadLetterSettings:
        """Ensure max_retry_delay >= initial_retry_delay."""
        if self.max_retry_delay_seconds < self.initial_retry_delay_seconds:
            msg = (
                f"max_retry_delay_seconds ({self.max_retry_delay_seconds}) must be >= "
                f"initial_retry_delay_seconds ({self.initial_retry_delay_seconds})"
            )
            raise ValueError(msg)
        return self

    # ─────────────────────────────────────────────────────
    # Presets
    # ─────────────────────────────────────────────────────
    @classmethod
    def for_development(cls, **overrides: Any) -> DeadLetterSettings:
        """Short retries, one day of retention, no notifications."""
        values: dict[str, Any] = {
            "max_retry_attempts": 3,
            "initial_retry_delay_seconds": 2.0,
            "backoff_multiplier": 2.0,
            "max_retry_delay_seconds": 60.0,
            "dead_letter_ttl_hours": 24,
            "enable_admin_notifications": False,
            "enable_detailed_logging": True,
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def for_production(cls, **overrides: Any) -> DeadLetterSettings:
        """Longer retries, three days of retention, notifications on."""
        values: dict[str, Any] = {
            "max_retry_attempts": 5,
            "initial_retry_delay_seconds": 5.0,
            "backoff_multiplier": 2.0,
            "max_retry_delay_seconds": 300.0,
            "dead_letter_ttl_hours": 72,
            "enable_admin_notifications": True,
            "enable_detailed_logging": False,
        }
        values.update(overrides)
        return cls(**values)

    # ─────────────────────────────────────────────────────
    # Helper methods
    # ─────────────────────────────────────────────────────
    @property
    def dead_letter_ttl(self) -> timedelta:
        """Retention of dead-letter messages."""
        return timedelta(hours=self.dead_letter_ttl_hours)

    @property
    def known_queues(self) -> list[str]:
        """Configured source queues plus the default queue, de-duplicated in order."""
        return list(dict.fromkeys([*self.source_queues, self.default_queue]))

    def retry_policy(self) -> RetryPolicy:
        """Build the RetryPolicy described by these settings."""
        from deadletter_service.infra.messaging.dlq.policy import RetryPolicy

        return RetryPolicy(
            max_retry_attempts=self.max_retry_attempts,
            initial_retry_delay=timedelta(seconds=self.initial_retry_delay_seconds),
            backoff_multiplier=self.backoff_multiplier,
            max_retry_delay=timedelta(seconds=self.max_retry_delay_seconds),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for logging/debugging."""
        return {
            "enabled": self.enabled,
            "backend": self.backend.value if self.backend else None,
            "max_retry_attempts": self.max_retry_attempts,
            "initial_retry_delay_seconds": self.initial_retry_delay_seconds,
            "backoff_multiplier": self.backoff_multiplier,
            "max_retry_delay_seconds": self.max_retry_delay_seconds,
            "dead_letter_ttl_hours": self.dead_letter_ttl_hours,
            "known_queues": self.known_queues,
            "enable_admin_notifications": self.enable_admin_notifications,
            "enable_persistence": self.enable_persistence,
        }
