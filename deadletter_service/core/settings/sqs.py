"""Amazon SQS settings for the managed-cloud dead-letter backend.

Supports:
- AWS SQS (default, no endpoint needed)
- LocalStack / ElasticMQ (set endpoint to the emulator URL)
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_sqs_yaml_source


class SQSSettings(BaseSettings):
    """SQS client settings.

    Environment variables use SQS_ prefix.
    Example: SQS_REGION=eu-west-1, SQS_ENDPOINT=http://localhost:4566
    """

    # ──────────────────────────────────────────────────────────────
    # Connection
    # ──────────────────────────────────────────────────────────────

    endpoint: str | None = Field(
        default=None,
        description="SQS-compatible endpoint URL (LocalStack/ElasticMQ). None for AWS.",
    )

    region: str = Field(
        default="us-east-1",
        description="AWS region used for the SQS client and request signing",
    )

    access_key: SecretStr | None = Field(
        default=None,
        description="AWS access key ID (omit for IAM role authentication)",
    )

    secret_key: SecretStr | None = Field(
        default=None,
        description="AWS secret access key",
    )

    # ──────────────────────────────────────────────────────────────
    # Receive behaviour
    # ──────────────────────────────────────────────────────────────

    wait_time_seconds: int = Field(
        default=1,
        ge=0,
        le=20,
        description="Long-poll wait for receive_message (0 disables long polling)",
    )

    visibility_timeout_seconds: int = Field(
        default=30,
        ge=0,
        le=43200,
        description="How long a received dead-letter message stays hidden while inspected",
    )

    @model_validator(mode="after")
    def _validate_credential_consistency(self) -> SQSSettings:
        """Both credentials are provided together, or neither for IAM roles."""
        if (self.access_key is None) != (self.secret_key is None):
            raise ValueError(
                "Both access_key and secret_key must be provided together when using "
                "static credentials. Provide both or neither (for IAM role authentication)."
            )
        return self

    def get_boto3_config(self) -> dict[str, Any]:
        """Get keyword arguments for ``aioboto3.Session().client("sqs", ...)``."""
        config: dict[str, Any] = {"region_name": self.region}

        if self.access_key is not None and self.secret_key is not None:
            config["aws_access_key_id"] = self.access_key.get_secret_value()
            config["aws_secret_access_key"] = self.secret_key.get_secret_value()

        if self.endpoint:
            config["endpoint_url"] = self.endpoint

        return config

    model_config = SettingsConfigDict(
        env_prefix="SQS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
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
            create_sqs_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )
