"""Application identity settings."""

from __future__ import annotations

import socket
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_app_yaml_source

Environment = Literal["testing", "test", "local", "development", "staging", "production"]


class AppSettings(BaseSettings):
    """Application identity used for envelopes, logs and metrics.

    Environment variables use APP_ prefix.
    Example: APP_ENVIRONMENT=production, APP_VERSION=2.1.0
    """

    service_name: str = Field(
        default="dead-letter-service",
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$",
        description="Service name for logging/tracing (lowercase, hyphens allowed)",
    )
    version: str = Field(
        default="1.0.0",
        min_length=1,
        max_length=50,
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9]+)?$",
        description="Application version (semver format)",
    )
    environment: Environment = Field(
        default="development",
        description="Deployment environment; also selects the dead-letter backend",
    )
    instance_id: str | None = Field(
        default=None,
        max_length=255,
        description="Service instance identifier (defaults to the host name)",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
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
            create_app_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def service_instance(self) -> str:
        """Instance identifier recorded on dead-letter envelopes."""
        return self.instance_id or f"{self.service_name}@{socket.gethostname()}"
