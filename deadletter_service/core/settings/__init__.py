"""Modular Pydantic Settings v2 configuration.

Settings are split by domain (app/dlq/rabbit/sqs/logging), frozen after
validation and loaded through LRU-cached getters:

    from deadletter_service.core.settings import get_dlq_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .app import AppSettings
from .dead_letter import BackendKind, DeadLetterSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_dlq_settings,
    get_logging_settings,
    get_rabbit_settings,
    get_sqs_settings,
)
from .logs import LoggingSettings
from .rabbit import RabbitSettings
from .sqs import SQSSettings

__all__ = [
    "AppSettings",
    "BackendKind",
    "DeadLetterSettings",
    "LoggingSettings",
    "RabbitSettings",
    "SQSSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_dlq_settings",
    "get_logging_settings",
    "get_rabbit_settings",
    "get_sqs_settings",
]
