"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from deadletter_service.core.settings.loader import get_dlq_settings

    settings = get_dlq_settings()  # First call: loads and validates
    settings = get_dlq_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_all_caches()
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .dead_letter import DeadLetterSettings
from .logs import LoggingSettings
from .rabbit import RabbitSettings
from .sqs import SQSSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_dlq_settings() -> DeadLetterSettings:
    """Get cached dead-letter settings.

    Returns:
        Validated and frozen DeadLetterSettings instance.
    """
    return DeadLetterSettings()


@lru_cache(maxsize=1)
def get_rabbit_settings() -> RabbitSettings:
    """Get cached RabbitMQ settings.

    Returns:
        Validated and frozen RabbitSettings instance.
    """
    return RabbitSettings()


@lru_cache(maxsize=1)
def get_sqs_settings() -> SQSSettings:
    """Get cached SQS settings.

    Returns:
        Validated and frozen SQSSettings instance.
    """
    return SQSSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear all settings caches (useful for testing).

    In production, prefer process restarts over cache clearing.
    """
    get_app_settings.cache_clear()
    get_dlq_settings.cache_clear()
    get_rabbit_settings.cache_clear()
    get_sqs_settings.cache_clear()
    get_logging_settings.cache_clear()
