"""YAML config source with conf.d directory support.

Extends pydantic-settings YamlConfigSettingsSource so each settings domain can
be configured from a base file plus a directory of overrides:

- conf/dlq.yaml        (base configuration)
- conf/dlq.d/*.yaml    (override files, loaded alphabetically)

The base directory defaults to ``conf`` and can be moved per domain through a
``<DOMAIN>_CONFIG_DIR`` environment variable.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings.sources.providers.yaml import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source that also reads a conf.d directory.

    Example:
        class DeadLetterSettings(BaseSettings):
            @classmethod
            def settings_customise_sources(cls, settings_cls, ...):
                return (
                    init_settings,
                    create_dlq_yaml_source(settings_cls),
                    env_settings,
                    dotenv_settings,
                    file_secret_settings,
                )
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str,
        confd_dir: str | None,
        config_dir_env: str,
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        config_base = Path(os.getenv(config_dir_env, base_dir))

        yaml_files: list[Path] = []
        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files if yaml_files else None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def _domain_source(
    settings_cls: type[BaseSettings],
    domain: str,
) -> ConfDYamlConfigSettingsSource:
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file=f"{domain}.yaml",
        confd_dir=f"{domain}.d",
        config_dir_env=f"{domain.upper()}_CONFIG_DIR",
    )


# ============================================================================
# Factory functions for each settings domain
# ============================================================================


def create_app_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for AppSettings (conf/app.yaml, conf/app.d/)."""
    return _domain_source(settings_cls, "app")


def create_dlq_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for DeadLetterSettings (conf/dlq.yaml, conf/dlq.d/)."""
    return _domain_source(settings_cls, "dlq")


def create_rabbit_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for RabbitSettings (conf/rabbit.yaml, conf/rabbit.d/)."""
    return _domain_source(settings_cls, "rabbit")


def create_sqs_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for SQSSettings (conf/sqs.yaml, conf/sqs.d/)."""
    return _domain_source(settings_cls, "sqs")


def create_logging_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for LoggingSettings (conf/logging.yaml, conf/logging.d/)."""
    return _domain_source(settings_cls, "logging")
