"""Configuration loader for pgsandbox."""

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from pgsandbox.errors import ConfigurationError
from pgsandbox.models import ServiceSettings

MIGRATION_FORMATS = ("sql", "gomigrate", "alembic")


class ConfigLoader:
    """Loads YAML service configuration files."""

    SETTINGS_KEYS = {item.name for item in fields(ServiceSettings)}
    SUPPORTED_KEYS = SETTINGS_KEYS | {
        "name",
        "module",
        "workspace",
        "postgres_user",
        "postgres_password",
        "verbose",
        "log_file",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigurationError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigurationError("Config file must contain a YAML mapping at the root.")

        normalized = {str(key).replace("-", "_"): value for key, value in parsed.items()}
        unknown = sorted(set(normalized.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise ConfigurationError(f"Unknown configuration keys: {unknown_list}")

        return normalized

    def build_settings(self, values: Dict[str, Any]) -> ServiceSettings:
        """Builds ``ServiceSettings`` from a loaded mapping, ignoring non-setting keys."""
        settings = ServiceSettings(
            **{key: value for key, value in values.items() if key in self.SETTINGS_KEYS}
        )
        if settings.migration_format not in MIGRATION_FORMATS:
            raise ConfigurationError(
                f"Unsupported migration format '{settings.migration_format}'. "
                f"Use one of: {', '.join(MIGRATION_FORMATS)}."
            )
        if not settings.database_name:
            raise ConfigurationError("database_name must not be empty.")
        if settings.ready_retries < 1:
            raise ConfigurationError("ready_retries must be at least 1.")
        if settings.migration_version_dir is not None and not str(settings.migration_version_dir).strip():
            raise ConfigurationError("migration_version_dir must not be empty when set.")
        return settings
