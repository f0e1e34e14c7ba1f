"""
Configuration loader for sqlmigrate.

Loads sqlmigrate.yaml, validates it with the MigratorConfig Pydantic model and
merges command-line overrides.

Functions:
    load_config: Load and validate a YAML configuration file
    resolve_config: Combine an optional file with command-line overrides
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from sqlmigrate.exceptions import ConfigFileNotFoundError, ConfigValidationError

from .schema import MigratorConfig


def load_config(config_path: str | Path) -> MigratorConfig:
    """
    Load and validate a sqlmigrate.yaml file.

    Args:
        config_path: Path to the YAML file (relative or absolute)

    Returns:
        MigratorConfig: Validated configuration

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist
        ConfigValidationError: If the YAML is invalid or validation fails

    Example:
        >>> config = load_config("sqlmigrate.yaml")
        >>> config.table_name
        'schema_migrations'
    """
    return _validate(_read_yaml(Path(config_path)), Path(config_path))


def resolve_config(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> MigratorConfig:
    """
    Build the effective configuration from a file and overrides.

    Overrides with a None value are ignored, so unset CLI flags never
    replace values from the file. Without a file, overrides alone must
    provide every required field.

    Args:
        config_path: Optional path to a YAML file
        overrides: Field values taking precedence over the file

    Raises:
        ConfigFileNotFoundError: If config_path is given but missing
        ConfigValidationError: If the merged configuration is invalid
    """
    raw: dict[str, Any] = {}
    source = Path(config_path) if config_path is not None else None
    if source is not None:
        raw = _read_yaml(source)

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    return _validate(raw, source)


def _read_yaml(config_path: Path) -> dict[str, Any]:
    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")
    if not isinstance(raw_config, dict):
        raise ConfigValidationError(
            f"Configuration file must contain a mapping: {config_path}"
        )
    return raw_config


def _validate(raw: dict[str, Any], source: Path | None) -> MigratorConfig:
    try:
        return MigratorConfig.model_validate(raw)
    except ValidationError as e:
        # Format validation errors in a user-friendly way
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        where = f" in {source}" if source is not None else ""
        raise ConfigValidationError(
            f"Configuration validation failed{where}:\n" + "\n".join(error_messages)
        ) from e
