"""
Configuration loading and validation.

Key exports:
    - MigratorConfig: Pydantic model for sqlmigrate.yaml
    - load_config / resolve_config: YAML loading with CLI overrides
"""

from .loader import load_config, resolve_config
from .schema import MigratorConfig

__all__ = ["MigratorConfig", "load_config", "resolve_config"]
