"""
Configuration schema for sqlmigrate.

Defines the Pydantic model that validates sqlmigrate.yaml:

    database: ./data/app.db
    migrations_dir: ./migrations
    extension: sql
    table_name: schema_migrations
    transactional: true
    busy_timeout_seconds: 5
    timeout_seconds: 300
"""

import re

from pydantic import BaseModel, field_validator

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MigratorConfig(BaseModel):
    """
    Migrator configuration from sqlmigrate.yaml.

    Attributes:
        database: Path to the SQLite database file
        migrations_dir: Directory holding <version>[_<label>].<extension> files
        extension: Migration file extension, without the dot
        table_name: Bookkeeping table recording applied versions
        transactional: Run each migration in a transaction. Disable only for
            statements SQLite refuses inside a transaction.
        busy_timeout_seconds: How long to wait for a locked database
        timeout_seconds: Default deadline for `migrate`, None for no deadline
    """

    database: str
    migrations_dir: str
    extension: str = "sql"
    table_name: str = "schema_migrations"
    transactional: bool = True
    busy_timeout_seconds: float = 5.0
    timeout_seconds: float | None = None

    @field_validator("database", "migrations_dir")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Validate paths are non-empty."""
        if not v or v.isspace():
            raise ValueError("path cannot be empty")
        return v

    @field_validator("extension")
    @classmethod
    def validate_extension(cls, v: str) -> str:
        """Normalize '.sql' to 'sql' and reject empty or dotted extensions."""
        v = v.lstrip(".")
        if not v or "." in v:
            raise ValueError(f"extension must be a single suffix like 'sql', got: {v!r}")
        return v

    @field_validator("table_name")
    @classmethod
    def validate_table_name(cls, v: str) -> str:
        """Validate table_name is a plain SQL identifier."""
        if not _IDENTIFIER_PATTERN.match(v):
            raise ValueError(f"table_name must be a plain SQL identifier, got: {v!r}")
        return v

    @field_validator("busy_timeout_seconds")
    @classmethod
    def validate_busy_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"busy_timeout_seconds must be positive, got: {v}")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError(f"timeout_seconds must be positive, got: {v}")
        return v
