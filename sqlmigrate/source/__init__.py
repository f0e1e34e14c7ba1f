"""
Migration sources.

Key exports:
    - FilesystemSource: Versioned migration files in a directory
    - MemorySource: Migrations defined in code
    - parse_file_name / parse_file_content: File convention helpers
"""

from .filesystem import (
    DOWN_MARKER,
    SNAPSHOT_MARKER,
    UP_MARKER,
    FileMigration,
    FilesystemSource,
    parse_file_content,
    parse_file_name,
    render_template,
)
from .memory import MemoryMigration, MemorySource

__all__ = [
    "DOWN_MARKER",
    "SNAPSHOT_MARKER",
    "UP_MARKER",
    "FileMigration",
    "FilesystemSource",
    "MemoryMigration",
    "MemorySource",
    "parse_file_content",
    "parse_file_name",
    "render_template",
]
