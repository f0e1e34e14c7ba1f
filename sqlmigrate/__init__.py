"""
sqlmigrate: plan and apply versioned SQL migrations.

Computes the ordered actions needed to move a database from its applied
versions to a target version, in either direction, and applies them one
transaction per migration.

Example:
    >>> from sqlmigrate import FilesystemSource, Migrator, open_sqlite_store
    >>> with open_sqlite_store("app.db") as store:
    ...     migrator = Migrator(FilesystemSource("migrations"), store)
    ...     migrator.migrate(migrator.latest_version())
"""

from sqlmigrate.migrator import Action, CancelToken, Direction, Migrator, Plan, build_plan
from sqlmigrate.source import FilesystemSource, MemoryMigration, MemorySource
from sqlmigrate.storage import SQLiteStore, open_sqlite_store

__all__ = [
    "Action",
    "CancelToken",
    "Direction",
    "FilesystemSource",
    "MemoryMigration",
    "MemorySource",
    "Migrator",
    "Plan",
    "SQLiteStore",
    "build_plan",
    "open_sqlite_store",
]
