#!/usr/bin/env python3
"""
Run sqlmigrate from application code.

This script demonstrates how to:
- Declare migrations in code with MemorySource
- Inspect a plan before applying it
- Apply it with a deadline
- Handle a failed migration

Usage:
    python examples/code-examples/embedded_migrations.py [database]
"""

import sys

from sqlmigrate import CancelToken, MemoryMigration, MemorySource, Migrator, open_sqlite_store
from sqlmigrate.exceptions import CatalogError, MigrationApplyError

MIGRATIONS = MemorySource(
    [
        MemoryMigration(
            1,
            name="create_settings",
            up="CREATE TABLE settings (key TEXT PRIMARY KEY, value TEXT NOT NULL);",
            down="DROP TABLE settings;",
        ),
        MemoryMigration(
            2,
            name="default_theme",
            up="INSERT INTO settings (key, value) VALUES ('theme', 'light');",
            down="DELETE FROM settings WHERE key = 'theme';",
        ),
    ]
)


def main(db_path: str = "./data/app.db") -> int:
    with open_sqlite_store(db_path) as store:
        migrator = Migrator(MIGRATIONS, store)

        try:
            plan = migrator.plan(migrator.latest_version())
        except CatalogError as e:
            print(f"Cannot plan migrations: {e}", file=sys.stderr)
            return 2

        if not plan:
            print(f"Up to date at version {migrator.current_version()}")
            return 0

        for action in plan:
            print(f"{action.version:>4}  {action.direction.value}")

        try:
            applied = migrator.apply(plan, cancel=CancelToken(timeout=60))
        except MigrationApplyError as e:
            print(f"{e} ({len(e.completed)} migration(s) committed before it)", file=sys.stderr)
            return 3

        print(f"Applied {len(applied)} migration(s); now at version {migrator.current_version()}")
        return 0


if __name__ == "__main__":
    sys.exit(main(*sys.argv[1:2]))
