"""
In-memory migration source.

Useful for embedding migrations in application code and for tests, where
migration text is known up front and nothing needs to be read lazily.

Example:
    >>> source = MemorySource([
    ...     MemoryMigration(1, up="CREATE TABLE t (id INTEGER);", down="DROP TABLE t;"),
    ... ])
"""

from collections.abc import Iterable

from sqlmigrate.exceptions import CatalogError


class MemoryMigration:
    """A migration whose statements are given directly."""

    def __init__(
        self,
        version: int,
        up: str = "",
        down: str = "",
        snapshot: str = "",
        name: str | None = None,
    ):
        self.version = version
        self.name = name or str(version)
        self._up = up
        self._down = down
        self._snapshot = snapshot

    def __repr__(self) -> str:
        return f"MemoryMigration(version={self.version}, name={self.name!r})"

    def forward(self) -> str:
        return self._up

    def backward(self) -> str:
        return self._down

    def snapshot(self) -> str:
        return self._snapshot


class MemorySource:
    """
    Serves a fixed list of migrations.

    Raises:
        CatalogError: On construction, if versions are not positive or unique
    """

    def __init__(self, migrations: Iterable[MemoryMigration]):
        self.migrations = list(migrations)

        seen: set[int] = set()
        for migration in self.migrations:
            if migration.version < 1:
                raise CatalogError(
                    f"Migration version must be >= 1, got: {migration.version}",
                    operation="list",
                    version=migration.version,
                )
            if migration.version in seen:
                raise CatalogError(
                    f"Duplicate migration version {migration.version}",
                    operation="list",
                    version=migration.version,
                )
            seen.add(migration.version)

    def list_migrations(self) -> list[MemoryMigration]:
        return list(self.migrations)
