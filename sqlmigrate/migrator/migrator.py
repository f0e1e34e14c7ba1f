"""
Migrator: version queries, planning and plan execution.

The Migrator composes a MigrationSource (catalog of available migrations)
and an AppliedStateStore (bookkeeping plus atomic execution). Both are
injected through the constructor; the migrator holds no global state.

Deployment requirement:
    Only one migrator may act on a given store at a time. The migrator does
    no locking of its own; callers running several processes against the
    same database must serialize them externally (e.g. an advisory lock).

Example:
    >>> from sqlmigrate.migrator import Migrator
    >>> from sqlmigrate.source import FilesystemSource
    >>> from sqlmigrate.storage.db import open_sqlite_store
    >>> migrator = Migrator(FilesystemSource("migrations"), open_sqlite_store("app.db"))
    >>> migrator.plan(3).versions
    [1, 2, 3]
    >>> migrator.migrate(3)
"""

import logging
from dataclasses import dataclass, field

from sqlmigrate.exceptions import AppliedStateError, CatalogError

from .models import (
    Action,
    AppliedMigration,
    AppliedStateStore,
    CancelToken,
    Migration,
    MigrationSource,
    Plan,
)
from .planner import build_plan

logger = logging.getLogger(__name__)


@dataclass
class MigrationStatus:
    """
    Status of a single version, as reported by Migrator.status().

    Attributes:
        version: Migration version
        name: Label of the migration, or None if it is not in the catalog
        applied: Whether the version is recorded as applied
        applied_at: Application timestamp, if the store records one
    """

    version: int
    name: str | None
    applied: bool
    applied_at: str | None = None


@dataclass
class StatusReport:
    """Catalog and applied state side by side."""

    current_version: int
    latest_version: int
    migrations: list[MigrationStatus] = field(default_factory=list)

    @property
    def pending(self) -> list[int]:
        return [m.version for m in self.migrations if not m.applied]

    @property
    def unknown(self) -> list[int]:
        """Applied versions that are missing from the catalog."""
        return [m.version for m in self.migrations if m.name is None]


class Migrator:
    """
    Plans and applies migrations between a source and a store.

    All operations are synchronous and sequential; each action's atomic unit
    commits or rolls back before the next one starts.
    """

    def __init__(self, source: MigrationSource, store: AppliedStateStore):
        self.source = source
        self.store = store

    def latest_version(self) -> int:
        """
        Return the highest available migration version (0 if none).

        Raises:
            CatalogError: If the catalog cannot be listed
        """
        migrations = self._list_migrations("latest_version")
        return max((m.version for m in migrations), default=0)

    def current_version(self) -> int:
        """
        Return the highest applied migration version (0 if none).

        Raises:
            AppliedStateError: If applied versions cannot be listed
        """
        applied = self._applied_versions("current_version")
        return max(applied, default=0)

    def plan(self, target: int) -> Plan:
        """
        Compute the plan to reach target without executing it.

        A target above the latest available version saturates at it.

        Raises:
            CatalogError: If the catalog cannot be listed or a payload
                cannot be loaded (PayloadResolutionError)
            AppliedStateError: If applied versions cannot be listed
        """
        if target < 0:
            raise ValueError(f"Target version must be >= 0, got: {target}")

        migrations = self._list_migrations("plan")
        if not migrations:
            return Plan()
        applied = self._applied_versions("plan")

        plan = build_plan(migrations, applied, target)
        logger.debug(
            f"Planned {len(plan)} action(s) to reach version {target}",
            extra={"context": {"target": target, "versions": plan.versions}},
        )
        return plan

    def migrate(self, target: int, cancel: CancelToken | None = None) -> list[Action]:
        """
        Plan and apply the actions needed to reach target.

        Execution halts at the first failing action. Actions committed before
        the failure are not rolled back.

        Args:
            target: Requested version (0 reverts everything)
            cancel: Optional cancellation token / deadline

        Returns:
            list[Action]: The committed actions, in execution order

        Raises:
            CatalogError: If the plan cannot be prepared
            AppliedStateError: If applying fails (MigrationApplyError carries
                the committed actions in its `completed` attribute)
        """
        plan = self.plan(target)
        return self.apply(plan, cancel=cancel)

    def apply(self, plan: Plan, cancel: CancelToken | None = None) -> list[Action]:
        """
        Execute a previously computed plan.

        Intended for callers that inspect a plan before running it. The plan
        must be executed against the same applied state it was computed from.
        """
        if not plan:
            logger.info("Nothing to migrate")
            return []

        logger.info(
            f"Applying {len(plan)} {plan.direction.value} action(s)",
            extra={"context": {"versions": plan.versions}},
        )
        try:
            return self.store.apply(plan.actions, cancel=cancel)
        except AppliedStateError:
            raise
        except Exception as e:
            raise AppliedStateError(
                f"Unable to apply migrations: {e}", operation="migrate"
            ) from e

    def status(self) -> StatusReport:
        """
        Report every known version with its applied state.

        Rows cover the catalog plus applied versions missing from it,
        sorted by version.
        """
        migrations = self._list_migrations("status")
        history = self._history("status")

        names = {m.version: m.name for m in migrations}
        applied_at = {row.version: row.applied_at for row in history}

        rows = [
            MigrationStatus(
                version=version,
                name=names.get(version),
                applied=version in applied_at,
                applied_at=applied_at.get(version),
            )
            for version in sorted(set(names) | set(applied_at))
        ]
        return StatusReport(
            current_version=max(applied_at, default=0),
            latest_version=max(names, default=0),
            migrations=rows,
        )

    def _list_migrations(self, operation: str) -> list[Migration]:
        try:
            return list(self.source.list_migrations())
        except CatalogError:
            raise
        except Exception as e:
            raise CatalogError(
                f"Unable to list available migrations: {e}", operation=operation
            ) from e

    def _applied_versions(self, operation: str) -> list[int]:
        try:
            return list(self.store.applied_versions())
        except AppliedStateError:
            raise
        except Exception as e:
            raise AppliedStateError(
                f"Unable to list applied migrations: {e}", operation=operation
            ) from e

    def _history(self, operation: str) -> list[AppliedMigration]:
        history = getattr(self.store, "history", None)
        if history is None:
            # Stores without timestamps still report which versions are applied
            return [
                AppliedMigration(version=v, applied_at=None)
                for v in self._applied_versions(operation)
            ]
        try:
            return list(history())
        except AppliedStateError:
            raise
        except Exception as e:
            raise AppliedStateError(
                f"Unable to read migration history: {e}", operation=operation
            ) from e
