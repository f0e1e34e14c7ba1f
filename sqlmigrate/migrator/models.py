"""
Core types and collaborator interfaces for the migrator.

This module provides the vocabulary shared by the planner, the stores and the
migration sources:

- Direction: Whether an action applies or reverts a migration
- Action: A single planned unit of work (version, direction, statement)
- Plan: Ordered list of actions produced by the planner
- AppliedMigration: A bookkeeping row (version plus application time)
- CancelToken: Caller-supplied cancellation and deadline
- Migration / MigrationSource / AppliedStateStore: Protocol-based
  collaborator interfaces

Collaborators are expressed as Protocols so that any object with the right
methods can be used (file-based source, SQLite store, in-memory fakes in
tests) without inheriting from a common base.

Example:
    >>> from sqlmigrate.migrator.models import Action, Direction
    >>> Action(version=1, direction=Direction.FORWARD, statement="CREATE TABLE t (id INTEGER)")
"""

import threading
import time
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sqlmigrate.exceptions import MigrationCancelledError


class Direction(str, Enum):
    """Direction of a planned action."""

    FORWARD = "forward"
    BACKWARD = "backward"


@dataclass(frozen=True)
class Action:
    """
    A planned unit of work.

    Attributes:
        version: Migration version the action belongs to
        direction: FORWARD applies the migration, BACKWARD reverts it
        statement: Opaque SQL text to execute (forward, backward or snapshot)
    """

    version: int
    direction: Direction
    statement: str


@dataclass
class Plan:
    """
    Ordered sequence of actions that moves the store to a target version.

    A plan never mixes directions. Forward plans have strictly increasing
    versions, backward plans strictly decreasing ones.

    Attributes:
        actions: Actions in execution order
        discarded_versions: Versions dropped because a higher version was
            already applied (non-monotonic history). Informational only;
            never affects actions.
        snapshot_version: Version whose snapshot replaced the forward
            migrations up to it, or None if no snapshot was used
    """

    actions: list[Action] = field(default_factory=list)
    discarded_versions: list[int] = field(default_factory=list)
    snapshot_version: int | None = None

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def __bool__(self) -> bool:
        return bool(self.actions)

    @property
    def direction(self) -> Direction | None:
        """Direction shared by all actions, or None for an empty plan."""
        if not self.actions:
            return None
        return self.actions[0].direction

    @property
    def versions(self) -> list[int]:
        return [action.version for action in self.actions]


@dataclass
class AppliedMigration:
    """
    A row of the applied-state bookkeeping table.

    Attributes:
        version: Applied migration version
        applied_at: ISO 8601 UTC timestamp with 'Z' suffix, or None when the
            store does not record application times
    """

    version: int
    applied_at: str | None


class CancelToken:
    """
    Cancellation signal for plan execution.

    Cancelled when the optional event is set or when the optional timeout
    (seconds, measured from construction) has elapsed. Stores check the
    token before each atomic unit and while statements run; the in-flight
    unit is rolled back on cancellation.

    Example:
        >>> token = CancelToken(timeout=30)
        >>> migrator.migrate(5, cancel=token)

        >>> stop = threading.Event()
        >>> token = CancelToken(event=stop)
        >>> # another thread: stop.set()
    """

    def __init__(
        self,
        event: threading.Event | None = None,
        timeout: float | None = None,
    ):
        if timeout is not None and timeout <= 0:
            raise ValueError(f"timeout must be positive, got: {timeout}")
        self.event = event
        self.timeout = timeout
        self._deadline = time.monotonic() + timeout if timeout is not None else None

    def cancelled(self) -> bool:
        if self.event is not None and self.event.is_set():
            return True
        return self._deadline is not None and time.monotonic() >= self._deadline

    def reason(self) -> str:
        if self.event is not None and self.event.is_set():
            return "cancelled by caller"
        return f"deadline of {self.timeout}s exceeded"

    def raise_if_cancelled(self, version: int | None = None) -> None:
        """
        Raise MigrationCancelledError if the token is cancelled.

        Args:
            version: Version of the action about to run, for the error message
        """
        if self.cancelled():
            where = f" before migration {version}" if version is not None else ""
            raise MigrationCancelledError(
                f"Migration cancelled{where}: {self.reason()}", version=version
            )


class Migration(Protocol):
    """
    A versioned, reversible schema change.

    Payload methods may load their text lazily; implementations cache the
    result for the life of the instance. snapshot() returns an empty string
    when the migration has no snapshot.

    Attributes:
        version: Positive integer, unique within a catalog
        name: Human-readable label (used by status output)
    """

    version: int
    name: str

    def forward(self) -> str: ...

    def backward(self) -> str: ...

    def snapshot(self) -> str: ...


class MigrationSource(Protocol):
    """Provides the catalog of available migrations."""

    def list_migrations(self) -> list[Migration]:
        """
        Return every available migration.

        Raises:
            CatalogError: If the catalog cannot be listed or parsed
        """
        ...


class AppliedStateStore(Protocol):
    """
    Persists which versions have been applied and executes actions.

    apply() owns the atomic-unit semantics: each action's statement and its
    bookkeeping update commit together or not at all, and execution halts
    at the first failure.
    """

    def applied_versions(self) -> list[int]:
        """Return applied versions (ascending)."""
        ...

    def apply(
        self, actions: Sequence[Action], cancel: CancelToken | None = None
    ) -> list[Action]:
        """
        Apply actions in order and return the committed ones.

        Raises:
            MigrationApplyError: When an action fails (already rolled back)
            MigrationCancelledError: When the cancel token fires
        """
        ...
