"""
SQLite applied-state store for sqlmigrate.

The store records which migration versions are applied and executes planned
actions. Each action runs as one atomic unit:

    BEGIN
    <migration statements>
    INSERT INTO schema_migrations ...   (forward)
    DELETE FROM schema_migrations ...   (backward)
    COMMIT

Any failure rolls the unit back, leaving both the schema and the bookkeeping
table as they were, and stops the plan: no further action is attempted.
Actions committed before the failure stay committed.

Migration text must not contain BEGIN, COMMIT, END or ROLLBACK in
transactional mode; such an action is rejected before anything runs.
Savepoints are allowed.

The bookkeeping table is created lazily on the first call to any public
method, at most once per store instance.

All timestamps are stored in ISO 8601 format with 'Z' suffix (UTC).

Example usage:
    >>> from sqlmigrate.storage.db import open_sqlite_store
    >>> with open_sqlite_store("./data/app.db") as store:
    ...     store.applied_versions()
    [1, 2]

Transactional capability:
    With transactional=False, a statement and its bookkeeping update run as two
    sequential autocommitted steps. A failure of the statement still records
    nothing, but a failure of the bookkeeping step leaves the statement's
    effects in place. Use it only for statements SQLite refuses to run inside
    a transaction (e.g. VACUUM).

Security:
    - Bookkeeping queries use parameterized statements
    - The table name is validated as a plain SQL identifier
"""

import logging
import re
import sqlite3
from collections.abc import Sequence
from pathlib import Path

from sqlmigrate.exceptions import (
    AppliedStateError,
    ConfigValidationError,
    MigrationApplyError,
    MigrationCancelledError,
    StoreInitError,
)
from sqlmigrate.migrator.models import Action, AppliedMigration, CancelToken, Direction

from ..utils.time import utc_timestamp

logger = logging.getLogger(__name__)

DEFAULT_TABLE_NAME = "schema_migrations"
DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0

# Number of SQLite virtual machine instructions between cancellation checks
PROGRESS_HANDLER_INTERVAL = 1000

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# ROLLBACK TO <savepoint> stays inside the transaction and is allowed
_TRANSACTION_CONTROL_PATTERN = re.compile(
    r"^(?:BEGIN|COMMIT|END|ROLLBACK(?!\s+(?:TRANSACTION\s+)?TO\b))\b",
    re.IGNORECASE,
)
_LEADING_COMMENT_PATTERN = re.compile(r"^\s*(?:--[^\n]*(?:\n|$)|/\*.*?\*/)", re.DOTALL)


def open_sqlite_store(
    db_path: str | Path,
    table_name: str = DEFAULT_TABLE_NAME,
    transactional: bool = True,
    busy_timeout: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
) -> "SQLiteStore":
    """
    Open a SQLite database and wrap it in a store.

    Creates the parent directory and the database file if needed. The
    bookkeeping table is not created until the store is first used.

    Args:
        db_path: Filesystem path to the database, or ":memory:"
        table_name: Bookkeeping table name
        transactional: Run each action in a transaction (see module docs)
        busy_timeout: Seconds to wait for a locked database

    Raises:
        StoreInitError: If the database cannot be opened
        ConfigValidationError: If table_name is not a plain identifier
    """
    db_path = str(db_path)
    try:
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, timeout=busy_timeout, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON")
    except (OSError, sqlite3.Error) as e:
        raise StoreInitError(
            f"Failed to open database {db_path}: {e}", operation="open"
        ) from e

    return SQLiteStore(conn, table_name=table_name, transactional=transactional)


def split_statements(script: str) -> list[str]:
    """
    Split SQL text into single statements.

    sqlite3 executes one statement per call, while migration sections usually
    hold several. Splitting relies on sqlite3.complete_statement(), so
    semicolons inside string literals and trigger bodies do not end a
    statement. Comment-only fragments are dropped.

    Example:
        >>> split_statements("CREATE TABLE a (x);\\nCREATE TABLE b (y);")
        ['CREATE TABLE a (x);', 'CREATE TABLE b (y);']
    """
    statements = []
    buffer = ""
    chunks = script.split(";")

    for index, chunk in enumerate(chunks):
        buffer += chunk
        if index < len(chunks) - 1:
            buffer += ";"
        if sqlite3.complete_statement(buffer):
            if not _is_blank(buffer):
                statements.append(buffer.strip())
            buffer = ""

    if not _is_blank(buffer):
        statements.append(buffer.strip())
    return statements


def is_transaction_control(statement: str) -> bool:
    """
    Tell whether a statement begins or ends a transaction.

    Leading comments are skipped. Savepoint statements are not transaction
    control: they nest inside the unit's transaction.

    Example:
        >>> is_transaction_control("-- done\\nCOMMIT;")
        True
        >>> is_transaction_control("ROLLBACK TO before_backfill;")
        False
    """
    text = statement
    match = _LEADING_COMMENT_PATTERN.match(text)
    while match:
        text = text[match.end():]
        match = _LEADING_COMMENT_PATTERN.match(text)
    return _TRANSACTION_CONTROL_PATTERN.match(text.lstrip()) is not None


def _is_blank(fragment: str) -> bool:
    lines = [line.strip() for line in fragment.splitlines()]
    code = "".join(line for line in lines if not line.startswith("--"))
    return not code.strip(" \t;")


class SQLiteStore:
    """
    Applied-state store backed by a SQLite connection.

    The store takes over transaction control of the connection: it switches
    the connection to explicit transactions (isolation_level=None) and issues
    BEGIN/COMMIT/ROLLBACK itself.

    Attributes:
        conn: The SQLite connection
        table_name: Bookkeeping table name
        transactional: Whether each action runs in a transaction
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        table_name: str = DEFAULT_TABLE_NAME,
        transactional: bool = True,
    ):
        if not _IDENTIFIER_PATTERN.match(table_name):
            raise ConfigValidationError(
                f"Invalid table name {table_name!r}: must be a plain SQL identifier"
            )

        self.conn = conn
        self.conn.isolation_level = None
        self.table_name = table_name
        self.transactional = transactional
        self._initialized = False

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def close(self) -> None:
        self.conn.close()

    def applied_versions(self) -> list[int]:
        """
        Return applied versions in ascending order.

        Raises:
            StoreInitError: If the bookkeeping table cannot be created
            AppliedStateError: If the query fails
        """
        return [row.version for row in self.history()]

    def history(self) -> list[AppliedMigration]:
        """
        Return bookkeeping rows in ascending version order.

        Raises:
            StoreInitError: If the bookkeeping table cannot be created
            AppliedStateError: If the query fails
        """
        self._ensure_initialized()

        try:
            cursor = self.conn.execute(
                f"SELECT version, applied_at FROM {self.table_name} ORDER BY version ASC"
            )
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise AppliedStateError(
                f"Failed to read {self.table_name}: {e}", operation="list"
            ) from e

        return [AppliedMigration(version=row[0], applied_at=row[1]) for row in rows]

    def apply(
        self, actions: Sequence[Action], cancel: CancelToken | None = None
    ) -> list[Action]:
        """
        Apply actions in order, one atomic unit per action.

        Args:
            actions: Planned actions, in execution order
            cancel: Optional cancellation token. Checked before each unit and
                while statements run; the in-flight unit is rolled back.

        Returns:
            list[Action]: Committed actions (all of them on success)

        Raises:
            StoreInitError: If the bookkeeping table cannot be created
            MigrationApplyError: If an action fails. The failing unit is
                rolled back; `completed` lists the actions committed before it.
            MigrationCancelledError: If the token fires
        """
        self._ensure_initialized()

        completed: list[Action] = []
        for action in actions:
            if cancel is not None and cancel.cancelled():
                raise MigrationCancelledError(
                    f"Migration cancelled before {action.direction.value} "
                    f"migration {action.version}: {cancel.reason()}",
                    version=action.version,
                    direction=action.direction.value,
                    completed=completed,
                )

            logger.info(
                f"Applying {action.direction.value} migration {action.version}",
                extra={"version": action.version},
            )

            try:
                self._apply_action(action, cancel)
            except MigrationCancelledError as e:
                e.direction = action.direction.value
                e.completed = list(completed)
                raise
            except Exception as e:
                if cancel is not None and cancel.cancelled():
                    raise MigrationCancelledError(
                        f"Migration {action.version} ({action.direction.value}) "
                        f"cancelled: {cancel.reason()}",
                        version=action.version,
                        direction=action.direction.value,
                        completed=completed,
                    ) from e

                logger.error(
                    f"Migration {action.version} ({action.direction.value}) failed: {e}",
                    extra={"version": action.version},
                    exc_info=True,
                )
                raise MigrationApplyError(
                    f"Migration {action.version} ({action.direction.value}) failed: {e}",
                    version=action.version,
                    direction=action.direction.value,
                    completed=completed,
                ) from e

            completed.append(action)
            logger.info(
                f"Migration {action.version} ({action.direction.value}) committed",
                extra={"version": action.version},
            )

        return completed

    def _apply_action(self, action: Action, cancel: CancelToken | None) -> None:
        """
        Run one action's statements and bookkeeping update as a unit.

        Note:
            Statements run with the cancellation progress handler installed;
            the handler is removed before COMMIT or ROLLBACK so that ending
            the transaction is never interrupted.

        Raises:
            ValueError: In transactional mode, if the migration text begins or
                ends a transaction itself. Nothing is executed.
        """
        statements = split_statements(action.statement)

        if self.transactional:
            for statement in statements:
                if is_transaction_control(statement):
                    raise ValueError(
                        f"statement {statement!r} controls the transaction; "
                        "each migration already runs in its own transaction"
                    )
            self.conn.execute("BEGIN")

        try:
            if cancel is not None:
                self.conn.set_progress_handler(
                    lambda: 1 if cancel.cancelled() else 0, PROGRESS_HANDLER_INTERVAL
                )
            try:
                for statement in statements:
                    self.conn.execute(statement)
                self._record(action)
            finally:
                if cancel is not None:
                    self.conn.set_progress_handler(None, 0)

            if cancel is not None:
                cancel.raise_if_cancelled(action.version)

            if self.transactional:
                self.conn.execute("COMMIT")

        except BaseException:
            if self.transactional and self.conn.in_transaction:
                try:
                    self.conn.execute("ROLLBACK")
                except sqlite3.Error:
                    logger.error(
                        f"Rollback of migration {action.version} failed",
                        extra={"version": action.version},
                        exc_info=True,
                    )
            raise

    def _record(self, action: Action) -> None:
        if action.direction is Direction.FORWARD:
            self.conn.execute(
                f"INSERT INTO {self.table_name} (version, applied_at) VALUES (?, ?)",
                (action.version, utc_timestamp()),
            )
        else:
            self.conn.execute(
                f"DELETE FROM {self.table_name} WHERE version = ?",
                (action.version,),
            )

    def _ensure_initialized(self) -> None:
        """
        Create the bookkeeping table if it does not exist.

        Runs at most once per instance. The store only counts as initialized
        after the table was created, so a failed attempt is retried on the
        next call.
        """
        if self._initialized:
            return

        try:
            self.conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
            """)
        except sqlite3.Error as e:
            raise StoreInitError(
                f"Failed to create table {self.table_name}: {e}", operation="init"
            ) from e

        self._initialized = True
        logger.debug(f"Bookkeeping table {self.table_name} is ready")
