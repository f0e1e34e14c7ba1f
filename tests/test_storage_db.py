"""
Tests for storage/db.py module.

Tests cover:
- Opening databases and lazy creation of the bookkeeping table
- Applying forward and backward actions
- Atomic units: rollback of the failing action, halt of the plan,
  rejection of migration text that ends the transaction
- Non-transactional mode
- Cancellation before and during an action
- Statement splitting and transaction-control detection
- All error paths

All tests use temporary databases to avoid filesystem pollution.
"""

import sqlite3
import threading

import pytest
from freezegun import freeze_time

from sqlmigrate.exceptions import (
    AppliedStateError,
    ConfigValidationError,
    MigrationApplyError,
    MigrationCancelledError,
    StoreInitError,
)
from sqlmigrate.migrator.models import Action, CancelToken, Direction
from sqlmigrate.storage.db import (
    SQLiteStore,
    is_transaction_control,
    open_sqlite_store,
    split_statements,
)

HEAVY_STATEMENT = (
    "CREATE TABLE big AS WITH RECURSIVE c(x) AS "
    "(SELECT 1 UNION ALL SELECT x + 1 FROM c WHERE x < 200000) SELECT x FROM c;"
)


def up(version, statement):
    return Action(version, Direction.FORWARD, statement)


def down(version, statement):
    return Action(version, Direction.BACKWARD, statement)


def table_exists(conn, name):
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


@pytest.fixture
def store(tmp_path):
    """Store on a fresh database file."""
    store = open_sqlite_store(tmp_path / "app.db")
    yield store
    store.close()


class FlakyConnection:
    """Connection wrapper whose first `failures` execute() calls fail."""

    def __init__(self, conn, failures=1):
        self.conn = conn
        self.failures = failures
        self.executed = []

    def execute(self, sql, *args):
        self.executed.append(sql)
        if self.failures > 0:
            self.failures -= 1
            raise sqlite3.OperationalError("database is locked")
        return self.conn.execute(sql, *args)

    def __getattr__(self, name):
        return getattr(self.conn, name)


class CountdownToken(CancelToken):
    """Token that reports cancellation after a number of negative checks."""

    def __init__(self, checks_before_cancel):
        super().__init__(event=threading.Event())
        self.remaining = checks_before_cancel

    def cancelled(self):
        if self.remaining > 0:
            self.remaining -= 1
            return False
        self.event.set()
        return True


# ============================================================================
# Opening and Initialization Tests
# ============================================================================


def test_open_creates_database_and_parent_directory(tmp_path):
    """open_sqlite_store() creates missing parent directories."""
    db_path = tmp_path / "data" / "nested" / "app.db"

    with open_sqlite_store(db_path) as store:
        store.applied_versions()

    assert db_path.exists()


def test_open_in_memory_database():
    """':memory:' databases are supported."""
    with open_sqlite_store(":memory:") as store:
        assert store.applied_versions() == []


def test_bookkeeping_table_is_created_lazily(store):
    """The table does not exist until the store is first used."""
    assert not store.initialized
    assert not table_exists(store.conn, "schema_migrations")

    assert store.applied_versions() == []

    assert store.initialized
    assert table_exists(store.conn, "schema_migrations")


def test_bookkeeping_table_is_created_once(tmp_path):
    """Repeated calls do not re-issue the CREATE TABLE statement."""
    conn = sqlite3.connect(tmp_path / "app.db", isolation_level=None)
    wrapper = FlakyConnection(conn, failures=0)
    store = SQLiteStore(wrapper)

    store.applied_versions()
    store.history()
    store.apply([up(1, "CREATE TABLE a (id INTEGER);")])
    store.applied_versions()

    creates = [sql for sql in wrapper.executed if "IF NOT EXISTS" in sql]
    assert len(creates) == 1
    conn.close()


def test_failed_initialization_is_retried(tmp_path):
    """A failed CREATE TABLE leaves the store uninitialized."""
    conn = sqlite3.connect(tmp_path / "app.db", isolation_level=None)
    store = SQLiteStore(FlakyConnection(conn, failures=1))

    with pytest.raises(StoreInitError) as exc_info:
        store.applied_versions()

    assert exc_info.value.operation == "init"
    assert not store.initialized

    assert store.applied_versions() == []
    assert store.initialized
    conn.close()


def test_existing_table_is_reused(tmp_path):
    """A second store on the same database sees earlier applications."""
    db_path = tmp_path / "app.db"
    with open_sqlite_store(db_path) as first:
        first.apply([up(1, "CREATE TABLE a (id INTEGER);")])

    with open_sqlite_store(db_path) as second:
        assert second.applied_versions() == [1]


def test_custom_table_name(tmp_path):
    """Bookkeeping goes to the configured table."""
    with open_sqlite_store(tmp_path / "app.db", table_name="migration_log") as store:
        store.apply([up(1, "SELECT 1;")])

        assert table_exists(store.conn, "migration_log")
        assert not table_exists(store.conn, "schema_migrations")


@pytest.mark.parametrize("table_name", ["bad-name", "1table", "t; DROP TABLE x", ""])
def test_invalid_table_name_rejected(table_name):
    """Table names must be plain identifiers."""
    conn = sqlite3.connect(":memory:")

    with pytest.raises(ConfigValidationError):
        SQLiteStore(conn, table_name=table_name)

    conn.close()


def test_open_unreachable_database_raises_store_init_error(tmp_path):
    """A path that cannot hold a database is a StoreInitError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(StoreInitError) as exc_info:
        open_sqlite_store(blocker / "app.db")

    assert exc_info.value.operation == "open"


def test_history_on_closed_connection_raises(store):
    """Query failures after initialization are AppliedStateError."""
    store.applied_versions()
    store.close()

    with pytest.raises(AppliedStateError) as exc_info:
        store.history()

    assert exc_info.value.operation == "list"


# ============================================================================
# Apply Tests
# ============================================================================


def test_apply_forward_actions(store):
    """Forward actions run their statements and record their versions."""
    applied = store.apply(
        [
            up(1, "CREATE TABLE users (id INTEGER PRIMARY KEY);"),
            up(2, "ALTER TABLE users ADD COLUMN email TEXT;\nCREATE INDEX idx_email ON users (email);"),
        ]
    )

    assert [a.version for a in applied] == [1, 2]
    assert store.applied_versions() == [1, 2]
    assert table_exists(store.conn, "users")
    store.conn.execute("INSERT INTO users (email) VALUES ('a@example.com')")


def test_apply_backward_actions(store):
    """Backward actions run their statements and delete their versions."""
    store.apply(
        [
            up(1, "CREATE TABLE a (id INTEGER);"),
            up(2, "CREATE TABLE b (id INTEGER);"),
        ]
    )

    store.apply([down(2, "DROP TABLE b;")])

    assert store.applied_versions() == [1]
    assert not table_exists(store.conn, "b")
    assert table_exists(store.conn, "a")


def test_apply_empty_statement_only_updates_bookkeeping(store):
    """An action with no SQL still records its version."""
    store.apply([up(1, ""), up(2, "-- nothing to do\n")])

    assert store.applied_versions() == [1, 2]


def test_apply_records_utc_timestamp(store):
    """Applied rows carry the application time."""
    with freeze_time("2025-11-01 08:30:00"):
        store.apply([up(1, "SELECT 1;")])

    (row,) = store.history()
    assert row.version == 1
    assert row.applied_at == "2025-11-01T08:30:00Z"


def test_apply_empty_action_list(store):
    """No actions means no work, but the table is still initialized."""
    assert store.apply([]) == []
    assert store.initialized


def test_apply_failure_rolls_back_and_halts(store):
    """The failing unit is rolled back; later actions are not attempted."""
    actions = [
        up(1, "CREATE TABLE a (id INTEGER);"),
        up(2, "CREATE TABLE b (id INTEGER);\nINSERT INTO missing VALUES (1);"),
        up(3, "CREATE TABLE c (id INTEGER);"),
    ]

    with pytest.raises(MigrationApplyError) as exc_info:
        store.apply(actions)

    error = exc_info.value
    assert error.version == 2
    assert error.direction == "forward"
    assert error.completed == [actions[0]]
    assert "no such table: missing" in str(error)
    assert isinstance(error.__cause__, sqlite3.OperationalError)

    assert store.applied_versions() == [1]
    assert table_exists(store.conn, "a")
    assert not table_exists(store.conn, "b")
    assert not table_exists(store.conn, "c")
    assert not store.conn.in_transaction


def test_apply_failed_backward_keeps_version_applied(store):
    """A failing revert leaves both schema and bookkeeping untouched."""
    store.apply([up(1, "CREATE TABLE a (id INTEGER);")])

    with pytest.raises(MigrationApplyError) as exc_info:
        store.apply([down(1, "DROP TABLE a;\nDROP TABLE missing;")])

    assert exc_info.value.direction == "backward"
    assert store.applied_versions() == [1]
    assert table_exists(store.conn, "a")


def test_apply_duplicate_version_fails_bookkeeping(store):
    """Re-applying a recorded version fails and rolls back its statements."""
    store.apply([up(1, "CREATE TABLE a (id INTEGER);")])

    with pytest.raises(MigrationApplyError) as exc_info:
        store.apply([up(1, "CREATE TABLE b (id INTEGER);")])

    assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)
    assert not table_exists(store.conn, "b")


def test_apply_rejects_commit_inside_migration(store):
    """A COMMIT in migration text is rejected before any statement runs."""
    store.apply([up(1, "CREATE TABLE a (id INTEGER);")])

    with pytest.raises(MigrationApplyError) as exc_info:
        store.apply([up(2, "CREATE TABLE b (x INTEGER);\nCOMMIT;\nCREATE TABLE c (")])

    assert exc_info.value.version == 2
    assert exc_info.value.completed == []
    assert "controls the transaction" in str(exc_info.value)
    assert not table_exists(store.conn, "b")
    assert store.applied_versions() == [1]
    assert not store.conn.in_transaction


@pytest.mark.parametrize(
    "statement",
    ["BEGIN;", "begin transaction;", "END;", "ROLLBACK;", "/* note */ COMMIT;"],
)
def test_apply_rejects_transaction_control(store, statement):
    with pytest.raises(MigrationApplyError):
        store.apply([up(1, f"CREATE TABLE a (id INTEGER);\n{statement}")])

    assert not table_exists(store.conn, "a")
    assert store.applied_versions() == []


def test_apply_allows_savepoints(store):
    """Savepoints nest inside the migration's own transaction."""
    store.apply(
        [
            up(
                1,
                "CREATE TABLE a (id INTEGER);\n"
                "SAVEPOINT seed;\n"
                "INSERT INTO a VALUES (1);\n"
                "ROLLBACK TO seed;\n"
                "RELEASE seed;",
            )
        ]
    )

    assert store.applied_versions() == [1]
    assert store.conn.execute("SELECT count(*) FROM a").fetchone()[0] == 0


def test_apply_failure_is_logged(store, caplog):
    """Failures are logged at ERROR level with the version."""
    with caplog.at_level("ERROR", logger="sqlmigrate.storage.db"):
        with pytest.raises(MigrationApplyError):
            store.apply([up(1, "NOT SQL AT ALL;")])

    (record,) = caplog.records
    assert record.version == 1
    assert "Migration 1 (forward) failed" in record.message


# ============================================================================
# Non-transactional Mode Tests
# ============================================================================


def test_non_transactional_apply(tmp_path):
    """Statements and bookkeeping run without an explicit transaction."""
    with open_sqlite_store(tmp_path / "app.db", transactional=False) as store:
        store.apply([up(1, "CREATE TABLE a (id INTEGER);")])

        assert store.applied_versions() == [1]
        assert table_exists(store.conn, "a")


def test_non_transactional_statement_failure_records_nothing(tmp_path):
    """A failing statement still leaves the version unrecorded."""
    with open_sqlite_store(tmp_path / "app.db", transactional=False) as store:
        with pytest.raises(MigrationApplyError):
            store.apply([up(1, "INSERT INTO missing VALUES (1);")])

        assert store.applied_versions() == []


def test_non_transactional_bookkeeping_failure_keeps_effects(tmp_path):
    """Without a transaction, statement effects survive a bookkeeping failure."""
    with open_sqlite_store(tmp_path / "app.db", transactional=False) as store:
        store.apply([up(1, "CREATE TABLE a (id INTEGER);")])

        with pytest.raises(MigrationApplyError):
            store.apply([up(1, "CREATE TABLE b (id INTEGER);")])

        assert table_exists(store.conn, "b")


# ============================================================================
# Cancellation Tests
# ============================================================================


def test_cancelled_before_first_action(store):
    """A token cancelled up front prevents every action."""
    stop = threading.Event()
    stop.set()

    with pytest.raises(MigrationCancelledError) as exc_info:
        store.apply([up(1, "CREATE TABLE a (id INTEGER);")], cancel=CancelToken(event=stop))

    assert exc_info.value.version == 1
    assert exc_info.value.completed == []
    assert "cancelled by caller" in str(exc_info.value)
    assert store.applied_versions() == []
    assert not table_exists(store.conn, "a")


def test_cancel_during_action_rolls_it_back(store):
    """Cancellation while an action runs rolls that action back."""
    stop = threading.Event()
    store.conn.create_function("request_stop", 0, lambda: stop.set())
    actions = [
        up(1, "CREATE TABLE a (id INTEGER);"),
        up(2, "CREATE TABLE b (id INTEGER);\nSELECT request_stop();"),
        up(3, "CREATE TABLE c (id INTEGER);"),
    ]

    with pytest.raises(MigrationCancelledError) as exc_info:
        store.apply(actions, cancel=CancelToken(event=stop))

    assert exc_info.value.version == 2
    assert exc_info.value.direction == "forward"
    assert exc_info.value.completed == [actions[0]]
    assert store.applied_versions() == [1]
    assert not table_exists(store.conn, "b")
    assert not table_exists(store.conn, "c")


def test_cancel_interrupts_long_running_statement(store):
    """The progress handler interrupts a statement once the token fires."""
    token = CountdownToken(checks_before_cancel=1)

    with pytest.raises(MigrationCancelledError) as exc_info:
        store.apply([up(1, HEAVY_STATEMENT)], cancel=token)

    assert exc_info.value.version == 1
    assert store.applied_versions() == []
    assert not table_exists(store.conn, "big")
    assert not store.conn.in_transaction


def test_uncancelled_token_does_not_interfere(store):
    """A live token lets heavy statements finish."""
    store.apply([up(1, HEAVY_STATEMENT)], cancel=CancelToken(timeout=600))

    assert store.applied_versions() == [1]
    assert store.conn.execute("SELECT count(*) FROM big").fetchone()[0] == 200000


# ============================================================================
# Statement Splitting Tests
# ============================================================================


def test_split_statements_multiple():
    assert split_statements("CREATE TABLE a (x);\nCREATE TABLE b (y);") == [
        "CREATE TABLE a (x);",
        "CREATE TABLE b (y);",
    ]


def test_split_statements_semicolon_in_string_literal():
    """Semicolons inside literals do not end a statement."""
    assert split_statements("INSERT INTO t VALUES ('a;b'); SELECT 1;") == [
        "INSERT INTO t VALUES ('a;b');",
        "SELECT 1;",
    ]


def test_split_statements_trigger_body():
    """Trigger bodies are kept whole."""
    script = (
        "CREATE TRIGGER tr AFTER INSERT ON t BEGIN UPDATE t SET x = 1; END;\n"
        "SELECT 1;"
    )

    assert split_statements(script) == [
        "CREATE TRIGGER tr AFTER INSERT ON t BEGIN UPDATE t SET x = 1; END;",
        "SELECT 1;",
    ]


def test_split_statements_without_trailing_semicolon():
    assert split_statements("SELECT 1") == ["SELECT 1"]


@pytest.mark.parametrize("script", ["", "   \n", "-- only a comment\n", ";;"])
def test_split_statements_blank(script):
    """Blank and comment-only scripts have no statements."""
    assert split_statements(script) == []


def test_split_statements_drops_trailing_comment():
    assert split_statements("SELECT 1; -- done\n") == ["SELECT 1;"]


@pytest.mark.parametrize(
    "statement, expected",
    [
        ("COMMIT;", True),
        ("end transaction;", True),
        ("-- finish\nROLLBACK;", True),
        ("ROLLBACK TO seed;", False),
        ("ROLLBACK TRANSACTION TO seed;", False),
        ("SAVEPOINT seed;", False),
        ("CREATE TRIGGER tr AFTER INSERT ON t BEGIN UPDATE t SET x = 1; END;", False),
        ("INSERT INTO commits VALUES (1);", False),
    ],
)
def test_is_transaction_control(statement, expected):
    assert is_transaction_control(statement) is expected
