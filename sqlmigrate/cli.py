"""
CLI entrypoint for sqlmigrate.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, colored text
- Agent-friendly output: Structured JSON for automation
- Quiet mode: Tab-separated minimal output for shell scripts

Commands:
    current: Show the highest applied version
    latest: Show the highest available version
    status: Show every migration with its applied state
    plan: Show the actions needed to reach a version
    migrate: Apply the actions needed to reach a version
    new: Create an empty migration file
    validate: Check configuration and migration files

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing settings)
    2: Catalog error (invalid migration files, unreadable payloads)
    3: Applied-state error (database unavailable, a migration failed)
    4: Cancelled (timeout or interrupt; the in-flight migration was rolled back)

Examples:
    # Apply every pending migration
    sqlmigrate --config sqlmigrate.yaml migrate

    # Inspect what reverting to version 3 would do
    sqlmigrate -d app.db -m migrations plan --to 3

    # Machine-readable status
    sqlmigrate --format json status

Deployment:
    Run a single sqlmigrate process per database at a time. sqlmigrate does
    not lock the database across migrations; concurrent runs must be
    serialized by the caller.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path

import typer
from rich.syntax import Syntax
from rich.traceback import install as install_rich_traceback

from sqlmigrate.config import MigratorConfig, resolve_config
from sqlmigrate.exceptions import (
    AppliedStateError,
    CatalogError,
    ConfigurationError,
    MigrationApplyError,
    MigrationCancelledError,
)
from sqlmigrate.migrator import Action, CancelToken, Direction, Migrator, Plan
from sqlmigrate.source import FilesystemSource
from sqlmigrate.storage.db import open_sqlite_store
from sqlmigrate.utils.console import (
    console,
    error,
    info,
    output_mode,
    print_plan_table,
    print_status_table,
    spinner,
    success,
    warning,
)
from sqlmigrate.utils.logging import setup_logging

# Install Rich tracebacks for better error messages
install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_CATALOG_ERROR = 2
EXIT_STORE_ERROR = 3
EXIT_CANCELLED = 4

DEFAULT_CONFIG_FILE = "sqlmigrate.yaml"

app = typer.Typer(
    name="sqlmigrate",
    help="Plan and apply versioned SQL migrations",
    add_completion=False,
)


@dataclass
class GlobalOptions:
    """Options shared by all commands, collected by the main callback."""

    config: Path | None = None
    database: str | None = None
    migrations_dir: Path | None = None


# ============================================================================
# Helpers
# ============================================================================


def _fail(message: str, exit_code: int, error_type: str) -> None:
    error(message)
    if output_mode.is_agent():
        output_mode.add_json("error_type", error_type)
        output_mode.flush_json()
    raise typer.Exit(exit_code)


@contextmanager
def _exit_on_error() -> Iterator[None]:
    """Translate migrator errors into messages and exit codes."""
    try:
        yield
    except typer.Exit:
        raise
    except ConfigurationError as e:
        _fail(f"Configuration error: {e}", EXIT_CONFIG_ERROR, "configuration_error")
    except CatalogError as e:
        _fail(f"Migration catalog error: {e}", EXIT_CATALOG_ERROR, "catalog_error")
    except MigrationCancelledError as e:
        _report_completed(e.completed)
        _fail(f"{e}. The in-flight migration was rolled back.", EXIT_CANCELLED, "cancelled")
    except MigrationApplyError as e:
        _report_completed(e.completed)
        _fail(f"{e}. The failing migration was rolled back.", EXIT_STORE_ERROR, "apply_error")
    except AppliedStateError as e:
        _fail(f"Database error: {e}", EXIT_STORE_ERROR, "applied_state_error")
    except KeyboardInterrupt:
        _fail("Interrupted. The in-flight migration was rolled back.", EXIT_CANCELLED, "cancelled")


def _report_completed(completed: list[Action]) -> None:
    if output_mode.is_agent():
        output_mode.add_json("applied", [_action_to_json(a) for a in completed])
    elif completed:
        warning(
            f"{len(completed)} migration(s) were committed before the failure "
            f"(last: {completed[-1].version})"
        )


def _action_to_json(action: Action) -> dict:
    return {
        "version": action.version,
        "direction": action.direction.value,
        "statement": action.statement,
    }


def _config_path(options: GlobalOptions) -> Path | None:
    if options.config is None and Path(DEFAULT_CONFIG_FILE).exists():
        return Path(DEFAULT_CONFIG_FILE)
    return options.config


def _settings(ctx: typer.Context) -> MigratorConfig:
    options: GlobalOptions = ctx.obj or GlobalOptions()
    config_path = _config_path(options)

    if config_path is None and (options.database is None or options.migrations_dir is None):
        raise ConfigurationError(
            f"No configuration: pass --config, create {DEFAULT_CONFIG_FILE}, "
            f"or pass both --database and --migrations-dir"
        )

    return resolve_config(
        config_path,
        {
            "database": options.database,
            "migrations_dir": str(options.migrations_dir) if options.migrations_dir else None,
        },
    )


@contextmanager
def _open_migrator(settings: MigratorConfig) -> Iterator[Migrator]:
    source = FilesystemSource(settings.migrations_dir, extension=settings.extension)
    store = open_sqlite_store(
        settings.database,
        table_name=settings.table_name,
        transactional=settings.transactional,
        busy_timeout=settings.busy_timeout_seconds,
    )
    with store:
        yield Migrator(source, store)


def _report_plan(plan: Plan, show_sql: bool = False) -> None:
    if plan.discarded_versions:
        warning(
            f"Migrations {plan.discarded_versions} were never applied but a higher "
            f"version already is; they are skipped"
        )
    if plan.snapshot_version is not None:
        info(f"Using the snapshot of migration {plan.snapshot_version}")

    print_plan_table(plan.actions)

    if show_sql and output_mode.is_human() and not output_mode.quiet:
        for action in plan.actions:
            console.rule(f"{action.version} ({action.direction.value})")
            console.print(Syntax(action.statement, "sql"))


# ============================================================================
# Commands
# ============================================================================


@app.command()
def current(ctx: typer.Context):
    """
    Show the highest applied migration version (0 if none).
    """
    with _exit_on_error():
        with _open_migrator(_settings(ctx)) as migrator:
            version = migrator.current_version()

    if output_mode.is_agent():
        output_mode.add_json("current_version", version)
        output_mode.flush_json()
    elif output_mode.quiet:
        print(version)
    else:
        console.print(f"Current version: [bold]{version}[/bold]")


@app.command()
def latest(ctx: typer.Context):
    """
    Show the highest available migration version (0 if none).
    """
    with _exit_on_error():
        with _open_migrator(_settings(ctx)) as migrator:
            version = migrator.latest_version()

    if output_mode.is_agent():
        output_mode.add_json("latest_version", version)
        output_mode.flush_json()
    elif output_mode.quiet:
        print(version)
    else:
        console.print(f"Latest available version: [bold]{version}[/bold]")


@app.command()
def status(ctx: typer.Context):
    """
    Show every migration with its applied state.

    Lists the catalog and the applied versions side by side, including
    applied versions whose files are missing.
    """
    with _exit_on_error():
        with _open_migrator(_settings(ctx)) as migrator:
            report = migrator.status()

    print_status_table(report)

    stranded = [v for v in report.pending if v < report.current_version]
    if stranded:
        warning(
            f"Migrations {stranded} are pending below the current version "
            f"{report.current_version} and will not be applied"
        )
    if report.unknown:
        warning(f"Applied migrations {report.unknown} are missing from the catalog")

    if output_mode.is_agent():
        output_mode.add_json("current_version", report.current_version)
        output_mode.add_json("latest_version", report.latest_version)
        output_mode.add_json("migrations", [asdict(row) for row in report.migrations])
        output_mode.flush_json()


@app.command()
def plan(
    ctx: typer.Context,
    to: int = typer.Option(
        None,
        "--to",
        "-t",
        min=0,
        help="Target version (default: latest available, 0 reverts everything)",
    ),
    show_sql: bool = typer.Option(
        False,
        "--sql",
        help="Print the full statement of each action",
    ),
):
    """
    Show the actions needed to reach a version, without applying them.
    """
    with _exit_on_error():
        with _open_migrator(_settings(ctx)) as migrator:
            target = to if to is not None else migrator.latest_version()
            with spinner("Planning..."):
                migration_plan = migrator.plan(target)
                current_version = migrator.current_version()

    if output_mode.is_agent():
        output_mode.add_json("current_version", current_version)
        output_mode.add_json("target", target)
        output_mode.add_json("actions", [_action_to_json(a) for a in migration_plan])
        output_mode.add_json("discarded_versions", migration_plan.discarded_versions)

    if not migration_plan:
        success(f"Nothing to do: database is at version {current_version}")
    else:
        _report_plan(migration_plan, show_sql)

    output_mode.flush_json()


@app.command()
def migrate(
    ctx: typer.Context,
    to: int = typer.Option(
        None,
        "--to",
        "-t",
        min=0,
        help="Target version (default: latest available, 0 reverts everything)",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Show the plan without applying it",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt for reverting migrations",
    ),
    timeout: float = typer.Option(
        None,
        "--timeout",
        min=0.001,
        help="Cancel after this many seconds (the in-flight migration is rolled back)",
    ),
):
    """
    Apply the actions needed to reach a version.

    Each migration runs in its own transaction together with its bookkeeping
    update. Execution stops at the first failure; migrations committed
    before it stay applied.

    Exit codes:
      0: Database reached the target version (or nothing to do)
      1: Configuration error
      2: Invalid migration files
      3: A migration failed
      4: Cancelled
    """
    with _exit_on_error():
        settings = _settings(ctx)
        with _open_migrator(settings) as migrator:
            target = to if to is not None else migrator.latest_version()
            migration_plan = migrator.plan(target)

            if output_mode.is_agent():
                output_mode.add_json("target", target)
                output_mode.add_json("dry_run", dry_run)
                output_mode.add_json("discarded_versions", migration_plan.discarded_versions)

            if not migration_plan:
                success(f"Nothing to do: database is at version {migrator.current_version()}")
                output_mode.flush_json()
                raise typer.Exit(EXIT_SUCCESS)

            _report_plan(migration_plan)

            if dry_run:
                if output_mode.is_agent():
                    output_mode.add_json("actions", [_action_to_json(a) for a in migration_plan])
                info("Dry run: no changes were made")
                output_mode.flush_json()
                raise typer.Exit(EXIT_SUCCESS)

            # Confirm reverts (human mode only, unless --yes)
            if (
                migration_plan.direction is Direction.BACKWARD
                and output_mode.is_human()
                and not yes
                and not typer.confirm(
                    f"Revert {len(migration_plan)} migration(s)? This may drop data."
                )
            ):
                info("Cancelled by user")
                raise typer.Exit(EXIT_SUCCESS)

            deadline = timeout if timeout is not None else settings.timeout_seconds
            cancel = CancelToken(timeout=deadline) if deadline is not None else None

            with spinner(f"Applying {len(migration_plan)} migration(s)..."):
                applied = migrator.apply(migration_plan, cancel=cancel)
            version = migrator.current_version()

    if output_mode.is_agent():
        output_mode.add_json("applied", [_action_to_json(a) for a in applied])
        output_mode.add_json("current_version", version)
    success(f"Applied {len(applied)} migration(s); database is at version {version}")
    output_mode.flush_json()


@app.command()
def new(
    ctx: typer.Context,
    label: str = typer.Argument(..., help="Short description, used in the file name"),
):
    """
    Create an empty migration file with --UP--, --DOWN-- and --SNAPSHOT-- sections.
    """
    with _exit_on_error():
        options: GlobalOptions = ctx.obj or GlobalOptions()
        # No config file: the directory alone is enough, with the default extension
        if options.migrations_dir is not None and _config_path(options) is None:
            source = FilesystemSource(options.migrations_dir)
        else:
            settings = _settings(ctx)
            source = FilesystemSource(settings.migrations_dir, extension=settings.extension)
        path = source.create(label)

    if output_mode.is_agent():
        output_mode.add_json("path", str(path))
    elif output_mode.quiet:
        print(path)
    success(f"Created {path}")
    output_mode.flush_json()


@app.command()
def validate(ctx: typer.Context):
    """
    Check the configuration and every migration file without touching the database.

    Loads each file and reports migrations without an --UP-- or --DOWN--
    section.

    Exit codes:
      0: Configuration and migrations are valid
      1: Configuration is invalid
      2: A migration file is invalid or unreadable
    """
    with _exit_on_error():
        settings = _settings(ctx)
        source = FilesystemSource(settings.migrations_dir, extension=settings.extension)
        with spinner("Validating migrations..."):
            migrations = source.list_migrations()
            incomplete = []
            snapshots = []
            for migration in migrations:
                if not migration.forward() or not migration.backward():
                    incomplete.append(migration.version)
                if migration.snapshot():
                    snapshots.append(migration.version)

    success(f"Configuration is valid; {len(migrations)} migration(s) found")
    if incomplete:
        warning(f"Migrations {incomplete} have an empty --UP-- or --DOWN-- section")
    if snapshots:
        info(f"Snapshots available at versions {snapshots}")

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("migrations_count", len(migrations))
        output_mode.add_json("incomplete_versions", incomplete)
        output_mode.add_json("snapshot_versions", snapshots)
        output_mode.flush_json()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to YAML configuration file (default: ./{DEFAULT_CONFIG_FILE} if present)",
        dir_okay=False,
    ),
    database: str = typer.Option(
        None,
        "--database",
        "-d",
        help="SQLite database path (overrides the configuration file)",
    ),
    migrations_dir: Path = typer.Option(
        None,
        "--migrations-dir",
        "-m",
        help="Directory of migration files (overrides the configuration file)",
        file_okay=False,
    ),
    format: str = typer.Option(
        "text",
        "--format",
        "-f",
        help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output (tab-separated values)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging (JSON on stderr)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
    ),
):
    """
    sqlmigrate - plan and apply versioned SQL migrations.

    Migration files are named <version>[_<label>].sql and hold --UP--,
    --DOWN-- and optional --SNAPSHOT-- sections.

    Use 'sqlmigrate COMMAND --help' for detailed command documentation.
    """
    if version:
        console.print(f"[bold cyan]sqlmigrate[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    try:
        output_mode.reset(format, quiet)
    except ValueError as e:
        output_mode.reset()
        error(str(e))
        raise typer.Exit(EXIT_CONFIG_ERROR)

    setup_logging(verbose)
    ctx.obj = GlobalOptions(config=config, database=database, migrations_dir=migrations_dir)

    if ctx.invoked_subcommand is None:
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  sqlmigrate -d app.db -m migrations new create_users")
        console.print("  sqlmigrate -d app.db -m migrations migrate")


def _read_version() -> str:
    """Read version from package metadata."""
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as package_version

    try:
        return package_version("sqlmigrate")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
