"""
Custom exceptions for sqlmigrate.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
MigratorError for consistent catching.

Exception Hierarchy:
    MigratorError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   └── ConfigValidationError
    ├── CatalogError
    │   └── PayloadResolutionError
    └── AppliedStateError
        ├── StoreInitError
        └── MigrationApplyError
            └── MigrationCancelledError

Every error raised by the migrator carries the operation that failed and,
where one is involved, the migration version. Nothing is retried
automatically; retry policy belongs to the caller.

Usage:
    from sqlmigrate.exceptions import CatalogError

    try:
        plan = migrator.plan(target)
    except CatalogError as e:
        logger.error(f"Cannot read migrations: {e}")
        sys.exit(2)
"""


class MigratorError(Exception):
    """
    Base exception for all sqlmigrate errors.

    Attributes:
        operation: Name of the operation that failed (e.g. "plan", "apply")
        version: Migration version involved, if any

    Example:
        try:
            migrator.migrate(5)
        except MigratorError as e:
            logger.error(f"Migration failed during {e.operation}: {e}")
    """

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        version: int | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.version = version


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(MigratorError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """
    Configuration file does not exist at the specified path.

    Example:
        raise ConfigFileNotFoundError("Configuration file not found: sqlmigrate.yaml")
    """

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration is invalid (YAML syntax or schema validation failed).

    Example:
        raise ConfigValidationError("Field 'database' is required")
    """

    pass


# ============================================================================
# Catalog Errors
# ============================================================================


class CatalogError(MigratorError):
    """
    Listing or parsing the migration source failed.

    Raised for malformed file names, duplicate versions and unreadable
    directories. Fatal to the requested operation; no partial plan is returned.

    Example:
        raise CatalogError("Invalid migration file name: 'init.sql'")
    """

    pass


class PayloadResolutionError(CatalogError):
    """
    Loading a migration's forward, backward or snapshot text failed.

    The planner never skips a migration whose text could not be resolved.

    Example:
        raise PayloadResolutionError(
            "Unable to load forward text of migration 3", version=3
        )
    """

    pass


# ============================================================================
# Applied-State Errors
# ============================================================================


class AppliedStateError(MigratorError):
    """
    Base class for applied-state store errors.

    Actions committed before the failure stay committed.
    Should be caught and result in exit code 3.
    """

    pass


class StoreInitError(AppliedStateError):
    """
    Bookkeeping table could not be created.

    Example:
        raise StoreInitError("Failed to create table schema_migrations: disk I/O error")
    """

    pass


class MigrationApplyError(AppliedStateError):
    """
    An action's atomic unit failed and was rolled back.

    No further actions of the plan were attempted.

    Attributes:
        direction: Direction of the failing action ("forward" or "backward")
        completed: Actions committed before the failure, in order

    Example:
        raise MigrationApplyError(
            "Migration 2 (forward) failed: no such table: users",
            version=2,
            direction="forward",
            completed=[action_1],
        )
    """

    def __init__(
        self,
        message: str,
        operation: str | None = "apply",
        version: int | None = None,
        direction: str | None = None,
        completed: list | None = None,
    ):
        super().__init__(message, operation=operation, version=version)
        self.direction = direction
        self.completed = list(completed or [])


class MigrationCancelledError(MigrationApplyError):
    """
    Execution was cancelled by the caller or its deadline expired.

    The in-flight atomic unit was rolled back; nothing of it was committed.

    Example:
        raise MigrationCancelledError("Cancelled before migration 4", version=4)
    """

    pass
