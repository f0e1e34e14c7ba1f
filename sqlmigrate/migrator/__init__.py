"""
Migration planning and execution.

Exports:
    Migrator: Orchestrates version queries, planning and execution
    build_plan: Pure planning function
    Action, Direction, Plan, CancelToken: Core types
"""

from .migrator import MigrationStatus, Migrator, StatusReport
from .models import (
    Action,
    AppliedMigration,
    AppliedStateStore,
    CancelToken,
    Direction,
    Migration,
    MigrationSource,
    Plan,
)
from .planner import build_plan

__all__ = [
    "Action",
    "AppliedMigration",
    "AppliedStateStore",
    "CancelToken",
    "Direction",
    "Migration",
    "MigrationSource",
    "MigrationStatus",
    "Migrator",
    "Plan",
    "StatusReport",
    "build_plan",
]
