"""
Migration planning.

build_plan() reconciles the catalog of available migrations with the set of
applied versions and returns the ordered actions needed to reach a target
version. It is a pure function: no I/O besides resolving migration payloads,
which sources load lazily.

Forward planning (target above the highest applied version):
- Walk the catalog in ascending order, stopping past the target
- Each unapplied migration contributes its forward text
- When nothing is applied at all, a migration with a snapshot replaces
  everything accumulated before it with that snapshot
- An already-applied migration met after unapplied ones means the history
  is non-monotonic: the accumulated actions are discarded and planning
  resumes after it. Lower migrations are never replayed out of order.

Backward planning (target below the highest applied version):
- Walk applied versions in descending order down to the target
- Each version present in the catalog contributes its backward text;
  versions missing from the catalog are skipped

Example:
    >>> plan = build_plan(migrations, applied=[1, 3], target=4)
    >>> plan.versions
    [4]
    >>> plan.discarded_versions
    [2]
"""

import logging
from collections.abc import Callable, Iterable

from sqlmigrate.exceptions import PayloadResolutionError
from sqlmigrate.utils.logging import log_with_context

from .models import Action, Direction, Migration, Plan

logger = logging.getLogger(__name__)


def build_plan(
    catalog: Iterable[Migration], applied: Iterable[int], target: int
) -> Plan:
    """
    Compute the actions needed to move from the applied state to target.

    Args:
        catalog: Available migrations, in any order
        applied: Applied versions, in any order
        target: Requested version. Values above the highest catalog version
            saturate at it; 0 reverts everything.

    Returns:
        Plan: Empty if the catalog is empty or target equals the current
        version; otherwise actions in a single direction.

    Raises:
        PayloadResolutionError: If a needed forward, backward or snapshot
            text cannot be loaded
    """
    migrations = sorted(catalog, key=lambda m: m.version)
    if not migrations:
        # Without migrations there is nothing that can safely be done
        return Plan()

    applied_versions = sorted(set(applied))
    latest = applied_versions[-1] if applied_versions else 0

    if target > latest:
        return _plan_forward(migrations, set(applied_versions), target)
    if target < latest:
        return _plan_backward(migrations, applied_versions, target)
    return Plan()


def _plan_forward(migrations: list[Migration], applied: set[int], target: int) -> Plan:
    plan = Plan()
    # Checked against the initial applied set only, not per step
    fresh = not applied

    for migration in migrations:
        version = migration.version
        if version > target:
            break

        if version in applied:
            if plan.actions:
                discarded = [action.version for action in plan.actions]
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Migration {version} is already applied but lower versions "
                    f"{discarded} are not; they will not be applied",
                    context={"discarded": discarded},
                    version=version,
                )
                plan.discarded_versions.extend(discarded)
            plan.actions = []
            plan.snapshot_version = None
            continue

        if fresh:
            snapshot = _resolve(migration, "snapshot", migration.snapshot)
            if snapshot:
                logger.debug(
                    f"Using snapshot of migration {version}",
                    extra={"version": version},
                )
                plan.actions = [Action(version, Direction.FORWARD, snapshot)]
                plan.snapshot_version = version
                continue

        forward = _resolve(migration, "forward", migration.forward)
        plan.actions.append(Action(version, Direction.FORWARD, forward))

    return plan


def _plan_backward(
    migrations: list[Migration], applied_versions: list[int], target: int
) -> Plan:
    plan = Plan()
    by_version = {migration.version: migration for migration in migrations}

    for version in reversed(applied_versions):
        if version <= target:
            break

        migration = by_version.get(version)
        if migration is None:
            logger.info(
                f"Applied migration {version} is not in the catalog, skipping revert",
                extra={"version": version},
            )
            continue

        backward = _resolve(migration, "backward", migration.backward)
        plan.actions.append(Action(version, Direction.BACKWARD, backward))

    return plan


def _resolve(migration: Migration, kind: str, loader: Callable[[], str]) -> str:
    try:
        return loader()
    except PayloadResolutionError:
        raise
    except Exception as e:
        raise PayloadResolutionError(
            f"Unable to load {kind} text of migration {migration.version}: {e}",
            operation="plan",
            version=migration.version,
        ) from e
