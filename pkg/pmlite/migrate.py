"""
Schema migrations for locally persisted records.

The stored counter (pm_schema_v) records the last applied version. Steps run
in order for every version above it; once the counter reaches
SCHEMA_VERSION, run_migrations returns its inputs untouched.
"""
import logging
from typing import Any, Callable, Dict, List, Tuple

from .storage import LocalStorage, TASKS_KEY, SCHEMA_KEY

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2


def _v2_project_id_is_string(tasks: List[Any], projects: List[Any]) -> Tuple[List[Any], List[Any]]:
    """v2: every task carries projectId as a string ("" when unassigned)."""
    migrated = []
    for t in tasks:
        if isinstance(t, dict):
            t = {**t, "projectId": t["projectId"] if isinstance(t.get("projectId"), str) else ""}
        migrated.append(t)
    return migrated, projects


# target version -> step
MIGRATIONS: Dict[int, Callable[[List[Any], List[Any]], Tuple[List[Any], List[Any]]]] = {
    2: _v2_project_id_is_string,
}


def stored_version(storage: LocalStorage) -> int:
    """Current schema counter; missing or unreadable counts as version 1."""
    raw = storage.get_raw(SCHEMA_KEY)
    try:
        version = int(raw) if raw else 1
    except (TypeError, ValueError):
        version = 1
    return version if version >= 1 else 1


def run_migrations(storage: LocalStorage, tasks: Any, projects: Any) -> Tuple[List[Any], List[Any]]:
    """
    Bring persisted task/project payloads up to SCHEMA_VERSION.

    Non-list inputs are treated as empty. When a step runs, migrated tasks are
    written back and the counter is bumped. Safe to call repeatedly.
    """
    safe_tasks = tasks if isinstance(tasks, list) else []
    safe_projects = projects if isinstance(projects, list) else []

    current = stored_version(storage)
    if current >= SCHEMA_VERSION:
        return safe_tasks, safe_projects

    for version in sorted(MIGRATIONS):
        if version <= current or version > SCHEMA_VERSION:
            continue
        logger.info(f"Migrating local schema v{current} -> v{version}")
        safe_tasks, safe_projects = MIGRATIONS[version](safe_tasks, safe_projects)
        current = version

    storage.save(TASKS_KEY, safe_tasks)
    storage.set_raw(SCHEMA_KEY, str(SCHEMA_VERSION))
    return safe_tasks, safe_projects
