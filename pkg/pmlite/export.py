"""
CSV export of the task list and JSON backup/restore of local state.

A backup holds the three stored payloads verbatim plus an export timestamp:
    {"pm_tasks_v1": [...], "pm_projects_v1": [...], "pm_notify_v1": {...},
     "exportedAt": "2024-01-01T09:00:00.000Z"}
"""
import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import BackupError
from .schema import Project, Task, plain_number, utc_now
from .storage import LocalStorage, TASKS_KEY, PROJECTS_KEY, NOTIFY_KEY

logger = logging.getLogger(__name__)

CSV_COLUMNS = ("id", "project", "title", "assignee", "priority", "status", "dueDate", "estimateHrs", "updatedAt")
BACKUP_KEYS = (TASKS_KEY, PROJECTS_KEY, NOTIFY_KEY)
_LIST_KEYS = (TASKS_KEY, PROJECTS_KEY)


# ── CSV ──────────────────────────────────────────────────────────────────────

def tasks_csv_rows(tasks: List[Task], projects: List[Project]) -> List[Dict[str, Any]]:
    """One flat row per task; the project column holds the project name."""
    names = {p.id: p.name for p in projects}
    return [
        {
            "id": t.id,
            "project": names.get(t.project_id, ""),
            "title": t.title,
            "assignee": t.assignee,
            "priority": t.priority.value,
            "status": t.status.value,
            "dueDate": t.due_date,
            "estimateHrs": plain_number(float(t.estimate_hrs or 0)),
            "updatedAt": t.updated_at,
        }
        for t in tasks
    ]


def _csv_cell(value: Any) -> str:
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""').replace("\n", " ") + '"'


def to_csv(rows: List[Dict[str, Any]], columns: Sequence[str] = CSV_COLUMNS) -> str:
    """
    Header line plus one line per row, columns taken from the first row.
    With no rows the output is just the header built from columns.

    Every value is double-quoted with embedded quotes doubled and newlines
    flattened to spaces.
    """
    headers = list(rows[0].keys()) if rows else list(columns)
    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(_csv_cell(row.get(h)) for h in headers))
    return "\n".join(lines)


def csv_filename(today: Optional[date] = None) -> str:
    return f"tasks_{(today or date.today()).isoformat()}.csv"


# ── Backup ───────────────────────────────────────────────────────────────────

def backup_filename(today: Optional[date] = None) -> str:
    return f"pm-backup-{(today or date.today()).isoformat()}.json"


def export_backup(storage: LocalStorage, now: Optional[str] = None) -> Dict[str, Any]:
    return {
        TASKS_KEY: storage.load(TASKS_KEY, []),
        PROJECTS_KEY: storage.load(PROJECTS_KEY, []),
        NOTIFY_KEY: storage.load(NOTIFY_KEY, {}),
        "exportedAt": now or utc_now(),
    }


def import_backup(storage: LocalStorage, document: Union[str, bytes, Dict[str, Any]]) -> List[str]:
    """
    Write the payloads present in a backup document back to storage.

    Keys that are absent (or null) leave the stored value alone. Returns the
    keys written. Raises BackupError on malformed JSON or a document of the
    wrong shape, before anything is written.
    """
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackupError(f"Backup is not valid JSON: {e}")
    if not isinstance(document, dict):
        raise BackupError("Backup must be a JSON object")

    present = [k for k in BACKUP_KEYS if document.get(k) is not None]
    for key in present:
        if key in _LIST_KEYS and not isinstance(document[key], list):
            raise BackupError(f"{key} must be a list")
        if key == NOTIFY_KEY and not isinstance(document[key], dict):
            raise BackupError(f"{key} must be an object")

    for key in present:
        storage.save(key, document[key])
    logger.info(f"Imported backup keys: {', '.join(present) or 'none'}")
    return present
