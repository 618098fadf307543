"""
State reconciliation: fold local edits and remote change events into the
task/project lists by id.

Local saves and inbound realtime rows go through the same upsert_by_id, so
whichever update is applied last is the one that stays. There is no version
check and no conflict detection.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import DecodeError
from .remote import row_to_project, row_to_task, PROJECTS_TABLE, TASKS_TABLE
from .schema import Project, Task

logger = logging.getLogger(__name__)

EVENT_TYPES = ("INSERT", "UPDATE", "DELETE")


def _key_of(item: Any, key: str) -> Any:
    return item.get(key) if isinstance(item, dict) else getattr(item, key)


def upsert_by_id(items: List[Any], item: Any, key: str = "id") -> List[Any]:
    """Replace the element with the same id in place, or append. Returns a new list."""
    ident = _key_of(item, key)
    out = list(items)
    for i, existing in enumerate(out):
        if _key_of(existing, key) == ident:
            out[i] = item
            return out
    out.append(item)
    return out


def remove_by_id(items: List[Any], item_id: str, key: str = "id") -> List[Any]:
    return [x for x in items if _key_of(x, key) != item_id]


def clear_project_refs(tasks: List[Task], project_id: str) -> List[Task]:
    """Unassign every task that points at project_id. Tasks themselves are kept."""
    out = []
    for t in tasks:
        if t.project_id == project_id:
            t = t.copy()
            t.project_id = ""
        out.append(t)
    return out


# ── Change events ────────────────────────────────────────────────────────────

@dataclass
class ChangeEvent:
    """One row-level change from the backend."""
    table: str
    event_type: str                              # INSERT | UPDATE | DELETE
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    record: Any = None                           # decoded Task/Project for INSERT and UPDATE

    @property
    def row_id(self) -> Optional[str]:
        row = self.old if self.event_type == "DELETE" else self.new
        value = row.get("id")
        return str(value) if value not in (None, "") else None

    @property
    def owner(self) -> Optional[str]:
        value = (self.new or {}).get("user_id") or (self.old or {}).get("user_id")
        return str(value) if value else None


def parse_change(payload: Any) -> ChangeEvent:
    """
    Parse a change payload.

    Accepts the realtime shape {table, eventType, new, old} and the database
    webhook shape {table, type, record, old_record}. The new row of an INSERT
    or UPDATE is decoded here, so a bad row raises DecodeError before any
    subscriber sees it.
    """
    if not isinstance(payload, dict):
        raise DecodeError("Change payload must be an object")
    table = payload.get("table")
    if table not in (PROJECTS_TABLE, TASKS_TABLE):
        raise DecodeError(f"Unknown table: {table!r}")
    event_type = str(payload.get("eventType") or payload.get("type") or "").upper()
    if event_type not in EVENT_TYPES:
        raise DecodeError(f"Unknown event type: {event_type!r}")
    new = payload.get("new") if "new" in payload else payload.get("record")
    old = payload.get("old") if "old" in payload else payload.get("old_record")
    event = ChangeEvent(table=table, event_type=event_type, new=new or {}, old=old or {})
    if not isinstance(event.new, dict) or not isinstance(event.old, dict):
        raise DecodeError("Change rows must be objects")
    if event.row_id is None:
        raise DecodeError(f"{event_type} on {table} carries no row id")
    if event_type != "DELETE":
        event.record = row_to_project(event.new) if table == PROJECTS_TABLE else row_to_task(event.new)
    return event


def apply_change(
    tasks: List[Task],
    projects: List[Project],
    event: ChangeEvent,
) -> Tuple[List[Task], List[Project]]:
    """Fold one change event into (tasks, projects)."""
    if event.table == PROJECTS_TABLE:
        if event.event_type == "DELETE":
            projects = remove_by_id(projects, event.row_id)
            tasks = clear_project_refs(tasks, event.row_id)
        else:
            projects = upsert_by_id(projects, event.record or row_to_project(event.new))
    else:
        if event.event_type == "DELETE":
            tasks = remove_by_id(tasks, event.row_id)
        else:
            tasks = upsert_by_id(tasks, event.record or row_to_task(event.new))
    return tasks, projects


class RealtimeFeed:
    """
    Per-user change subscription.

    Rows owned by another user are dropped. The transport that delivers
    payloads (webhook, socket, polling) calls dispatch().
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.subscribers: Dict[str, List[Callable[[ChangeEvent], None]]] = {}
        self.closed = False

    def subscribe(self, table: str, callback: Callable[[ChangeEvent], None]) -> None:
        self.subscribers.setdefault(table, []).append(callback)

    def dispatch(self, payload: Any) -> Optional[ChangeEvent]:
        """Parse and deliver one payload. Returns the event, or None if it was dropped."""
        if self.closed:
            return None
        event = parse_change(payload)
        if event.owner is not None and event.owner != self.user_id:
            logger.debug(f"Dropping {event.table} change for another user")
            return None
        for callback in self.subscribers.get(event.table, []):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error in {event.table} change callback: {e}")
        return event

    def close(self) -> None:
        self.closed = True
        self.subscribers.clear()
