"""
Task and project schema.

Status lifecycle (every transition is allowed, always user driven):
  Todo ⇄ In Progress ⇄ Blocked ⇄ Done

Records are persisted in the camelCase shape the browser client used, so
backups written by older clients import unchanged. Decoding is strict about
types and enums; absent optional fields get their documented defaults.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Callable, Tuple
import copy
import math
import uuid

from .errors import DecodeError


def utc_now() -> str:
    """ISO-8601 UTC timestamp (millisecond precision, Z suffix)."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def make_id() -> str:
    """Short random identifier for client-created records."""
    return uuid.uuid4().hex[:8]


class TaskStatus(Enum):
    """Kanban columns, in board order."""
    TODO = "Todo"
    IN_PROGRESS = "In Progress"
    BLOCKED = "Blocked"
    DONE = "Done"

    @classmethod
    def from_str(cls, value: Any) -> "TaskStatus":
        if isinstance(value, cls):
            return value
        if value in (None, ""):
            return cls.TODO
        try:
            return cls(value)
        except ValueError:
            raise DecodeError(f"Invalid status: {value!r}")


class TaskPriority(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def from_str(cls, value: Any) -> "TaskPriority":
        if isinstance(value, cls):
            return value
        if value in (None, ""):
            return cls.MEDIUM
        try:
            return cls(value)
        except ValueError:
            raise DecodeError(f"Invalid priority: {value!r}")


class Channel(Enum):
    """Notification channels understood by the notify endpoint."""
    EMAIL = "email"
    WHATSAPP = "whatsapp"

    @classmethod
    def from_str(cls, value: Any) -> "Channel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise DecodeError(f"Invalid channel: {value!r}")


class Swimlane(Enum):
    """Secondary grouping inside a kanban column."""
    NONE = "None"
    PROJECT = "Project"
    ASSIGNEE = "Assignee"
    PRIORITY = "Priority"

    @classmethod
    def from_str(cls, value: Any) -> "Swimlane":
        if isinstance(value, cls):
            return value
        for lane in cls:
            if str(value or "").lower() == lane.value.lower():
                return lane
        return cls.NONE


STATUSES: List[TaskStatus] = list(TaskStatus)


# ── Field helpers ────────────────────────────────────────────────────────────

def _text(data: Dict[str, Any], key: str, required: bool = False) -> str:
    value = data.get(key)
    if value is None:
        if required:
            raise DecodeError(f"Missing field: {key}")
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"Field {key} must be a string, got {type(value).__name__}")
    return value


def decode_number(value: Any, key: str) -> float:
    """Non-negative finite number; None and "" count as 0."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise DecodeError(f"Field {key} must be a number")
    try:
        num = float(value)
    except (TypeError, ValueError, OverflowError):
        raise DecodeError(f"Field {key} must be a number, got {value!r}")
    if not math.isfinite(num):
        raise DecodeError(f"Field {key} must be a finite number")
    if num < 0:
        raise DecodeError(f"Field {key} must not be negative")
    return num


def plain_number(value: float) -> Any:
    """Render 3.0 as 3 and keep 2.5 as-is (matches how the JS client stored numbers)."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _list(data: Dict[str, Any], key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"Field {key} must be a list")
    return value


def _require_object(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise DecodeError(f"{what} must be an object, got {type(data).__name__}")
    return data


# ── Records ──────────────────────────────────────────────────────────────────

@dataclass
class Attachment:
    """A file attached to a task; bytes live in object storage or inline as a data: URL."""
    name: str
    url: str
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "url": self.url, "size": self.size}

    @classmethod
    def from_dict(cls, data: Any) -> "Attachment":
        data = _require_object(data, "Attachment")
        return cls(
            name=_text(data, "name", required=True),
            url=_text(data, "url"),
            size=int(decode_number(data.get("size"), "size")),
        )


@dataclass
class Comment:
    """A comment owned by exactly one task."""
    id: str
    text: str
    author: str = ""
    ts: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "author": self.author, "text": self.text, "ts": self.ts}

    @classmethod
    def from_dict(cls, data: Any) -> "Comment":
        data = _require_object(data, "Comment")
        return cls(
            id=_text(data, "id", required=True),
            author=_text(data, "author"),
            text=_text(data, "text"),
            ts=_text(data, "ts"),
        )


@dataclass
class Task:
    """A unit of work, optionally assigned to a project."""

    id: str
    title: str = ""
    project_id: str = ""            # "" = unassigned
    assignee: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    due_date: str = ""              # YYYY-MM-DD or ""
    estimate_hrs: float = 0.0
    attachments: List[Attachment] = field(default_factory=list)
    comments: List[Comment] = field(default_factory=list)
    updated_at: str = ""

    def copy(self) -> "Task":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the persisted (camelCase) shape."""
        return {
            "id": self.id,
            "projectId": self.project_id,
            "title": self.title,
            "assignee": self.assignee,
            "priority": self.priority.value,
            "status": self.status.value,
            "dueDate": self.due_date,
            "estimateHrs": plain_number(self.estimate_hrs),
            "attachments": [a.to_dict() for a in self.attachments],
            "comments": [c.to_dict() for c in self.comments],
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Task":
        """Deserialize from the persisted shape. Raises DecodeError on bad input."""
        data = _require_object(data, "Task")
        task_id = _text(data, "id", required=True)
        if not task_id:
            raise DecodeError("Task id must not be empty")
        return cls(
            id=task_id,
            title=_text(data, "title"),
            project_id=_text(data, "projectId"),
            assignee=_text(data, "assignee"),
            priority=TaskPriority.from_str(data.get("priority")),
            status=TaskStatus.from_str(data.get("status")),
            due_date=_text(data, "dueDate"),
            estimate_hrs=decode_number(data.get("estimateHrs"), "estimateHrs"),
            attachments=[Attachment.from_dict(a) for a in _list(data, "attachments")],
            comments=[Comment.from_dict(c) for c in _list(data, "comments")],
            updated_at=_text(data, "updatedAt"),
        )


@dataclass
class Milestone:
    date: str
    title: str


@dataclass
class Project:
    """A project with a date range and free-text milestones ("DATE - TITLE" per line)."""

    id: str
    name: str = ""
    start_date: str = ""
    end_date: str = ""
    milestones_text: str = ""

    def copy(self) -> "Project":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "milestonesText": self.milestones_text,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Project":
        data = _require_object(data, "Project")
        project_id = _text(data, "id", required=True)
        if not project_id:
            raise DecodeError("Project id must not be empty")
        return cls(
            id=project_id,
            name=_text(data, "name"),
            start_date=_text(data, "startDate"),
            end_date=_text(data, "endDate"),
            milestones_text=_text(data, "milestonesText"),
        )


@dataclass
class NotifySettings:
    """Default destinations per notification channel."""
    email: str = ""
    whatsapp: str = ""

    def for_channel(self, channel: Channel) -> str:
        return self.email if channel == Channel.EMAIL else self.whatsapp

    def to_dict(self) -> Dict[str, Any]:
        return {"email": self.email, "whatsapp": self.whatsapp}

    @classmethod
    def from_dict(cls, data: Any) -> "NotifySettings":
        data = _require_object(data, "Notification settings")
        return cls(email=_text(data, "email"), whatsapp=_text(data, "whatsapp"))


@dataclass
class Session:
    """An authenticated backend session."""
    user_id: str
    access_token: str
    email: str = ""
    refresh_token: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        data = _require_object(data, "Session")
        return cls(
            user_id=_text(data, "user_id", required=True),
            access_token=_text(data, "access_token", required=True),
            email=_text(data, "email"),
            refresh_token=_text(data, "refresh_token"),
        )


def decode_list(raw: Any, decoder: Callable[[Any], Any]) -> Tuple[list, List[str]]:
    """
    Decode a stored array record by record.

    Returns (records, errors). A non-list payload raises DecodeError; a bad
    record is reported in errors and left out of records.
    """
    if not isinstance(raw, list):
        raise DecodeError(f"Expected a list, got {type(raw).__name__}")
    records, errors = [], []
    for i, item in enumerate(raw):
        try:
            records.append(decoder(item))
        except DecodeError as e:
            errors.append(f"#{i}: {e}")
    return records, errors
