"""
Derived data behind each screen: task filters, kanban columns and swimlanes,
the calendar month grid, the project timeline (Gantt) and dashboard KPIs.

Everything here is a pure function of the task/project lists.
"""
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .schema import Milestone, Project, Swimlane, Task, TaskPriority, TaskStatus, STATUSES

MILESTONE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\s*-\s*(.*)$")
NO_PROJECT = "(No project)"
UNASSIGNED = "Unassigned"
CALENDAR_WEEKS = 6
OVERDUE_LIMIT = 20
DEFAULT_TIMELINE_DAYS = 30


def to_date(value: str) -> Optional[date]:
    """YYYY-MM-DD -> date, None when empty or invalid."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def days_between(a: str, b: str) -> int:
    """Whole days between two ISO dates (absolute); 0 when either is missing."""
    da, db = to_date(a), to_date(b)
    if not da or not db:
        return 0
    return abs((db - da).days)


# ── Filters ──────────────────────────────────────────────────────────────────

def filter_tasks(
    tasks: List[Task],
    project_id: str = "",
    assignee: str = "",
    priority: str = "",
    query: str = "",
) -> List[Task]:
    """Task list filters; empty arguments do not filter."""
    q = (query or "").lower()
    out = []
    for t in tasks:
        if project_id and t.project_id != project_id:
            continue
        if assignee and (t.assignee or "") != assignee:
            continue
        if priority and t.priority.value != priority:
            continue
        if q and q not in t.title.lower() and q not in t.assignee.lower():
            continue
        out.append(t)
    return out


def assignees(tasks: List[Task]) -> List[str]:
    return sorted({t.assignee for t in tasks if t.assignee})


# ── Kanban ───────────────────────────────────────────────────────────────────

def _lane_key(task: Task, swimlane: Swimlane, project_names: Dict[str, str]) -> str:
    if swimlane == Swimlane.PROJECT:
        return project_names.get(task.project_id) or NO_PROJECT
    if swimlane == Swimlane.ASSIGNEE:
        return task.assignee or UNASSIGNED
    if swimlane == Swimlane.PRIORITY:
        return task.priority.value
    return ""


def kanban_board(
    tasks: List[Task],
    projects: List[Project],
    swimlane: Swimlane = Swimlane.NONE,
) -> Dict[TaskStatus, Dict[str, List[Task]]]:
    """
    Status columns in board order, each split into swimlanes.

    With Swimlane.NONE every column holds a single lane keyed "" (present even
    when empty). Otherwise lanes appear in order of their first task.
    """
    project_names = {p.id: p.name for p in projects}
    board: Dict[TaskStatus, Dict[str, List[Task]]] = {}
    for status in STATUSES:
        column = [t for t in tasks if t.status == status]
        if swimlane == Swimlane.NONE:
            board[status] = {"": column}
            continue
        lanes: Dict[str, List[Task]] = {}
        for t in column:
            lanes.setdefault(_lane_key(t, swimlane, project_names), []).append(t)
        board[status] = lanes
    return board


# ── Calendar ─────────────────────────────────────────────────────────────────

@dataclass
class CalendarCell:
    day: date
    in_month: bool
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "in_month": self.in_month,
            "tasks": [t.to_dict() for t in self.tasks],
        }


def tasks_by_due_date(tasks: List[Task]) -> Dict[str, List[Task]]:
    """Group by due date; within a day High priority first, then by status."""
    by_date: Dict[str, List[Task]] = {}
    for t in tasks:
        if t.due_date:
            by_date.setdefault(t.due_date, []).append(t)
    for day_tasks in by_date.values():
        day_tasks.sort(key=lambda t: (t.priority != TaskPriority.HIGH, t.status.value))
    return by_date


def calendar_month(tasks: List[Task], year: int, month: int) -> List[List[CalendarCell]]:
    """Six Monday-first weeks covering the given month."""
    month_start = date(year, month, 1)
    day = month_start - timedelta(days=month_start.weekday())
    by_date = tasks_by_due_date(tasks)
    weeks = []
    for _ in range(CALENDAR_WEEKS):
        week = []
        for _ in range(7):
            week.append(CalendarCell(
                day=day,
                in_month=day.month == month,
                tasks=list(by_date.get(day.isoformat(), [])),
            ))
            day += timedelta(days=1)
        weeks.append(week)
    return weeks


# ── Milestones / timeline ────────────────────────────────────────────────────

def parse_milestones(text: str) -> List[Milestone]:
    """Lines of the form "YYYY-MM-DD - Title"; anything else is skipped."""
    out = []
    for line in re.split(r"\r?\n", text or ""):
        m = MILESTONE_RE.match(line.strip())
        if m:
            out.append(Milestone(date=m.group(1), title=m.group(2)))
    return out


def milestones_to_text(rows: List[Dict[str, str]]) -> str:
    """Inverse of parse_milestones for form rows; fully blank rows are dropped."""
    lines = []
    for r in rows:
        d, title = (r.get("date") or ""), (r.get("title") or "")
        if d or title:
            lines.append(f"{d} - {title}".strip())
    return "\n".join(lines)


@dataclass
class TimelineItem:
    id: str
    name: str
    start: Optional[date]
    end: Optional[date]
    days: int
    left_pct: float
    width_pct: float
    milestones: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name or "(untitled)",
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "days": self.days,
            "left_pct": self.left_pct,
            "width_pct": self.width_pct,
            "milestones": self.milestones,
        }


@dataclass
class Timeline:
    start: date
    end: date
    items: List[TimelineItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "items": [i.to_dict() for i in self.items],
        }


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def timeline(projects: List[Project], today: Optional[date] = None) -> Timeline:
    """Gantt geometry: bar offsets/widths and milestone offsets as percentages of the range."""
    today = today or date.today()
    starts = [d for d in (to_date(p.start_date) for p in projects) if d]
    ends = [d for d in (to_date(p.end_date) for p in projects) if d]
    range_start = min(starts) if starts else today
    range_end = max(ends) if ends else range_start + timedelta(days=DEFAULT_TIMELINE_DAYS)
    span = max((range_end - range_start).days, 1)

    def pct(d: date) -> float:
        return (d - range_start).days / span * 100

    items = []
    for p in projects:
        start, end = to_date(p.start_date), to_date(p.end_date)
        if start and end:
            left = _clamp(pct(start), 0, 100)
            width = _clamp((end - start).days / span * 100, 0.5, 100)
        else:
            left = width = 0.0
        milestones = []
        for m in parse_milestones(p.milestones_text):
            d = to_date(m.date)
            if d:
                milestones.append({"date": m.date, "title": m.title, "left_pct": _clamp(pct(d), 0, 100)})
        items.append(TimelineItem(
            id=p.id,
            name=p.name,
            start=start,
            end=end,
            days=days_between(p.start_date, p.end_date),
            left_pct=left,
            width_pct=width,
            milestones=milestones,
        ))
    return Timeline(start=range_start, end=range_end, items=items)


# ── Dashboard ────────────────────────────────────────────────────────────────

def is_overdue(task: Task, today: date) -> bool:
    due = to_date(task.due_date)
    return bool(due and task.status != TaskStatus.DONE and due < today)


def overdue_tasks(tasks: List[Task], today: Optional[date] = None, limit: int = OVERDUE_LIMIT) -> List[Task]:
    """Not-done tasks due before today, earliest first."""
    today = today or date.today()
    late = [t for t in tasks if is_overdue(t, today)]
    late.sort(key=lambda t: t.due_date)
    return late[:limit]


def dashboard(tasks: List[Task], projects: List[Project], today: Optional[date] = None) -> Dict[str, Any]:
    """KPI counts: totals, done, overdue, estimated hours, projects and per-status counts."""
    today = today or date.today()
    by_status = {s.value: 0 for s in STATUSES}
    done = overdue = 0
    estimate = 0.0
    for t in tasks:
        by_status[t.status.value] += 1
        if t.status == TaskStatus.DONE:
            done += 1
        estimate += float(t.estimate_hrs or 0)
        if is_overdue(t, today):
            overdue += 1
    return {
        "total": len(tasks),
        "done": done,
        "overdue": overdue,
        "estimate_hrs": estimate,
        "projects": len(projects),
        "by_status": by_status,
    }
