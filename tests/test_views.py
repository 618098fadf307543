"""
Tests for derived view data: filters, kanban, calendar, timeline, dashboard.
"""
from datetime import date, timedelta

from pkg.pmlite.schema import Project, Swimlane, Task, TaskPriority, TaskStatus
from pkg.pmlite.views import (
    assignees, calendar_month, dashboard, days_between, filter_tasks, kanban_board,
    milestones_to_text, overdue_tasks, parse_milestones, timeline,
)

PROJECTS = [Project(id="p1", name="Website")]
TASKS = [
    Task(id="t1", title="Design mock", project_id="p1", assignee="Sam", priority=TaskPriority.HIGH),
    Task(id="t2", title="Write copy", assignee="alex", status=TaskStatus.IN_PROGRESS),
    Task(id="t3", title="Deploy", project_id="p1", status=TaskStatus.DONE),
]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Filters
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_no_filters_returns_all():
    assert filter_tasks(TASKS) == TASKS


def test_filter_by_project_assignee_priority():
    assert [t.id for t in filter_tasks(TASKS, project_id="p1")] == ["t1", "t3"]
    assert [t.id for t in filter_tasks(TASKS, assignee="alex")] == ["t2"]
    assert [t.id for t in filter_tasks(TASKS, priority="High")] == ["t1"]
    assert [t.id for t in filter_tasks(TASKS, project_id="p1", priority="Medium")] == ["t3"]


def test_query_matches_title_or_assignee_case_insensitive():
    assert [t.id for t in filter_tasks(TASKS, query="MOCK")] == ["t1"]
    assert [t.id for t in filter_tasks(TASKS, query="ALE")] == ["t2"]
    assert filter_tasks(TASKS, query="nothing") == []


def test_assignees_sorted_distinct():
    tasks = TASKS + [Task(id="t4", assignee="Sam")]
    assert assignees(tasks) == ["Sam", "alex"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Kanban
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_board_without_swimlanes():
    board = kanban_board(TASKS, PROJECTS)
    assert list(board) == [TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.BLOCKED, TaskStatus.DONE]
    assert [t.id for t in board[TaskStatus.TODO][""]] == ["t1"]
    assert board[TaskStatus.BLOCKED] == {"": []}


def test_board_project_swimlanes():
    board = kanban_board(TASKS, PROJECTS, Swimlane.PROJECT)
    assert list(board[TaskStatus.TODO]) == ["Website"]
    assert list(board[TaskStatus.IN_PROGRESS]) == ["(No project)"]
    assert board[TaskStatus.BLOCKED] == {}


def test_board_assignee_and_priority_swimlanes():
    board = kanban_board(TASKS, PROJECTS, Swimlane.ASSIGNEE)
    assert list(board[TaskStatus.DONE]) == ["Unassigned"]
    board = kanban_board(TASKS, PROJECTS, Swimlane.PRIORITY)
    assert list(board[TaskStatus.TODO]) == ["High"]
    assert list(board[TaskStatus.DONE]) == ["Medium"]


def test_unknown_project_id_falls_in_no_project_lane():
    board = kanban_board([Task(id="x", project_id="gone")], PROJECTS, Swimlane.PROJECT)
    assert list(board[TaskStatus.TODO]) == ["(No project)"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Calendar
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_calendar_grid_shape_and_start():
    weeks = calendar_month([], 2024, 2)
    assert len(weeks) == 6
    assert all(len(w) == 7 for w in weeks)
    # 2024-02-01 is a Thursday, so the grid opens on Monday 29 January
    assert weeks[0][0].day == date(2024, 1, 29)
    assert weeks[0][0].in_month is False
    assert weeks[0][3].day == date(2024, 2, 1)
    assert weeks[0][3].in_month is True
    assert all(w[0].day.weekday() == 0 for w in weeks)


def test_calendar_places_tasks_on_due_date():
    task = Task(id="t1", title="Design mock", due_date="2024-01-01")
    weeks = calendar_month([task], 2024, 1)
    cell = weeks[0][0]
    assert cell.day == date(2024, 1, 1)
    assert [t.id for t in cell.tasks] == ["t1"]
    assert cell.to_dict()["date"] == "2024-01-01"


def test_calendar_orders_high_priority_then_status():
    day = "2024-03-05"
    tasks = [
        Task(id="low", due_date=day, priority=TaskPriority.LOW, status=TaskStatus.TODO),
        Task(id="high", due_date=day, priority=TaskPriority.HIGH, status=TaskStatus.TODO),
        Task(id="blocked", due_date=day, priority=TaskPriority.MEDIUM, status=TaskStatus.BLOCKED),
    ]
    cells = [c for w in calendar_month(tasks, 2024, 3) for c in w if c.day == date(2024, 3, 5)]
    assert [t.id for t in cells[0].tasks] == ["high", "blocked", "low"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Milestones / timeline
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_parse_milestones_skips_other_lines():
    text = "2024-02-01 - Beta\nnot a milestone\r\n  2024-03-01-Launch  \n2024-4-1 - Bad"
    assert [(m.date, m.title) for m in parse_milestones(text)] == [
        ("2024-02-01", "Beta"),
        ("2024-03-01", "Launch"),
    ]
    assert parse_milestones("") == []


def test_milestones_to_text_drops_blank_rows():
    rows = [{"date": "2024-02-01", "title": "Beta"}, {"date": "", "title": ""}, {"date": "2024-03-01", "title": "GA"}]
    text = milestones_to_text(rows)
    assert text == "2024-02-01 - Beta\n2024-03-01 - GA"
    assert len(parse_milestones(text)) == 2


def test_days_between():
    assert days_between("2024-01-01", "2024-01-31") == 30
    assert days_between("2024-01-31", "2024-01-01") == 30
    assert days_between("", "2024-01-01") == 0
    assert days_between("2024-01-01", "garbage") == 0


def test_timeline_geometry():
    projects = [
        Project(id="a", name="A", start_date="2024-01-01", end_date="2024-01-11",
                milestones_text="2024-01-11 - Beta\n2025-06-01 - Far away"),
        Project(id="b", name="B", start_date="2024-01-06", end_date="2024-01-21"),
        Project(id="c", name="C"),
    ]
    tl = timeline(projects)
    assert tl.start == date(2024, 1, 1)
    assert tl.end == date(2024, 1, 21)

    a, b, c = tl.items
    assert (a.left_pct, a.width_pct, a.days) == (0, 50, 10)
    assert (b.left_pct, b.width_pct) == (25, 75)
    assert (c.left_pct, c.width_pct, c.days) == (0, 0, 0)
    assert [m["left_pct"] for m in a.milestones] == [50, 100]


def test_timeline_minimum_bar_width():
    projects = [
        Project(id="a", start_date="2024-01-01", end_date="2024-12-31"),
        Project(id="b", start_date="2024-06-01", end_date="2024-06-01"),
    ]
    assert timeline(projects).items[1].width_pct == 0.5


def test_timeline_default_range():
    today = date(2024, 5, 1)
    tl = timeline([], today=today)
    assert tl.start == today
    assert tl.end == today + timedelta(days=30)
    assert tl.to_dict()["items"] == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Dashboard
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_dashboard_counts():
    today = date(2024, 1, 2)
    tasks = [
        Task(id="late", due_date="2024-01-01", estimate_hrs=2),
        Task(id="late-done", due_date="2023-12-01", status=TaskStatus.DONE, estimate_hrs=1.5),
        Task(id="today", due_date="2024-01-02", status=TaskStatus.BLOCKED),
        Task(id="undated"),
    ]
    stats = dashboard(tasks, PROJECTS, today)
    assert stats["total"] == 4
    assert stats["done"] == 1
    assert stats["overdue"] == 1
    assert stats["estimate_hrs"] == 3.5
    assert stats["projects"] == 1
    assert stats["by_status"] == {"Todo": 2, "In Progress": 0, "Blocked": 1, "Done": 1}


def test_overdue_sorted_and_limited():
    today = date(2024, 6, 1)
    tasks = [Task(id=f"t{i}", due_date=f"2024-01-{i:02d}") for i in range(25, 0, -1)]
    late = overdue_tasks(tasks, today)
    assert len(late) == 20
    assert late[0].due_date == "2024-01-01"
    assert [t.due_date for t in late] == sorted(t.due_date for t in late)
