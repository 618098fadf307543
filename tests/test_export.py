"""
Tests for CSV export and JSON backup import/export.
"""
import json
from datetime import date

import pytest

from pkg.pmlite.errors import BackupError
from pkg.pmlite.export import (
    CSV_COLUMNS, backup_filename, csv_filename, export_backup, import_backup, tasks_csv_rows, to_csv,
)
from pkg.pmlite.schema import Project, Task
from pkg.pmlite.storage import LocalStorage, NOTIFY_KEY, PROJECTS_KEY, TASKS_KEY


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CSV
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_csv_rows_fixed_columns():
    rows = tasks_csv_rows(
        [Task(id="t1", title="Design", project_id="p1", estimate_hrs=2.0), Task(id="t2", title="Loose")],
        [Project(id="p1", name="Website")],
    )
    assert tuple(rows[0]) == CSV_COLUMNS
    assert rows[0]["project"] == "Website"
    assert rows[0]["estimateHrs"] == 2
    assert rows[1]["project"] == ""


def test_to_csv_has_header_plus_one_line_per_task():
    tasks = [Task(id=f"t{i}", title=f"Task {i}") for i in range(5)]
    lines = to_csv(tasks_csv_rows(tasks, [])).split("\n")
    assert len(lines) == 6
    assert lines[0] == ",".join(CSV_COLUMNS)
    assert lines[1].startswith('"t0","","Task 0",')


def test_to_csv_escaping():
    csv = to_csv([{"a": 'He said "hi"', "b": "line1\nline2", "c": None}])
    assert csv == 'a,b,c\n"He said ""hi""","line1 line2",""'


def test_to_csv_empty_is_header_only():
    assert to_csv([]) == ",".join(CSV_COLUMNS)
    assert to_csv([], columns=("a", "b")) == "a,b"


def test_filenames():
    assert csv_filename(date(2024, 1, 2)) == "tasks_2024-01-02.csv"
    assert backup_filename(date(2024, 1, 2)) == "pm-backup-2024-01-02.json"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Backup
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_export_backup_shape(storage):
    storage.save(TASKS_KEY, [{"id": "t1"}])
    backup = export_backup(storage, now="2024-01-01T00:00:00.000Z")
    assert backup == {
        TASKS_KEY: [{"id": "t1"}],
        PROJECTS_KEY: [],
        NOTIFY_KEY: {},
        "exportedAt": "2024-01-01T00:00:00.000Z",
    }


def test_import_restores_exported_state(storage, tmp_path):
    storage.save(TASKS_KEY, [{"id": "t1", "title": "A"}])
    storage.save(PROJECTS_KEY, [{"id": "p1", "name": "Site"}])
    storage.save(NOTIFY_KEY, {"email": "a@b.c", "whatsapp": "+1"})
    text = json.dumps(export_backup(storage), indent=2)

    fresh = LocalStorage(str(tmp_path / "fresh.db"))
    written = import_backup(fresh, text)

    assert written == [TASKS_KEY, PROJECTS_KEY, NOTIFY_KEY]
    for key in written:
        assert fresh.load(key) == storage.load(key)


def test_import_only_writes_present_keys(storage):
    storage.save(PROJECTS_KEY, [{"id": "keep"}])
    assert import_backup(storage, {TASKS_KEY: [], PROJECTS_KEY: None}) == [TASKS_KEY]
    assert storage.load(PROJECTS_KEY) == [{"id": "keep"}]
    assert storage.load(TASKS_KEY, "unset") == []


@pytest.mark.parametrize("document", [
    "{not json",
    "[1, 2]",
    b"\xff\xfe",
    {TASKS_KEY: {"id": "t1"}},
    {NOTIFY_KEY: ["x"]},
])
def test_import_rejects_bad_documents_without_writing(storage, document):
    storage.save(TASKS_KEY, [{"id": "before"}])
    with pytest.raises(BackupError):
        import_backup(storage, document)
    assert storage.load(TASKS_KEY) == [{"id": "before"}]
