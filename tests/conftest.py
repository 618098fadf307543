"""Shared fixtures for PM Lite tests."""

import sys
from pathlib import Path

import pytest

# Ensure the repository root (pkg/, pm_server.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.pmlite.errors import RemoteError
from pkg.pmlite.notify import Notifier, NotifySettingsStore, SIMULATED
from pkg.pmlite.remote import CloudClient
from pkg.pmlite.schema import Attachment, Channel, Session
from pkg.pmlite.storage import LocalStorage
from pkg.pmlite.workspace import Workspace


class RecordingNotifier(Notifier):
    """Notifier that records messages instead of POSTing them."""

    def __init__(self, settings):
        super().__init__("", settings)
        self.sent = []

    def notify(self, channel, subject, message, to=None):
        channel = Channel.from_str(channel)
        self.sent.append({
            "channel": channel.value,
            "to": to or self.settings.get().for_channel(channel),
            "subject": subject,
            "message": message,
        })
        return dict(SIMULATED)


class FakeCloud(CloudClient):
    """CloudClient with in-memory tables in place of HTTP."""

    def __init__(self):
        super().__init__("https://example.supabase.co", "anon-key")
        self.remote_tasks = []
        self.remote_projects = []
        self.upserted = []
        self.deleted = []
        self.magic_links = []
        self.fail = None

    def _check(self):
        if self.fail is not None:
            raise self.fail

    def sign_in_with_email(self, email):
        self._check()
        self.magic_links.append(email)

    def set_session(self, access_token, refresh_token=""):
        self._check()
        self.session = Session(user_id="user-1", access_token=access_token,
                               email="me@example.com", refresh_token=refresh_token)
        return self.session

    def sign_out(self):
        self.session = None

    def fetch_projects(self):
        self._check()
        return [p.copy() for p in self.remote_projects]

    def fetch_tasks(self):
        self._check()
        return [t.copy() for t in self.remote_tasks]

    def upsert_project(self, project):
        self._check()
        self.upserted.append(("projects", project.id))
        return project

    def upsert_task(self, task):
        self._check()
        self.upserted.append(("tasks", task.id))
        return task

    def delete_project(self, project_id):
        self._check()
        self.deleted.append(("projects", project_id))

    def delete_task(self, task_id):
        self._check()
        self.deleted.append(("tasks", task_id))

    def upload_attachment(self, filename, data, content_type="application/octet-stream"):
        self._check()
        if not self.session:
            raise RemoteError("Sign in first.")
        return Attachment(name=filename, url=f"{self.url}/files/{filename}", size=len(data))


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / "pmlite.db"))


@pytest.fixture
def notifier(storage):
    return RecordingNotifier(NotifySettingsStore(storage))


@pytest.fixture
def workspace(storage, notifier):
    ws = Workspace(storage, notifier=notifier, background=False).open()
    yield ws
    ws.close()


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def cloud_workspace(storage, notifier, cloud):
    ws = Workspace(storage, cloud=cloud, notifier=notifier, background=False).open()
    yield ws
    ws.close()
