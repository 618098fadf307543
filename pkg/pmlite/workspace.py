"""
PM Lite Workspace
─────────────────
Application root: owns the task/project lists and wires local storage, the
hosted backend, realtime changes and notifications together.

Every mutation commits to memory under one lock, persists locally right
away, then hands remote sync and notifications to a background pool. A
failed background call is logged and never rolls back local state.

Usage:
    with Workspace.from_config(Config.load()) as ws:
        task = ws.save_task(ws.new_task(title="Design mock"))
"""
import base64
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import Config
from .errors import DecodeError, NotFoundError, RemoteError, ValidationError
from .export import export_backup, import_backup
from .migrate import run_migrations
from .notify import DEFAULT_EMAIL_TO, DEFAULT_WHATSAPP_TO, Notifier, NotifySettingsStore
from .reconcile import (
    ChangeEvent, RealtimeFeed, apply_change, clear_project_refs, remove_by_id, upsert_by_id,
)
from .remote import CloudClient, PROJECTS_TABLE, TASKS_TABLE
from .schema import (
    Attachment, Comment, NotifySettings, Project, Session, Task, TaskPriority, TaskStatus,
    decode_list, decode_number, make_id, utc_now,
)
from .storage import LocalStorage, TASKS_KEY, PROJECTS_KEY, SESSION_KEY

logger = logging.getLogger(__name__)

SYNC_WORKERS = 4


class Workspace:
    """Explicit application handle; one per process (or per test)."""

    def __init__(
        self,
        storage: LocalStorage,
        cloud: Optional[CloudClient] = None,
        notifier: Optional[Notifier] = None,
        background: bool = True,
    ):
        self.storage = storage
        self.cloud = cloud or CloudClient()
        self.notifier = notifier or Notifier("", NotifySettingsStore(storage))
        self.tasks: List[Task] = []
        self.projects: List[Project] = []
        self.feed: Optional[RealtimeFeed] = None
        self._lock = threading.RLock()
        self._executor = (
            ThreadPoolExecutor(max_workers=SYNC_WORKERS, thread_name_prefix="pmlite-sync")
            if background else None
        )

    @classmethod
    def from_config(cls, cfg: Config) -> "Workspace":
        storage = LocalStorage(cfg.db_path)
        defaults = NotifySettings(
            email=cfg.notify_email_to or DEFAULT_EMAIL_TO,
            whatsapp=cfg.notify_whatsapp_to or DEFAULT_WHATSAPP_TO,
        )
        return cls(
            storage,
            cloud=CloudClient(cfg.supabase_url, cfg.supabase_anon_key, timeout=cfg.request_timeout),
            notifier=Notifier(cfg.notify_url, NotifySettingsStore(storage, defaults), timeout=cfg.request_timeout),
            background=cfg.background_sync,
        )

    # ── Lifecycle ──

    def open(self) -> "Workspace":
        """Load local state (migrating it if needed) and restore a saved session."""
        self._load_local()
        self._restore_session()
        logger.info(f"Workspace open: {len(self.tasks)} tasks, {len(self.projects)} projects")
        return self

    def close(self):
        """Stop the realtime feed and wait for in-flight background calls."""
        if self.feed:
            self.feed.close()
            self.feed = None
        if self._executor:
            self._executor.shutdown(wait=True)

    def __enter__(self) -> "Workspace":
        return self.open()

    def __exit__(self, *exc):
        self.close()

    def reload(self):
        """Re-read local storage, e.g. after a backup import."""
        self._load_local()

    def _load_local(self):
        raw_tasks = self.storage.load(TASKS_KEY, [])
        raw_projects = self.storage.load(PROJECTS_KEY, [])
        raw_tasks, raw_projects = run_migrations(self.storage, raw_tasks, raw_projects)
        tasks = self._decode(raw_tasks, Task.from_dict, "task")
        projects = self._decode(raw_projects, Project.from_dict, "project")
        with self._lock:
            self.tasks, self.projects = tasks, projects

    @staticmethod
    def _decode(raw: List[Any], decoder: Callable[[Any], Any], what: str) -> list:
        records, errors = decode_list(raw, decoder)
        for err in errors:
            logger.warning(f"Dropping stored {what} {err}")
        return records

    def _restore_session(self):
        raw = self.storage.load(SESSION_KEY)
        if not raw or not self.cloud.enabled:
            return
        try:
            self.cloud.session = Session.from_dict(raw)
        except DecodeError as e:
            logger.warning(f"Discarding stored session: {e}")
            self.storage.delete(SESSION_KEY)
            return
        self._open_feed()
        try:
            self._load_from_cloud()
        except (RemoteError, DecodeError) as e:
            logger.warning(f"Cloud load failed, keeping local data: {e}")

    # ── Background dispatch ──

    def _dispatch(self, what: str, fn: Callable, *args) -> Optional[Future]:
        """Run a remote/notification call off the request path. Errors are logged only."""
        def _run():
            try:
                return fn(*args)
            except Exception as e:
                logger.warning(f"{what} failed: {e}")
                return None

        if self._executor is None:
            _run()
            return None
        return self._executor.submit(_run)

    @property
    def signed_in(self) -> bool:
        return bool(self.cloud.enabled and self.cloud.session)

    def _push_task(self, task: Task):
        if self.signed_in:
            self._dispatch(f"Cloud upsert of task {task.id}", self.cloud.upsert_task, task.copy())

    def _push_project(self, project: Project):
        if self.signed_in:
            self._dispatch(f"Cloud upsert of project {project.id}", self.cloud.upsert_project, project.copy())

    # ── Persistence ──

    def _persist_tasks(self):
        self.storage.save(TASKS_KEY, [t.to_dict() for t in self.tasks])

    def _persist_projects(self):
        self.storage.save(PROJECTS_KEY, [p.to_dict() for p in self.projects])

    # ── Queries ──

    def snapshot(self) -> Tuple[List[Task], List[Project]]:
        with self._lock:
            return list(self.tasks), list(self.projects)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return next((t for t in self.tasks if t.id == task_id), None)

    def get_project(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return next((p for p in self.projects if p.id == project_id), None)

    def _require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    # ── Tasks ──

    def new_task(self, **fields: Any) -> Task:
        """Blank task with a fresh id; keyword arguments preset fields (e.g. due_date)."""
        return Task(id=make_id(), **fields)

    def save_task(self, task: Task) -> Task:
        """
        Validate, normalise and store a task (create or update).

        Raises ValidationError for an empty title or a negative or non-numeric
        estimate, leaving state untouched.
        A changed status also sends the status-change notification.
        """
        title = (task.title or "").strip()
        if not title:
            raise ValidationError("Please enter a title")
        try:
            estimate = decode_number(task.estimate_hrs, "estimateHrs")
        except DecodeError:
            raise ValidationError("Estimate must be a non-negative number of hours")
        saved = task.copy()
        saved.id = saved.id or make_id()
        saved.title = title
        saved.priority = TaskPriority.from_str(saved.priority)
        saved.status = TaskStatus.from_str(saved.status)
        saved.estimate_hrs = estimate
        saved.updated_at = utc_now()

        with self._lock:
            previous = self.get_task(saved.id)
            self.tasks = upsert_by_id(self.tasks, saved)
            self._persist_tasks()

        self._push_task(saved)
        if previous is not None and previous.status != saved.status:
            self._dispatch("Status notification", self.notifier.status_changed,
                           saved.copy(), previous.status, saved.status)
        self._dispatch("Task notification", self.notifier.task_saved, saved.copy(), previous is None)
        return saved

    def delete_task(self, task_id: str) -> bool:
        with self._lock:
            if self.get_task(task_id) is None:
                return False
            self.tasks = remove_by_id(self.tasks, task_id)
            self._persist_tasks()
        if self.signed_in:
            self._dispatch(f"Cloud delete of task {task_id}", self.cloud.delete_task, task_id)
        return True

    def move_task(self, task_id: str, status: Any) -> Optional[Task]:
        """
        Kanban drop: set a new status.

        Unknown ids give None. Moving to the current status changes nothing
        and sends nothing.
        """
        status = TaskStatus.from_str(status)
        with self._lock:
            task = self.get_task(task_id)
            if task is None:
                return None
            if task.status == status:
                return task
            old = task.status
            moved = task.copy()
            moved.status = status
            moved.updated_at = utc_now()
            self.tasks = upsert_by_id(self.tasks, moved)
            self._persist_tasks()

        logger.info(f"Task {task_id}: {old.value} → {status.value}")
        self._push_task(moved)
        self._dispatch("Status notification", self.notifier.status_changed, moved.copy(), old, status)
        return moved

    def add_comment(self, task_id: str, text: str, author: str = "") -> Comment:
        text = str(text or "").strip()
        if not text:
            raise ValidationError("Comment text is empty")
        comment = Comment(id=make_id(), author=str(author or "").strip(), text=text, ts=utc_now())
        with self._lock:
            task = self._require_task(task_id).copy()
            task.comments.append(comment)
            task.updated_at = utc_now()
            self.tasks = upsert_by_id(self.tasks, task)
            self._persist_tasks()
        self._push_task(task)
        self._dispatch("Comment notification", self.notifier.new_comment, task.copy(), comment)
        return comment

    def add_attachment(
        self,
        task_id: str,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> Attachment:
        """
        Attach a file to a task.

        With the cloud enabled the bytes are uploaded first; an upload error
        raises RemoteError and the task is left unchanged. Without the cloud
        the file is kept inline as a data: URL.
        """
        if not filename:
            raise ValidationError("Attachment needs a file name")
        self._require_task(task_id)
        if self.cloud.enabled:
            attachment = self.cloud.upload_attachment(filename, data, content_type)
        else:
            encoded = base64.b64encode(data).decode("ascii")
            ctype = content_type or "application/octet-stream"
            attachment = Attachment(name=filename, url=f"data:{ctype};base64,{encoded}", size=len(data))

        with self._lock:
            task = self._require_task(task_id).copy()
            task.attachments.append(attachment)
            task.updated_at = utc_now()
            self.tasks = upsert_by_id(self.tasks, task)
            self._persist_tasks()
        self._push_task(task)
        return attachment

    def remove_attachment(self, task_id: str, name: str) -> Task:
        """Drop every attachment with this name. Stored objects are not deleted."""
        with self._lock:
            task = self._require_task(task_id).copy()
            task.attachments = [a for a in task.attachments if a.name != name]
            task.updated_at = utc_now()
            self.tasks = upsert_by_id(self.tasks, task)
            self._persist_tasks()
        self._push_task(task)
        return task

    # ── Projects ──

    def new_project(self, **fields: Any) -> Project:
        return Project(id=make_id(), **fields)

    def save_project(self, project: Project) -> Project:
        name = (project.name or "").strip()
        if not name:
            raise ValidationError("Please enter a project name")
        saved = project.copy()
        saved.id = saved.id or make_id()
        saved.name = name
        with self._lock:
            self.projects = upsert_by_id(self.projects, saved)
            self._persist_projects()
        self._push_project(saved)
        return saved

    def delete_project(self, project_id: str) -> bool:
        """Remove a project and unassign its tasks; the tasks themselves stay."""
        with self._lock:
            if self.get_project(project_id) is None:
                return False
            self.projects = remove_by_id(self.projects, project_id)
            self.tasks = clear_project_refs(self.tasks, project_id)
            self._persist_projects()
            self._persist_tasks()
        if self.signed_in:
            self._dispatch(f"Cloud delete of project {project_id}", self.cloud.delete_project, project_id)
        return True

    # ── Realtime ──

    def _open_feed(self):
        if self.feed:
            self.feed.close()
        self.feed = RealtimeFeed(self.cloud.user_id)
        self.feed.subscribe(PROJECTS_TABLE, self._on_change)
        self.feed.subscribe(TASKS_TABLE, self._on_change)

    def _on_change(self, event: ChangeEvent):
        with self._lock:
            self.tasks, self.projects = apply_change(self.tasks, self.projects, event)
            if event.table == PROJECTS_TABLE:
                self._persist_projects()
            self._persist_tasks()

    def apply_change(self, payload: Any) -> Optional[ChangeEvent]:
        """
        Fold one backend change event into local state.

        Returns None when there is no open feed (not signed in) or the row
        belongs to another user. Malformed payloads raise DecodeError.
        """
        if self.feed is None:
            logger.debug("Change event ignored: no realtime subscription")
            return None
        return self.feed.dispatch(payload)

    # ── Auth / sync ──

    def sign_in(self, email: str):
        """Request a magic sign-in link for email."""
        email = str(email or "").strip()
        if not email:
            raise ValidationError("Email is required")
        self.cloud.sign_in_with_email(email)

    def complete_sign_in(self, access_token: str, refresh_token: str = "") -> Session:
        """
        Adopt the session from a followed magic link.

        Persists the session, replaces local tasks and projects with the
        cloud copy, and opens the realtime feed.
        """
        session = self.cloud.set_session(access_token, refresh_token)
        self.storage.save(SESSION_KEY, session.to_dict())
        self._load_from_cloud()
        self._open_feed()
        logger.info(f"Signed in as {session.email or session.user_id}")
        return session

    def sign_out(self):
        """End the cloud session. Local tasks and projects are kept."""
        self.cloud.sign_out()
        self.storage.delete(SESSION_KEY)
        if self.feed:
            self.feed.close()
            self.feed = None

    def _load_from_cloud(self):
        projects = self.cloud.fetch_projects()
        tasks = self.cloud.fetch_tasks()
        with self._lock:
            self.projects, self.tasks = projects, tasks
            self._persist_projects()
            self._persist_tasks()

    def sync_to_cloud(self) -> Dict[str, int]:
        """Push every local project, then every task. Errors raise to the caller."""
        if not self.cloud.enabled:
            raise RemoteError("Cloud disabled.")
        if not self.cloud.session:
            raise RemoteError("Sign in first.")
        tasks, projects = self.snapshot()
        for p in projects:
            self.cloud.upsert_project(p)
        for t in tasks:
            self.cloud.upsert_task(t)
        logger.info(f"Synced {len(projects)} projects and {len(tasks)} tasks to cloud")
        return {"projects": len(projects), "tasks": len(tasks)}

    # ── Settings / backup ──

    def notify_settings(self) -> NotifySettings:
        return self.notifier.settings.get()

    def update_notify_settings(self, **changes: Any) -> NotifySettings:
        return self.notifier.settings.update(**changes)

    def send_test_notification(self, channel: Any) -> Dict[str, Any]:
        return self.notifier.send_test(channel)

    def export_backup(self) -> Dict[str, Any]:
        return export_backup(self.storage)

    def import_backup(self, document: Any) -> List[str]:
        """Restore stored payloads from a backup, then reload. BackupError aborts before reload."""
        keys = import_backup(self.storage, document)
        self.reload()
        return keys
