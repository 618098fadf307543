"""
Hosted backend client (Supabase REST surface).

Covers the three services the app syncs with:
  auth     - passwordless email link sign-in, session lookup, sign-out
  tables   - "projects" and "tasks", row-level scoped by user_id
  storage  - "attachments" bucket, public URLs

Remote rows use snake_case column names; that naming is the backend's
contract and the row mappers below are the only place it appears. Every
failure surfaces as RemoteError; callers decide whether to swallow it.
"""
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .errors import RemoteError, DecodeError
from .schema import Task, Project, Attachment, Session, utc_now, plain_number

logger = logging.getLogger(__name__)

PROJECTS_TABLE = "projects"
TASKS_TABLE = "tasks"
ATTACHMENTS_BUCKET = "attachments"


# ── Row mapping ──────────────────────────────────────────────────────────────

def _row_id(row: Dict[str, Any]) -> str:
    value = row.get("id")
    if value is None or value == "":
        raise DecodeError("Row is missing an id")
    return str(value)


def row_to_project(row: Dict[str, Any]) -> Project:
    """Remote projects row -> Project."""
    if not isinstance(row, dict):
        raise DecodeError("Project row must be an object")
    return Project.from_dict({
        "id": _row_id(row),
        "name": row.get("name") or "",
        "startDate": row.get("start_date") or "",
        "endDate": row.get("end_date") or "",
        "milestonesText": row.get("milestones_text") or "",
    })


def row_to_task(row: Dict[str, Any]) -> Task:
    """Remote tasks row -> Task."""
    if not isinstance(row, dict):
        raise DecodeError("Task row must be an object")
    return Task.from_dict({
        "id": _row_id(row),
        "projectId": row.get("project_id") or "",
        "title": row.get("title") or "",
        "assignee": row.get("assignee") or "",
        "priority": row.get("priority") or "Medium",
        "status": row.get("status") or "Todo",
        "dueDate": row.get("due_date") or "",
        "estimateHrs": row.get("estimate_hrs") or 0,
        "attachments": row.get("attachments") or [],
        "comments": row.get("comments") or [],
        "updatedAt": row.get("updated_at") or "",
    })


def project_to_row(project: Project, user_id: str) -> Dict[str, Any]:
    """Project -> remote row payload, stamped with the owner and update time."""
    row = {
        "user_id": user_id,
        "name": project.name,
        "start_date": project.start_date or None,
        "end_date": project.end_date or None,
        "milestones_text": project.milestones_text or "",
        "updated_at": utc_now(),
    }
    if project.id:
        row["id"] = project.id
    return row


def task_to_row(task: Task, user_id: str) -> Dict[str, Any]:
    """Task -> remote row payload, stamped with the owner and update time."""
    row = {
        "user_id": user_id,
        "project_id": task.project_id or None,
        "title": task.title,
        "assignee": task.assignee or None,
        "priority": task.priority.value,
        "status": task.status.value,
        "due_date": task.due_date or None,
        "estimate_hrs": plain_number(float(task.estimate_hrs or 0)),
        "attachments": [a.to_dict() for a in task.attachments],
        "comments": [c.to_dict() for c in task.comments],
        "updated_at": utc_now(),
    }
    if task.id:
        row["id"] = task.id
    return row


def _json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        raise RemoteError(f"Invalid JSON from {response.url}", status=response.status_code)


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        for key in ("message", "msg", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)[:200]


# ── Client ───────────────────────────────────────────────────────────────────

class CloudClient:
    """HTTP client for the hosted backend. Disabled when url or key is missing."""

    def __init__(self, url: str = "", anon_key: str = "", timeout: Optional[float] = None):
        self.url = (url or "").rstrip("/")
        self.anon_key = anon_key or ""
        self.timeout = timeout
        self.session: Optional[Session] = None

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.anon_key)

    @property
    def user_id(self) -> Optional[str]:
        return self.session.user_id if self.session else None

    def _headers(self, token: Optional[str] = None) -> Dict[str, str]:
        if token is None:
            token = self.session.access_token if self.session else self.anon_key
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        token: Optional[str] = None,
    ) -> requests.Response:
        hdrs = self._headers(token)
        if headers:
            hdrs.update(headers)
        try:
            r = requests.request(
                method,
                f"{self.url}{path}",
                params=params,
                json=json_body,
                data=data,
                headers=hdrs,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteError(f"{method} {path} failed: {e}")
        if not r.ok:
            raise RemoteError(
                f"{method} {path} -> {r.status_code}: {_error_message(r)}",
                status=r.status_code,
            )
        return r

    # ── Auth ──

    def sign_in_with_email(self, email: str) -> None:
        """Send a magic sign-in link. Creates the user on first sign-in."""
        if not self.enabled:
            raise RemoteError("Cloud disabled: set supabase_url and supabase_anon_key.")
        self._request(
            "POST", "/auth/v1/otp",
            json_body={"email": email, "create_user": True},
            token=self.anon_key,
        )
        logger.info(f"Magic link sent to {email}")

    def set_session(self, access_token: str, refresh_token: str = "") -> Session:
        """Adopt the tokens from a followed magic link after checking them with the backend."""
        if not self.enabled:
            raise RemoteError("Cloud disabled: set supabase_url and supabase_anon_key.")
        r = self._request("GET", "/auth/v1/user", token=access_token)
        user = _json(r)
        if not isinstance(user, dict) or not user.get("id"):
            raise RemoteError("Auth server did not return a user")
        self.session = Session(
            user_id=str(user["id"]),
            email=user.get("email") or "",
            access_token=access_token,
            refresh_token=refresh_token,
        )
        return self.session

    def sign_out(self) -> None:
        """End the session. The local session is cleared even if the call fails."""
        session, self.session = self.session, None
        if not (self.enabled and session):
            return
        try:
            self._request("POST", "/auth/v1/logout", token=session.access_token)
        except RemoteError as e:
            logger.warning(f"Sign-out call failed: {e}")

    # ── Tables ──

    def _select(self, table: str) -> List[Dict[str, Any]]:
        r = self._request("GET", f"/rest/v1/{table}", params={"select": "*", "order": "created_at.asc"})
        rows = _json(r)
        if not isinstance(rows, list):
            raise RemoteError(f"Unexpected response for {table}: expected a list")
        return rows

    def _upsert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        r = self._request(
            "POST", f"/rest/v1/{table}",
            json_body=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )
        rows = _json(r)
        if isinstance(rows, list):
            if not rows:
                raise RemoteError(f"Upsert into {table} returned no row")
            return rows[0]
        return rows

    def _delete(self, table: str, row_id: str) -> None:
        self._request("DELETE", f"/rest/v1/{table}", params={"id": f"eq.{row_id}"})

    def fetch_projects(self) -> List[Project]:
        if not self.enabled:
            return []
        return [row_to_project(r) for r in self._select(PROJECTS_TABLE)]

    def fetch_tasks(self) -> List[Task]:
        if not self.enabled:
            return []
        return [row_to_task(r) for r in self._select(TASKS_TABLE)]

    def upsert_project(self, project: Project) -> Project:
        if not (self.enabled and self.session):
            return project
        return row_to_project(self._upsert(PROJECTS_TABLE, project_to_row(project, self.session.user_id)))

    def upsert_task(self, task: Task) -> Task:
        if not (self.enabled and self.session):
            return task
        return row_to_task(self._upsert(TASKS_TABLE, task_to_row(task, self.session.user_id)))

    def delete_project(self, project_id: str) -> None:
        if not self.enabled:
            return
        self._delete(PROJECTS_TABLE, project_id)

    def delete_task(self, task_id: str) -> None:
        if not self.enabled:
            return
        self._delete(TASKS_TABLE, task_id)

    # ── Storage ──

    def public_url(self, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{ATTACHMENTS_BUCKET}/{quote(path)}"

    def upload_attachment(
        self,
        filename: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> Attachment:
        """Upload bytes under {user_id}/{epoch_ms}_{filename}; never overwrites."""
        if not self.enabled:
            raise RemoteError("Cloud disabled.")
        if not self.session:
            raise RemoteError("Sign in first.")
        path = f"{self.session.user_id}/{int(time.time() * 1000)}_{filename}"
        self._request(
            "POST", f"/storage/v1/object/{ATTACHMENTS_BUCKET}/{quote(path)}",
            data=data,
            headers={"Content-Type": content_type or "application/octet-stream", "x-upsert": "false"},
        )
        return Attachment(name=filename, url=self.public_url(path), size=len(data))
