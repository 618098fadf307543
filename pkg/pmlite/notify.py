"""
Outbound notifications.

Messages are POSTed once to the notify endpoint as
{channel, to, subject, message}. Delivery is best effort: a network error,
non-2xx answer or unreadable body is logged and reported as a simulated
success. There is no retry and no queue.

handle_notify_request() is the reference endpoint: it validates and logs the
message and answers {ok: true, delivered: false, simulated: true}.
"""
import logging
from typing import Any, Dict, Optional, Tuple

import requests

from .errors import DecodeError
from .schema import Channel, Comment, NotifySettings, Task, TaskStatus
from .storage import LocalStorage, NOTIFY_KEY

logger = logging.getLogger(__name__)

DEFAULT_EMAIL_TO = "ops@example.com"
DEFAULT_WHATSAPP_TO = "+9665xxxxxxx"

SIMULATED = {"ok": True, "delivered": False, "simulated": True}
REQUIRED_FIELDS = ("channel", "to", "subject", "message")


# ── Settings ─────────────────────────────────────────────────────────────────

class NotifySettingsStore:
    """Default destinations: stored values win over deployment defaults."""

    def __init__(self, storage: LocalStorage, defaults: Optional[NotifySettings] = None):
        self.storage = storage
        self.defaults = defaults or NotifySettings(email=DEFAULT_EMAIL_TO, whatsapp=DEFAULT_WHATSAPP_TO)

    def get(self) -> NotifySettings:
        raw = self.storage.load(NOTIFY_KEY, {})
        try:
            stored = NotifySettings.from_dict(raw)
        except DecodeError as e:
            logger.warning(f"Ignoring stored notification settings: {e}")
            stored = NotifySettings()
        return NotifySettings(
            email=stored.email or self.defaults.email,
            whatsapp=stored.whatsapp or self.defaults.whatsapp,
        )

    def update(self, **changes: Any) -> NotifySettings:
        """Merge changes over the current settings and persist the result."""
        merged = self.get().to_dict()
        for key in ("email", "whatsapp"):
            if changes.get(key) is not None:
                merged[key] = str(changes[key]).strip()
        self.storage.save(NOTIFY_KEY, merged)
        return self.get()


# ── Message builders ─────────────────────────────────────────────────────────

def task_saved_message(task: Task, is_new: bool) -> Tuple[Channel, str, str]:
    subject = f"New task: {task.title}" if is_new else f"Task updated: {task.title}"
    message = (
        f"Status: {task.status.value}\n"
        f"Assignee: {task.assignee or 'Unassigned'}\n"
        f"Due: {task.due_date or 'TBD'}"
    )
    return Channel.EMAIL, subject, message


def status_change_message(task: Task, old: TaskStatus, new: TaskStatus) -> Tuple[Channel, str, str]:
    subject = f"Status: {task.title} → {new.value}"
    message = f"{old.value} → {new.value} · {task.assignee or 'Unassigned'} · Due {task.due_date or 'TBD'}"
    return Channel.WHATSAPP, subject, message


def new_comment_message(task: Task, comment: Comment) -> Tuple[Channel, str, str]:
    return Channel.EMAIL, f"New comment on {task.title}", f"{comment.author or 'Someone'}: {comment.text}"


def check_message(channel: Channel) -> Tuple[Channel, str, str]:
    label = "Email" if channel == Channel.EMAIL else "WhatsApp"
    return channel, f"PM Lite — Test {label}", "Test message"


# ── Dispatcher ───────────────────────────────────────────────────────────────

class Notifier:
    """Fire-and-forget, at-most-once notification sender."""

    def __init__(self, endpoint: str, settings: NotifySettingsStore, timeout: Optional[float] = None):
        self.endpoint = endpoint
        self.settings = settings
        self.timeout = timeout

    def notify(self, channel: Any, subject: str, message: str, to: Optional[str] = None) -> Dict[str, Any]:
        """Send one message. Delivery failures come back as a simulated success."""
        channel = Channel.from_str(channel)
        target = to or self.settings.get().for_channel(channel)
        payload = {"channel": channel.value, "to": target, "subject": subject, "message": message}

        if not self.endpoint:
            logger.info(f"[notify] no endpoint configured, simulated {channel.value} to {target}: {subject}")
            return dict(SIMULATED)

        try:
            r = requests.post(
                self.endpoint,
                json=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            if r.ok:
                body = r.json()
                if isinstance(body, dict):
                    return body
            else:
                logger.warning(f"Notify endpoint answered {r.status_code} for {subject!r}")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Notification {subject!r} to {target} failed: {e}")
        return dict(SIMULATED)

    def _send(self, built: Tuple[Channel, str, str]) -> Dict[str, Any]:
        channel, subject, message = built
        return self.notify(channel, subject, message)

    def task_saved(self, task: Task, is_new: bool) -> Dict[str, Any]:
        return self._send(task_saved_message(task, is_new))

    def status_changed(self, task: Task, old: TaskStatus, new: TaskStatus) -> Dict[str, Any]:
        return self._send(status_change_message(task, old, new))

    def new_comment(self, task: Task, comment: Comment) -> Dict[str, Any]:
        return self._send(new_comment_message(task, comment))

    def send_test(self, channel: Any) -> Dict[str, Any]:
        return self._send(check_message(Channel.from_str(channel)))


# ── Reference endpoint ───────────────────────────────────────────────────────

def handle_notify_request(method: str, body: Any) -> Tuple[int, Dict[str, Any]]:
    """
    Validate and log one notification request.

    Returns (http_status, json_body):
        405 for anything but POST
        400 when channel, to, subject or message is missing or empty
        200 {ok, delivered: false, simulated: true} otherwise
    """
    if method.upper() != "POST":
        return 405, {"ok": False, "error": "Method Not Allowed"}
    try:
        data = body if isinstance(body, dict) else {}
        if not all(data.get(k) for k in REQUIRED_FIELDS):
            return 400, {"ok": False, "error": "Missing fields"}
        logger.info("[notify] %s", {k: data[k] for k in REQUIRED_FIELDS})
        return 200, dict(SIMULATED)
    except Exception as e:
        logger.error(f"Notify handler error: {e}")
        return 500, {"ok": False, "error": "Server error"}
