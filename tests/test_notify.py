"""
Tests for notification settings, message texts and best-effort delivery.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from pkg.pmlite.errors import DecodeError
from pkg.pmlite.notify import (
    DEFAULT_EMAIL_TO, DEFAULT_WHATSAPP_TO, SIMULATED, Notifier, NotifySettingsStore,
    check_message, handle_notify_request, new_comment_message, status_change_message,
    task_saved_message,
)
from pkg.pmlite.schema import Channel, Comment, NotifySettings, Task, TaskStatus
from pkg.pmlite.storage import NOTIFY_KEY


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Settings
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestSettings:

    def test_builtin_defaults(self, storage):
        settings = NotifySettingsStore(storage).get()
        assert settings.email == DEFAULT_EMAIL_TO
        assert settings.whatsapp == DEFAULT_WHATSAPP_TO

    def test_deployment_defaults(self, storage):
        store = NotifySettingsStore(storage, NotifySettings(email="team@corp.io", whatsapp="+100"))
        assert store.get().email == "team@corp.io"

    def test_update_merges_and_persists(self, storage):
        store = NotifySettingsStore(storage)
        updated = store.update(email=" lead@corp.io ")
        assert updated.email == "lead@corp.io"
        assert updated.whatsapp == DEFAULT_WHATSAPP_TO
        assert storage.load(NOTIFY_KEY)["email"] == "lead@corp.io"
        assert NotifySettingsStore(storage).get().email == "lead@corp.io"

    def test_corrupt_stored_settings_use_defaults(self, storage):
        storage.save(NOTIFY_KEY, ["not", "an", "object"])
        assert NotifySettingsStore(storage).get().email == DEFAULT_EMAIL_TO


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Message texts
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_task_saved_messages():
    task = Task(id="t1", title="Design mock", assignee="Sam", due_date="2024-01-01")
    channel, subject, message = task_saved_message(task, is_new=True)
    assert channel == Channel.EMAIL
    assert subject == "New task: Design mock"
    assert message == "Status: Todo\nAssignee: Sam\nDue: 2024-01-01"

    _, subject, message = task_saved_message(Task(id="t2", title="X"), is_new=False)
    assert subject == "Task updated: X"
    assert message == "Status: Todo\nAssignee: Unassigned\nDue: TBD"


def test_status_change_message():
    task = Task(id="t1", title="Design mock", status=TaskStatus.DONE)
    channel, subject, message = status_change_message(task, TaskStatus.TODO, TaskStatus.DONE)
    assert channel == Channel.WHATSAPP
    assert subject == "Status: Design mock → Done"
    assert message == "Todo → Done · Unassigned · Due TBD"


def test_new_comment_message():
    task = Task(id="t1", title="Design mock")
    _, subject, message = new_comment_message(task, Comment(id="c1", text="Looks good"))
    assert subject == "New comment on Design mock"
    assert message == "Someone: Looks good"


def test_check_messages():
    assert check_message(Channel.EMAIL) == (Channel.EMAIL, "PM Lite — Test Email", "Test message")
    assert check_message(Channel.WHATSAPP)[1] == "PM Lite — Test WhatsApp"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Delivery
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestNotifier:

    @patch("pkg.pmlite.notify.requests.post")
    def test_no_endpoint_is_simulated(self, mock_post, storage):
        result = Notifier("", NotifySettingsStore(storage)).notify("email", "s", "m")
        assert result == SIMULATED
        mock_post.assert_not_called()

    @patch("pkg.pmlite.notify.requests.post")
    def test_posts_payload_to_default_destination(self, mock_post, storage):
        mock_post.return_value = MagicMock(ok=True, json=MagicMock(return_value={"ok": True, "delivered": True}))
        notifier = Notifier("http://hooks/notify", NotifySettingsStore(storage))

        result = notifier.send_test("whatsapp")

        assert result == {"ok": True, "delivered": True}
        args, kwargs = mock_post.call_args
        assert args == ("http://hooks/notify",)
        assert kwargs["json"] == {
            "channel": "whatsapp",
            "to": DEFAULT_WHATSAPP_TO,
            "subject": "PM Lite — Test WhatsApp",
            "message": "Test message",
        }

    @patch("pkg.pmlite.notify.requests.post")
    def test_explicit_destination_wins(self, mock_post, storage):
        mock_post.return_value = MagicMock(ok=True, json=MagicMock(return_value={"ok": True}))
        Notifier("http://hooks/notify", NotifySettingsStore(storage)).notify("email", "s", "m", to="x@y.z")
        assert mock_post.call_args[1]["json"]["to"] == "x@y.z"

    @patch("pkg.pmlite.notify.requests.post")
    def test_network_error_is_swallowed(self, mock_post, storage):
        mock_post.side_effect = requests.ConnectionError("down")
        result = Notifier("http://hooks/notify", NotifySettingsStore(storage)).notify("email", "s", "m")
        assert result == SIMULATED
        assert mock_post.call_count == 1

    @patch("pkg.pmlite.notify.requests.post")
    def test_error_status_is_swallowed(self, mock_post, storage):
        mock_post.return_value = MagicMock(ok=False, status_code=500)
        result = Notifier("http://hooks/notify", NotifySettingsStore(storage)).notify("email", "s", "m")
        assert result == SIMULATED

    def test_unknown_channel_rejected(self, storage):
        with pytest.raises(DecodeError):
            Notifier("", NotifySettingsStore(storage)).notify("sms", "s", "m")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Reference endpoint
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestNotifyEndpoint:

    FULL = {"channel": "email", "to": "a@b.c", "subject": "Hi", "message": "Body"}

    def test_method_not_allowed(self):
        assert handle_notify_request("GET", self.FULL) == (405, {"ok": False, "error": "Method Not Allowed"})

    @pytest.mark.parametrize("missing", ["channel", "to", "subject", "message"])
    def test_missing_field(self, missing):
        body = {**self.FULL, missing: ""}
        assert handle_notify_request("POST", body) == (400, {"ok": False, "error": "Missing fields"})

    def test_non_object_body(self):
        assert handle_notify_request("POST", None)[0] == 400

    def test_accepted(self):
        status, payload = handle_notify_request("post", self.FULL)
        assert status == 200
        assert payload == {"ok": True, "delivered": False, "simulated": True}
