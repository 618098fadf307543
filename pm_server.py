#!/usr/bin/env python3
"""
PM Lite Server
--------------
JSON API over a PM Lite workspace: tasks, projects, kanban, calendar,
timeline, dashboard, notification settings, backup, cloud auth/sync and the
realtime change webhook.

Usage:
    python pm_server.py --port 3000 --config ~/.config/pmlite/config.yaml

    # Or after `pip install -e .`
    pmlite-server --db /tmp/pmlite.db

API (mutating routes need X-API-Key when api_secret is set):
    GET  /health
    GET  /api/tasks?project=&assignee=&priority=&q=     POST /api/tasks
    PUT  /api/tasks/<id>    DELETE /api/tasks/<id>
    POST /api/tasks/<id>/move          {status}
    POST /api/tasks/<id>/comments      {author, text}
    POST /api/tasks/<id>/attachments   multipart "file"
    DELETE /api/tasks/<id>/attachments/<name>
    GET  /api/projects      POST /api/projects
    PUT  /api/projects/<id> DELETE /api/projects/<id>
    GET  /api/board?swimlane=None|Project|Assignee|Priority
    GET  /api/calendar?year=&month=
    GET  /api/timeline      GET /api/dashboard      GET /api/export/tasks.csv
    GET  /api/settings/notify   PUT /api/settings/notify
    POST /api/settings/notify/test     {channel}
    GET  /api/backup        POST /api/backup
    POST /api/auth/signin   {email}
    GET  /api/auth/session  POST /api/auth/session {access_token, refresh_token}
    POST /api/auth/signout  POST /api/sync
    POST /api/realtime      change event (realtime or database-webhook shape)
    ANY  /api/notify        reference notification endpoint

Without notify_url in the config, notifications go to this server's own
/api/notify.
"""

import argparse
import hmac
import logging
import sys
from datetime import date
from functools import wraps

from flask import Flask, Response, jsonify, request

from pkg.pmlite.config import Config
from pkg.pmlite.errors import (
    BackupError, ConfigError, DecodeError, NotFoundError, RemoteError, ValidationError,
)
from pkg.pmlite.export import backup_filename, csv_filename, tasks_csv_rows, to_csv
from pkg.pmlite.notify import handle_notify_request
from pkg.pmlite.schema import Project, Swimlane, Task, make_id
from pkg.pmlite.views import (
    assignees, calendar_month, dashboard, filter_tasks, kanban_board, overdue_tasks, timeline,
)
from pkg.pmlite.workspace import Workspace

logger = logging.getLogger("pm_server")


def _body() -> dict:
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def create_app(workspace: Workspace, api_secret: str = "") -> Flask:
    """Build the Flask app around an open workspace."""
    app = Flask(__name__)
    ws = workspace

    # ── Auth ─────────────────────────────────────────────────────────────────

    def require_api_key(f):
        """Decorator: reject requests without a valid X-API-Key header (when a secret is set)."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not api_secret:
                return f(*args, **kwargs)
            provided = request.headers.get("X-API-Key", "").strip()
            if not hmac.compare_digest(provided, api_secret):
                code = 401 if not provided else 403
                return jsonify({"error": "Unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    # ── Errors ───────────────────────────────────────────────────────────────

    @app.errorhandler(ValidationError)
    @app.errorhandler(DecodeError)
    @app.errorhandler(BackupError)
    def bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(NotFoundError)
    def not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(RemoteError)
    def remote_failed(e):
        logger.warning(f"Remote call failed: {e}")
        return jsonify({"error": str(e), "status": e.status}), 502

    def _task_or_404(task_id):
        task = ws.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    # ── Tasks ────────────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        tasks, projects = ws.snapshot()
        return jsonify({
            "status": "ok",
            "db": ws.storage.db_path,
            "cloud": ws.cloud.enabled,
            "signed_in": ws.signed_in,
            "tasks": len(tasks),
            "projects": len(projects),
        })

    @app.route("/api/tasks", methods=["GET"])
    def api_tasks():
        tasks, _ = ws.snapshot()
        tasks = filter_tasks(
            tasks,
            project_id=request.args.get("project", ""),
            assignee=request.args.get("assignee", ""),
            priority=request.args.get("priority", ""),
            query=request.args.get("q", ""),
        )
        return jsonify({
            "tasks": [t.to_dict() for t in tasks],
            "count": len(tasks),
            "assignees": assignees(ws.snapshot()[0]),
        })

    @app.route("/api/tasks", methods=["POST"])
    @require_api_key
    def api_create_task():
        data = {**ws.new_task().to_dict(), **_body()}
        data["id"] = data.get("id") or make_id()
        task = ws.save_task(Task.from_dict(data))
        return jsonify({"task": task.to_dict(), "id": task.id}), 201

    @app.route("/api/tasks/<task_id>", methods=["PUT"])
    @require_api_key
    def api_update_task(task_id):
        existing = _task_or_404(task_id)
        data = {**existing.to_dict(), **_body(), "id": task_id}
        task = ws.save_task(Task.from_dict(data))
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_task(task_id):
        if not ws.delete_task(task_id):
            return jsonify({"error": "Task not found"}), 404
        return jsonify({"deleted": task_id})

    @app.route("/api/tasks/<task_id>/move", methods=["POST"])
    @require_api_key
    def api_move_task(task_id):
        status = _body().get("status", "")
        if not status:
            return jsonify({"error": "status is required"}), 400
        task = ws.move_task(task_id, status)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify({"task": task.to_dict()})

    @app.route("/api/tasks/<task_id>/comments", methods=["POST"])
    @require_api_key
    def api_add_comment(task_id):
        data = _body()
        comment = ws.add_comment(task_id, data.get("text", ""), author=data.get("author", ""))
        return jsonify({"comment": comment.to_dict()}), 201

    @app.route("/api/tasks/<task_id>/attachments", methods=["POST"])
    @require_api_key
    def api_add_attachment(task_id):
        f = request.files.get("file")
        if f is None or not f.filename:
            return jsonify({"error": "file is required"}), 400
        attachment = ws.add_attachment(task_id, f.filename, f.read(), f.mimetype)
        return jsonify({"attachment": attachment.to_dict()}), 201

    @app.route("/api/tasks/<task_id>/attachments/<path:name>", methods=["DELETE"])
    @require_api_key
    def api_remove_attachment(task_id, name):
        task = ws.remove_attachment(task_id, name)
        return jsonify({"task": task.to_dict()})

    # ── Projects ─────────────────────────────────────────────────────────────

    @app.route("/api/projects", methods=["GET"])
    def api_projects():
        _, projects = ws.snapshot()
        return jsonify({"projects": [p.to_dict() for p in projects], "count": len(projects)})

    @app.route("/api/projects", methods=["POST"])
    @require_api_key
    def api_create_project():
        data = _body()
        data["id"] = data.get("id") or make_id()
        project = ws.save_project(Project.from_dict(data))
        return jsonify({"project": project.to_dict(), "id": project.id}), 201

    @app.route("/api/projects/<project_id>", methods=["PUT"])
    @require_api_key
    def api_update_project(project_id):
        existing = ws.get_project(project_id)
        if existing is None:
            return jsonify({"error": "Project not found"}), 404
        data = {**existing.to_dict(), **_body(), "id": project_id}
        project = ws.save_project(Project.from_dict(data))
        return jsonify({"project": project.to_dict()})

    @app.route("/api/projects/<project_id>", methods=["DELETE"])
    @require_api_key
    def api_delete_project(project_id):
        if not ws.delete_project(project_id):
            return jsonify({"error": "Project not found"}), 404
        return jsonify({"deleted": project_id})

    # ── Views ────────────────────────────────────────────────────────────────

    @app.route("/api/board")
    def api_board():
        tasks, projects = ws.snapshot()
        swimlane = Swimlane.from_str(request.args.get("swimlane"))
        board = kanban_board(tasks, projects, swimlane)
        columns = []
        for status, lanes in board.items():
            columns.append({
                "status": status.value,
                "count": sum(len(v) for v in lanes.values()),
                "lanes": [
                    {"name": name, "tasks": [t.to_dict() for t in lane]}
                    for name, lane in lanes.items()
                ],
            })
        return jsonify({"swimlane": swimlane.value, "columns": columns})

    @app.route("/api/calendar")
    def api_calendar():
        today = date.today()
        try:
            year = int(request.args.get("year", today.year))
            month = int(request.args.get("month", today.month))
            weeks = calendar_month(ws.snapshot()[0], year, month)
        except ValueError:
            return jsonify({"error": "year and month must be a valid date"}), 400
        return jsonify({
            "year": year,
            "month": month,
            "weeks": [[cell.to_dict() for cell in week] for week in weeks],
        })

    @app.route("/api/timeline")
    def api_timeline():
        _, projects = ws.snapshot()
        return jsonify(timeline(projects).to_dict())

    @app.route("/api/dashboard")
    def api_dashboard():
        tasks, projects = ws.snapshot()
        today = date.today()
        stats = dashboard(tasks, projects, today)
        stats["overdue_tasks"] = [t.to_dict() for t in overdue_tasks(tasks, today)]
        return jsonify(stats)

    @app.route("/api/export/tasks.csv")
    def api_export_csv():
        tasks, projects = ws.snapshot()
        return Response(
            to_csv(tasks_csv_rows(tasks, projects)),
            mimetype="text/csv",
            headers={"Content-Disposition": f"attachment; filename={csv_filename()}"},
        )

    # ── Settings / backup ────────────────────────────────────────────────────

    @app.route("/api/settings/notify", methods=["GET"])
    def api_notify_settings():
        return jsonify(ws.notify_settings().to_dict())

    @app.route("/api/settings/notify", methods=["PUT"])
    @require_api_key
    def api_update_notify_settings():
        data = _body()
        settings = ws.update_notify_settings(email=data.get("email"), whatsapp=data.get("whatsapp"))
        return jsonify(settings.to_dict())

    @app.route("/api/settings/notify/test", methods=["POST"])
    @require_api_key
    def api_test_notify():
        return jsonify(ws.send_test_notification(_body().get("channel", "")))

    @app.route("/api/backup", methods=["GET"])
    def api_export_backup():
        resp = jsonify(ws.export_backup())
        resp.headers["Content-Disposition"] = f"attachment; filename={backup_filename()}"
        return resp

    @app.route("/api/backup", methods=["POST"])
    @require_api_key
    def api_import_backup():
        keys = ws.import_backup(request.get_data(as_text=True))
        tasks, projects = ws.snapshot()
        return jsonify({"imported": keys, "tasks": len(tasks), "projects": len(projects)})

    # ── Cloud ────────────────────────────────────────────────────────────────

    @app.route("/api/auth/signin", methods=["POST"])
    @require_api_key
    def api_sign_in():
        ws.sign_in(_body().get("email", ""))
        return jsonify({"sent": True})

    @app.route("/api/auth/session", methods=["GET"])
    def api_session():
        session = ws.cloud.session
        return jsonify({
            "cloud": ws.cloud.enabled,
            "signed_in": ws.signed_in,
            "user_id": session.user_id if session else None,
            "email": session.email if session else None,
        })

    @app.route("/api/auth/session", methods=["POST"])
    @require_api_key
    def api_complete_sign_in():
        data = _body()
        access_token = data.get("access_token", "")
        if not access_token:
            return jsonify({"error": "access_token is required"}), 400
        session = ws.complete_sign_in(access_token, data.get("refresh_token", ""))
        return jsonify({"user_id": session.user_id, "email": session.email})

    @app.route("/api/auth/signout", methods=["POST"])
    @require_api_key
    def api_sign_out():
        ws.sign_out()
        return jsonify({"signed_in": False})

    @app.route("/api/sync", methods=["POST"])
    @require_api_key
    def api_sync():
        return jsonify(ws.sync_to_cloud())

    @app.route("/api/realtime", methods=["POST"])
    @require_api_key
    def api_realtime():
        event = ws.apply_change(request.get_json(force=True, silent=True))
        if event is None:
            return jsonify({"applied": False})
        return jsonify({"applied": True, "table": event.table, "type": event.event_type, "id": event.row_id})

    @app.route("/api/notify", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def api_notify():
        status, payload = handle_notify_request(request.method, request.get_json(force=True, silent=True))
        return jsonify(payload), status

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

def local_notify_url(host: str, port: int) -> str:
    """The server's own /api/notify, reached over loopback when bound to all interfaces."""
    if host in ("", "0.0.0.0", "::"):
        host = "127.0.0.1"
    elif ":" in host:
        host = f"[{host}]"
    return f"http://{host}:{port}/api/notify"


def main(argv=None):
    parser = argparse.ArgumentParser(description="PM Lite Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--db", help="Path to the SQLite database (overrides config and PMLITE_DB)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [pmlite] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        cfg = Config.load(args.config)
    except ConfigError as e:
        logger.error(str(e))
        return 1
    if args.db:
        cfg.db_path = args.db
        cfg.resolve_paths()
    if not cfg.notify_url:
        cfg.notify_url = local_notify_url(args.host, args.port)

    workspace = Workspace.from_config(cfg).open()
    logger.info(f"DB: {cfg.db_path} | cloud: {'on' if cfg.cloud_enabled else 'off'} | "
                f"notify: {cfg.notify_url or 'simulated'}")
    try:
        app = create_app(workspace, api_secret=cfg.api_secret)
        app.run(host=args.host, port=args.port, debug=False, threaded=True)
    finally:
        workspace.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
