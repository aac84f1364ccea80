#!/usr/bin/env python3
"""
Task Tracker Server
-------------------
Serves the task tracker HTML UI and a small JSON API, backed by either the
SQLite store or the JSON snapshot store (see tracker.yaml).

Usage:
    python tracker_server.py
    python tracker_server.py --backend json --data-dir ./data --port 8080

Pages:
    GET  /                    → active tasks (not backlog, not done), ?q= search
    GET  /backlog             → backlog tasks, ?q= search
    GET  /done                → done tasks, ?q= search
    GET  /add-task-page       → new task form
    POST /add-task            → create task
    POST /edit-task           → update task (form field id)
    GET  /delete-task?id=     → delete task
    POST /update-task-status  → set status (id, status)
    GET  /categories          → category list
    POST /add-category        → create category (name)
    GET  /delete-category?name=
    POST /edit-category       → rename category (old_name, new_name)

API:
    GET /api/tasks?view=active|backlog|done&q=   → JSON: { tasks, count, view }
    GET /api/categories                          → JSON: { categories }
    GET /health                                  → JSON: { status, backend, ... }

Dependencies: flask, pyyaml
"""

import argparse
import logging
import sys
from urllib.parse import urlparse

from flask import Flask, abort, current_app, jsonify, redirect, render_template, request

from pkg.tracker.config import ConfigError, TrackerConfig, open_repository
from pkg.tracker.errors import NotFound, StorageUnavailable, TrackerError
from pkg.tracker.query import StatusClass, count_by_class, filter_tasks
from pkg.tracker.schema import KNOWN_STATUSES
from pkg.tracker.store import TaskRepository

logger = logging.getLogger("tracker_server")

app = Flask(__name__)

VIEW_TEMPLATES = {
    StatusClass.ACTIVE: ("index", "Tasks"),
    StatusClass.BACKLOG: ("backlog", "Backlog"),
    StatusClass.DONE: ("done", "Done"),
}


# ── Repository ───────────────────────────────────────────────────────────────

def get_repository() -> TaskRepository:
    """Repository for this app, opened from config on first use."""
    repo = current_app.config.get("REPOSITORY")
    if repo is None:
        cfg = current_app.config.get("TRACKER") or TrackerConfig.load()
        repo = open_repository(cfg)
        current_app.config["REPOSITORY"] = repo
    return repo


def parse_task_id(value) -> int:
    """Task id from a form/query value; 400 if it is not a positive integer."""
    try:
        task_id = int(str(value).strip())
    except (TypeError, ValueError):
        abort(400, f"Invalid task id: {value!r}")
    if task_id <= 0:
        abort(400, f"Invalid task id: {value!r}")
    return task_id


def redirect_back(default: str):
    """Redirect to the page the form was posted from, if it is one of ours."""
    referer = request.headers.get("Referer", "")
    if referer:
        parsed = urlparse(referer)
        if not parsed.netloc or parsed.netloc == request.host:
            target = parsed.path or default
            # Browsers read "//host" and "/\host" as another site
            if not target.startswith("/") or target[1:2] in ("/", "\\"):
                return redirect(default, code=303)
            if parsed.query:
                target = f"{target}?{parsed.query}"
            return redirect(target, code=303)
    return redirect(default, code=303)


# ── Error handling ───────────────────────────────────────────────────────────

@app.errorhandler(NotFound)
def handle_not_found(e: NotFound):
    logger.warning(str(e))
    if request.path.startswith("/api/"):
        return jsonify({"error": str(e)}), 404
    return render_template("error.html", code=404, message="Task not found"), 404


@app.errorhandler(StorageUnavailable)
def handle_storage_unavailable(e: StorageUnavailable):
    logger.error(f"Storage unavailable on {request.method} {request.path}: {e}")
    if request.path.startswith("/api/") or request.path == "/health":
        return jsonify({"error": "Database error"}), 500
    return render_template("error.html", code=500, message="Database error"), 500


@app.errorhandler(TrackerError)
def handle_tracker_error(e: TrackerError):
    logger.error(f"Unhandled tracker error on {request.path}: {e}")
    return render_template("error.html", code=500, message="Internal Server Error"), 500


# ── Views ────────────────────────────────────────────────────────────────────

def render_view(status_class: StatusClass):
    """Shared handler for the active, backlog and done pages."""
    query = request.args.get("q", "")
    repo = get_repository()
    tasks = repo.list_tasks()
    categories = repo.list_categories()
    page, heading = VIEW_TEMPLATES[status_class]
    return render_template(
        "tasks.html",
        page=page,
        heading=heading,
        view=status_class.value,
        tasks=filter_tasks(tasks, status_class, query),
        counts={sc.value: n for sc, n in count_by_class(tasks).items()},
        categories=categories,
        statuses=KNOWN_STATUSES,
        query=query,
    )


@app.route("/")
def index():
    return render_view(StatusClass.ACTIVE)


@app.route("/backlog")
def backlog():
    return render_view(StatusClass.BACKLOG)


@app.route("/done")
def done():
    return render_view(StatusClass.DONE)


@app.route("/add-task-page")
def add_task_page():
    return render_template(
        "add_task.html",
        page="add-task",
        categories=get_repository().list_categories(),
        statuses=KNOWN_STATUSES,
    )


# ── Task actions ─────────────────────────────────────────────────────────────

@app.route("/add-task", methods=["POST"])
def add_task():
    form = request.form
    get_repository().create_task(
        title=form.get("title", "").strip(),
        category=form.get("category", "").strip(),
        description=form.get("description", ""),
        status=form.get("status", ""),
    )
    return redirect("/", code=303)


@app.route("/edit-task", methods=["POST"])
def edit_task():
    form = request.form
    task_id = parse_task_id(form.get("id"))
    get_repository().update_task(
        task_id,
        title=form.get("title", "").strip(),
        category=form.get("category", "").strip(),
        description=form.get("description", ""),
        status=form.get("status", ""),
    )
    return redirect_back("/")


@app.route("/delete-task", methods=["GET", "POST"])
def delete_task():
    task_id = parse_task_id(request.values.get("id"))
    get_repository().delete_task(task_id)
    return redirect_back("/")


@app.route("/update-task-status", methods=["POST"])
def update_task_status():
    task_id = parse_task_id(request.form.get("id"))
    get_repository().set_task_status(task_id, request.form.get("status", ""))
    return redirect_back("/")


# ── Category actions ─────────────────────────────────────────────────────────

@app.route("/categories")
def categories_page():
    repo = get_repository()
    categories = repo.list_categories()
    usage = {c.name: 0 for c in categories}
    for task in repo.list_tasks():
        if task.category in usage:
            usage[task.category] += 1
    return render_template("categories.html", page="categories",
                           categories=categories, usage=usage)


@app.route("/add-category", methods=["POST"])
def add_category():
    name = request.form.get("name", "").strip()
    if name:
        get_repository().create_category(name)
    return redirect_back("/categories")


@app.route("/delete-category", methods=["GET", "POST"])
def delete_category():
    name = request.values.get("name", "")
    if name:
        get_repository().delete_category(name)
    return redirect("/categories", code=303)


@app.route("/edit-category", methods=["POST"])
def edit_category():
    old_name = request.form.get("old_name", "").strip()
    new_name = request.form.get("new_name", "").strip()
    if old_name and new_name:
        get_repository().rename_category(old_name, new_name)
    return redirect_back("/categories")


# ── JSON API ─────────────────────────────────────────────────────────────────

@app.route("/api/tasks")
def api_tasks():
    status_class = StatusClass.from_name(request.args.get("view"))
    query = request.args.get("q", "")
    tasks = filter_tasks(get_repository().list_tasks(), status_class, query)
    return jsonify({
        "view": status_class.value,
        "query": query,
        "tasks": [t.to_dict() for t in tasks],
        "count": len(tasks),
    })


@app.route("/api/tasks/<int:task_id>")
def api_task(task_id):
    return jsonify({"task": get_repository().get_task(task_id).to_dict()})


@app.route("/api/categories")
def api_categories():
    return jsonify({"categories": [c.name for c in get_repository().list_categories()]})


@app.route("/health")
def health():
    stats = get_repository().stats()
    return jsonify({"status": "ok", **stats})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    parser = argparse.ArgumentParser(description="Task Tracker Server")
    parser.add_argument("--config", help="Path to tracker.yaml (overrides TRACKER_CONFIG)")
    parser.add_argument("--host", help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int)
    parser.add_argument("--backend", choices=["sqlite", "json"])
    parser.add_argument("--db", help="Path to the SQLite database (sqlite backend)")
    parser.add_argument("--data-dir", help="Directory for the JSON snapshot (json backend)")
    args = parser.parse_args(argv)

    try:
        cfg = TrackerConfig.load(args.config)
        if args.host:
            cfg.host = args.host
        if args.port:
            cfg.port = args.port
        if args.backend:
            cfg.backend = args.backend
        if args.db:
            cfg.db_path = args.db
        if args.data_dir:
            cfg.data_dir = args.data_dir
        cfg.validate()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [tracker] %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    try:
        repo = open_repository(cfg)
    except StorageUnavailable as e:
        logger.error(f"Cannot open {cfg.backend} storage: {e}")
        return 1

    app.config["TRACKER"] = cfg
    app.config["REPOSITORY"] = repo
    location = cfg.db_path if cfg.backend == "sqlite" else cfg.data_dir
    logger.info(f"Starting task tracker: backend={cfg.backend} storage={location}")
    logger.info(f"Server starting on http://{cfg.host}:{cfg.port}")

    try:
        app.run(host=cfg.host, port=cfg.port, debug=False, threaded=True)
    finally:
        repo.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
