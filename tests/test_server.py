"""
Tests for the Flask routes in tracker_server.py.
"""
import pytest

import tracker_server
from pkg.tracker.errors import StorageUnavailable
from pkg.tracker.json_store import JSONRepository
from pkg.tracker.store import TaskRepository


@pytest.fixture
def store(tmp_path):
    return JSONRepository(str(tmp_path / "data"))


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setitem(tracker_server.app.config, "REPOSITORY", store)
    monkeypatch.setitem(tracker_server.app.config, "TESTING", True)
    with tracker_server.app.test_client() as c:
        yield c


class BrokenRepository(TaskRepository):
    """Every call fails as if the disk went away."""

    backend = "broken"

    def _fail(self, *args, **kwargs):
        raise StorageUnavailable("disk gone", backend=self.backend)

    list_tasks = list_categories = get_task = _fail
    create_task = update_task = delete_task = set_task_status = _fail
    create_category = delete_category = rename_category = _fail


def location(resp):
    return resp.headers["Location"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Views
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_views_partition_by_status(client, store):
    store.create_task("Active thing", "", "", "todo")
    store.create_task("Someday thing", "", "", "backlog")
    store.create_task("Finished thing", "", "", "done")

    index = client.get("/").get_data(as_text=True)
    backlog = client.get("/backlog").get_data(as_text=True)
    done = client.get("/done").get_data(as_text=True)

    assert "Active thing" in index and "Someday thing" not in index and "Finished thing" not in index
    assert "Someday thing" in backlog and "Active thing" not in backlog
    assert "Finished thing" in done and "Active thing" not in done


def test_search_query(client, store):
    store.create_task("Milestone 1", "", "", "done")
    store.create_task("Other", "", "", "done")

    body = client.get("/done?q=mile").get_data(as_text=True)
    assert "Milestone 1" in body
    assert "Other" not in body


def test_add_task_page_lists_categories(client, store):
    store.create_category("errands")
    resp = client.get("/add-task-page")
    assert resp.status_code == 200
    assert "errands" in resp.get_data(as_text=True)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task actions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_add_task(client, store):
    resp = client.post("/add-task", data={
        "title": "  Buy milk ", "category": "home", "description": "2 litres", "status": "",
    })
    assert resp.status_code == 303
    assert location(resp).endswith("/")

    (task,) = store.list_tasks()
    assert task.title == "Buy milk"
    assert task.status == "todo"


def test_edit_task_keeps_status_when_blank(client, store):
    task = store.create_task("Old", "work", "", "backlog")
    resp = client.post("/edit-task", data={
        "id": str(task.id), "title": "New", "category": "home", "description": "d", "status": "",
    })
    assert resp.status_code == 303

    updated = store.get_task(task.id)
    assert (updated.title, updated.category, updated.status) == ("New", "home", "backlog")


def test_edit_missing_task_is_404(client):
    resp = client.post("/edit-task", data={"id": "99999", "title": "x"})
    assert resp.status_code == 404


def test_update_status_redirects_back(client, store):
    task = store.create_task("A", "", "")
    resp = client.post(
        "/update-task-status",
        data={"id": str(task.id), "status": "done"},
        headers={"Referer": "http://localhost/backlog?q=a"},
    )
    assert resp.status_code == 303
    assert location(resp).endswith("/backlog?q=a")
    assert store.get_task(task.id).status == "done"


def test_update_status_ignores_foreign_referer(client, store):
    task = store.create_task("A", "", "")
    resp = client.post(
        "/update-task-status",
        data={"id": str(task.id), "status": "done"},
        headers={"Referer": "http://evil.example/phish"},
    )
    assert "evil.example" not in location(resp)


@pytest.mark.parametrize("referer", [
    "http://localhost/\\evil.example/phish",
    "http://localhost//evil.example/phish",
    "/\\evil.example",
])
def test_update_status_ignores_referer_paths_that_leave_the_site(client, store, referer):
    task = store.create_task("A", "", "")
    resp = client.post(
        "/update-task-status",
        data={"id": str(task.id), "status": "done"},
        headers={"Referer": referer},
    )
    assert resp.status_code == 303
    assert "evil.example" not in location(resp)
    assert store.get_task(task.id).status == "done"


def test_update_status_missing_task_is_404(client, store):
    store.create_task("A", "", "")
    resp = client.post("/update-task-status", data={"id": "99999", "status": "done"})
    assert resp.status_code == 404
    assert [t.status for t in store.list_tasks()] == ["todo"]


def test_delete_task(client, store):
    task = store.create_task("A", "", "")
    resp = client.get(f"/delete-task?id={task.id}")
    assert resp.status_code == 303
    assert store.list_tasks() == []

    # Deleting again is fine
    assert client.get(f"/delete-task?id={task.id}").status_code == 303


@pytest.mark.parametrize("bad_id", ["", "abc", "-1", "0"])
def test_invalid_task_id_is_400(client, bad_id):
    assert client.get(f"/delete-task?id={bad_id}").status_code == 400
    assert client.post("/update-task-status", data={"id": bad_id, "status": "done"}).status_code == 400


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Category actions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_add_category_twice(client, store):
    client.post("/add-category", data={"name": "work"})
    resp = client.post("/add-category", data={"name": " work "})
    assert resp.status_code == 303
    assert location(resp).endswith("/categories")
    assert [c.name for c in store.list_categories()] == ["work"]


def test_add_blank_category_ignored(client, store):
    client.post("/add-category", data={"name": "   "})
    assert store.list_categories() == []


def test_categories_page_shows_usage(client, store):
    store.create_category("work")
    store.create_task("A", "work", "")
    store.create_task("B", "work", "")
    body = client.get("/categories").get_data(as_text=True)
    assert "work" in body
    assert "2 tasks" in body


def test_rename_category(client, store):
    store.create_category("work")
    task = store.create_task("A", "work", "")

    resp = client.post("/edit-category", data={"old_name": "work", "new_name": "job"})
    assert resp.status_code == 303
    assert [c.name for c in store.list_categories()] == ["job"]
    assert store.get_task(task.id).category == "job"


def test_rename_category_blank_new_name_ignored(client, store):
    store.create_category("work")
    client.post("/edit-category", data={"old_name": "work", "new_name": ""})
    assert [c.name for c in store.list_categories()] == ["work"]


def test_delete_category_keeps_tasks(client, store):
    store.create_category("work")
    task = store.create_task("A", "work", "")

    resp = client.get("/delete-category?name=work")
    assert resp.status_code == 303
    assert location(resp).endswith("/categories")
    assert store.list_categories() == []
    assert store.get_task(task.id).category == "work"

    # Orphaned category is still shown on the task
    assert "work (deleted)" in client.get("/").get_data(as_text=True)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# JSON API
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_api_tasks(client, store):
    store.create_task("Plan trip", "home", "", "backlog")
    store.create_task("Plan party", "home", "", "todo")

    data = client.get("/api/tasks?view=backlog&q=plan").get_json()
    assert data["view"] == "backlog"
    assert data["count"] == 1
    assert data["tasks"][0]["title"] == "Plan trip"
    assert data["tasks"][0]["created_at"].endswith("+00:00")


def test_api_task_by_id(client, store):
    task = store.create_task("A", "", "")
    assert client.get(f"/api/tasks/{task.id}").get_json()["task"]["id"] == task.id

    resp = client.get("/api/tasks/99999")
    assert resp.status_code == 404
    assert "error" in resp.get_json()


def test_api_categories(client, store):
    store.create_category("work")
    store.create_category("home")
    assert client.get("/api/categories").get_json() == {"categories": ["work", "home"]}


def test_health(client, store):
    store.create_task("A", "", "")
    data = client.get("/health").get_json()
    assert data["status"] == "ok"
    assert data["backend"] == "json"
    assert data["tasks"] == 1


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Storage failures
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.fixture
def broken_client(monkeypatch):
    monkeypatch.setitem(tracker_server.app.config, "REPOSITORY", BrokenRepository())
    monkeypatch.setitem(tracker_server.app.config, "TESTING", True)
    with tracker_server.app.test_client() as c:
        yield c


def test_storage_failure_on_view_is_500(broken_client):
    resp = broken_client.get("/")
    assert resp.status_code == 500
    assert "Database error" in resp.get_data(as_text=True)


def test_storage_failure_on_write_is_500(broken_client):
    resp = broken_client.post("/add-task", data={"title": "x"})
    assert resp.status_code == 500


def test_storage_failure_on_api_is_json(broken_client):
    resp = broken_client.get("/api/tasks")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Database error"}
