from __future__ import annotations

import json
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.deps import get_db
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.goal import Goal
from app.db.models.milestone import Milestone
from app.db.models.task import Task
from app.db.models.user import User
from app.main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # pragma: no cover - sqlite setup
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    User.__table__.create(bind=engine)
    Goal.__table__.create(bind=engine)
    Milestone.__table__.create(bind=engine)
    Task.__table__.create(bind=engine)
    AgentActionLog.__table__.create(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client, TestingSessionLocal
    app.dependency_overrides.clear()


def _create_goal(client: TestClient, user_id: UUID) -> str:
    response = client.post("/goals", json={"user_id": str(user_id), "title": "Ship the side project"})
    assert response.status_code == 201
    return response.json()["id"]


def _create_task(client: TestClient, user_id: UUID, **extra) -> dict:
    goal_id = _create_goal(client, user_id)
    response = client.post(
        f"/goals/{goal_id}/tasks",
        json={"user_id": str(user_id), "title": "Landing page", **extra},
    )
    assert response.status_code == 201, response.text
    return response.json()


NESTED = [
    {
        "id": "design",
        "title": "Design",
        "completed": True,
        "children": [
            {"id": "wireframe", "title": "Wireframe", "completed": True},
            {"id": "palette", "title": "Palette"},
        ],
    },
]


def test_create_task_in_goal_creates_default_milestone(client):
    test_client, session_factory = client
    user_id = uuid4()

    task = _create_task(test_client, user_id, text="Marketing site", due_date="2026-11-01")

    assert task["text"] == "Marketing site"
    assert task["description"] == "Marketing site"
    assert task["subtasks"] == []
    assert task["status"] == "PENDING"
    assert task["progress"] == 0
    with session_factory() as db:
        milestone = db.get(Milestone, UUID(task["milestone_id"]))
        assert milestone.title == "Tasks"


def test_second_goal_task_reuses_first_milestone(client):
    test_client, session_factory = client
    user_id = uuid4()
    goal_id = _create_goal(test_client, user_id)

    first = test_client.post(f"/goals/{goal_id}/tasks", json={"user_id": str(user_id), "title": "One"}).json()
    second = test_client.post(f"/goals/{goal_id}/tasks", json={"user_id": str(user_id), "title": "Two"}).json()

    assert first["milestone_id"] == second["milestone_id"]
    with session_factory() as db:
        assert db.query(Milestone).count() == 1


def test_create_task_stores_nested_tree_in_description(client):
    test_client, session_factory = client

    task = _create_task(test_client, uuid4(), text="Notes", subtasks=NESTED)

    assert task["progress"] == 67
    assert task["completed_subtasks"] == 2
    assert task["total_subtasks"] == 3
    assert task["subtasks"][0]["children"][1]["id"] == "palette"
    with session_factory() as db:
        stored = json.loads(db.get(Task, UUID(task["id"])).description)
        assert stored["text"] == "Notes"
        assert stored["subtasks"][0]["children"][0]["id"] == "wireframe"


def test_create_task_rejects_duplicate_ids(client):
    test_client, _ = client
    user_id = uuid4()
    goal_id = _create_goal(test_client, user_id)

    resp = test_client.post(
        f"/goals/{goal_id}/tasks",
        json={"user_id": str(user_id), "title": "Dupes", "subtasks": [{"id": "x"}, {"id": "x"}]},
    )

    assert resp.status_code == 422
    assert "x" in resp.json()["detail"]


def test_toggle_subtask_updates_progress_and_logs(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, subtasks=NESTED)

    resp = test_client.post(
        f"/tasks/{task['id']}/subtasks/palette/toggle",
        json={"user_id": str(user_id)},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["progress"] == 100
    assert body["subtasks"][0]["children"][1]["completed"] is True
    with session_factory() as db:
        log = db.query(AgentActionLog).filter(AgentActionLog.action_type == "subtask_toggled").one()
        assert log.action_payload["subtask_id"] == "palette"
        assert log.action_payload["completed"] is True


def test_toggle_unknown_subtask_is_noop(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, subtasks=NESTED)

    resp = test_client.post(f"/tasks/{task['id']}/subtasks/ghost/toggle", json={"user_id": str(user_id)})

    assert resp.status_code == 200
    assert resp.json()["subtasks"] == task["subtasks"]
    with session_factory() as db:
        assert db.query(AgentActionLog).filter(AgentActionLog.action_type == "subtask_toggled").count() == 0


def test_add_subtask_at_root_and_under_parent(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, text="Keep this text", subtasks=NESTED)

    root = test_client.post(
        f"/tasks/{task['id']}/subtasks",
        json={"user_id": str(user_id), "title": "Deploy"},
    ).json()
    nested = test_client.post(
        f"/tasks/{task['id']}/subtasks",
        json={"user_id": str(user_id), "title": "Logo", "parent_id": "design"},
    ).json()

    assert [node["title"] for node in root["subtasks"]] == ["Design", "Deploy"]
    assert nested["subtasks"][0]["children"][-1]["title"] == "Logo"
    assert nested["subtasks"][0]["children"][-1]["id"]
    assert nested["total_subtasks"] == 5
    assert nested["text"] == "Keep this text"


def test_add_subtask_to_plain_task_converts_description(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, text="Plain notes")

    body = test_client.post(
        f"/tasks/{task['id']}/subtasks",
        json={"user_id": str(user_id), "title": "First step"},
    ).json()

    assert body["text"] == "Plain notes"
    assert body["total_subtasks"] == 1
    with session_factory() as db:
        stored = json.loads(db.get(Task, UUID(task["id"])).description)
        assert stored["text"] == "Plain notes"


def test_add_subtask_under_missing_parent_is_noop(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, subtasks=NESTED)

    body = test_client.post(
        f"/tasks/{task['id']}/subtasks",
        json={"user_id": str(user_id), "title": "Orphan", "parent_id": "ghost"},
    ).json()

    assert body["total_subtasks"] == 3


def test_delete_subtask_removes_subtree(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, subtasks=NESTED)

    resp = test_client.delete(f"/tasks/{task['id']}/subtasks/design", params={"user_id": str(user_id)})

    assert resp.status_code == 200
    body = resp.json()
    assert body["subtasks"] == []
    assert body["total_subtasks"] == 0
    assert body["progress"] == 0
    with session_factory() as db:
        assert db.get(Task, UUID(task["id"])).description is None
        log = db.query(AgentActionLog).filter(AgentActionLog.action_type == "subtask_deleted").one()
        assert log.action_payload["removed"] == 3


def test_update_task_partial_fields(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, text="Old text", subtasks=NESTED, due_date="2026-11-01")

    resp = test_client.patch(
        f"/tasks/{task['id']}",
        json={"user_id": str(user_id), "text": "New text", "priority": "HIGH"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["text"] == "New text"
    assert body["priority"] == "HIGH"
    assert body["due_date"] == "2026-11-01"
    assert body["total_subtasks"] == 3


def test_update_task_replaces_subtasks_and_clears_due_date(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, text="Text", subtasks=NESTED, due_date="2026-11-01")

    body = test_client.patch(
        f"/tasks/{task['id']}",
        json={"user_id": str(user_id), "subtasks": [{"id": "only", "completed": True}], "due_date": None},
    ).json()

    assert body["text"] == "Text"
    assert body["total_subtasks"] == 1
    assert body["progress"] == 100
    assert body["due_date"] is None


def test_update_task_rejects_duplicate_ids(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id)

    resp = test_client.patch(
        f"/tasks/{task['id']}",
        json={"user_id": str(user_id), "subtasks": [{"id": "a", "children": [{"id": "a"}]}]},
    )

    assert resp.status_code == 422


def test_status_drives_progress_without_subtasks(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id)

    resp = test_client.patch(
        f"/tasks/{task['id']}/status",
        json={"user_id": str(user_id), "status": "IN_PROGRESS"},
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "IN_PROGRESS"
    assert resp.json()["progress"] == 50
    with session_factory() as db:
        log = db.query(AgentActionLog).filter(AgentActionLog.action_type == "task_status_changed").one()
        assert log.action_payload["from"] == "PENDING"
        assert log.action_payload["to"] == "IN_PROGRESS"


def test_delete_task(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id)

    resp = test_client.delete(f"/tasks/{task['id']}", params={"user_id": str(user_id)})

    assert resp.status_code == 200
    with session_factory() as db:
        assert db.get(Task, UUID(task["id"])) is None


def test_task_routes_enforce_ownership(client):
    test_client, _ = client
    task = _create_task(test_client, uuid4())
    stranger = str(uuid4())

    assert test_client.patch(f"/tasks/{task['id']}/status", json={"user_id": stranger, "status": "COMPLETED"}).status_code == 403
    assert test_client.post(f"/tasks/{task['id']}/subtasks", json={"user_id": stranger, "title": "x"}).status_code == 403
    assert test_client.delete(f"/tasks/{uuid4()}", params={"user_id": stranger}).status_code == 404


def test_nested_bracket_text_stays_readable(client):
    test_client, _ = client
    user_id = uuid4()
    task = _create_task(test_client, user_id)
    text = "[" * 2500 + "]" * 2500

    resp = test_client.patch(f"/tasks/{task['id']}", json={"user_id": str(user_id), "text": text})

    assert resp.status_code == 200
    assert resp.json()["text"] == text
    assert resp.json()["subtasks"] == []

    goals_resp = test_client.get("/goals", params={"user_id": str(user_id)})
    assert goals_resp.status_code == 200
    goal_id = goals_resp.json()[0]["id"]
    detail = test_client.get(f"/goals/{goal_id}", params={"user_id": str(user_id)})
    assert detail.status_code == 200
    assert detail.json()["milestones"][0]["tasks"][0]["text"] == text


def test_stored_subtask_ids_survive_toggle_and_delete(client):
    test_client, session_factory = client
    user_id = uuid4()
    task = _create_task(test_client, user_id, subtasks=[{"title": "Request id minted once"}])
    node_id = task["subtasks"][0]["id"]

    toggled = test_client.post(f"/tasks/{task['id']}/subtasks/{node_id}/toggle", json={"user_id": str(user_id)})
    assert toggled.json()["subtasks"][0]["id"] == node_id
    assert toggled.json()["progress"] == 100

    removed = test_client.delete(f"/tasks/{task['id']}/subtasks/{node_id}", params={"user_id": str(user_id)})
    assert removed.json()["total_subtasks"] == 0
