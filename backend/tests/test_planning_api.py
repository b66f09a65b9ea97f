from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.db import models  # noqa: F401  ensure models are loaded
from app.db.deps import get_db
from app.main import app
from app.services.chat_client import ChatCompletionError, get_chat_client


class _FakeChat:
    """Stands in for ChatClient; records every call."""

    def __init__(
        self,
        reply: str = "",
        chunks: Optional[List[str]] = None,
        fail_after: Optional[int] = None,
        error: Optional[Exception] = None,
    ):
        self.reply = reply
        self.chunks = chunks or []
        self.fail_after = fail_after
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def complete(self, messages, system_prompt, thinking_enabled=False):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "thinking": thinking_enabled})
        if self.error is not None:
            raise self.error
        return self.reply

    def stream(self, messages, system_prompt, thinking_enabled=False):
        self.calls.append({"messages": messages, "system_prompt": system_prompt, "thinking": thinking_enabled})
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise ChatCompletionError("connection reset")
            yield chunk


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
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _use_chat(fake: _FakeChat) -> _FakeChat:
    app.dependency_overrides[get_chat_client] = lambda: fake
    return fake


def _events(response) -> List[Dict[str, Any]]:
    return [
        json.loads(line[len("data: "):])
        for line in response.text.split("\n\n")
        if line.startswith("data: ")
    ]


def test_suggest_streams_chunks_then_done(client):
    fake = _use_chat(_FakeChat(chunks=["09:00 ", "Deep work"]))

    resp = client.post("/planning/suggest", json={"goals": [], "user_preferences": "Late start"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    assert _events(resp) == [
        {"content": "09:00 "},
        {"content": "Deep work"},
        {"done": True, "message": "09:00 Deep work"},
    ]
    call = fake.calls[0]
    assert call["thinking"] is True
    assert call["messages"][0]["content"].endswith("My preferences: Late start")


def test_suggest_loads_goal_context_for_user(client):
    user_id = uuid4()
    goal = client.post("/goals", json={"user_id": str(user_id), "title": "Write a novel"}).json()
    client.post(
        f"/goals/{goal['id']}/tasks",
        json={"user_id": str(user_id), "title": "Outline act one", "status": "COMPLETED"},
    )
    fake = _use_chat(_FakeChat(chunks=["ok"]))

    client.post("/planning/suggest", json={"user_id": str(user_id)})

    system_prompt = fake.calls[0]["system_prompt"]
    assert "Goal: Write a novel" in system_prompt
    assert "Progress: 100%" in system_prompt
    assert "    - [x] Outline act one" in system_prompt


def test_stream_failure_emits_error_event(client):
    _use_chat(_FakeChat(chunks=["partial", "never"], fail_after=1))

    resp = client.post("/planning/suggest", json={"conversation_history": [{"role": "user", "content": "hi"}]})

    events = _events(resp)
    assert events[0] == {"content": "partial"}
    assert events[-1]["error"] == "Failed to generate daily plan"
    assert not any(event.get("done") for event in events)


def test_tweak_defaults_thinking_off_and_requires_plan(client):
    fake = _use_chat(_FakeChat(chunks=["updated"]))

    ok = client.post(
        "/planning/tweak",
        json={"current_plan": [{"title": "Gym"}], "user_request": "Move gym to evening"},
    )
    missing = client.post("/planning/tweak", json={"user_request": "Move gym"})
    empty = client.post("/planning/tweak", json={"current_plan": [], "user_request": "Move gym"})

    assert ok.status_code == 200
    assert fake.calls[0]["thinking"] is False
    assert fake.calls[0]["messages"][-1] == {"role": "user", "content": "Move gym to evening"}
    assert missing.status_code == 422
    assert empty.status_code == 422


def test_discuss_streams_goal_breakdown(client):
    fake = _use_chat(_FakeChat(chunks=["1. Basics"]))

    resp = client.post("/planning/discuss", json={"goal": "Learn the guitar"})

    assert _events(resp)[-1] == {"done": True, "message": "1. Basics"}
    assert "Learn the guitar" in fake.calls[0]["messages"][0]["content"]


def test_finalize_returns_parsed_schedule(client):
    fake = _use_chat(
        _FakeChat(
            reply='Sure! [{"title":"Write","description":"Draft","startTime":"09:00",'
            '"endTime":"10:00","estimatedMins":60}]'
        )
    )

    resp = client.post(
        "/planning/finalize",
        json={"conversation_history": [{"role": "user", "content": "Write at nine"}]},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["schedule"][0]["estimatedMins"] == 60
    assert body["request_id"]
    assert fake.calls[0]["thinking"] is True


def test_finalize_parse_failure_is_500(client):
    _use_chat(_FakeChat(reply="I could not decide."))

    resp = client.post(
        "/planning/finalize",
        json={"conversation_history": [{"role": "user", "content": "Plan"}]},
    )

    assert resp.status_code == 500
    assert resp.json()["detail"] == "Failed to parse schedule from AI response"


def test_finalize_model_failure_is_500(client):
    _use_chat(_FakeChat(error=ChatCompletionError("model not found")))

    resp = client.post(
        "/planning/finalize",
        json={"conversation_history": [{"role": "user", "content": "Plan"}]},
    )

    assert resp.status_code == 500
    assert resp.json()["detail"].startswith("Failed to finalize schedule")


def test_finalize_requires_history(client):
    _use_chat(_FakeChat(reply="[]"))

    resp = client.post("/planning/finalize", json={"conversation_history": []})

    assert resp.status_code == 422


def test_subgoals_returns_entries(client):
    _use_chat(_FakeChat(reply='[{"title":"Chords","description":"Open chords","estimatedDays":10}]'))

    resp = client.post(
        "/planning/subgoals",
        json={"goal": "Learn the guitar", "conversation_history": [{"role": "assistant", "content": "1. Chords"}]},
    )

    assert resp.status_code == 200
    assert resp.json()["subgoals"] == [{"title": "Chords", "description": "Open chords", "estimatedDays": 10}]
