"""Regression tests for application route registration."""
from fastapi.routing import APIRoute

from app.main import app


def _routes(path: str, method: str) -> list[APIRoute]:
    return [
        route
        for route in app.routes
        if isinstance(route, APIRoute) and route.path == path and method in route.methods
    ]


def test_goal_routes_registered_once() -> None:
    assert len(_routes("/goals", "POST")) == 1
    assert len(_routes("/goals", "GET")) == 1
    assert len(_routes("/goals/{goal_id}", "DELETE")) == 1


def test_subtask_routes_registered() -> None:
    assert _routes("/tasks/{task_id}/subtasks", "POST")
    assert _routes("/tasks/{task_id}/subtasks/{subtask_id}/toggle", "POST")
    assert _routes("/tasks/{task_id}/subtasks/{subtask_id}", "DELETE")


def test_planning_routes_live_under_prefix() -> None:
    planning_paths = {
        route.path for route in app.routes if isinstance(route, APIRoute) and "planning" in (route.tags or [])
    }
    assert planning_paths == {
        "/planning/suggest",
        "/planning/tweak",
        "/planning/finalize",
        "/planning/discuss",
        "/planning/subgoals",
    }
