"""Tests ensuring observability wiring is safe by default."""
from __future__ import annotations

import importlib

import pytest

from app.observability import tracing


class _RecordingTrace:
    def __init__(self, metadata=None):
        self.metadata = metadata or {}
        self.error_info = None
        self.ended = False

    def update(self, error_info=None, **kwargs):
        self.error_info = error_info

    def end(self):
        self.ended = True


class _RecordingClient:
    def __init__(self):
        self.traces = []

    def trace(self, name, metadata=None):
        trace = _RecordingTrace(metadata)
        self.traces.append(trace)
        return trace


def test_app_import_succeeds_when_opik_is_disabled(monkeypatch) -> None:
    monkeypatch.setenv("OPIK_ENABLED", "false")
    monkeypatch.delenv("OPIK_API_KEY", raising=False)

    import app.core.config as core_config
    import app.observability.client as client_module
    import app.main as main_module

    importlib.reload(core_config)
    importlib.reload(client_module)
    reloaded_app = importlib.reload(main_module)

    assert hasattr(reloaded_app, "app")


def test_trace_yields_none_when_disabled(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with tracing.trace("goal.list", metadata={"user_id": "u-1"}) as opik_trace:
        assert opik_trace is None


def test_trace_attaches_error_and_reraises(monkeypatch) -> None:
    client = _RecordingClient()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)

    with pytest.raises(ValueError):
        with tracing.trace("planning.finalize", metadata={"history_length": 2, "skipped": None}, request_id="req-1"):
            raise ValueError("no array")

    recorded = client.traces[0]
    assert recorded.metadata == {"history_length": 2, "request_id": "req-1"}
    assert recorded.error_info == {"exception_type": "ValueError", "message": "no array"}
    assert recorded.ended is True
