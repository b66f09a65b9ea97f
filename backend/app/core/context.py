"""Request-scoped context shared between middleware, logging and routes."""
from __future__ import annotations

from contextvars import ContextVar

# Set by RequestIDMiddleware for the duration of one HTTP request.
request_id_ctx_var: ContextVar[str | None] = ContextVar("goalplanner_request_id", default=None)


def get_request_id() -> str | None:
    return request_id_ctx_var.get()
