"""Metric helpers recorded as short Opik traces."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from app.observability.client import get_opik_client

logger = logging.getLogger(__name__)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Record ``value`` under ``metric:<name>``; a no-op while Opik is disabled."""
    client = get_opik_client()
    if not client:
        return

    payload: Dict[str, Any] = {"value": value}
    if metadata:
        payload.update({key: item for key, item in metadata.items() if item is not None})

    try:
        metric_trace = client.trace(name=f"metric:{name}", metadata=payload)
    except Exception as exc:  # pragma: no cover - defensive
        logger.debug("Unable to record metric %s: %s", name, exc)
        return

    # Metric traces have no body; close them straight away.
    try:
        metric_trace.end()
    except Exception:  # pragma: no cover
        logger.debug("Failed to close metric trace %s", name, exc_info=True)
