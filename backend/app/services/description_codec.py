"""Codec for the task description column.

The column carries either legacy plain text or a JSON envelope
``{"text": ..., "subtasks": [...]}``. Decoding is best effort and never fails:
anything that is not a well-formed envelope is read back as plain text.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from pydantic import TypeAdapter, ValidationError

from app.services.subtask_tree import STORED_CONTEXT, SubtaskNode, SubtaskTree

logger = logging.getLogger(__name__)

_TREE_ADAPTER = TypeAdapter(SubtaskTree)


@dataclass(frozen=True)
class PlainDescription:
    text: str

    @property
    def subtasks(self) -> SubtaskTree:
        return ()


@dataclass(frozen=True)
class StructuredDescription:
    text: str
    subtasks: SubtaskTree


DecodedDescription = Union[PlainDescription, StructuredDescription]


def decode_description(raw: Optional[str]) -> DecodedDescription:
    """Split a stored description into its text and subtask tree."""
    if not raw:
        return PlainDescription("")

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        # RecursionError: pathologically nested text such as "[[[[...]]]]".
        return PlainDescription(raw)

    if not isinstance(payload, dict) or not isinstance(payload.get("subtasks"), list):
        return PlainDescription(raw)

    try:
        subtasks = _TREE_ADAPTER.validate_python(payload["subtasks"], context=STORED_CONTEXT)
    except (ValidationError, RecursionError):
        logger.warning("Description envelope holds malformed subtasks; reading it as plain text")
        return PlainDescription(raw)

    text = payload.get("text")
    return StructuredDescription(text=text if isinstance(text, str) else "", subtasks=subtasks)


def encode_description(text: Optional[str], subtasks: Sequence[SubtaskNode]) -> Optional[str]:
    """Serialize text plus subtasks into the value stored on the task.

    Returns ``None`` when there is nothing to store and the bare text when the
    tree is empty, so tasks without subtasks keep a human-readable column.
    """
    text = text or ""
    if not subtasks:
        return text or None
    envelope = {
        "text": text,
        "subtasks": [node.model_dump(mode="json") for node in subtasks],
    }
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)
