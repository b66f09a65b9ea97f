"""Pull structured JSON arrays out of free-form model replies.

Models often wrap the requested JSON in prose or code fences. The span from the
first ``[`` to the last ``]`` is taken and parsed; if that fails the caller gets
a :class:`ScheduleExtractionError`, never a guessed default.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Sequence

from app.api.schemas.planning import ChatMessage
from app.services.chat_client import ChatClient
from app.services.planning_prompts import build_finalize_prompt, build_subgoals_prompt

logger = logging.getLogger(__name__)

_ARRAY_PATTERN = re.compile(r"\[.*\]", re.DOTALL)


class ScheduleExtractionError(ValueError):
    """The model reply did not contain a parseable JSON array."""

    def __init__(self, message: str, raw_response: str):
        self.raw_response = raw_response
        super().__init__(message)


def parse_json_array(content: str) -> List[Any]:
    """Return the JSON array embedded in ``content``."""
    match = _ARRAY_PATTERN.search(content or "")
    if not match:
        raise ScheduleExtractionError("No JSON array found in response", content)
    try:
        return json.loads(match.group(0))
    except (ValueError, RecursionError) as exc:
        raise ScheduleExtractionError(f"Invalid JSON array in response: {exc}", content) from exc


def extract_schedule(chat: ChatClient, history: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Ask the model for the agreed schedule and parse it.

    Entries come back exactly as the model wrote them; each should carry
    ``title``, ``description``, ``startTime``, ``endTime`` and ``estimatedMins``.
    """
    system_prompt, messages = build_finalize_prompt(history)
    content = chat.complete(messages, system_prompt, thinking_enabled=True)
    try:
        return parse_json_array(content)
    except ScheduleExtractionError:
        logger.error("Failed to parse schedule; raw response: %s", content)
        raise


def extract_subgoals(chat: ChatClient, goal: str, history: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Ask the model for the agreed subgoal list and parse it."""
    system_prompt, messages = build_subgoals_prompt(goal, history)
    content = chat.complete(messages, system_prompt, thinking_enabled=True)
    try:
        return parse_json_array(content)
    except ScheduleExtractionError:
        logger.error("Failed to parse subgoals; raw response: %s", content)
        raise
