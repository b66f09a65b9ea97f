"""AI planning API routes.

Conversational endpoints stream Server-Sent Events; extraction endpoints
return parsed JSON.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from app.api.schemas.planning import (
    DiscussGoalRequest,
    ExtractSubgoalsRequest,
    ExtractSubgoalsResponse,
    FinalizePlanRequest,
    FinalizePlanResponse,
    PlanningGoal,
    SuggestPlanRequest,
    TweakPlanRequest,
)
from app.db.deps import get_db
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.chat_client import ChatClient, ChatCompletionError, get_chat_client
from app.services.goal_service import planning_goals_for_user
from app.services.planning_prompts import (
    build_discuss_prompt,
    build_suggest_prompt,
    build_tweak_prompt,
)
from app.services.schedule_extractor import (
    ScheduleExtractionError,
    extract_schedule,
    extract_subgoals,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/planning", tags=["planning"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
PARSE_FAILURE_DETAIL = "Failed to parse schedule from AI response"


@router.post("/suggest")
def suggest_plan(
    payload: SuggestPlanRequest,
    http_request: Request,
    db: Session = Depends(get_db),
    chat: ChatClient = Depends(get_chat_client),
) -> StreamingResponse:
    """Stream a proposal for tomorrow's schedule grounded in the user's goals."""
    request_id = getattr(http_request.state, "request_id", None)
    goals: Sequence[PlanningGoal] = payload.goals or []
    if payload.goals is None and payload.user_id is not None:
        goals = planning_goals_for_user(db, payload.user_id)

    system_prompt, messages = build_suggest_prompt(goals, payload.conversation_history, payload.user_preferences)
    metadata: Dict[str, Any] = {
        "route": "/planning/suggest",
        "goal_count": len(goals),
        "history_length": len(payload.conversation_history),
        "thinking": payload.enable_thinking,
        "request_id": request_id,
    }
    return _sse_response(
        chat,
        messages,
        system_prompt,
        thinking_enabled=payload.enable_thinking,
        span="planning.suggest",
        metadata=metadata,
        failure_message="Failed to generate daily plan",
        user_id=str(payload.user_id) if payload.user_id else None,
        request_id=request_id,
    )


@router.post("/tweak")
def tweak_plan(
    payload: TweakPlanRequest,
    http_request: Request,
    chat: ChatClient = Depends(get_chat_client),
) -> StreamingResponse:
    """Stream a revised schedule following the user's change request."""
    request_id = getattr(http_request.state, "request_id", None)
    system_prompt, messages = build_tweak_prompt(
        payload.current_plan, payload.user_request, payload.conversation_history
    )
    metadata: Dict[str, Any] = {
        "route": "/planning/tweak",
        "history_length": len(payload.conversation_history),
        "thinking": payload.enable_thinking,
        "request_id": request_id,
    }
    return _sse_response(
        chat,
        messages,
        system_prompt,
        thinking_enabled=payload.enable_thinking,
        span="planning.tweak",
        metadata=metadata,
        failure_message="Failed to tweak plan",
        request_id=request_id,
    )


@router.post("/discuss")
def discuss_goal(
    payload: DiscussGoalRequest,
    http_request: Request,
    chat: ChatClient = Depends(get_chat_client),
) -> StreamingResponse:
    """Stream a coaching conversation that breaks a goal into subgoals."""
    request_id = getattr(http_request.state, "request_id", None)
    system_prompt, messages = build_discuss_prompt(payload.goal, payload.conversation_history)
    metadata: Dict[str, Any] = {
        "route": "/planning/discuss",
        "history_length": len(payload.conversation_history),
        "thinking": payload.enable_thinking,
        "request_id": request_id,
    }
    return _sse_response(
        chat,
        messages,
        system_prompt,
        thinking_enabled=payload.enable_thinking,
        span="planning.discuss",
        metadata=metadata,
        failure_message="Failed to discuss goal",
        request_id=request_id,
    )


@router.post("/finalize", response_model=FinalizePlanResponse)
def finalize_plan(
    payload: FinalizePlanRequest,
    http_request: Request,
    chat: ChatClient = Depends(get_chat_client),
) -> FinalizePlanResponse:
    """Extract the agreed schedule from the conversation as structured entries."""
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": "/planning/finalize",
        "history_length": len(payload.conversation_history),
        "request_id": request_id,
    }

    start_time = datetime.now(timezone.utc)
    try:
        with trace("planning.finalize", metadata=metadata, request_id=request_id):
            schedule = extract_schedule(chat, payload.conversation_history)
    except ScheduleExtractionError as exc:
        log_metric("planning.finalize.parse_failure", 1, metadata={"request_id": request_id})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=PARSE_FAILURE_DETAIL) from exc
    except ChatCompletionError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to finalize schedule: {exc}",
        ) from exc

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("planning.finalize.entries", len(schedule), metadata={"request_id": request_id})
    log_metric("planning.finalize.latency_ms", latency_ms, metadata={"request_id": request_id})
    return FinalizePlanResponse(schedule=schedule, request_id=request_id or "")


@router.post("/subgoals", response_model=ExtractSubgoalsResponse)
def finalize_subgoals(
    payload: ExtractSubgoalsRequest,
    http_request: Request,
    chat: ChatClient = Depends(get_chat_client),
) -> ExtractSubgoalsResponse:
    """Extract the agreed subgoal list from a goal discussion."""
    request_id = getattr(http_request.state, "request_id", None)
    metadata: Dict[str, Any] = {
        "route": "/planning/subgoals",
        "history_length": len(payload.conversation_history),
        "request_id": request_id,
    }

    try:
        with trace("planning.subgoals", metadata=metadata, request_id=request_id):
            subgoals = extract_subgoals(chat, payload.goal, payload.conversation_history)
    except ScheduleExtractionError as exc:
        log_metric("planning.subgoals.parse_failure", 1, metadata={"request_id": request_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to parse subgoals from AI response",
        ) from exc
    except ChatCompletionError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to extract subgoals: {exc}",
        ) from exc

    entries = [entry for entry in subgoals if isinstance(entry, dict)]
    log_metric("planning.subgoals.entries", len(entries), metadata={"request_id": request_id})
    return ExtractSubgoalsResponse(subgoals=entries, request_id=request_id or "")


def _sse_response(
    chat: ChatClient,
    messages: List[Dict[str, str]],
    system_prompt: str,
    *,
    thinking_enabled: bool,
    span: str,
    metadata: Dict[str, Any],
    failure_message: str,
    user_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> StreamingResponse:
    return StreamingResponse(
        _sse_events(
            chat,
            messages,
            system_prompt,
            thinking_enabled=thinking_enabled,
            span=span,
            metadata=metadata,
            failure_message=failure_message,
            user_id=user_id,
            request_id=request_id,
        ),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


def _sse_events(
    chat: ChatClient,
    messages: List[Dict[str, str]],
    system_prompt: str,
    *,
    thinking_enabled: bool,
    span: str,
    metadata: Dict[str, Any],
    failure_message: str,
    user_id: Optional[str],
    request_id: Optional[str],
) -> Iterator[str]:
    """Relay model chunks as SSE events, ending with the accumulated reply."""
    parts: List[str] = []
    start_time = datetime.now(timezone.utc)
    with trace(span, metadata=metadata, user_id=user_id, request_id=request_id):
        try:
            for chunk in chat.stream(messages, system_prompt, thinking_enabled=thinking_enabled):
                parts.append(chunk)
                yield _sse({"content": chunk})
        except ChatCompletionError as exc:
            logger.error("%s stream failed after %d chunks: %s", span, len(parts), exc)
            log_metric(f"{span}.failure", 1, metadata={"request_id": request_id})
            yield _sse({"error": failure_message, "details": str(exc)})
            return

        yield _sse({"done": True, "message": "".join(parts)})

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric(f"{span}.chunks", len(parts), metadata={"request_id": request_id})
    log_metric(f"{span}.latency_ms", latency_ms, metadata={"request_id": request_id})


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"
