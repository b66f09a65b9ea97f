"""Task and subtask API routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.goal import DeleteResponse
from app.api.schemas.task import (
    SubtaskCreateRequest,
    SubtaskToggleRequest,
    TaskCreateRequest,
    TaskResponse,
    TaskStatusUpdateRequest,
    TaskUpdateRequest,
)
from app.db.deps import get_db
from app.db.models.milestone import Milestone
from app.db.models.task import Task
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.description_codec import decode_description, encode_description
from app.services.goal_service import (
    first_milestone_or_create,
    get_owned_goal,
    get_owned_milestone,
    get_owned_task,
    record_action,
    serialize_task,
)
from app.services.subtask_tree import (
    DuplicateSubtaskIdError,
    SubtaskNode,
    SubtaskTree,
    add_child,
    count_total,
    ensure_unique_ids,
    find_by_id,
    flatten,
    remove_by_id,
    toggle_by_id,
)

router = APIRouter()


@router.post(
    "/milestones/{milestone_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["tasks"],
)
def create_milestone_task(
    milestone_id: UUID,
    payload: TaskCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Create a task under a milestone."""
    milestone, _ = get_owned_milestone(db, milestone_id, payload.user_id)
    return _create_task(db, milestone, payload, http_request)


@router.post(
    "/goals/{goal_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["tasks"],
)
def create_goal_task(
    goal_id: UUID,
    payload: TaskCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Create a task in the goal's first milestone, adding a default milestone if needed."""
    goal = get_owned_goal(db, goal_id, payload.user_id)
    try:
        milestone = first_milestone_or_create(db, goal)
    except Exception:
        db.rollback()
        raise
    return _create_task(db, milestone, payload, http_request)


@router.patch("/tasks/{task_id}", response_model=TaskResponse, tags=["tasks"])
def update_task(
    task_id: UUID,
    payload: TaskUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Apply a partial update; text and subtasks are re-encoded together."""
    task, _ = get_owned_task(db, task_id, payload.user_id)
    request_id = getattr(http_request.state, "request_id", None)
    fields = sorted(payload.model_fields_set - {"user_id"})

    subtasks: Optional[SubtaskTree] = None
    if payload.subtasks is not None:
        subtasks = _unique_or_422(payload.subtasks)

    metadata: Dict[str, Any] = {
        "route": f"/tasks/{task_id}",
        "task_id": str(task_id),
        "user_id": str(payload.user_id),
        "fields": fields,
        "request_id": request_id,
    }
    start_time = datetime.now(timezone.utc)
    try:
        with trace("task.update", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
            if payload.title is not None:
                task.title = payload.title.strip() or task.title
            if "due_date" in payload.model_fields_set:
                task.due_date = payload.due_date
            if payload.priority is not None:
                task.priority = payload.priority.value
            if payload.status is not None:
                task.status = payload.status.value

            if "text" in payload.model_fields_set or subtasks is not None:
                current = decode_description(task.description)
                text = payload.text if "text" in payload.model_fields_set else current.text
                tree = subtasks if subtasks is not None else current.subtasks
                task.description = encode_description(text, tree)

            if fields:
                record_action(
                    db,
                    user_id=payload.user_id,
                    action_type="task_updated",
                    entity_type="task",
                    entity_id=task.id,
                    payload={"task_id": str(task.id), "fields": fields},
                    reason="Task edited",
                    request_id=request_id,
                )
            db.add(task)
            db.commit()
            db.refresh(task)
    except Exception:
        db.rollback()
        raise

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("task.update.success", 1, metadata={"task_id": str(task_id)})
    log_metric("task.update.latency_ms", latency_ms, metadata={"task_id": str(task_id)})
    return _task_response(task, request_id)


@router.patch("/tasks/{task_id}/status", response_model=TaskResponse, tags=["tasks"])
def update_task_status(
    task_id: UUID,
    payload: TaskStatusUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Set a task's status."""
    task, _ = get_owned_task(db, task_id, payload.user_id)
    request_id = getattr(http_request.state, "request_id", None)
    previous = task.status
    changed = previous != payload.status.value

    try:
        with trace(
            "task.status",
            metadata={
                "route": f"/tasks/{task_id}/status",
                "task_id": str(task_id),
                "status": payload.status.value,
                "request_id": request_id,
            },
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            if changed:
                task.status = payload.status.value
                record_action(
                    db,
                    user_id=payload.user_id,
                    action_type="task_status_changed",
                    entity_type="task",
                    entity_id=task.id,
                    payload={"task_id": str(task.id), "from": previous, "to": payload.status.value},
                    reason="Task status changed",
                    request_id=request_id,
                )
            db.add(task)
            db.commit()
            db.refresh(task)
    except Exception:
        db.rollback()
        raise

    log_metric("task.status.changed", 1 if changed else 0, metadata={"task_id": str(task_id)})
    return _task_response(task, request_id)


@router.delete("/tasks/{task_id}", response_model=DeleteResponse, tags=["tasks"])
def delete_task(
    task_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the task"),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    task, goal = get_owned_task(db, task_id, user_id)
    request_id = getattr(http_request.state, "request_id", None)
    try:
        record_action(
            db,
            user_id=user_id,
            action_type="task_deleted",
            entity_type="task",
            entity_id=task.id,
            payload={
                "task_id": str(task.id),
                "goal_id": str(goal.id),
                "title": task.title,
                "description": task.description,
            },
            reason="Task deleted",
            request_id=request_id,
            undo_available=False,
        )
        db.delete(task)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("task.delete.success", 1, metadata={"user_id": str(user_id)})
    return DeleteResponse(id=task_id, deleted=True, request_id=request_id or "")


@router.post("/tasks/{task_id}/subtasks", response_model=TaskResponse, tags=["subtasks"])
def add_subtask(
    task_id: UUID,
    payload: SubtaskCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Append a new node at the root, or as the last child of ``parent_id``.

    An unknown ``parent_id`` leaves the tree unchanged.
    """
    task, _ = get_owned_task(db, task_id, payload.user_id)
    request_id = getattr(http_request.state, "request_id", None)
    current = decode_description(task.description)
    node = SubtaskNode(title=payload.title.strip())

    if payload.parent_id is None:
        tree = (*current.subtasks, node)
    else:
        tree = add_child(current.subtasks, payload.parent_id, node)
    added = count_total(tree) > count_total(current.subtasks)

    return _save_tree(
        db,
        task,
        current.text,
        tree,
        changed=added,
        action_type="subtask_added",
        action_payload={"subtask_id": node.id, "parent_id": payload.parent_id},
        user_id=payload.user_id,
        request_id=request_id,
        span="subtask.add",
    )


@router.post("/tasks/{task_id}/subtasks/{subtask_id}/toggle", response_model=TaskResponse, tags=["subtasks"])
def toggle_subtask(
    task_id: UUID,
    subtask_id: str,
    payload: SubtaskToggleRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> TaskResponse:
    task, _ = get_owned_task(db, task_id, payload.user_id)
    request_id = getattr(http_request.state, "request_id", None)
    current = decode_description(task.description)
    target = find_by_id(current.subtasks, subtask_id)
    tree = toggle_by_id(current.subtasks, subtask_id)

    return _save_tree(
        db,
        task,
        current.text,
        tree,
        changed=target is not None,
        action_type="subtask_toggled",
        action_payload={
            "subtask_id": subtask_id,
            "completed": None if target is None else not target.completed,
        },
        user_id=payload.user_id,
        request_id=request_id,
        span="subtask.toggle",
    )


@router.delete("/tasks/{task_id}/subtasks/{subtask_id}", response_model=TaskResponse, tags=["subtasks"])
def delete_subtask(
    task_id: UUID,
    subtask_id: str,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the task"),
    db: Session = Depends(get_db),
) -> TaskResponse:
    """Remove a node and everything beneath it."""
    task, _ = get_owned_task(db, task_id, user_id)
    request_id = getattr(http_request.state, "request_id", None)
    current = decode_description(task.description)
    target = find_by_id(current.subtasks, subtask_id)
    tree = remove_by_id(current.subtasks, subtask_id)

    return _save_tree(
        db,
        task,
        current.text,
        tree,
        changed=target is not None,
        action_type="subtask_deleted",
        action_payload={
            "subtask_id": subtask_id,
            "removed": 0 if target is None else len(flatten([target])),
        },
        user_id=user_id,
        request_id=request_id,
        span="subtask.delete",
    )


def _create_task(
    db: Session,
    milestone: Milestone,
    payload: TaskCreateRequest,
    http_request: Request,
) -> TaskResponse:
    request_id = getattr(http_request.state, "request_id", None)
    subtasks = _unique_or_422(payload.subtasks)
    metadata: Dict[str, Any] = {
        "route": "/tasks",
        "milestone_id": str(milestone.id),
        "user_id": str(payload.user_id),
        "subtasks": count_total(subtasks),
        "request_id": request_id,
    }

    start_time = datetime.now(timezone.utc)
    try:
        with trace("task.create", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
            task = Task(
                milestone_id=milestone.id,
                title=payload.title,
                description=encode_description(payload.text, subtasks),
                due_date=payload.due_date,
                priority=payload.priority.value,
                status=payload.status.value,
            )
            db.add(task)
            db.flush()
            record_action(
                db,
                user_id=payload.user_id,
                action_type="task_created",
                entity_type="task",
                entity_id=task.id,
                payload={"task_id": str(task.id), "milestone_id": str(milestone.id)},
                reason="Task created",
                request_id=request_id,
                undo_available=False,
            )
            db.commit()
            db.refresh(task)
    except Exception:
        db.rollback()
        raise

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("task.create.success", 1, metadata={"user_id": str(payload.user_id)})
    log_metric("task.create.latency_ms", latency_ms, metadata={"milestone_id": str(milestone.id)})
    return _task_response(task, request_id)


def _save_tree(
    db: Session,
    task: Task,
    text: str,
    tree: SubtaskTree,
    *,
    changed: bool,
    action_type: str,
    action_payload: Dict[str, Any],
    user_id: UUID,
    request_id: Optional[str],
    span: str,
) -> TaskResponse:
    metadata: Dict[str, Any] = {
        "task_id": str(task.id),
        "changed": changed,
        "total_subtasks": count_total(tree),
        "request_id": request_id,
        **action_payload,
    }
    try:
        with trace(span, metadata=metadata, user_id=str(user_id), request_id=request_id):
            if changed:
                task.description = encode_description(text, tree)
                record_action(
                    db,
                    user_id=user_id,
                    action_type=action_type,
                    entity_type="task",
                    entity_id=task.id,
                    payload={"task_id": str(task.id), **action_payload},
                    reason="Subtask tree edited",
                    request_id=request_id,
                )
                db.add(task)
                db.commit()
                db.refresh(task)
    except Exception:
        db.rollback()
        raise

    log_metric(f"{span}.changed", 1 if changed else 0, metadata={"task_id": str(task.id)})
    return _task_response(task, request_id)


def _unique_or_422(subtasks: List[SubtaskNode]) -> SubtaskTree:
    try:
        return ensure_unique_ids(subtasks)
    except DuplicateSubtaskIdError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


def _task_response(task: Task, request_id: Optional[str]) -> TaskResponse:
    return TaskResponse(**serialize_task(task).model_dump(), request_id=request_id or "")
