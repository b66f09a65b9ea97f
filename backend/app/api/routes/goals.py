"""Goal and milestone API routes."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.api.schemas.goal import (
    DeleteResponse,
    GoalCreateRequest,
    GoalDetailResponse,
    GoalListItem,
    GoalUpdateRequest,
    MilestoneCreateRequest,
    MilestoneResponse,
    MilestoneUpdateRequest,
)
from app.db.deps import get_db
from app.db.enums import TaskStatus
from app.db.models.goal import Goal
from app.db.models.milestone import Milestone
from app.db.models.task import Task
from app.observability.metrics import log_metric
from app.observability.tracing import trace
from app.services.description_codec import encode_description
from app.services.goal_service import (
    DEFAULT_MILESTONE_TITLE,
    get_owned_goal,
    get_owned_milestone,
    goal_detail,
    list_goals,
    record_action,
)
from app.services.subtask_tree import DuplicateSubtaskIdError, ensure_unique_ids
from app.services.user_service import get_or_create_user

router = APIRouter()


@router.post("/goals", response_model=GoalDetailResponse, status_code=status.HTTP_201_CREATED, tags=["goals"])
def create_goal(
    payload: GoalCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GoalDetailResponse:
    """Create a goal, optionally seeding a task that carries a subtask tree."""
    request_id = getattr(http_request.state, "request_id", None)
    try:
        subtasks = ensure_unique_ids(payload.subtasks)
    except DuplicateSubtaskIdError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    metadata: Dict[str, Any] = {
        "route": "/goals",
        "user_id": str(payload.user_id),
        "seed_subtasks": len(subtasks),
        "request_id": request_id,
    }
    start_time = datetime.now(timezone.utc)
    try:
        with trace("goal.create", metadata=metadata, user_id=str(payload.user_id), request_id=request_id):
            get_or_create_user(db, payload.user_id)
            goal = Goal(
                user_id=payload.user_id,
                title=payload.title,
                description=payload.description,
                target_date=payload.target_date,
                priority=payload.priority.value,
            )
            db.add(goal)
            db.flush()

            if subtasks:
                milestone = Milestone(goal_id=goal.id, title=DEFAULT_MILESTONE_TITLE)
                db.add(milestone)
                db.flush()
                db.add(
                    Task(
                        milestone_id=milestone.id,
                        title=payload.title,
                        description=encode_description(payload.description, subtasks),
                        due_date=payload.target_date,
                        priority=payload.priority.value,
                        status=TaskStatus.PENDING.value,
                    )
                )

            record_action(
                db,
                user_id=payload.user_id,
                action_type="goal_created",
                entity_type="goal",
                entity_id=goal.id,
                payload={"goal_id": str(goal.id), "seed_subtasks": len(subtasks)},
                reason="Goal created",
                request_id=request_id,
                undo_available=False,
            )
            db.commit()
            db.refresh(goal)
    except Exception:
        db.rollback()
        raise

    latency_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    log_metric("goal.create.success", 1, metadata={"user_id": str(payload.user_id)})
    log_metric("goal.create.latency_ms", latency_ms, metadata={"user_id": str(payload.user_id)})
    return goal_detail(db, goal, request_id)


@router.get("/goals", response_model=List[GoalListItem], tags=["goals"])
def list_goals_endpoint(
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the goals"),
    db: Session = Depends(get_db),
) -> List[GoalListItem]:
    """List a user's goals with derived progress."""
    request_id = getattr(http_request.state, "request_id", None)
    with trace(
        "goal.list",
        metadata={"route": "/goals", "user_id": str(user_id), "request_id": request_id},
        user_id=str(user_id),
        request_id=request_id,
    ):
        goals = list_goals(db, user_id)

    log_metric("goal.list.success", 1, metadata={"user_id": str(user_id)})
    log_metric("goal.list.count", len(goals), metadata={"user_id": str(user_id)})
    return goals


@router.get("/goals/{goal_id}", response_model=GoalDetailResponse, tags=["goals"])
def get_goal(
    goal_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the goal"),
    db: Session = Depends(get_db),
) -> GoalDetailResponse:
    """Return a goal with its milestones, tasks, subtask trees and progress."""
    request_id = getattr(http_request.state, "request_id", None)
    goal = get_owned_goal(db, goal_id, user_id)
    with trace(
        "goal.get",
        metadata={"route": f"/goals/{goal_id}", "goal_id": str(goal_id), "request_id": request_id},
        user_id=str(user_id),
        request_id=request_id,
    ):
        detail = goal_detail(db, goal, request_id)

    log_metric("goal.get.progress", detail.progress, metadata={"goal_id": str(goal_id)})
    return detail


@router.patch("/goals/{goal_id}", response_model=GoalDetailResponse, tags=["goals"])
def update_goal(
    goal_id: UUID,
    payload: GoalUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> GoalDetailResponse:
    """Update the fields present in the body."""
    request_id = getattr(http_request.state, "request_id", None)
    goal = get_owned_goal(db, goal_id, payload.user_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    if changes.get("title") is None:
        changes.pop("title", None)
    if changes.get("priority") is None:
        changes.pop("priority", None)
    else:
        changes["priority"] = changes["priority"].value

    try:
        with trace(
            "goal.update",
            metadata={"goal_id": str(goal_id), "fields": sorted(changes), "request_id": request_id},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            for field_name, value in changes.items():
                setattr(goal, field_name, value)
            if changes:
                record_action(
                    db,
                    user_id=payload.user_id,
                    action_type="goal_updated",
                    entity_type="goal",
                    entity_id=goal.id,
                    payload={"goal_id": str(goal.id), "fields": sorted(changes)},
                    reason="Goal edited",
                    request_id=request_id,
                )
            db.add(goal)
            db.commit()
            db.refresh(goal)
    except Exception:
        db.rollback()
        raise

    log_metric("goal.update.changed", 1 if changes else 0, metadata={"goal_id": str(goal_id)})
    return goal_detail(db, goal, request_id)


@router.delete("/goals/{goal_id}", response_model=DeleteResponse, tags=["goals"])
def delete_goal(
    goal_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the goal"),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    """Delete a goal together with its milestones and tasks."""
    request_id = getattr(http_request.state, "request_id", None)
    goal = get_owned_goal(db, goal_id, user_id)
    try:
        with trace("goal.delete", metadata={"goal_id": str(goal_id)}, user_id=str(user_id), request_id=request_id):
            milestone_ids = [row.id for row in db.query(Milestone.id).filter(Milestone.goal_id == goal.id)]
            tasks_deleted = 0
            if milestone_ids:
                tasks_deleted = (
                    db.query(Task).filter(Task.milestone_id.in_(milestone_ids)).delete(synchronize_session=False)
                )
                db.query(Milestone).filter(Milestone.goal_id == goal.id).delete(synchronize_session=False)
            record_action(
                db,
                user_id=user_id,
                action_type="goal_deleted",
                entity_type="goal",
                entity_id=goal.id,
                payload={
                    "goal_id": str(goal.id),
                    "title": goal.title,
                    "milestones_deleted": len(milestone_ids),
                    "tasks_deleted": tasks_deleted,
                },
                reason="Goal deleted",
                request_id=request_id,
                undo_available=False,
            )
            db.delete(goal)
            db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("goal.delete.success", 1, metadata={"user_id": str(user_id)})
    return DeleteResponse(id=goal_id, deleted=True, request_id=request_id or "")


@router.post(
    "/goals/{goal_id}/milestones",
    response_model=MilestoneResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["milestones"],
)
def create_milestone(
    goal_id: UUID,
    payload: MilestoneCreateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> MilestoneResponse:
    request_id = getattr(http_request.state, "request_id", None)
    goal = get_owned_goal(db, goal_id, payload.user_id)
    try:
        with trace("milestone.create", metadata={"goal_id": str(goal_id)}, user_id=str(payload.user_id), request_id=request_id):
            milestone = Milestone(
                goal_id=goal.id,
                title=payload.title,
                description=payload.description,
                target_date=payload.target_date,
            )
            db.add(milestone)
            db.flush()
            record_action(
                db,
                user_id=payload.user_id,
                action_type="milestone_created",
                entity_type="milestone",
                entity_id=milestone.id,
                payload={"goal_id": str(goal.id), "milestone_id": str(milestone.id)},
                reason="Milestone created",
                request_id=request_id,
                undo_available=False,
            )
            db.commit()
            db.refresh(milestone)
    except Exception:
        db.rollback()
        raise

    log_metric("milestone.create.success", 1, metadata={"goal_id": str(goal_id)})
    return _milestone_response(milestone, request_id)


@router.patch("/milestones/{milestone_id}", response_model=MilestoneResponse, tags=["milestones"])
def update_milestone(
    milestone_id: UUID,
    payload: MilestoneUpdateRequest,
    http_request: Request,
    db: Session = Depends(get_db),
) -> MilestoneResponse:
    request_id = getattr(http_request.state, "request_id", None)
    milestone, _ = get_owned_milestone(db, milestone_id, payload.user_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"user_id"})
    if changes.get("title") is None:
        changes.pop("title", None)

    try:
        for field_name, value in changes.items():
            setattr(milestone, field_name, value)
        if changes:
            record_action(
                db,
                user_id=payload.user_id,
                action_type="milestone_updated",
                entity_type="milestone",
                entity_id=milestone.id,
                payload={"milestone_id": str(milestone.id), "fields": sorted(changes)},
                reason="Milestone edited",
                request_id=request_id,
            )
        db.add(milestone)
        db.commit()
        db.refresh(milestone)
    except Exception:
        db.rollback()
        raise

    return _milestone_response(milestone, request_id)


@router.delete("/milestones/{milestone_id}", response_model=DeleteResponse, tags=["milestones"])
def delete_milestone(
    milestone_id: UUID,
    http_request: Request,
    user_id: UUID = Query(..., description="User ID owning the milestone"),
    db: Session = Depends(get_db),
) -> DeleteResponse:
    """Delete a milestone and every task under it."""
    request_id = getattr(http_request.state, "request_id", None)
    milestone, goal = get_owned_milestone(db, milestone_id, user_id)
    try:
        tasks_deleted = db.query(Task).filter(Task.milestone_id == milestone.id).delete(synchronize_session=False)
        record_action(
            db,
            user_id=user_id,
            action_type="milestone_deleted",
            entity_type="milestone",
            entity_id=milestone.id,
            payload={"goal_id": str(goal.id), "title": milestone.title, "tasks_deleted": tasks_deleted},
            reason="Milestone deleted",
            request_id=request_id,
            undo_available=False,
        )
        db.delete(milestone)
        db.commit()
    except Exception:
        db.rollback()
        raise

    log_metric("milestone.delete.tasks_deleted", tasks_deleted, metadata={"goal_id": str(goal.id)})
    return DeleteResponse(id=milestone_id, deleted=True, request_id=request_id or "")


def _milestone_response(milestone: Milestone, request_id: str | None) -> MilestoneResponse:
    return MilestoneResponse(
        id=milestone.id,
        goal_id=milestone.goal_id,
        title=milestone.title,
        description=milestone.description,
        target_date=milestone.target_date,
        request_id=request_id or "",
    )
