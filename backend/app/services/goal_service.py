"""Loading, ownership checks and serialization for goals, milestones and tasks."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from app.api.schemas.goal import (
    GoalDetailResponse,
    GoalListItem,
    GoalSummaryPayload,
    MilestoneView,
)
from app.api.schemas.planning import ChecklistItem, PlanningGoal, PlanningMilestone
from app.api.schemas.task import TaskView
from app.db.enums import Priority, TaskStatus
from app.db.models.agent_action_log import AgentActionLog
from app.db.models.goal import Goal
from app.db.models.milestone import Milestone
from app.db.models.task import Task
from app.services.description_codec import decode_description
from app.services.progress import goal_progress, goal_summary, task_progress
from app.services.subtask_tree import count_completed, count_total

DEFAULT_MILESTONE_TITLE = "Tasks"


@dataclass
class MilestoneTree:
    milestone: Milestone
    tasks: List[Task] = field(default_factory=list)


@dataclass
class GoalTree:
    goal: Goal
    milestones: List[MilestoneTree] = field(default_factory=list)


def get_owned_goal(db: Session, goal_id: UUID, user_id: UUID) -> Goal:
    goal = db.get(Goal, goal_id)
    if not goal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")
    if goal.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Goal does not belong to user")
    return goal


def get_owned_milestone(db: Session, milestone_id: UUID, user_id: UUID) -> Tuple[Milestone, Goal]:
    milestone = db.get(Milestone, milestone_id)
    if not milestone:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Milestone not found")
    goal = db.get(Goal, milestone.goal_id)
    if not goal or goal.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Milestone does not belong to user")
    return milestone, goal


def get_owned_task(db: Session, task_id: UUID, user_id: UUID) -> Tuple[Task, Goal]:
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    milestone = db.get(Milestone, task.milestone_id)
    goal = db.get(Goal, milestone.goal_id) if milestone else None
    if not goal or goal.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task does not belong to user")
    return task, goal


def first_milestone_or_create(db: Session, goal: Goal) -> Milestone:
    """Return the goal's oldest milestone, adding a default one when it has none."""
    milestone = (
        db.query(Milestone)
        .filter(Milestone.goal_id == goal.id)
        .order_by(asc(Milestone.created_at))
        .first()
    )
    if milestone:
        return milestone
    milestone = Milestone(goal_id=goal.id, title=DEFAULT_MILESTONE_TITLE)
    db.add(milestone)
    db.flush()
    return milestone


def load_goal_trees(db: Session, goals: Sequence[Goal]) -> List[GoalTree]:
    """Attach milestones and tasks to each goal with one query per level."""
    trees = {goal.id: GoalTree(goal=goal) for goal in goals}
    if not trees:
        return []

    milestones = (
        db.query(Milestone)
        .filter(Milestone.goal_id.in_(list(trees)))
        .order_by(asc(Milestone.created_at))
        .all()
    )
    milestone_trees: Dict[UUID, MilestoneTree] = {}
    for milestone in milestones:
        node = MilestoneTree(milestone=milestone)
        milestone_trees[milestone.id] = node
        trees[milestone.goal_id].milestones.append(node)

    if milestone_trees:
        tasks = (
            db.query(Task)
            .filter(Task.milestone_id.in_(list(milestone_trees)))
            .order_by(asc(Task.created_at))
            .all()
        )
        for task in tasks:
            milestone_trees[task.milestone_id].tasks.append(task)

    return [trees[goal.id] for goal in goals]


def list_goals(db: Session, user_id: UUID) -> List[GoalListItem]:
    goals = db.query(Goal).filter(Goal.user_id == user_id).order_by(desc(Goal.created_at)).all()
    return [
        GoalListItem(
            id=tree.goal.id,
            title=tree.goal.title,
            description=tree.goal.description,
            target_date=tree.goal.target_date,
            priority=Priority(tree.goal.priority),
            progress=goal_progress(tree),
            milestone_count=len(tree.milestones),
            task_count=sum(len(node.tasks) for node in tree.milestones),
            created_at=tree.goal.created_at,
        )
        for tree in load_goal_trees(db, goals)
    ]


def goal_detail(db: Session, goal: Goal, request_id: Optional[str], today: Optional[date] = None) -> GoalDetailResponse:
    tree = load_goal_trees(db, [goal])[0]
    summary = goal_summary(tree, today)
    return GoalDetailResponse(
        id=goal.id,
        user_id=goal.user_id,
        title=goal.title,
        description=goal.description,
        target_date=goal.target_date,
        priority=Priority(goal.priority),
        progress=goal_progress(tree),
        summary=GoalSummaryPayload(**asdict(summary)),
        milestones=[
            MilestoneView(
                id=node.milestone.id,
                goal_id=node.milestone.goal_id,
                title=node.milestone.title,
                description=node.milestone.description,
                target_date=node.milestone.target_date,
                tasks=[serialize_task(task) for task in node.tasks],
            )
            for node in tree.milestones
        ],
        created_at=goal.created_at,
        updated_at=goal.updated_at,
        request_id=request_id or "",
    )


def serialize_task(task: Task) -> TaskView:
    """Task fields plus its decoded text, subtask tree and derived progress."""
    decoded = decode_description(task.description)
    return TaskView(
        id=task.id,
        milestone_id=task.milestone_id,
        title=task.title,
        description=task.description,
        text=decoded.text,
        subtasks=list(decoded.subtasks),
        due_date=task.due_date,
        priority=Priority(task.priority),
        status=TaskStatus(task.status),
        progress=task_progress(task),
        completed_subtasks=count_completed(decoded.subtasks),
        total_subtasks=count_total(decoded.subtasks),
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def planning_goals_for_user(db: Session, user_id: UUID) -> List[PlanningGoal]:
    """Goal context for the planner: tasks become milestone checkpoints."""
    goals = db.query(Goal).filter(Goal.user_id == user_id).order_by(asc(Goal.created_at)).all()
    return [
        PlanningGoal(
            title=tree.goal.title,
            progress=goal_progress(tree),
            milestones=[
                PlanningMilestone(
                    title=node.milestone.title,
                    checklist=[
                        ChecklistItem(text=task.title, done=task_progress(task) == 100)
                        for task in node.tasks
                    ],
                )
                for node in tree.milestones
            ],
        )
        for tree in load_goal_trees(db, goals)
    ]


def record_action(
    db: Session,
    *,
    user_id: UUID,
    action_type: str,
    entity_type: str,
    entity_id: UUID,
    payload: Dict[str, Any],
    reason: str,
    request_id: Optional[str],
    undo_available: bool = True,
) -> AgentActionLog:
    log = AgentActionLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        action_payload={**payload, "request_id": request_id},
        reason=reason,
        undo_available=undo_available,
    )
    db.add(log)
    return log
