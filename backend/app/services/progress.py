"""Completion percentages for tasks and goals.

Functions here accept any objects exposing the ORM attribute names: tasks need
``description``, ``status`` and (for summaries) ``due_date``; goals need
``milestones``, each with ``tasks``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Optional

from app.db.enums import TaskStatus
from app.services.description_codec import decode_description
from app.services.subtask_tree import count_completed, count_total

STATUS_PROGRESS = {
    TaskStatus.COMPLETED: 100,
    TaskStatus.IN_PROGRESS: 50,
    TaskStatus.PENDING: 0,
}

# Days assumed per remaining task when none of them carries a due date.
DAYS_PER_UNDATED_TASK = 3


@dataclass
class GoalSummary:
    total: int
    completed: int
    in_progress: int
    pending: int
    estimated_days: Optional[int]
    done: bool


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def task_progress(task: Any) -> int:
    """Percentage of subtask nodes completed, or a status-based fallback."""
    tree = decode_description(task.description).subtasks
    total = count_total(tree)
    if total > 0:
        return round_half_up(100 * count_completed(tree) / total)
    return STATUS_PROGRESS.get(_status_of(task), 0)


def goal_tasks(goal: Any) -> List[Any]:
    """All tasks of a goal, milestone by milestone."""
    return [task for milestone in (goal.milestones or []) for task in (milestone.tasks or [])]


def goal_progress(goal: Any) -> int:
    """Unweighted mean of task progress across every milestone; 0 without tasks."""
    tasks = goal_tasks(goal)
    if not tasks:
        return 0
    return round_half_up(sum(task_progress(task) for task in tasks) / len(tasks))


def goal_summary(goal: Any, today: Optional[date] = None) -> GoalSummary:
    """Status counts plus a rough days-to-finish estimate."""
    today = today or date.today()
    tasks = goal_tasks(goal)
    statuses = [_status_of(task) for task in tasks]
    total = len(tasks)
    completed = statuses.count(TaskStatus.COMPLETED)
    remaining = total - completed

    estimated_days: Optional[int] = None
    if remaining > 0:
        due_dates = _open_due_dates(tasks)
        if due_dates:
            estimated_days = max(1, (max(due_dates) - today).days)
        else:
            estimated_days = remaining * DAYS_PER_UNDATED_TASK

    return GoalSummary(
        total=total,
        completed=completed,
        in_progress=statuses.count(TaskStatus.IN_PROGRESS),
        pending=statuses.count(TaskStatus.PENDING),
        estimated_days=estimated_days,
        done=total > 0 and remaining == 0,
    )


def _status_of(task: Any) -> Optional[TaskStatus]:
    try:
        return TaskStatus(task.status)
    except ValueError:
        return None


def _open_due_dates(tasks: Iterable[Any]) -> List[date]:
    return [
        task.due_date
        for task in tasks
        if getattr(task, "due_date", None) and _status_of(task) != TaskStatus.COMPLETED
    ]
