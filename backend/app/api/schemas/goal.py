"""Schemas for goals and milestones."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.api.schemas.task import TaskView
from app.db.enums import Priority
from app.services.subtask_tree import SubtaskNode


def _trimmed(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    if not cleaned:
        raise ValueError("title must not be blank")
    return cleaned


class GoalCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, max_length=5000)
    target_date: Optional[date] = None
    priority: Priority = Priority.MEDIUM
    subtasks: List[SubtaskNode] = Field(
        default_factory=list,
        description="Seeds a 'Tasks' milestone holding one task with this subtask tree.",
    )

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: Optional[str]) -> Optional[str]:
        return _trimmed(value)


class GoalUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""

    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, max_length=5000)
    target_date: Optional[date] = None
    priority: Optional[Priority] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: Optional[str]) -> Optional[str]:
        return _trimmed(value)


class MilestoneCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, max_length=5000)
    target_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: Optional[str]) -> Optional[str]:
        return _trimmed(value)


class MilestoneUpdateRequest(BaseModel):
    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    description: Optional[str] = Field(default=None, max_length=5000)
    target_date: Optional[date] = None

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: Optional[str]) -> Optional[str]:
        return _trimmed(value)


class GoalSummaryPayload(BaseModel):
    total: int
    completed: int
    in_progress: int
    pending: int
    estimated_days: Optional[int]
    done: bool


class MilestoneView(BaseModel):
    id: UUID
    goal_id: UUID
    title: str
    description: Optional[str]
    target_date: Optional[date]
    tasks: List[TaskView]


class MilestoneResponse(BaseModel):
    id: UUID
    goal_id: UUID
    title: str
    description: Optional[str]
    target_date: Optional[date]
    request_id: str


class GoalListItem(BaseModel):
    id: UUID
    title: str
    description: Optional[str]
    target_date: Optional[date]
    priority: Priority
    progress: int
    milestone_count: int
    task_count: int
    created_at: datetime


class GoalDetailResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    description: Optional[str]
    target_date: Optional[date]
    priority: Priority
    progress: int
    summary: GoalSummaryPayload
    milestones: List[MilestoneView]
    created_at: datetime
    updated_at: datetime
    request_id: str


class DeleteResponse(BaseModel):
    id: UUID
    deleted: bool
    request_id: str
