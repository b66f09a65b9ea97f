"""Schemas for tasks and their subtask trees."""
from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.db.enums import Priority, TaskStatus
from app.services.subtask_tree import SubtaskNode


class TaskView(BaseModel):
    id: UUID
    milestone_id: UUID
    title: str
    description: Optional[str]
    text: str
    subtasks: List[SubtaskNode]
    due_date: Optional[date]
    priority: Priority
    status: TaskStatus
    progress: int
    completed_subtasks: int
    total_subtasks: int
    created_at: datetime
    updated_at: datetime


class TaskResponse(TaskView):
    request_id: str


class TaskCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    text: Optional[str] = Field(default=None, max_length=5000)
    subtasks: List[SubtaskNode] = Field(default_factory=list)
    due_date: Optional[date] = None
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING

    @field_validator("title")
    @classmethod
    def trim_title(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("title must not be blank")
        return cleaned


class TaskUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""

    user_id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=300)
    text: Optional[str] = Field(default=None, max_length=5000)
    subtasks: Optional[List[SubtaskNode]] = None
    due_date: Optional[date] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None


class TaskStatusUpdateRequest(BaseModel):
    user_id: UUID
    status: TaskStatus


class SubtaskCreateRequest(BaseModel):
    user_id: UUID
    title: str = Field(..., min_length=1, max_length=300)
    parent_id: Optional[str] = Field(default=None, description="Append under this node; root level when omitted.")


class SubtaskToggleRequest(BaseModel):
    user_id: UUID
