"""Schemas for the AI planning endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class ChatMessage(BaseModel):
    role: str
    content: str


class ChecklistItem(BaseModel):
    text: str
    done: bool = False


class PlanningMilestone(BaseModel):
    title: str
    checklist: List[ChecklistItem] = Field(default_factory=list)


class PlanningGoal(BaseModel):
    title: str
    progress: int = Field(default=0, ge=0, le=100)
    milestones: List[PlanningMilestone] = Field(default_factory=list)


class SuggestPlanRequest(BaseModel):
    user_id: Optional[UUID] = Field(default=None, description="Load goal context from the store when goals are omitted.")
    goals: Optional[List[PlanningGoal]] = None
    user_preferences: Optional[str] = Field(default=None, max_length=2000)
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    enable_thinking: bool = True


class TweakPlanRequest(BaseModel):
    current_plan: Any
    user_request: str = Field(..., min_length=1, max_length=2000)
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    enable_thinking: bool = False

    @field_validator("current_plan")
    @classmethod
    def require_plan(cls, value: Any) -> Any:
        if not value:
            raise ValueError("current_plan is required")
        return value


class FinalizePlanRequest(BaseModel):
    conversation_history: List[ChatMessage] = Field(..., min_length=1)


class FinalizePlanResponse(BaseModel):
    schedule: List[Any]
    request_id: str


class DiscussGoalRequest(BaseModel):
    goal: str = Field(..., min_length=1, max_length=500)
    conversation_history: List[ChatMessage] = Field(default_factory=list)
    enable_thinking: bool = True


class ExtractSubgoalsRequest(BaseModel):
    goal: str = Field(..., min_length=1, max_length=500)
    conversation_history: List[ChatMessage] = Field(..., min_length=1)


class ExtractSubgoalsResponse(BaseModel):
    subgoals: List[Dict[str, Any]]
    request_id: str
