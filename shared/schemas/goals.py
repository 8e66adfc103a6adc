from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime


class GoalBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: Literal["short", "medium", "long"] = "short"
    deadline: datetime
    parent_goal_id: Optional[int] = None


class GoalCreate(GoalBase):
    user_id: int


class GoalAction(BaseModel):
    user_id: int
    at: Optional[datetime] = None


class GoalDeadlineUpdate(BaseModel):
    user_id: int
    deadline: datetime


class GoalParentUpdate(BaseModel):
    user_id: int
    parent_goal_id: Optional[int] = None


class GoalResponse(GoalBase):
    id: int
    user_id: int
    is_completed: bool
    completed_at: Optional[datetime] = None
    is_archived: bool
    archived_at: Optional[datetime] = None
    created_at: datetime
    current_streak: int = 0
    longest_streak: int = 0
    last_updated: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GoalNodeResponse(GoalResponse):
    children: List["GoalNodeResponse"] = []


GoalNodeResponse.model_rebuild()


class GoalTreeResponse(BaseModel):
    roots: List[GoalNodeResponse]
    cycles: List[List[int]] = []


class GoalCompletionResponse(BaseModel):
    goal: GoalResponse
    achievements: List[Dict[str, Any]] = []
    already_completed: bool = False


class GoalDeadlineResponse(BaseModel):
    goal: GoalResponse
    pruned: int
    generated: int
