from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

TimeOfDay = Literal["morning", "afternoon", "evening", "not_set"]
RepeatType = Literal["none", "daily", "every_other_day", "weekly", "monthly"]


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    scheduled_date: datetime
    time_of_day: TimeOfDay = "not_set"
    is_repeating: bool = False
    repeat_type: RepeatType = "none"
    repeat_until: Optional[datetime] = None


class TaskCreate(TaskBase):
    user_id: int
    goal_id: int


class TaskComplete(BaseModel):
    user_id: int
    completed_at: Optional[datetime] = None
    time_of_day: Optional[TimeOfDay] = None


class TaskAction(BaseModel):
    user_id: int


class TaskResponse(TaskBase):
    id: int
    goal_id: int
    is_completed: bool
    completed_at: Optional[datetime] = None
    completed_on_time: Optional[bool] = None
    parent_task_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TaskCreatedResponse(BaseModel):
    task: TaskResponse
    occurrences: List[TaskResponse] = []
    recurrence_possible: bool = False


class TaskCompletionResponse(BaseModel):
    task: TaskResponse
    achievements: List[Dict[str, Any]] = []
    already_completed: bool = False
