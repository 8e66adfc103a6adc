from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime


class AchievementResponse(BaseModel):
    id: int
    user_id: int
    title: str
    description: str
    type: str  # 'streak' | 'goal_completion' | 'task_completion' | 'consistency' | 'custom'
    criterion: Optional[str] = None
    icon_name: str
    badge_color: str
    threshold_value: int
    current_value: int
    is_completed: bool
    completed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
