from pydantic import BaseModel
from typing import Any, Dict, Optional
from datetime import date, datetime


class CountersResponse(BaseModel):
    tasks_completed: int = 0
    tasks_completed_morning: int = 0
    tasks_completed_afternoon: int = 0
    tasks_completed_evening: int = 0
    tasks_completed_not_set: int = 0
    tasks_completed_on_time: int = 0
    tasks_completed_late: int = 0
    recurring_tasks_completed: int = 0
    non_recurring_tasks_completed: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    active_streak: int = 0
    streak_start_date: Optional[date] = None
    last_activity_date: Optional[date] = None
    last_updated: Optional[datetime] = None


class GoalStatsResponse(CountersResponse):
    goal_id: int
    tasks_total: int = 0
    progress_percent: int = 0


class UserStatsResponse(CountersResponse):
    user_id: int
    goals_completed: int = 0
    insights: Dict[str, Any] = {}


class UserStatsRecalculatedResponse(UserStatsResponse):
    diverged: bool = False
