from .user import User
from .goal import Goal
from .task import Task
from .stats import GoalStats, UserStats
from .achievement import Achievement

__all__ = ["User", "Goal", "Task", "GoalStats", "UserStats", "Achievement"]
