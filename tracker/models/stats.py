from sqlalchemy import Column, Integer, ForeignKey, DateTime, Date
from sqlalchemy.orm import relationship

from shared.database import Base
from tracker.utils import utcnow, isoformat

# Counters every completion touches, in the order they are reported
COUNTER_FIELDS = (
    "tasks_completed",
    "tasks_completed_morning",
    "tasks_completed_afternoon",
    "tasks_completed_evening",
    "tasks_completed_not_set",
    "tasks_completed_on_time",
    "tasks_completed_late",
    "recurring_tasks_completed",
    "non_recurring_tasks_completed",
)

STREAK_FIELDS = ("current_streak", "longest_streak", "streak_start_date", "last_activity_date")


class CompletionCounters:
    """Columns shared by the per-goal and per-user aggregate rows."""

    tasks_completed = Column(Integer, default=0, nullable=False)
    tasks_completed_morning = Column(Integer, default=0, nullable=False)
    tasks_completed_afternoon = Column(Integer, default=0, nullable=False)
    tasks_completed_evening = Column(Integer, default=0, nullable=False)
    tasks_completed_not_set = Column(Integer, default=0, nullable=False)
    tasks_completed_on_time = Column(Integer, default=0, nullable=False)
    tasks_completed_late = Column(Integer, default=0, nullable=False)
    recurring_tasks_completed = Column(Integer, default=0, nullable=False)
    non_recurring_tasks_completed = Column(Integer, default=0, nullable=False)

    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    streak_start_date = Column(Date, nullable=True)
    last_activity_date = Column(Date, nullable=True)
    last_updated = Column(DateTime, default=utcnow, nullable=False)

    def reset_counters(self):
        for field in COUNTER_FIELDS:
            setattr(self, field, 0)
        self.current_streak = 0
        self.longest_streak = 0
        self.streak_start_date = None
        self.last_activity_date = None

    def counters_dict(self):
        data = {field: getattr(self, field) or 0 for field in COUNTER_FIELDS}
        data.update({
            "current_streak": self.current_streak or 0,
            "longest_streak": self.longest_streak or 0,
            "streak_start_date": isoformat(self.streak_start_date),
            "last_activity_date": isoformat(self.last_activity_date),
            "last_updated": isoformat(self.last_updated),
        })
        return data


class GoalStats(CompletionCounters, Base):
    __tablename__ = "goal_stats"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), unique=True, nullable=False)
    version = Column(Integer, nullable=False)

    goal = relationship("Goal", back_populates="stats")

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        data = {"goal_id": self.goal_id}
        data.update(self.counters_dict())
        return data


class UserStats(CompletionCounters, Base):
    __tablename__ = "user_stats"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    goals_completed = Column(Integer, default=0, nullable=False)
    version = Column(Integer, nullable=False)

    user = relationship("User", back_populates="stats")

    __mapper_args__ = {"version_id_col": version}

    def reset_counters(self):
        super().reset_counters()
        self.goals_completed = 0

    def to_dict(self):
        data = {"user_id": self.user_id, "goals_completed": self.goals_completed or 0}
        data.update(self.counters_dict())
        return data
