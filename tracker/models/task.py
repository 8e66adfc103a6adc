from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from shared.database import Base
from tracker.utils import utcnow, isoformat


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    goal_id = Column(Integer, ForeignKey("goals.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    scheduled_date = Column(DateTime, nullable=False, index=True)
    time_of_day = Column(String(16), nullable=False, default="not_set")  # morning | afternoon | evening | not_set
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    completed_on_time = Column(Boolean, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Recurrence: the series origin keeps the rule, generated occurrences point back at it
    is_repeating = Column(Boolean, default=False, nullable=False)
    repeat_type = Column(String(32), default="none", nullable=False)
    repeat_until = Column(DateTime, nullable=True)
    parent_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)

    goal = relationship("Goal", back_populates="tasks")
    occurrences = relationship("Task", cascade="all, delete-orphan", passive_deletes=True)

    @property
    def is_recurring(self) -> bool:
        """True for a series origin and for every occurrence generated from one."""
        return bool(self.is_repeating or self.parent_task_id is not None
                    or (self.repeat_type and self.repeat_type != "none"))

    def to_dict(self):
        return {
            "id": self.id,
            "goal_id": self.goal_id,
            "title": self.title,
            "description": self.description,
            "scheduled_date": isoformat(self.scheduled_date),
            "time_of_day": self.time_of_day,
            "is_completed": self.is_completed,
            "completed_at": isoformat(self.completed_at),
            "completed_on_time": self.completed_on_time,
            "is_repeating": self.is_repeating,
            "repeat_type": self.repeat_type,
            "repeat_until": isoformat(self.repeat_until),
            "parent_task_id": self.parent_task_id,
            "created_at": isoformat(self.created_at),
        }
