from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime
from sqlalchemy.orm import relationship

from shared.database import Base
from tracker.utils import utcnow, isoformat

GOAL_TYPES = ("short", "medium", "long")


class Goal(Base):
    __tablename__ = "goals"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String(16), nullable=False, default="short")  # short | medium | long
    parent_goal_id = Column(Integer, ForeignKey("goals.id", ondelete="SET NULL"), nullable=True, index=True)
    deadline = Column(DateTime, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Mirrors of GoalStats streak fields for list views
    current_streak = Column(Integer, default=0, nullable=False)
    longest_streak = Column(Integer, default=0, nullable=False)
    last_updated = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="goals")
    tasks = relationship("Task", back_populates="goal", cascade="all, delete-orphan", passive_deletes=True)
    stats = relationship("GoalStats", back_populates="goal", cascade="all, delete-orphan",
                         passive_deletes=True, uselist=False)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "parent_goal_id": self.parent_goal_id,
            "deadline": isoformat(self.deadline),
            "is_completed": self.is_completed,
            "completed_at": isoformat(self.completed_at),
            "is_archived": self.is_archived,
            "archived_at": isoformat(self.archived_at),
            "created_at": isoformat(self.created_at),
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_updated": isoformat(self.last_updated),
        }
