from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship

from shared.database import Base
from tracker.utils import utcnow, isoformat

MILESTONE_TYPES = ("streak", "goal_completion", "task_completion", "consistency", "custom")


class Achievement(Base):
    __tablename__ = "achievements"
    __table_args__ = (
        UniqueConstraint("user_id", "type", "criterion", "threshold_value", name="uq_achievement_key"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    type = Column(String(32), nullable=False)  # streak | goal_completion | task_completion | consistency | custom
    criterion = Column(String(32), nullable=True)  # consistency qualifier: morning | evening | on_time
    icon_name = Column(String(64), nullable=False)
    badge_color = Column(String(16), nullable=False)
    threshold_value = Column(Integer, nullable=False)
    current_value = Column(Integer, default=0, nullable=False)
    is_completed = Column(Boolean, default=False, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    version = Column(Integer, nullable=False)

    user = relationship("User", back_populates="achievements")

    __mapper_args__ = {"version_id_col": version}

    @property
    def key(self):
        return (self.user_id, self.type, self.criterion, self.threshold_value)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "criterion": self.criterion,
            "icon_name": self.icon_name,
            "badge_color": self.badge_color,
            "threshold_value": self.threshold_value,
            "current_value": self.current_value,
            "is_completed": self.is_completed,
            "completed_at": isoformat(self.completed_at),
            "created_at": isoformat(self.created_at),
        }
