from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from shared.database import Base
from tracker.utils import utcnow, isoformat


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False)
    timezone = Column(String(64), default="UTC", nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    goals = relationship("Goal", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    stats = relationship("UserStats", back_populates="user", cascade="all, delete-orphan",
                         passive_deletes=True, uselist=False)
    achievements = relationship("Achievement", back_populates="user", cascade="all, delete-orphan",
                                passive_deletes=True)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "timezone": self.timezone,
            "created_at": isoformat(self.created_at),
        }
