import logging
from typing import Optional

import pytz
from sqlalchemy.orm import Session

from tracker.errors import NotFound, ValidationError
from tracker.models.stats import UserStats
from tracker.models.user import User
from tracker.services.achievements import seed_achievements

logger = logging.getLogger(__name__)


def get_user(session: Session, user_id: int) -> User:
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound("User", user_id)
    return user


def create_user(session: Session, username: str, timezone: Optional[str] = None, default_timezone: str = "UTC") -> User:
    """Register an owner with empty stats and a fresh copy of the milestone catalog."""
    timezone = timezone or default_timezone
    if timezone not in pytz.all_timezones_set:
        raise ValidationError(f"Unknown timezone {timezone!r}", field="timezone")
    if session.query(User).filter(User.username == username).first() is not None:
        raise ValidationError(f"Username {username!r} is taken", field="username")

    user = User(username=username, timezone=timezone)
    session.add(user)
    session.flush()

    stats = UserStats(user_id=user.id)
    stats.reset_counters()
    session.add(stats)
    seed_achievements(session, user.id)

    logger.info("Created user %s (%s, tz=%s)", user.id, username, timezone)
    return user
