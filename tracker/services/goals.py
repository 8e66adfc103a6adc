import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from tracker.errors import NotFound, ValidationError
from tracker.models.goal import Goal, GOAL_TYPES
from tracker.models.task import Task
from tracker.services.hierarchy import validate_parent
from tracker.services.users import get_user
from tracker.utils import to_naive_utc

logger = logging.getLogger(__name__)


def get_owned_goal(session: Session, user_id: int, goal_id: int) -> Goal:
    goal = session.query(Goal).filter(Goal.id == goal_id, Goal.user_id == user_id).first()
    if goal is None:
        raise NotFound("Goal", goal_id)
    return goal


def get_owned_task(session: Session, user_id: int, task_id: int) -> Task:
    task = (
        session.query(Task)
        .join(Goal, Task.goal_id == Goal.id)
        .filter(Task.id == task_id, Goal.user_id == user_id)
        .first()
    )
    if task is None:
        raise NotFound("Task", task_id)
    return task


def create_goal(
    session: Session,
    user_id: int,
    title: str,
    deadline: datetime,
    type: str = "short",
    description: Optional[str] = None,
    parent_goal_id: Optional[int] = None,
) -> Goal:
    get_user(session, user_id)
    if type not in GOAL_TYPES:
        raise ValidationError(f"Invalid goal type {type!r}", field="type")
    validate_parent(session, user_id, None, parent_goal_id)

    goal = Goal(
        user_id=user_id,
        title=title,
        description=description,
        type=type,
        parent_goal_id=parent_goal_id,
        deadline=to_naive_utc(deadline),
    )
    session.add(goal)
    session.flush()
    logger.info("Created goal %s for user %s (parent=%s)", goal.id, user_id, parent_goal_id)
    return goal


def set_parent(session: Session, user_id: int, goal_id: int, parent_goal_id: Optional[int]) -> Goal:
    goal = get_owned_goal(session, user_id, goal_id)
    validate_parent(session, user_id, goal_id, parent_goal_id)
    goal.parent_goal_id = parent_goal_id
    session.flush()
    return goal


def delete_goal(session: Session, user_id: int, goal_id: int) -> None:
    """Delete a goal with its tasks and stats; child goals become roots."""
    goal = get_owned_goal(session, user_id, goal_id)
    session.delete(goal)
    session.flush()
    logger.info("Deleted goal %s of user %s", goal_id, user_id)
