"""
Event triggers: the only entry points that change task/goal state.

Each trigger commits the state change first, then updates the derived
aggregates in a separate transaction that is retried on lost-update races.
When the retries run out the owner's aggregates are rebuilt from history; a
ConcurrentUpdateConflict reaches the caller only if that rebuild fails too.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from shared.database import Database
from shared.utils.logger import log_with_context
from tracker.config import Settings, get_settings
from tracker.errors import ConcurrentUpdateConflict, ValidationError
from tracker.models.task import Task
from tracker.services import goals as goals_service
from tracker.services import notifications
from tracker.services import stats as stats_service
from tracker.services import users as users_service
from tracker.services.achievements import AchievementCompleted
from tracker.services.calendar_rules import RepeatType, parse_time_of_day
from tracker.services.recurrence import materialize, prune_beyond_deadline, recurrence_possible, validate_template
from tracker.utils import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _update_stats(
    db: Database,
    user_id: int,
    work: Callable[[Session], List[AchievementCompleted]],
    attempts: int,
) -> List[AchievementCompleted]:
    try:
        return db.run_transaction(work, attempts=attempts, retry_on=(ConcurrentUpdateConflict,))
    except ConcurrentUpdateConflict as exc:
        logger.error("Stats update for user %s failed after %s attempts, rebuilding from history", user_id, attempts)
        try:
            return db.run_transaction(lambda s: stats_service.recompute_user(s, user_id))
        except ConcurrentUpdateConflict:
            raise ConcurrentUpdateConflict("user_stats", user_id, attempts) from exc


def _recompute(db: Database, user_id: int, attempts: int) -> List[AchievementCompleted]:
    return db.run_transaction(
        lambda s: stats_service.recompute_user(s, user_id),
        attempts=attempts,
        retry_on=(ConcurrentUpdateConflict,),
    )


def create_user(db: Database, username: str, timezone: Optional[str] = None,
                settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or get_settings()
    with db.session_ctx() as session:
        user = users_service.create_user(session, username, timezone, default_timezone=settings.default_timezone)
        return user.to_dict()


def create_goal(db: Database, user_id: int, **fields) -> Dict[str, Any]:
    with db.session_ctx() as session:
        return goals_service.create_goal(session, user_id, **fields).to_dict()


def on_task_created(
    db: Database,
    user_id: int,
    goal_id: int,
    title: str,
    scheduled_date: datetime,
    description: Optional[str] = None,
    time_of_day: Optional[str] = None,
    is_repeating: bool = False,
    repeat_type: Optional[str] = None,
    repeat_until: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Create a task and, for a recurring definition, its whole occurrence series."""
    settings = settings or get_settings()
    scheduled_date = to_naive_utc(scheduled_date)
    repeat_until = to_naive_utc(repeat_until) if repeat_until is not None else None

    with db.session_ctx() as session:
        goal = goals_service.get_owned_goal(session, user_id, goal_id)
        rule = validate_template(
            session, goal, scheduled_date, is_repeating, repeat_type, repeat_until,
            settings.max_tasks_per_day_per_goal,
        )
        task = Task(
            goal_id=goal.id,
            title=title,
            description=description,
            scheduled_date=scheduled_date,
            time_of_day=parse_time_of_day(time_of_day).value,
            is_repeating=is_repeating,
            repeat_type=rule.value,
            repeat_until=repeat_until,
        )
        session.add(task)
        session.flush()

        occurrences: List[Task] = []
        possible = False
        if rule is not RepeatType.NONE:
            possible = recurrence_possible(task, goal.deadline)
            if possible:
                occurrences = materialize(session, task, goal)
            else:
                logger.warning(
                    "Task %s repeats %s but its series ends before the next occurrence",
                    task.id, rule.value,
                )

        logger.info("Created task %s in goal %s with %s occurrences", task.id, goal.id, len(occurrences))
        return {
            "task": task.to_dict(),
            "occurrences": [o.to_dict() for o in occurrences],
            "recurrence_possible": possible,
        }


def on_task_completed(
    db: Database,
    user_id: int,
    task_id: int,
    completed_at: Optional[datetime] = None,
    time_of_day: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    """Mark a task done and fold the completion into goal/user stats and milestones.

    Completing a task that is already done changes nothing.
    """
    settings = settings or get_settings()
    completed_at = to_naive_utc(completed_at) if completed_at is not None else utcnow()

    with db.session_ctx() as session:
        task = goals_service.get_owned_task(session, user_id, task_id)
        if task.goal.is_archived:
            raise ValidationError(f"Goal {task.goal_id} is archived", field="task_id")
        if task.is_completed:
            logger.info("Task %s is already completed, nothing to do", task_id)
            return {"task": task.to_dict(), "achievements": [], "already_completed": True}

        if time_of_day is not None:
            task.time_of_day = parse_time_of_day(time_of_day).value
        task.is_completed = True
        task.completed_at = completed_at
        task.completed_on_time = stats_service.is_on_time(completed_at, task.scheduled_date)
        task_data = task.to_dict()

    def work(session: Session) -> List[AchievementCompleted]:
        task = goals_service.get_owned_task(session, user_id, task_id)
        goal = task.goal
        return stats_service.record_task_completion(session, task, goal, users_service.get_user(session, user_id).timezone)

    completed = _update_stats(db, user_id, work, settings.stats_retry_attempts)
    notifications.track_task_completed(user_id, task_data)
    log_with_context(
        logger, "info", "Task completed",
        user_id=user_id, task_id=task_id, on_time=task_data["completed_on_time"],
        achievements=len(completed) or None,
    )
    notifications.publish_achievements(completed)
    return {
        "task": task_data,
        "achievements": [event.to_dict() for event in completed],
        "already_completed": False,
    }


def on_task_deleted(db: Database, user_id: int, task_id: int, settings: Optional[Settings] = None) -> None:
    """Delete a task; deleting a series origin takes its generated occurrences with it."""
    settings = settings or get_settings()
    with db.session_ctx() as session:
        task = goals_service.get_owned_task(session, user_id, task_id)
        session.delete(task)
        session.flush()
        logger.info("Deleted task %s of user %s", task_id, user_id)
    _recompute(db, user_id, settings.stats_retry_attempts)


def on_task_uncompleted(db: Database, user_id: int, task_id: int, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Reopen a task; aggregates are rebuilt since counters never move backwards incrementally."""
    settings = settings or get_settings()
    with db.session_ctx() as session:
        task = goals_service.get_owned_task(session, user_id, task_id)
        if not task.is_completed:
            return task.to_dict()
        task.is_completed = False
        task.completed_at = None
        task.completed_on_time = None
        task_data = task.to_dict()

    _recompute(db, user_id, settings.stats_retry_attempts)
    return task_data


def on_goal_completed(
    db: Database,
    user_id: int,
    goal_id: int,
    completed_at: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, Any]:
    settings = settings or get_settings()
    completed_at = to_naive_utc(completed_at) if completed_at is not None else utcnow()

    with db.session_ctx() as session:
        goal = goals_service.get_owned_goal(session, user_id, goal_id)
        if goal.is_archived:
            raise ValidationError(f"Goal {goal_id} is archived", field="goal_id")
        if goal.is_completed:
            return {"goal": goal.to_dict(), "achievements": [], "already_completed": True}
        goal.is_completed = True
        goal.completed_at = completed_at
        goal_data = goal.to_dict()

    def work(session: Session) -> List[AchievementCompleted]:
        return stats_service.record_goal_completion(session, goals_service.get_owned_goal(session, user_id, goal_id))

    completed = _update_stats(db, user_id, work, settings.stats_retry_attempts)
    notifications.publish_achievements(completed)
    logger.info("Goal %s completed by user %s", goal_id, user_id)
    return {
        "goal": goal_data,
        "achievements": [event.to_dict() for event in completed],
        "already_completed": False,
    }


def on_goal_archived(db: Database, user_id: int, goal_id: int, archived_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Hide a goal from the active tree. Its stats and completed history stay."""
    with db.session_ctx() as session:
        goal = goals_service.get_owned_goal(session, user_id, goal_id)
        if not goal.is_archived:
            goal.is_archived = True
            goal.archived_at = to_naive_utc(archived_at) if archived_at is not None else utcnow()
            logger.info("Archived goal %s", goal_id)
        return goal.to_dict()


def on_goal_unarchived(db: Database, user_id: int, goal_id: int) -> Dict[str, Any]:
    with db.session_ctx() as session:
        goal = goals_service.get_owned_goal(session, user_id, goal_id)
        goal.is_archived = False
        goal.archived_at = None
        return goal.to_dict()


def on_goal_deadline_changed(db: Database, user_id: int, goal_id: int, deadline: datetime) -> Dict[str, Any]:
    """Move a goal deadline and re-bound every recurring series in it.

    Open occurrences past a shorter deadline are deleted; a longer deadline
    extends series that were cut off by the old one.
    """
    with db.session_ctx() as session:
        goal = goals_service.get_owned_goal(session, user_id, goal_id)
        goal.deadline = to_naive_utc(deadline)
        session.flush()

        pruned = prune_beyond_deadline(session, goal)
        templates = session.query(Task).filter(Task.goal_id == goal.id, Task.is_repeating.is_(True)).all()
        generated = sum(len(materialize(session, template, goal)) for template in templates)

        logger.info("Deadline of goal %s moved to %s: %s pruned, %s generated", goal_id, goal.deadline, pruned, generated)
        return {"goal": goal.to_dict(), "pruned": pruned, "generated": generated}


def on_goal_parent_changed(db: Database, user_id: int, goal_id: int, parent_goal_id: Optional[int]) -> Dict[str, Any]:
    """Move a goal under another of the owner's goals, or to the top level with ``None``."""
    with db.session_ctx() as session:
        goal = goals_service.set_parent(session, user_id, goal_id, parent_goal_id)
        logger.info("Goal %s moved under %s", goal_id, parent_goal_id)
        return goal.to_dict()


def on_goal_deleted(db: Database, user_id: int, goal_id: int, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    with db.session_ctx() as session:
        goals_service.delete_goal(session, user_id, goal_id)
    _recompute(db, user_id, settings.stats_retry_attempts)


def recalculate_user_stats(db: Database, user_id: int, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """Check stored aggregates against history and rebuild them if they drifted."""
    settings = settings or get_settings()
    diverged, completed = db.run_transaction(
        lambda s: stats_service.reconcile_user(s, user_id),
        attempts=settings.stats_retry_attempts,
        retry_on=(ConcurrentUpdateConflict,),
    )
    notifications.publish_achievements(completed)
    with db.session_ctx() as session:
        data = stats_service.snapshot_user(session, user_id)
    data["diverged"] = diverged
    return data
