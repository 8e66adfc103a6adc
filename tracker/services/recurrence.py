"""
Recurrence expansion: one recurring-task definition -> a bounded series of
concrete occurrences.

The series starts at the template's own scheduled date and steps with
``next_occurrence`` until the next candidate would pass
min(repeat_until, goal deadline). Expansion is pure and deterministic, so
materializing it again for the same template only fills in missing dates.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from tracker.errors import ValidationError
from tracker.models.goal import Goal
from tracker.models.task import Task
from tracker.services.calendar_rules import (
    RepeatType,
    next_occurrence,
    parse_repeat_type,
)
from tracker.utils import to_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occurrence:
    goal_id: Optional[int]
    title: str
    description: Optional[str]
    time_of_day: str
    scheduled_date: datetime
    parent_task_id: Optional[int]
    is_origin: bool = False


def _as_instant(value) -> datetime:
    return to_naive_utc(value)


def _as_bound(value) -> Optional[datetime]:
    """Upper bound for a series. Midnight (or a bare date) covers that whole day."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime.combine(value, time.max)
    value = to_naive_utc(value)
    if value.time() == time.min:
        return datetime.combine(value.date(), time.max)
    return value


def series_bound(repeat_until, goal_deadline) -> Optional[datetime]:
    bounds = [b for b in (_as_bound(repeat_until), _as_bound(goal_deadline)) if b is not None]
    return min(bounds) if bounds else None


def expand(template, goal_deadline) -> List[Occurrence]:
    """Materialize the ordered occurrences of ``template``.

    The first element is always the template itself. A template whose rule is
    ``none``, or whose bound already precedes its scheduled date, yields only
    that element; the caller reports it as "no recurrence possible".
    """
    rule = RepeatType(template.repeat_type or RepeatType.NONE)
    time_of_day = template.time_of_day or "not_set"
    occurrences = [Occurrence(
        goal_id=template.goal_id,
        title=template.title,
        description=template.description,
        time_of_day=time_of_day,
        scheduled_date=template.scheduled_date,
        parent_task_id=None,
        is_origin=True,
    )]
    if rule is RepeatType.NONE:
        return occurrences

    bound = series_bound(template.repeat_until, goal_deadline)
    if bound is None:
        logger.warning("Task %s repeats %s with no end date and no goal deadline", template.id, rule.value)
        return occurrences

    candidate = next_occurrence(template.scheduled_date, rule)
    while _as_instant(candidate) <= bound:
        occurrences.append(Occurrence(
            goal_id=template.goal_id,
            title=template.title,
            description=template.description,
            time_of_day=time_of_day,
            scheduled_date=candidate,
            parent_task_id=template.id,
        ))
        candidate = next_occurrence(candidate, rule)
    return occurrences


def recurrence_possible(template, goal_deadline) -> bool:
    if RepeatType(template.repeat_type or RepeatType.NONE) is RepeatType.NONE:
        return False
    return len(expand(template, goal_deadline)) > 1


def validate_template(
    session: Session,
    goal: Goal,
    scheduled_date: datetime,
    is_repeating: bool,
    repeat_type,
    repeat_until: Optional[datetime],
    max_tasks_per_day: int,
) -> RepeatType:
    """Reject a task definition before anything is written or expanded."""
    rule = parse_repeat_type(repeat_type)
    if is_repeating and rule is RepeatType.NONE:
        raise ValidationError("A repeating task needs a repeat type", field="repeat_type")
    if not is_repeating and rule is not RepeatType.NONE:
        raise ValidationError("repeat_type is set but the task is not repeating", field="is_repeating")
    if not is_repeating and repeat_until is not None:
        raise ValidationError("repeat_until is only valid for repeating tasks", field="repeat_until")
    if goal.is_archived:
        raise ValidationError(f"Goal {goal.id} is archived", field="goal_id")
    if goal.is_completed:
        raise ValidationError(f"Goal {goal.id} is already completed", field="goal_id")
    if _as_instant(scheduled_date) > _as_bound(goal.deadline):
        raise ValidationError(
            f"Scheduled date {scheduled_date.isoformat()} is after the goal deadline {goal.deadline.isoformat()}",
            field="scheduled_date",
        )

    day_start = datetime.combine(_as_instant(scheduled_date).date(), time.min)
    tasks_that_day = session.query(func.count(Task.id)).filter(
        Task.goal_id == goal.id,
        Task.scheduled_date >= day_start,
        Task.scheduled_date < day_start + timedelta(days=1),
    ).scalar()
    if tasks_that_day >= max_tasks_per_day:
        raise ValidationError(
            f"You can only have a maximum of {max_tasks_per_day} tasks per day per goal",
            field="scheduled_date",
        )
    return rule


def materialize(session: Session, template: Task, goal: Goal) -> List[Task]:
    """Insert the generated occurrences of ``template`` that do not exist yet."""
    existing = {
        row.scheduled_date
        for row in session.query(Task.scheduled_date).filter(Task.parent_task_id == template.id)
    }
    created = []
    for occurrence in expand(template, goal.deadline)[1:]:
        scheduled = to_naive_utc(occurrence.scheduled_date)
        if scheduled in existing:
            continue
        task = Task(
            goal_id=goal.id,
            title=occurrence.title,
            description=occurrence.description,
            scheduled_date=scheduled,
            time_of_day=occurrence.time_of_day,
            is_repeating=False,
            repeat_type=RepeatType.NONE.value,
            parent_task_id=template.id,
        )
        session.add(task)
        created.append(task)
    session.flush()
    if created:
        logger.info("Generated %s occurrences for task %s", len(created), template.id)
    return created


def prune_beyond_deadline(session: Session, goal: Goal) -> int:
    """Delete incomplete generated occurrences the goal's deadline no longer covers."""
    bound = _as_bound(goal.deadline)
    stale = session.query(Task).filter(
        Task.goal_id == goal.id,
        Task.parent_task_id.isnot(None),
        Task.is_completed.is_(False),
        Task.scheduled_date > bound,
    ).all()
    for task in stale:
        session.delete(task)
    session.flush()
    if stale:
        logger.info("Pruned %s occurrences past the deadline of goal %s", len(stale), goal.id)
    return len(stale)
