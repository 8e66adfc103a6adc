"""
Stats aggregation: per-goal and per-user completion counters, streaks and
milestone progress.

GoalStats/UserStats/Achievement rows are a cache over task and goal
history. Two paths write them:

- incremental: ``record_task_completion`` / ``record_goal_completion`` run
  once per event under row locks;
- full recompute: ``fold_history`` replays the whole history in timestamp
  order and ``recompute_user`` writes the result.

Both paths go through ``apply_completion`` and the same milestone rules, so
replaying history reproduces what the incremental updates produced. A
completion that sorts before one already counted (a backfilled
``completed_at``) cannot be appended incrementally and triggers the full
recompute instead.
"""
import logging
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from tracker.errors import ConcurrentUpdateConflict, NotFound, StatsInconsistency
from tracker.models.achievement import Achievement
from tracker.models.goal import Goal, GOAL_TYPES
from tracker.models.stats import COUNTER_FIELDS, STREAK_FIELDS, GoalStats, UserStats
from tracker.models.task import Task
from tracker.models.user import User
from tracker.services import achievements as achievements_service
from tracker.services.achievements import AchievementCompleted, ProgressSignal
from tracker.services.recurrence import prune_beyond_deadline
from tracker.services.streaks import StreakState, active_streak, local_datetime, local_day, update_streak
from tracker.utils import isoformat, to_naive_utc, utcnow

logger = logging.getLogger(__name__)

TIME_OF_DAY_FIELDS = {
    "morning": "tasks_completed_morning",
    "afternoon": "tasks_completed_afternoon",
    "evening": "tasks_completed_evening",
    "not_set": "tasks_completed_not_set",
}

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@dataclass(frozen=True)
class CompletionFact:
    task_id: int
    goal_id: int
    user_id: int
    completed_at: datetime
    day: date
    time_of_day: str
    on_time: bool
    recurring: bool


def is_on_time(completed_at: datetime, scheduled_date: datetime) -> bool:
    """Completed at or before the scheduled moment; a midnight schedule covers that whole day."""
    completed_at = to_naive_utc(completed_at)
    scheduled = to_naive_utc(scheduled_date)
    if scheduled.time() == time.min:
        scheduled = datetime.combine(scheduled.date(), time.max)
    return completed_at <= scheduled


def completion_fact(task, goal, tz_name: Optional[str]) -> CompletionFact:
    completed_at = to_naive_utc(task.completed_at)
    time_of_day = task.time_of_day if task.time_of_day in TIME_OF_DAY_FIELDS else "not_set"
    return CompletionFact(
        task_id=task.id,
        goal_id=goal.id,
        user_id=goal.user_id,
        completed_at=completed_at,
        day=local_day(completed_at, tz_name),
        time_of_day=time_of_day,
        on_time=is_on_time(completed_at, task.scheduled_date),
        recurring=task.is_recurring,
    )


def apply_completion(row, fact: CompletionFact) -> None:
    """Count one completed task into an aggregate row and advance its streak."""
    row.tasks_completed = (row.tasks_completed or 0) + 1

    bucket = TIME_OF_DAY_FIELDS[fact.time_of_day]
    setattr(row, bucket, (getattr(row, bucket) or 0) + 1)

    if fact.on_time:
        row.tasks_completed_on_time = (row.tasks_completed_on_time or 0) + 1
    else:
        row.tasks_completed_late = (row.tasks_completed_late or 0) + 1

    if fact.recurring:
        row.recurring_tasks_completed = (row.recurring_tasks_completed or 0) + 1
    else:
        row.non_recurring_tasks_completed = (row.non_recurring_tasks_completed or 0) + 1

    update_streak(StreakState.from_row(row), fact.day).apply_to(row)


def _new_goal_stats(goal_id: int) -> GoalStats:
    row = GoalStats(goal_id=goal_id)
    row.reset_counters()
    row.last_updated = utcnow()
    return row


def _new_user_stats(user_id: int) -> UserStats:
    row = UserStats(user_id=user_id)
    row.reset_counters()
    row.last_updated = utcnow()
    return row


@contextmanager
def translate_conflicts(entity: str, key):
    """Turn lost-update and duplicate-row races into ConcurrentUpdateConflict."""
    try:
        yield
    except (StaleDataError, IntegrityError) as exc:
        logger.warning("Conflict writing %s %s: %s", entity, key, exc)
        raise ConcurrentUpdateConflict(entity, key) from exc


def _locked_goal_stats(session: Session, goal_id: int) -> GoalStats:
    row = session.query(GoalStats).filter(GoalStats.goal_id == goal_id).with_for_update().first()
    if row is None:
        row = _new_goal_stats(goal_id)
        session.add(row)
        session.flush()
    return row


def _locked_user_stats(session: Session, user_id: int) -> UserStats:
    row = session.query(UserStats).filter(UserStats.user_id == user_id).with_for_update().first()
    if row is None:
        row = _new_user_stats(user_id)
        session.add(row)
        session.flush()
    return row


def _mirror_goal_streak(goal: Goal, goal_stats: GoalStats, now: datetime) -> None:
    goal.current_streak = goal_stats.current_streak
    goal.longest_streak = goal_stats.longest_streak
    goal.last_updated = now


def _replay_key(completed_at: datetime, kind: str, item_id: int) -> Tuple[datetime, int, int]:
    return to_naive_utc(completed_at), 0 if kind == "task" else 1, item_id


def is_backfill(session: Session, user_id: int, kind: str, item_id: int, completed_at: datetime) -> bool:
    """True when a completion of ``user_id`` already on record replays after this one."""
    key = _replay_key(completed_at, kind, item_id)
    tasks = (
        session.query(Task.id, Task.completed_at)
        .join(Goal, Task.goal_id == Goal.id)
        .filter(Goal.user_id == user_id, Task.is_completed.is_(True), Task.completed_at >= key[0])
        .all()
    )
    goals = (
        session.query(Goal.id, Goal.completed_at)
        .filter(Goal.user_id == user_id, Goal.is_completed.is_(True), Goal.completed_at >= key[0])
        .all()
    )
    later = [_replay_key(at, "task", i) for i, at in tasks] + [_replay_key(at, "goal", i) for i, at in goals]
    return any(other > key for other in later)


def record_task_completion(session: Session, task: Task, goal: Goal, tz_name: Optional[str]) -> List[AchievementCompleted]:
    """Incremental update for one newly completed task."""
    if is_backfill(session, goal.user_id, "task", task.id, task.completed_at):
        logger.info("Completion of task %s predates recorded history, rebuilding user %s", task.id, goal.user_id)
        return recompute_user(session, goal.user_id)

    fact = completion_fact(task, goal, tz_name)
    now = utcnow()
    with translate_conflicts("stats", (goal.user_id, goal.id)):
        goal_stats = _locked_goal_stats(session, goal.id)
        user_stats = _locked_user_stats(session, goal.user_id)

        apply_completion(goal_stats, fact)
        apply_completion(user_stats, fact)
        goal_stats.last_updated = now
        user_stats.last_updated = now
        _mirror_goal_streak(goal, goal_stats, now)
        session.flush()

        signal = ProgressSignal(
            kind="task",
            time_of_day=fact.time_of_day,
            on_time=fact.on_time,
            user_streak=user_stats.current_streak,
        )
        completed = achievements_service.advance(session, goal.user_id, signal, fact.completed_at)
        session.flush()

    logger.info(
        "Recorded completion of task %s: goal %s streak %s, user %s streak %s",
        task.id, goal.id, goal_stats.current_streak, goal.user_id, user_stats.current_streak,
    )
    return completed


def record_goal_completion(session: Session, goal: Goal) -> List[AchievementCompleted]:
    """Incremental update for one newly completed goal."""
    if is_backfill(session, goal.user_id, "goal", goal.id, goal.completed_at):
        logger.info("Completion of goal %s predates recorded history, rebuilding user %s", goal.id, goal.user_id)
        return recompute_user(session, goal.user_id)

    with translate_conflicts("user_stats", goal.user_id):
        user_stats = _locked_user_stats(session, goal.user_id)
        user_stats.goals_completed = (user_stats.goals_completed or 0) + 1
        user_stats.last_updated = utcnow()
        session.flush()
        completed = achievements_service.advance(
            session, goal.user_id, ProgressSignal(kind="goal"), to_naive_utc(goal.completed_at)
        )
        session.flush()
    return completed


# ==================== FULL RECOMPUTE ====================


@dataclass
class _Progress:
    """Detached milestone progress used while replaying history."""

    type: str
    criterion: Optional[str]
    threshold_value: int
    current_value: int = 0
    is_completed: bool = False
    completed_at: Optional[datetime] = None


@dataclass
class FoldResult:
    user: UserStats
    goals: Dict[int, GoalStats] = field(default_factory=dict)
    achievements: Dict[Tuple[str, Optional[str], int], _Progress] = field(default_factory=dict)


def _history_events(goals: Iterable[Goal], tasks: Iterable[Task]):
    events = []
    for task in tasks:
        if task.is_completed and task.completed_at is not None:
            events.append(_replay_key(task.completed_at, "task", task.id) + ("task", task))
    for goal in goals:
        if goal.is_completed and goal.completed_at is not None:
            events.append(_replay_key(goal.completed_at, "goal", goal.id) + ("goal", goal))
    events.sort(key=lambda e: e[:3])
    return events


def fold_history(user_id: int, goals: Iterable[Goal], tasks: Iterable[Task], tz_name: Optional[str],
                 achievements: Iterable = ()) -> FoldResult:
    """Replay all completions in timestamp order from empty aggregates.

    Pure: nothing is read from or written to the database. ``achievements``
    only supplies which milestones exist (type, criterion, threshold).
    """
    goals = list(goals)
    goals_by_id = {g.id: g for g in goals}
    result = FoldResult(user=_new_user_stats(user_id))
    for a in achievements:
        progress = _Progress(a.type, a.criterion, a.threshold_value)
        result.achievements[(a.type, a.criterion, a.threshold_value)] = progress

    for completed_at, _, _, kind, item in _history_events(goals, tasks):
        if kind == "task":
            goal = goals_by_id.get(item.goal_id)
            if goal is None:
                continue
            fact = completion_fact(item, goal, tz_name)
            goal_row = result.goals.get(goal.id)
            if goal_row is None:
                goal_row = result.goals[goal.id] = _new_goal_stats(goal.id)
            apply_completion(goal_row, fact)
            apply_completion(result.user, fact)
            signal = ProgressSignal("task", fact.time_of_day, fact.on_time, result.user.current_streak)
        else:
            result.user.goals_completed += 1
            signal = ProgressSignal("goal")

        for progress in result.achievements.values():
            delta = achievements_service.milestone_delta(progress, signal)
            if delta:
                achievements_service.evaluate(progress, delta, completed_at)
    return result


def _load_history(session: Session, user_id: int):
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound("User", user_id)
    goals = session.query(Goal).filter(Goal.user_id == user_id).all()
    goal_ids = [g.id for g in goals]
    tasks = session.query(Task).filter(Task.goal_id.in_(goal_ids)).all() if goal_ids else []
    achievements = session.query(Achievement).filter(Achievement.user_id == user_id).all()
    return user, goals, tasks, achievements


def _copy_counters(source, target) -> None:
    for name in COUNTER_FIELDS + STREAK_FIELDS:
        setattr(target, name, getattr(source, name))


def recompute_user(session: Session, user_id: int) -> List[AchievementCompleted]:
    """Rebuild every aggregate row of ``user_id`` from task/goal history.

    Occurrences past a shortened goal deadline are pruned first. Achievements
    that are already completed stay frozen; open ones take the replayed value.
    """
    user, goals, _, _ = _load_history(session, user_id)
    for goal in goals:
        prune_beyond_deadline(session, goal)
    user, goals, tasks, achievements = _load_history(session, user_id)

    result = fold_history(user_id, goals, tasks, user.timezone, achievements)
    now = utcnow()
    completed: List[AchievementCompleted] = []

    with translate_conflicts("stats", user_id):
        user_stats = _locked_user_stats(session, user_id)
        _copy_counters(result.user, user_stats)
        user_stats.goals_completed = result.user.goals_completed
        user_stats.last_updated = now

        for goal in goals:
            folded = result.goals.get(goal.id)
            goal_stats = session.query(GoalStats).filter(GoalStats.goal_id == goal.id).with_for_update().first()
            if folded is None and goal_stats is None:
                _mirror_goal_streak(goal, _new_goal_stats(goal.id), now)
                continue
            if goal_stats is None:
                goal_stats = _new_goal_stats(goal.id)
                session.add(goal_stats)
            _copy_counters(folded or _new_goal_stats(goal.id), goal_stats)
            goal_stats.last_updated = now
            _mirror_goal_streak(goal, goal_stats, now)

        for achievement in achievements:
            if achievement.is_completed:
                continue
            progress = result.achievements[(achievement.type, achievement.criterion, achievement.threshold_value)]
            achievement.current_value = progress.current_value
            if progress.is_completed:
                achievement.is_completed = True
                achievement.completed_at = progress.completed_at
                completed.append(achievement)
        session.flush()

    logger.info("Recomputed stats for user %s from %s goals and %s tasks", user_id, len(goals), len(tasks))
    return [AchievementCompleted.from_row(a) for a in completed]


def _row_values(row) -> Dict[str, Any]:
    values = {name: getattr(row, name) or 0 for name in COUNTER_FIELDS + ("current_streak", "longest_streak")}
    values["streak_start_date"] = row.streak_start_date
    values["last_activity_date"] = row.last_activity_date
    return values


def _diff(prefix: str, stored: Dict[str, Any], folded: Dict[str, Any], out: Dict[str, Any]) -> None:
    for name, expected in folded.items():
        if stored.get(name) != expected:
            out[f"{prefix}.{name}"] = {"stored": stored.get(name), "expected": expected}


def check_consistency(session: Session, user_id: int) -> None:
    """Raise StatsInconsistency when stored aggregates differ from the fold."""
    user, goals, tasks, achievements = _load_history(session, user_id)
    result = fold_history(user_id, goals, tasks, user.timezone, achievements)
    differences: Dict[str, Any] = {}

    stored_user = session.query(UserStats).filter(UserStats.user_id == user_id).first()
    empty_user = _row_values(_new_user_stats(user_id))
    user_values = _row_values(stored_user) if stored_user else empty_user
    folded_user = _row_values(result.user)
    _diff("user", user_values, folded_user, differences)
    stored_goals_completed = stored_user.goals_completed if stored_user else 0
    if stored_goals_completed != result.user.goals_completed:
        differences["user.goals_completed"] = {"stored": stored_goals_completed, "expected": result.user.goals_completed}

    stored_goal_rows = {
        row.goal_id: row
        for row in session.query(GoalStats).filter(GoalStats.goal_id.in_([g.id for g in goals])).all()
    } if goals else {}
    for goal in goals:
        folded = result.goals.get(goal.id)
        stored = stored_goal_rows.get(goal.id)
        if folded is None and stored is None:
            continue
        folded_values = _row_values(folded or _new_goal_stats(goal.id))
        stored_values = _row_values(stored) if stored else _row_values(_new_goal_stats(goal.id))
        _diff(f"goal[{goal.id}]", stored_values, folded_values, differences)

    for achievement in achievements:
        if achievement.is_completed:
            continue
        progress = result.achievements[(achievement.type, achievement.criterion, achievement.threshold_value)]
        if achievement.current_value != progress.current_value:
            differences[f"achievement[{achievement.id}].current_value"] = {
                "stored": achievement.current_value, "expected": progress.current_value,
            }

    if differences:
        raise StatsInconsistency(user_id, differences)


def reconcile_user(session: Session, user_id: int) -> Tuple[bool, List[AchievementCompleted]]:
    """Compare stored aggregates with the fold; rewrite them if they drifted.

    Returns whether they had drifted and the milestones the rewrite completed.
    """
    try:
        check_consistency(session, user_id)
    except StatsInconsistency as exc:
        logger.warning("%s, recomputing", exc.message)
        return True, recompute_user(session, user_id)
    return False, []


# ==================== READ MODELS ====================


def _hour_bucket(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    return "evening"


def compute_insights(goals: Iterable[Goal], tasks: Iterable[Task], tz_name: Optional[str],
                     today: Optional[date] = None) -> Dict[str, Any]:
    """Descriptive metrics derived straight from history (never stored)."""
    goals = list(goals)
    tasks = list(tasks)
    goal_types = {g.id: g.type for g in goals}
    completed = sorted(
        (t for t in tasks if t.is_completed and t.completed_at is not None),
        key=lambda t: to_naive_utc(t.completed_at),
    )
    days = [local_day(to_naive_utc(t.completed_at), tz_name) for t in completed]

    per_weekday = Counter(WEEKDAYS[d.weekday()] for d in days)
    per_day = Counter(days)
    per_time = Counter()
    for task in completed:
        if task.time_of_day in ("morning", "afternoon", "evening"):
            per_time[task.time_of_day] += 1
        else:
            per_time[_hour_bucket(local_datetime(to_naive_utc(task.completed_at), tz_name).hour)] += 1

    on_time = [is_on_time(t.completed_at, t.scheduled_date) for t in completed]
    recurring_on_time = [is_on_time(t.completed_at, t.scheduled_date) for t in completed if t.is_recurring]

    by_type: Dict[str, List[Task]] = defaultdict(list)
    for task in tasks:
        goal_type = goal_types.get(task.goal_id)
        if goal_type:
            by_type[goal_type].append(task)

    distinct_days = sorted(set(days))
    longest_break = max(
        ((b - a).days for a, b in zip(distinct_days, distinct_days[1:])),
        default=0,
    )

    today = today or utcnow().date()
    open_goals = [g for g in goals if not g.is_completed and not g.is_archived]
    oldest = min(open_goals, key=lambda g: g.created_at, default=None)

    best_day, best_count = (None, 0)
    if per_day:
        best_day, best_count = max(per_day.items(), key=lambda item: (item[1], item[0]))

    return {
        "most_productive_day": per_weekday.most_common(1)[0][0] if per_weekday else None,
        "most_productive_time": per_time.most_common(1)[0][0] if per_time else None,
        "most_tasks_completed_in_day": best_count,
        "most_tasks_completed_date": isoformat(best_day),
        "on_time_completion_rate": _percent(sum(on_time), len(on_time)),
        "recurring_task_adherence": _percent(sum(recurring_on_time), len(recurring_on_time)),
        "completion_rate_by_goal_type": {
            goal_type: _percent(sum(1 for t in by_type[goal_type] if t.is_completed), len(by_type[goal_type]))
            for goal_type in GOAL_TYPES
        },
        "longest_break_between_completions": longest_break,
        "avg_tasks_per_day": round(len(completed) / len(distinct_days)) if distinct_days else 0,
        "longest_goal_age": max(0, (today - oldest.created_at.date()).days) if oldest else 0,
    }


def _percent(part: int, whole: int) -> int:
    return round(part / whole * 100) if whole else 0


def snapshot_user(session: Session, user_id: int, today: Optional[date] = None) -> Dict[str, Any]:
    user, goals, tasks, _ = _load_history(session, user_id)
    today = today or local_day(utcnow(), user.timezone)
    row = session.query(UserStats).filter(UserStats.user_id == user_id).first() or _new_user_stats(user_id)
    data = row.to_dict()
    data["active_streak"] = active_streak(StreakState.from_row(row), today)
    data["insights"] = compute_insights(goals, tasks, user.timezone, today)
    return data


def snapshot_goal(session: Session, user_id: int, goal_id: int, today: Optional[date] = None) -> Dict[str, Any]:
    goal = session.query(Goal).filter(Goal.id == goal_id, Goal.user_id == user_id).first()
    if goal is None:
        raise NotFound("Goal", goal_id)
    user = session.query(User).filter(User.id == user_id).first()
    today = today or local_day(utcnow(), user.timezone)
    row = session.query(GoalStats).filter(GoalStats.goal_id == goal_id).first() or _new_goal_stats(goal_id)
    total = session.query(Task).filter(Task.goal_id == goal_id).count()
    done = session.query(Task).filter(Task.goal_id == goal_id, Task.is_completed.is_(True)).count()

    data = row.to_dict()
    data["active_streak"] = active_streak(StreakState.from_row(row), today)
    data["tasks_total"] = total
    data["progress_percent"] = _percent(done, total)
    return data
