"""
Milestones: a fixed catalog copied once per user, then advanced by
completion signals.

Progress only moves up and is capped at the threshold. The first time a
row reaches its threshold it is marked completed and stamped; after that it
is frozen and further progress has no effect.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from tracker.errors import ValidationError
from tracker.models.achievement import Achievement, MILESTONE_TYPES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MilestoneDefinition:
    title: str
    description: str
    type: str
    threshold_value: int
    icon_name: str
    badge_color: str
    criterion: Optional[str] = None

    @property
    def key(self) -> Tuple[str, Optional[str], int]:
        return (self.type, self.criterion, self.threshold_value)


DEFAULT_CATALOG: Tuple[MilestoneDefinition, ...] = (
    MilestoneDefinition("Consistency Champion", "Maintain a 3-day streak of completing tasks",
                        "streak", 3, "Flame", "#f97316"),
    MilestoneDefinition("Week Warrior", "Maintain a 7-day streak of completing tasks",
                        "streak", 7, "Zap", "#f59e0b"),
    MilestoneDefinition("Unstoppable Force", "Maintain a 30-day streak of completing tasks",
                        "streak", 30, "Award", "#d97706"),
    MilestoneDefinition("Goal Starter", "Complete your first goal",
                        "goal_completion", 1, "Flag", "#10b981"),
    MilestoneDefinition("Goal Achiever", "Complete 5 goals",
                        "goal_completion", 5, "Trophy", "#059669"),
    MilestoneDefinition("Ambition Master", "Complete 10 goals",
                        "goal_completion", 10, "Crown", "#047857"),
    MilestoneDefinition("Task Tactician", "Complete 10 tasks",
                        "task_completion", 10, "CheckCircle", "#3b82f6"),
    MilestoneDefinition("Productivity Pro", "Complete 50 tasks",
                        "task_completion", 50, "Lightbulb", "#2563eb"),
    MilestoneDefinition("Task Terminator", "Complete 100 tasks",
                        "task_completion", 100, "Rocket", "#1d4ed8"),
    MilestoneDefinition("Early Riser", "Complete 10 morning tasks",
                        "consistency", 10, "Sunrise", "#8b5cf6", criterion="morning"),
    MilestoneDefinition("Night Owl", "Complete 10 evening tasks",
                        "consistency", 10, "Moon", "#6d28d9", criterion="evening"),
    MilestoneDefinition("Perfect Planner", "Complete 10 tasks on time",
                        "consistency", 10, "Clock", "#ec4899", criterion="on_time"),
)


@dataclass(frozen=True)
class ProgressSignal:
    """What just happened, as far as milestones care."""

    kind: str  # "task" | "goal"
    time_of_day: str = "not_set"
    on_time: bool = False
    user_streak: int = 0


@dataclass(frozen=True)
class AchievementCompleted:
    achievement_id: int
    user_id: int
    title: str
    description: str
    type: str
    icon_name: str
    badge_color: str
    completed_at: datetime

    @classmethod
    def from_row(cls, achievement: Achievement) -> "AchievementCompleted":
        return cls(
            achievement_id=achievement.id,
            user_id=achievement.user_id,
            title=achievement.title,
            description=achievement.description,
            type=achievement.type,
            icon_name=achievement.icon_name,
            badge_color=achievement.badge_color,
            completed_at=achievement.completed_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "achievement_id": self.achievement_id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "icon_name": self.icon_name,
            "badge_color": self.badge_color,
            "completed_at": self.completed_at.isoformat(),
        }


def evaluate(achievement, delta: int, now: datetime):
    """Apply ``delta`` progress to ``achievement`` in place.

    Returns ``(achievement, completed_now)``; ``completed_now`` is True only
    on the call that crosses the threshold.
    """
    if delta < 0:
        raise ValueError("achievement progress cannot decrease")
    if achievement.is_completed:
        return achievement, False

    achievement.current_value = min((achievement.current_value or 0) + delta, achievement.threshold_value)
    if achievement.current_value >= achievement.threshold_value:
        achievement.is_completed = True
        achievement.completed_at = now
        return achievement, True
    return achievement, False


def milestone_delta(achievement, signal: ProgressSignal) -> int:
    if achievement.type == "task_completion":
        return 1 if signal.kind == "task" else 0
    if achievement.type == "goal_completion":
        return 1 if signal.kind == "goal" else 0
    if achievement.type == "streak":
        if signal.kind != "task":
            return 0
        return max(0, signal.user_streak - (achievement.current_value or 0))
    if achievement.type == "consistency":
        if signal.kind != "task":
            return 0
        if achievement.criterion == "on_time":
            return 1 if signal.on_time else 0
        return 1 if achievement.criterion == signal.time_of_day else 0
    return 0


def seed_achievements(
    session: Session,
    user_id: int,
    catalog: Sequence[MilestoneDefinition] = DEFAULT_CATALOG,
) -> List[Achievement]:
    """Copy the catalog into rows for ``user_id``; entries already present are skipped."""
    existing = {
        (a.type, a.criterion, a.threshold_value)
        for a in session.query(Achievement).filter(Achievement.user_id == user_id)
    }
    created = []
    for definition in catalog:
        if definition.key in existing:
            continue
        achievement = Achievement(
            user_id=user_id,
            title=definition.title,
            description=definition.description,
            type=definition.type,
            criterion=definition.criterion,
            icon_name=definition.icon_name,
            badge_color=definition.badge_color,
            threshold_value=definition.threshold_value,
            current_value=0,
            is_completed=False,
        )
        session.add(achievement)
        created.append(achievement)
        existing.add(definition.key)
    session.flush()
    if created:
        logger.info("Seeded %s achievements for user %s", len(created), user_id)
    return created


def advance(session: Session, user_id: int, signal: ProgressSignal, now: datetime) -> List[AchievementCompleted]:
    """Advance every open milestone of ``user_id`` that ``signal`` affects."""
    open_rows = (
        session.query(Achievement)
        .filter(Achievement.user_id == user_id, Achievement.is_completed.is_(False))
        .order_by(Achievement.id)
        .with_for_update()
        .all()
    )
    completed = []
    for achievement in open_rows:
        delta = milestone_delta(achievement, signal)
        if not delta:
            continue
        _, completed_now = evaluate(achievement, delta, now)
        if completed_now:
            logger.info("Achievement %s (%s) completed for user %s", achievement.id, achievement.title, user_id)
            completed.append(achievement)
    session.flush()
    return [AchievementCompleted.from_row(a) for a in completed]


def list_achievements(
    session: Session,
    user_id: int,
    type: Optional[str] = None,
    completed: Optional[bool] = None,
) -> List[Dict[str, Any]]:
    q = session.query(Achievement).filter(Achievement.user_id == user_id)
    if type and type != "all":
        if type not in MILESTONE_TYPES:
            raise ValidationError(f"Invalid achievement type {type!r}", field="type")
        q = q.filter(Achievement.type == type)
    if completed is not None:
        q = q.filter(Achievement.is_completed.is_(completed))

    rows = q.all()
    # Completed first, newest completion first, then closest to done
    rows.sort(key=lambda a: (
        not a.is_completed,
        -(a.completed_at.timestamp() if a.completed_at else 0),
        -a.current_value,
        a.id,
    ))
    return [a.to_dict() for a in rows]
