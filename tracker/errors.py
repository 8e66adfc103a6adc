"""
Error hierarchy for the tracker engine.

- TrackerError: base class, every expected failure
- ValidationError: malformed input, never retried
- NotFound: referenced goal/task/user does not exist for the owner
- CycleDetected: goal parent chain loops back on itself (data corruption)
- ConcurrentUpdateConflict: lost-update race on a stats/achievement row
- StatsInconsistency: stored aggregates diverged from a full recompute
"""
from typing import Iterable, Optional


class TrackerError(Exception):
    """Base class for known engine errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def get_user_message(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class ValidationError(TrackerError):
    """Rejected input: a malformed recurrence rule, dates outside the goal, etc."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, hint=f"check '{field}'" if field else None)
        self.field = field


class NotFound(TrackerError):
    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class CycleDetected(TrackerError):
    """Goal hierarchy corruption: the listed goals form a parent loop."""

    def __init__(self, goal_ids: Iterable[int]):
        self.goal_ids = list(goal_ids)
        chain = " -> ".join(str(goal_id) for goal_id in self.goal_ids)
        super().__init__(
            f"Goal parent cycle detected: {chain}",
            hint="clear parent_goal_id on one of these goals",
        )


class ConcurrentUpdateConflict(TrackerError):
    """A stats or achievement row changed underneath a read-modify-write."""

    def __init__(self, entity: str, key, attempts: Optional[int] = None):
        message = f"Concurrent update on {entity} {key}"
        if attempts:
            message = f"{message} after {attempts} attempts"
        super().__init__(message, hint="transient, retry the request")
        self.entity = entity
        self.key = key
        self.attempts = attempts


class StatsInconsistency(TrackerError):
    """Informational: incremental aggregates differ from the full fold."""

    def __init__(self, user_id: int, differences: dict):
        self.user_id = user_id
        self.differences = differences
        fields = ", ".join(sorted(differences))
        super().__init__(f"Stats for user {user_id} diverged from history: {fields}")
