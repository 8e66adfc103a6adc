"""
Outbound "achievement completed" signal.

Every completion is sent to Mixpanel (when configured) and handed to the
in-process listeners registered with ``subscribe``.
"""
import logging
from typing import Callable, Iterable, List

from shared.utils import analytics
from tracker.services.achievements import AchievementCompleted

logger = logging.getLogger(__name__)

Listener = Callable[[AchievementCompleted], None]

_listeners: List[Listener] = []


def subscribe(listener: Listener) -> Listener:
    _listeners.append(listener)
    return listener


def unsubscribe(listener: Listener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def publish_achievements(events: Iterable[AchievementCompleted]) -> None:
    for event in events:
        logger.info("Achievement completed: user=%s achievement=%s (%s)", event.user_id, event.achievement_id, event.title)
        analytics.track_event(event.user_id, "Achievement Completed", {
            "achievement_id": event.achievement_id,
            "title": event.title,
            "type": event.type,
        })
        analytics.increment_user_counter(event.user_id, "achievements_completed")
        for listener in list(_listeners):
            try:
                listener(event)
            except Exception:
                # A failing subscriber must not undo a committed completion
                logger.exception("Achievement listener %r failed for achievement %s", listener, event.achievement_id)


def track_task_completed(user_id: int, task: dict) -> None:
    analytics.track_event(user_id, "Task Completed", {
        "task_id": task["id"],
        "goal_id": task["goal_id"],
        "time_of_day": task["time_of_day"],
        "on_time": task["completed_on_time"],
        "recurring": task["parent_task_id"] is not None or task["is_repeating"],
    })
