import os
from typing import Dict, Any, Optional
from mixpanel import Mixpanel, MixpanelException
import logging

logger = logging.getLogger("analytics")

MIXPANEL_TOKEN = os.getenv("MIXPANEL_TOKEN")

mp = None
if MIXPANEL_TOKEN:
    from mixpanel import Consumer

    # Create custom consumer for EU endpoint
    consumer = Consumer(
        events_url="https://api-eu.mixpanel.com/track",
        people_url="https://api-eu.mixpanel.com/engage"
    )

    mp = Mixpanel(MIXPANEL_TOKEN, consumer=consumer)
    logger.info(f"Mixpanel (EU) initialized with token: {MIXPANEL_TOKEN[:8]}...")
else:
    logger.debug("Mixpanel not configured (no token)")


def track_event(
    user_id: Any,
    event_name: str,
    properties: Optional[Dict[str, Any]] = None
):
    """
    Track event to Mixpanel

    Args:
        user_id: User identifier (distinct_id in Mixpanel)
        event_name: Event name (e.g., "Task Completed", "Achievement Completed")
        properties: Additional event properties (e.g., goal_id, streak)
    """
    if not mp:
        logger.debug(f"Mixpanel not configured, skipping event: {event_name}")
        return

    try:
        mp.track(str(user_id), event_name, properties or {})
        logger.info(f"Tracked event: {event_name} for user {user_id}")
    except MixpanelException as e:
        logger.error(f"Mixpanel error tracking {event_name}: {e}")


def increment_user_counter(
    user_id: Any,
    property_name: str,
    increment: int = 1
):
    """
    Increment user profile counter in Mixpanel

    Args:
        user_id: User identifier
        property_name: Counter property name (e.g., "achievements_completed")
        increment: Amount to increment (default: 1)
    """
    if not mp:
        return

    try:
        mp.people_increment(str(user_id), {property_name: increment})
        logger.info(f"Incremented {property_name} by {increment} for user {user_id}")
    except MixpanelException as e:
        logger.error(f"Mixpanel error incrementing {property_name} for {user_id}: {e}")
