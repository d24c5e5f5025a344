"""Change notifications published after a committed mutation."""

from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

BADGE_EARNED_CHANNEL = "pubsub:badge_earned"
CREDIBILITY_CHANGED_CHANNEL = "pubsub:credibility_changed"
WEEK_SETTLED_CHANNEL = "pubsub:week_settled"


async def publish_event(redis: object, channel: str, payload: dict[str, Any]) -> bool:
    """Publish a JSON payload on a Redis pub/sub channel.

    The mutation this announces is already committed, so a publish failure
    is logged and reported as False rather than raised.
    """
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[union-attr]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
        return False
    return True
