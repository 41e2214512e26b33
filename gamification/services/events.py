"""
Domain event publisher — writes enveloped events to a Redis stream.

Events are published after the triggering write has committed. A failed
publish is logged and swallowed: it never undoes the state change.
"""
import json
import logging
import uuid
from typing import Any, Dict, Optional

from gamification.config import (
    EVENT_STREAM, EVENT_STREAM_MAXLEN, EVENT_PRODUCER, EVENT_VERSION, EVENT_CATEGORY,
)
from gamification.database import utcnow

logger = logging.getLogger('services.events')

SCORE_UPDATED = 'SCORE_UPDATED'
SCORE_MILESTONE_REACHED = 'SCORE_MILESTONE_REACHED'
ACHIEVEMENT_EARNED = 'ACHIEVEMENT_EARNED'
ACHIEVEMENT_REVOKED = 'ACHIEVEMENT_REVOKED'
LEADERBOARD_UPDATED = 'LEADERBOARD_UPDATED'
LEADERBOARD_RANK_CHANGED = 'LEADERBOARD_RANK_CHANGED'
LEADERBOARD_PERIOD_ENDED = 'LEADERBOARD_PERIOD_ENDED'
REWARD_CREATED = 'REWARD_CREATED'
REWARD_ISSUED = 'REWARD_ISSUED'

EVENT_TYPES = [
    SCORE_UPDATED,
    SCORE_MILESTONE_REACHED,
    ACHIEVEMENT_EARNED,
    ACHIEVEMENT_REVOKED,
    LEADERBOARD_UPDATED,
    LEADERBOARD_RANK_CHANGED,
    LEADERBOARD_PERIOD_ENDED,
    REWARD_CREATED,
    REWARD_ISSUED,
]


def build_envelope(event_type: str, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        'event_id': str(uuid.uuid4()),
        'event_type': event_type,
        'event_version': EVENT_VERSION,
        'event_time': utcnow().isoformat() + 'Z',
        'producer': EVENT_PRODUCER,
        'correlation_id': correlation_id or str(uuid.uuid4()),
        'category': EVENT_CATEGORY,
    }


def publish_event(event_type: str, payload: Dict[str, Any],
                  correlation_id: Optional[str] = None) -> Optional[str]:
    """
    Publish one event. Returns the event_id, or None if publishing failed.
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type '{event_type}'")

    event = {**build_envelope(event_type, correlation_id), 'payload': payload}
    try:
        from gamification.extensions import redis_client
        redis_client.xadd(
            EVENT_STREAM,
            {'event_type': event_type, 'data': json.dumps(event, default=str)},
            maxlen=EVENT_STREAM_MAXLEN,
            approximate=True,
        )
        logger.debug("Published %s (%s)", event_type, event['event_id'])
        return event['event_id']
    except Exception:
        logger.error(
            "Failed to publish %s event (correlation_id=%s)",
            event_type, event['correlation_id'], exc_info=True,
        )
        return None
