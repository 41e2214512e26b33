"""
Achievement progress cache — Redis, keyed by driver id.

Shared by every instance. Producers of new driver activity (score updates,
awards, revocations, catalog edits) call invalidate(). Redis errors are
non-fatal: reads miss and progress is recomputed from the database.
"""
import json
import logging
from typing import List, Optional

from gamification.config import PROGRESS_CACHE_TTL
from gamification.engine.achievement_detector import AchievementProgress

logger = logging.getLogger('services.progress_cache')

KEY_PREFIX = 'achievement_progress:'


def _key(driver_id):
    return f'{KEY_PREFIX}{driver_id}'


def get_cached(driver_id) -> Optional[List[AchievementProgress]]:
    from gamification.extensions import redis_client
    try:
        raw = redis_client.get(_key(driver_id))
    except Exception as e:
        logger.warning("Progress cache read failed for %s: %s", driver_id, e)
        return None
    if not raw:
        return None
    try:
        return [AchievementProgress.from_dict(item) for item in json.loads(raw)]
    except (ValueError, TypeError) as e:
        logger.warning("Discarding corrupt progress cache for %s: %s", driver_id, e)
        return None


def store(driver_id, progress: List[AchievementProgress]):
    from gamification.extensions import redis_client
    data = json.dumps([p.to_dict() for p in progress])
    try:
        if PROGRESS_CACHE_TTL > 0:
            redis_client.setex(_key(driver_id), PROGRESS_CACHE_TTL, data)
        else:
            redis_client.set(_key(driver_id), data)
    except Exception as e:
        logger.warning("Progress cache write failed for %s: %s", driver_id, e)


def invalidate(driver_id):
    from gamification.extensions import redis_client
    try:
        redis_client.delete(_key(driver_id))
    except Exception as e:
        logger.warning("Progress cache invalidation failed for %s: %s", driver_id, e)


def invalidate_all():
    """Drop every driver's cached progress (after catalog changes)."""
    from gamification.extensions import redis_client
    try:
        keys = list(redis_client.scan_iter(match=f'{KEY_PREFIX}*'))
        if keys:
            redis_client.delete(*keys)
    except Exception as e:
        logger.warning("Progress cache flush failed: %s", e)
