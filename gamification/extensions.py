"""
Shared client instances — Redis.

redis.from_url() does not connect until the first command, so importing this
module is always safe (even when Redis is down during tests).
"""
import redis

from gamification.config import REDIS_URL

# ── Redis ─────────────────────────────────────────────────────────────────────
# Backs the event stream and the achievement progress cache.
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# RQ stores jobs as compressed pickles, so its connection must return raw bytes.
rq_connection = redis.from_url(REDIS_URL)
