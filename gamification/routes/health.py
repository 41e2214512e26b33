"""
Health routes — liveness plus a dependency check for Redis and the database.
"""
import logging

from flask import Blueprint, jsonify
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gamification.database import get_session

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def dependency_health():
    """Report whether Redis and the database answer."""
    from gamification.extensions import redis_client

    services = {}
    try:
        redis_client.ping()
        services['redis'] = 'ok'
    except RedisError as e:
        logger.warning("Redis health check failed: %s", e)
        services['redis'] = 'unavailable'

    session = get_session()
    try:
        session.execute(text('SELECT 1'))
        services['database'] = 'ok'
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        services['database'] = 'unavailable'
    finally:
        session.close()

    healthy = all(v == 'ok' for v in services.values())
    return jsonify({'status': 'healthy' if healthy else 'degraded', 'services': services}), 200 if healthy else 503
