"""
Background jobs (RQ) and the driver activity event handler.

Scheduled work (weekly / monthly bonus runs, leaderboard rollover, payouts)
is enqueued onto the default RQ queue; the worker process (worker.py)
executes the job functions below.

Driver activity events arrive as:
    {'metadata': {'event_id', 'event_type', 'correlation_id'}, 'payload': {...}}
"""
import logging
from typing import Any, Dict, List, Optional

from gamification.config import JOB_TIMEOUT
from gamification.engine.base import parse_timestamp
from gamification.errors import GamificationError
from gamification.services import achievements, leaderboards, rewards, scores

logger = logging.getLogger('gamification.jobs')

LOAD_COMPLETED = 'LOAD_COMPLETED'
POSITION_UPDATED = 'POSITION_UPDATED'
DRIVER_STATUS_CHANGED = 'DRIVER_STATUS_CHANGED'


# ── Lazy RQ queue (avoids import-time Redis connection) ──────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from gamification.extensions import rq_connection
        from rq import Queue
        _queue = Queue(connection=rq_connection)
    return _queue


# ── Job functions (executed by the RQ worker) ────────────────────────────────

def process_ending_leaderboards_job(days_threshold: Optional[int] = None,
                                    timeframe: Optional[str] = None) -> Dict[str, Any]:
    logger.info("Job: processing ending leaderboards (threshold=%s, timeframe=%s)", days_threshold, timeframe)
    return leaderboards.process_ending_leaderboards(days_threshold=days_threshold, timeframe=timeframe)


def weekly_bonus_job() -> Dict[str, Any]:
    logger.info("Job: weekly bonus run")
    return rewards.process_timeframe_bonuses('weekly')


def monthly_bonus_job() -> Dict[str, Any]:
    logger.info("Job: monthly bonus run")
    return rewards.process_timeframe_bonuses('monthly')


def recalculate_scores_job(driver_ids: List[str], start: str, end: str) -> Dict[str, Any]:
    """start / end are ISO-8601 strings so the job arguments stay JSON-friendly."""
    logger.info("Job: recalculating scores for %d drivers", len(driver_ids))
    return scores.recalculate_driver_scores(driver_ids, parse_timestamp(start), parse_timestamp(end))


def bonus_payouts_job(driver_id: Optional[str] = None) -> Dict[str, Any]:
    logger.info("Job: bonus payouts (driver=%s)", driver_id or 'all')
    return rewards.process_bonus_payouts(driver_id=driver_id)


# ── Enqueue helpers ──────────────────────────────────────────────────────────

def enqueue_process_ending_leaderboards(days_threshold: Optional[int] = None,
                                        timeframe: Optional[str] = None) -> str:
    job = _get_queue().enqueue(
        process_ending_leaderboards_job, days_threshold, timeframe, job_timeout=JOB_TIMEOUT,
    )
    return job.id


def enqueue_weekly_bonuses() -> str:
    return _get_queue().enqueue(weekly_bonus_job, job_timeout=JOB_TIMEOUT).id


def enqueue_monthly_bonuses() -> str:
    return _get_queue().enqueue(monthly_bonus_job, job_timeout=JOB_TIMEOUT).id


def enqueue_recalculate_scores(driver_ids: List[str], start: str, end: str) -> str:
    job = _get_queue().enqueue(recalculate_scores_job, driver_ids, start, end, job_timeout=JOB_TIMEOUT)
    return job.id


def enqueue_bonus_payouts(driver_id: Optional[str] = None) -> str:
    return _get_queue().enqueue(bonus_payouts_job, driver_id, job_timeout=JOB_TIMEOUT).id


# ── Driver activity events ───────────────────────────────────────────────────

def _on_load_completed(payload, correlation_id):
    result = rewards.process_load_completion(
        payload['assignment'],
        payload.get('metrics'),
        region=payload.get('region'),
        driver_name=payload.get('driver_name'),
        delivery_position=payload.get('delivery_position'),
        correlation_id=correlation_id,
    )
    logger.info(
        "Load %s scored %.2f for driver %s (%d achievements, %d bonuses)",
        result['score']['assignment_id'], result['score']['total_score'], result['score']['driver_id'],
        len(result['achievements']), len(result['bonuses']),
    )
    return result


def _on_position_updated(payload, correlation_id):
    return rewards.process_position_update(
        payload['driver_id'],
        payload['latitude'],
        payload['longitude'],
        assignment_id=payload.get('assignment_id'),
        correlation_id=correlation_id,
    )


def _on_status_changed(payload, correlation_id):
    earned = achievements.check_achievements(payload['driver_id'], correlation_id=correlation_id)
    if earned:
        logger.info("Driver %s earned %d achievements", payload['driver_id'], len(earned))
    return earned


EVENT_HANDLERS = {
    LOAD_COMPLETED: _on_load_completed,
    POSITION_UPDATED: _on_position_updated,
    DRIVER_STATUS_CHANGED: _on_status_changed,
}


def handle_driver_event(event: Dict[str, Any]):
    """
    Dispatch one driver activity event. Errors are logged, never raised, so a
    bad event doesn't stall the consumer.
    """
    metadata = event.get('metadata') or {}
    payload = event.get('payload') or {}
    event_type = metadata.get('event_type')
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.warning("Unknown driver event type: %s (event_id=%s)", event_type, metadata.get('event_id'))
        return None

    logger.info("Received %s (event_id=%s)", event_type, metadata.get('event_id'))
    try:
        return handler(payload, metadata.get('correlation_id'))
    except (GamificationError, KeyError) as e:
        logger.error(
            "Error processing %s (event_id=%s): %s", event_type, metadata.get('event_id'), e,
            exc_info=True,
        )
        return None
