"""
Driver score persistence + queries.

calculate_score_for_load() is the entry point for a completed load:
score → persist → leaderboard ranking → milestones → SCORE_UPDATED.
Score rows are append-only; a manual adjustment writes a new snapshot.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from gamification.config import SCORE_MILESTONES
from gamification.database import get_session
from gamification.engine.base import LoadAssignment, ScoreSnapshot
from gamification.engine.score_calculator import (
    calculate_driver_score, snapshot_from_components, calculate_historical_score,
)
from gamification.errors import GamificationError, NotFoundError, ValidationError, DependencyError
from gamification.models.driver_score import DriverScore
from gamification.services import events, progress_cache
from gamification.services.leaderboards import update_driver_ranking

logger = logging.getLogger('services.scores')


def check_score_milestones(previous_score: float, new_score: float) -> List[int]:
    """Milestones crossed going from previous_score to new_score (upward only)."""
    previous_score = previous_score or 0
    return [m for m in SCORE_MILESTONES if previous_score < m <= new_score]


def _latest(session, driver_id) -> Optional[DriverScore]:
    return (
        session.query(DriverScore)
        .filter(DriverScore.driver_id == driver_id)
        .order_by(DriverScore.calculated_at.desc(), DriverScore.id.desc())
        .first()
    )


def _row_from_snapshot(snapshot: ScoreSnapshot) -> DriverScore:
    return DriverScore(
        driver_id=snapshot.driver_id,
        assignment_id=snapshot.assignment_id,
        load_id=snapshot.load_id,
        total_score=snapshot.total_score,
        empty_miles_score=snapshot.empty_miles_score,
        network_contribution_score=snapshot.network_contribution_score,
        on_time_score=snapshot.on_time_score,
        hub_utilization_score=snapshot.hub_utilization_score,
        fuel_efficiency_score=snapshot.fuel_efficiency_score,
        score_factors=snapshot.score_factors,
        calculated_at=snapshot.calculated_at,
    )


def _persist_snapshot(snapshot: ScoreSnapshot):
    """
    Insert the snapshot. Returns (score dict, previous total, events pending).

    A redelivered load completion (same driver + assignment) reuses the
    existing row instead of writing a second one. Its events are still pending
    when the earlier delivery failed before publishing them.
    """
    session = get_session()
    try:
        if snapshot.assignment_id:
            existing = session.query(DriverScore).filter_by(
                driver_id=snapshot.driver_id,
                assignment_id=snapshot.assignment_id,
            ).first()
            if existing is not None:
                logger.info(
                    "Score for driver %s assignment %s already recorded (id=%s)",
                    snapshot.driver_id, snapshot.assignment_id, existing.id,
                )
                previous = (
                    session.query(DriverScore)
                    .filter(DriverScore.driver_id == snapshot.driver_id,
                            DriverScore.id < existing.id)
                    .order_by(DriverScore.id.desc())
                    .first()
                )
                previous_total = previous.total_score if previous else 0.0
                return existing.to_dict(), previous_total, not existing.events_published

        latest = _latest(session, snapshot.driver_id)
        previous_total = latest.total_score if latest else 0.0

        row = _row_from_snapshot(snapshot)
        session.add(row)
        session.commit()
        return row.to_dict(), previous_total, True
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to persist score for driver %s", snapshot.driver_id, exc_info=True)
        raise DependencyError('database', str(e)) from e
    finally:
        session.close()


def _mark_events_published(score_id: int):
    session = get_session()
    try:
        row = session.get(DriverScore, score_id)
        if row is not None:
            row.events_published = True
            session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Failed to flag score %s as published", score_id, exc_info=True)
        raise DependencyError('database', str(e)) from e
    finally:
        session.close()


def _publish_score_events(score: Dict[str, Any], previous_total: float, correlation_id=None):
    for milestone in check_score_milestones(previous_total, score['total_score']):
        events.publish_event(events.SCORE_MILESTONE_REACHED, {
            'driver_id': score['driver_id'],
            'milestone': milestone,
            'score': score['total_score'],
            'previous_score': previous_total,
        }, correlation_id)

    events.publish_event(events.SCORE_UPDATED, {
        'driver_id': score['driver_id'],
        'score_id': score['id'],
        'assignment_id': score['assignment_id'],
        'total_score': score['total_score'],
        'previous_score': previous_total,
        'components': {
            'empty_miles': score['empty_miles_score'],
            'network_contribution': score['network_contribution_score'],
            'on_time': score['on_time_score'],
            'hub_utilization': score['hub_utilization_score'],
            'fuel_efficiency': score['fuel_efficiency_score'],
        },
    }, correlation_id)


def calculate_score_for_load(assignment, metrics: Optional[Dict[str, Any]] = None,
                             region: Optional[str] = None, driver_name: Optional[str] = None,
                             correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Score a completed load and fan the result out to leaderboards + events.

    `assignment` is a LoadAssignment or its dict form.
    """
    if isinstance(assignment, dict):
        assignment = LoadAssignment.from_dict(assignment)
    metrics = dict(metrics or {})
    if region and not metrics.get('region'):
        metrics['region'] = region

    snapshot = calculate_driver_score(assignment, metrics)
    score, previous_total, events_pending = _persist_snapshot(snapshot)

    update_driver_ranking(
        assignment.driver_id, score,
        region=metrics.get('region'),
        driver_name=driver_name,
        correlation_id=correlation_id,
    )

    if events_pending:
        _publish_score_events(score, previous_total, correlation_id)
        progress_cache.invalidate(assignment.driver_id)
        _mark_events_published(score['id'])

    logger.info(
        "Driver %s scored %.2f for assignment %s",
        assignment.driver_id, score['total_score'], assignment.assignment_id,
    )
    return score


def update_driver_score(driver_id: str, components: Dict[str, float], reason: str = '',
                        region: Optional[str] = None,
                        correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Record a manual adjustment as a new snapshot built from component scores."""
    if not driver_id:
        raise ValidationError("driver_id is required")
    snapshot = snapshot_from_components(
        driver_id, components, {'manual_adjustment': True, 'reason': reason},
    )
    score, previous_total, _ = _persist_snapshot(snapshot)
    update_driver_ranking(driver_id, score, region=region, correlation_id=correlation_id)
    _publish_score_events(score, previous_total, correlation_id)
    progress_cache.invalidate(driver_id)
    _mark_events_published(score['id'])
    return score


def get_driver_score(driver_id: str) -> Dict[str, Any]:
    """Most recent score snapshot for a driver."""
    session = get_session()
    try:
        latest = _latest(session, driver_id)
        if latest is None:
            raise NotFoundError('DriverScore', driver_id)
        return latest.to_dict()
    finally:
        session.close()


def get_latest_score_or_none(driver_id: str) -> Optional[Dict[str, Any]]:
    session = get_session()
    try:
        latest = _latest(session, driver_id)
        return latest.to_dict() if latest else None
    finally:
        session.close()


def get_score_history(driver_id: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
    """Newest-first paginated history."""
    if page < 1 or page_size < 1 or page_size > 100:
        raise ValidationError("page must be >= 1 and page_size between 1 and 100")
    session = get_session()
    try:
        query = session.query(DriverScore).filter(DriverScore.driver_id == driver_id)
        total = query.count()
        rows = (
            query.order_by(DriverScore.calculated_at.desc(), DriverScore.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            'items': [r.to_dict() for r in rows],
            'total': total,
            'page': page,
            'page_size': page_size,
        }
    finally:
        session.close()


def get_scores_by_date_range(driver_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
    if start is None or end is None or start >= end:
        raise ValidationError("start must be before end")
    session = get_session()
    try:
        rows = (
            session.query(DriverScore)
            .filter(
                DriverScore.driver_id == driver_id,
                DriverScore.calculated_at >= start,
                DriverScore.calculated_at < end,
            )
            .order_by(DriverScore.calculated_at.asc(), DriverScore.id.asc())
            .all()
        )
        return [r.to_dict() for r in rows]
    finally:
        session.close()


def get_historical_score(driver_id: str, start: datetime, end: datetime) -> Dict[str, Any]:
    """Average of a driver's snapshots over [start, end); not persisted."""
    if start is None or end is None or start >= end:
        raise ValidationError("start must be before end")
    session = get_session()
    try:
        rows = (
            session.query(DriverScore)
            .filter(
                DriverScore.driver_id == driver_id,
                DriverScore.calculated_at >= start,
                DriverScore.calculated_at < end,
            )
            .all()
        )
        return calculate_historical_score(driver_id, rows, start, end).to_dict()
    finally:
        session.close()


def recalculate_driver_scores(driver_ids: List[str], start: datetime, end: datetime) -> Dict[str, Any]:
    """
    Write a period-average snapshot for each driver and re-rank them.

    Per-driver failures are logged and counted; the batch keeps going.
    """
    summary = {'processed': 0, 'failed': 0, 'errors': []}
    for driver_id in driver_ids:
        try:
            historical = get_historical_score(driver_id, start, end)
            update_driver_score(
                driver_id,
                {
                    'empty_miles': historical['empty_miles_score'],
                    'network_contribution': historical['network_contribution_score'],
                    'on_time': historical['on_time_score'],
                    'hub_utilization': historical['hub_utilization_score'],
                    'fuel_efficiency': historical['fuel_efficiency_score'],
                },
                reason='recalculation',
            )
            summary['processed'] += 1
        except (GamificationError, SQLAlchemyError) as e:
            logger.error("Score recalculation failed for driver %s", driver_id, exc_info=True)
            summary['failed'] += 1
            summary['errors'].append({'driver_id': driver_id, 'error': str(e)})
    logger.info(
        "Recalculated scores: %d processed, %d failed",
        summary['processed'], summary['failed'],
    )
    return summary
