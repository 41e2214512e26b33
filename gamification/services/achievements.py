"""
Achievement service — catalog administration, detection, awards and progress.

Awards are at-most-once per (driver, achievement): the driver_achievements
unique constraint decides, and a losing insert returns the existing award.
Each award commits on its own so a lost race only rolls back that award.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gamification.config import ACHIEVEMENT_CATEGORIES, ACHIEVEMENT_LEVELS
from gamification.database import get_session, utcnow
from gamification.engine.achievement_detector import (
    ACTIVITY_METRICS, Criteria, ActivityMetricParams, extract_metric_value, evaluate_criteria,
    build_progress,
)
from gamification.errors import ValidationError, NotFoundError, ConflictError, DependencyError
from gamification.models.achievement import Achievement, DriverAchievement
from gamification.models.driver_score import DriverScore
from gamification.services import events, progress_cache

logger = logging.getLogger('services.achievements')

_EDITABLE_FIELDS = ('name', 'description', 'category', 'level', 'points', 'criteria',
                    'badge_image_url', 'is_active')


def _db_error(session, action, exc):
    session.rollback()
    logger.error("Achievement %s failed", action, exc_info=True)
    return DependencyError('database', str(exc))


def _validate_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned = dict(fields)
    if 'name' in cleaned and not (cleaned['name'] or '').strip():
        raise ValidationError("name is required")
    if 'category' in cleaned and cleaned['category'] not in ACHIEVEMENT_CATEGORIES:
        raise ValidationError(f"Unknown category '{cleaned['category']}'",
                              {'allowed': ACHIEVEMENT_CATEGORIES})
    if 'level' in cleaned and cleaned['level'] not in ACHIEVEMENT_LEVELS:
        raise ValidationError(f"Unknown level '{cleaned['level']}'", {'allowed': ACHIEVEMENT_LEVELS})
    if 'points' in cleaned:
        try:
            cleaned['points'] = int(cleaned['points'])
        except (TypeError, ValueError) as e:
            raise ValidationError("points must be an integer") from e
        if cleaned['points'] < 0:
            raise ValidationError("points must be non-negative")
    if 'criteria' in cleaned:
        cleaned['criteria'] = Criteria.from_dict(cleaned['criteria']).to_dict()
    return cleaned


# ── Catalog ──────────────────────────────────────────────────────────────────

def create_achievement(name: str, category: str, level: str, points: int, criteria: Dict[str, Any],
                       description: str = '', badge_image_url: Optional[str] = None,
                       is_active: bool = True) -> Dict[str, Any]:
    fields = _validate_fields({
        'name': name, 'category': category, 'level': level,
        'points': points, 'criteria': criteria,
    })
    session = get_session()
    try:
        if session.query(Achievement).filter_by(name=fields['name']).first() is not None:
            raise ConflictError(f"Achievement '{name}' already exists")
        achievement = Achievement(
            description=description,
            badge_image_url=badge_image_url,
            is_active=is_active,
            **fields,
        )
        session.add(achievement)
        session.commit()
        result = achievement.to_dict()
    except SQLAlchemyError as e:
        raise _db_error(session, 'create', e) from e
    finally:
        session.close()

    progress_cache.invalidate_all()
    logger.info("Created achievement %s (%s)", result['id'], result['name'])
    return result


def get_achievement(achievement_id: int) -> Dict[str, Any]:
    session = get_session()
    try:
        achievement = session.get(Achievement, achievement_id)
        if achievement is None:
            raise NotFoundError('Achievement', achievement_id)
        return achievement.to_dict()
    finally:
        session.close()


def list_achievements(category: Optional[str] = None, level: Optional[str] = None,
                      active_only: bool = False) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(Achievement)
        if category:
            query = query.filter(Achievement.category == category)
        if level:
            query = query.filter(Achievement.level == level)
        if active_only:
            query = query.filter(Achievement.is_active.is_(True))
        return [a.to_dict() for a in query.order_by(Achievement.id).all()]
    finally:
        session.close()


def update_achievement(achievement_id: int, **changes) -> Dict[str, Any]:
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown achievement fields", {'unknown': sorted(unknown)})
    changes = _validate_fields(changes)

    session = get_session()
    try:
        achievement = session.get(Achievement, achievement_id)
        if achievement is None:
            raise NotFoundError('Achievement', achievement_id)
        for field_name, value in changes.items():
            setattr(achievement, field_name, value)
        session.commit()
        result = achievement.to_dict()
    except IntegrityError as e:
        session.rollback()
        raise ConflictError("Achievement name already in use") from e
    except SQLAlchemyError as e:
        raise _db_error(session, f'update of {achievement_id}', e) from e
    finally:
        session.close()

    progress_cache.invalidate_all()
    return result


def delete_achievement(achievement_id: int):
    """Remove an achievement and every award of it."""
    session = get_session()
    try:
        achievement = session.get(Achievement, achievement_id)
        if achievement is None:
            raise NotFoundError('Achievement', achievement_id)
        session.query(DriverAchievement).filter_by(achievement_id=achievement_id).delete()
        session.delete(achievement)
        session.commit()
    except SQLAlchemyError as e:
        raise _db_error(session, f'delete of {achievement_id}', e) from e
    finally:
        session.close()

    progress_cache.invalidate_all()


# ── Metric sources ───────────────────────────────────────────────────────────

def _latest_score(session, driver_id):
    return (
        session.query(DriverScore)
        .filter(DriverScore.driver_id == driver_id)
        .order_by(DriverScore.calculated_at.desc(), DriverScore.id.desc())
        .first()
    )


def _activity_totals(session, driver_id, lookback_days=None, assignment_type=None):
    """Loads / miles / relays derived from the driver's load score snapshots."""
    query = session.query(DriverScore.score_factors).filter(
        DriverScore.driver_id == driver_id,
        DriverScore.assignment_id.isnot(None),
    )
    if lookback_days:
        query = query.filter(DriverScore.calculated_at >= utcnow() - timedelta(days=lookback_days))

    totals = {'loads_completed': 0, 'miles_driven': 0.0, 'relay_participations': 0}
    for (factors,) in query:
        factors = factors or {}
        load_type = factors.get('assignment_type')
        if assignment_type and load_type != assignment_type:
            continue
        totals['loads_completed'] += 1
        totals['miles_driven'] += float(factors.get('miles_driven') or 0.0)
        if load_type == 'RELAY':
            totals['relay_participations'] += 1
    return totals


class _MetricSource:
    """Resolves metric values for one driver, memoizing activity queries."""

    def __init__(self, session, driver_id, score=None, metrics=None):
        self.session = session
        self.driver_id = driver_id
        self.metrics = metrics or {}
        self._score = score
        self._score_loaded = score is not None
        self._activity = {}

    @property
    def score(self):
        if not self._score_loaded:
            self._score = _latest_score(self.session, self.driver_id)
            self._score_loaded = True
        return self._score

    def value(self, criteria: Criteria) -> float:
        if not criteria.is_activity_metric:
            return extract_metric_value(criteria, self.score)

        key = ACTIVITY_METRICS[criteria.metric_type]
        # An explicit value in the metrics bag wins over derived history
        if self.metrics.get(key) is not None:
            return extract_metric_value(criteria, metrics=self.metrics)

        params = criteria.params if isinstance(criteria.params, ActivityMetricParams) else ActivityMetricParams()
        cache_key = (criteria.lookback_days, params.assignment_type)
        if cache_key not in self._activity:
            self._activity[cache_key] = _activity_totals(
                self.session, self.driver_id, criteria.lookback_days, params.assignment_type,
            )
        return extract_metric_value(criteria, metrics=self._activity[cache_key])


# ── Awards ───────────────────────────────────────────────────────────────────

def _find_award(session, driver_id, achievement_id) -> Optional[DriverAchievement]:
    return session.query(DriverAchievement).filter_by(
        driver_id=driver_id, achievement_id=achievement_id,
    ).first()


def _insert_award(session, driver_id, achievement, data):
    """Conflict-aware insert. Returns (award, created)."""
    existing = _find_award(session, driver_id, achievement.id)
    if existing is not None:
        return existing, False

    award = DriverAchievement(
        driver_id=driver_id,
        achievement_id=achievement.id,
        earned_at=utcnow(),
        achievement_data=data,
    )
    session.add(award)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info(
            "Achievement %s for driver %s was awarded concurrently",
            achievement.id, driver_id,
        )
        return _find_award(session, driver_id, achievement.id), False
    return award, True


def _earned_payload(award: DriverAchievement, achievement: Achievement) -> Dict[str, Any]:
    return {
        'driver_id': award.driver_id,
        'achievement_id': achievement.id,
        'achievement_name': achievement.name,
        'category': achievement.category,
        'level': achievement.level,
        'points': achievement.points,
        'earned_at': award.earned_at.isoformat(),
        'achievement_data': award.achievement_data or {},
    }


def detect_achievements(driver_id: str, score: Any = None, metrics: Optional[Dict[str, Any]] = None,
                        correlation_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Evaluate every active, not-yet-earned achievement and award the ones met.

    `score` is the snapshot just calculated (dict or row); defaults to the
    driver's latest stored score. Returns only awards made by this call.
    """
    newly_earned = []
    session = get_session()
    try:
        source = _MetricSource(session, driver_id, score, metrics)
        earned_ids = {
            a_id for (a_id,) in session.query(DriverAchievement.achievement_id)
            .filter(DriverAchievement.driver_id == driver_id)
        }
        catalog = (
            session.query(Achievement)
            .filter(Achievement.is_active.is_(True))
            .order_by(Achievement.id)
            .all()
        )
        for achievement in catalog:
            if achievement.id in earned_ids:
                continue
            try:
                criteria = Criteria.from_dict(achievement.criteria)
            except ValidationError as e:
                logger.warning("Skipping achievement %s with invalid criteria: %s", achievement.id, e)
                continue

            value = source.value(criteria)
            if not evaluate_criteria(criteria, value):
                continue

            award, created = _insert_award(session, driver_id, achievement, {
                'score': value,
                'achievement': achievement.name,
                'points': achievement.points,
            })
            if created:
                newly_earned.append(_earned_payload(award, achievement))
    except SQLAlchemyError as e:
        raise _db_error(session, f'detection for driver {driver_id}', e) from e
    finally:
        session.close()

    for payload in newly_earned:
        events.publish_event(events.ACHIEVEMENT_EARNED, payload, correlation_id)
    if newly_earned:
        progress_cache.invalidate(driver_id)
        logger.info("Driver %s earned %d achievement(s)", driver_id, len(newly_earned))
    return newly_earned


def check_achievements(driver_id: str, correlation_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Re-run detection against the driver's latest stored score."""
    return detect_achievements(driver_id, correlation_id=correlation_id)


def award_achievement(driver_id: str, achievement_id: int, achievement_data: Optional[Dict[str, Any]] = None,
                      correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Manual award. ConflictError when the driver already holds it."""
    if not driver_id:
        raise ValidationError("driver_id is required")
    session = get_session()
    try:
        achievement = session.get(Achievement, achievement_id)
        if achievement is None:
            raise NotFoundError('Achievement', achievement_id)
        data = achievement_data or {'achievement': achievement.name, 'points': achievement.points,
                                    'manual': True}
        award, created = _insert_award(session, driver_id, achievement, data)
        if not created:
            raise ConflictError(
                "Achievement already earned",
                {'driver_id': driver_id, 'achievement_id': achievement_id},
            )
        payload = _earned_payload(award, achievement)
    except SQLAlchemyError as e:
        raise _db_error(session, f'award of {achievement_id} to {driver_id}', e) from e
    finally:
        session.close()

    events.publish_event(events.ACHIEVEMENT_EARNED, payload, correlation_id)
    progress_cache.invalidate(driver_id)
    return payload


def revoke_achievement(driver_id: str, achievement_id: int, reason: str = '',
                       correlation_id: Optional[str] = None):
    """Delete an award and publish ACHIEVEMENT_REVOKED."""
    session = get_session()
    try:
        award = session.query(DriverAchievement).filter_by(
            driver_id=driver_id, achievement_id=achievement_id,
        ).first()
        if award is None:
            raise NotFoundError('DriverAchievement', f'{driver_id}/{achievement_id}')
        name = award.achievement.name if award.achievement else None
        session.delete(award)
        session.commit()
    except SQLAlchemyError as e:
        raise _db_error(session, f'revoke of {achievement_id} from {driver_id}', e) from e
    finally:
        session.close()

    events.publish_event(events.ACHIEVEMENT_REVOKED, {
        'driver_id': driver_id,
        'achievement_id': achievement_id,
        'achievement_name': name,
        'reason': reason,
        'revoked_at': utcnow().isoformat(),
    }, correlation_id)
    progress_cache.invalidate(driver_id)
    logger.info("Revoked achievement %s from driver %s (%s)", achievement_id, driver_id, reason)


# ── Queries ──────────────────────────────────────────────────────────────────

def get_driver_achievements(driver_id: str) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        rows = (
            session.query(DriverAchievement)
            .filter(DriverAchievement.driver_id == driver_id)
            .order_by(DriverAchievement.earned_at.desc())
            .all()
        )
        return [r.to_dict() for r in rows]
    finally:
        session.close()


def get_driver_progress(driver_id: str, use_cache: bool = True) -> List[Dict[str, Any]]:
    """Progress toward every active achievement, plus any already earned."""
    if use_cache:
        cached = progress_cache.get_cached(driver_id)
        if cached is not None:
            return [p.to_dict() for p in cached]

    session = get_session()
    try:
        source = _MetricSource(session, driver_id)
        earned = {
            award.achievement_id: award for award in
            session.query(DriverAchievement).filter(DriverAchievement.driver_id == driver_id)
        }
        catalog = session.query(Achievement).order_by(Achievement.id).all()
        progress = []
        for achievement in catalog:
            award = earned.get(achievement.id)
            if not achievement.is_active and award is None:
                continue
            try:
                criteria = Criteria.from_dict(achievement.criteria)
            except ValidationError:
                logger.warning("Achievement %s has invalid criteria; no progress shown", achievement.id)
                continue
            value = 0.0 if award is not None else source.value(criteria)
            progress.append(build_progress(achievement, criteria, value, award))
    finally:
        session.close()

    progress_cache.store(driver_id, progress)
    return [p.to_dict() for p in progress]


def get_top_achievers(limit: int = 10) -> List[Dict[str, Any]]:
    """Drivers ordered by achievement points, then count."""
    session = get_session()
    try:
        points = func.coalesce(func.sum(Achievement.points), 0)
        count = func.count(DriverAchievement.id)
        rows = (
            session.query(DriverAchievement.driver_id, count, points)
            .join(Achievement, DriverAchievement.achievement_id == Achievement.id)
            .group_by(DriverAchievement.driver_id)
            .order_by(points.desc(), count.desc(), DriverAchievement.driver_id)
            .limit(limit)
            .all()
        )
        return [
            {'driver_id': driver_id, 'achievement_count': n, 'total_points': int(total)}
            for driver_id, n, total in rows
        ]
    finally:
        session.close()
