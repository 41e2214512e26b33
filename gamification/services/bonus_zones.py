"""
Bonus zone service — admin CRUD + position checks.

Overlapping zones: candidates are ordered by multiplier (highest first), then
start_time, then id. check_position_in_bonus_zone() returns the first match
in that order; find_zones_containing() returns them all.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from gamification.config import (
    DEFAULT_ZONE_RADIUS_KM, MIN_ZONE_RADIUS_KM, MAX_ZONE_RADIUS_KM,
    DEFAULT_ZONE_MULTIPLIER, MIN_ZONE_MULTIPLIER, MAX_ZONE_MULTIPLIER, CIRCLE_POLYGON_POINTS,
)
from gamification.database import get_session, utcnow
from gamification.engine.base import Position, parse_timestamp
from gamification.engine.geo import circle_polygon, contains_point, haversine_km, validate_boundary
from gamification.errors import ValidationError, NotFoundError, DependencyError
from gamification.models.bonus_zone import BonusZone

logger = logging.getLogger('services.bonus_zones')

_EDITABLE_FIELDS = ('name', 'boundary', 'multiplier', 'reason', 'start_time', 'end_time', 'is_active')


def _db_error(session, action, exc):
    session.rollback()
    logger.error("Bonus zone %s failed", action, exc_info=True)
    return DependencyError('database', str(exc))


def _validate_multiplier(multiplier) -> float:
    try:
        multiplier = float(multiplier)
    except (TypeError, ValueError) as e:
        raise ValidationError("multiplier must be numeric") from e
    if not MIN_ZONE_MULTIPLIER <= multiplier <= MAX_ZONE_MULTIPLIER:
        raise ValidationError(
            f"multiplier must be between {MIN_ZONE_MULTIPLIER} and {MAX_ZONE_MULTIPLIER}",
            {'multiplier': multiplier},
        )
    return multiplier


def _validate_window(start_time, end_time):
    start_time, end_time = parse_timestamp(start_time), parse_timestamp(end_time)
    if start_time is None or end_time is None:
        raise ValidationError("start_time and end_time are required")
    if start_time >= end_time:
        raise ValidationError("start_time must be before end_time")
    return start_time, end_time


def _ordered_live_zones(session, now) -> List[BonusZone]:
    return (
        session.query(BonusZone)
        .filter(
            BonusZone.is_active.is_(True),
            BonusZone.start_time <= now,
            BonusZone.end_time > now,
        )
        .order_by(BonusZone.multiplier.desc(), BonusZone.start_time, BonusZone.id)
        .all()
    )


def _save(zone: BonusZone) -> Dict[str, Any]:
    session = get_session()
    try:
        session.add(zone)
        session.commit()
        result = zone.to_dict()
    except SQLAlchemyError as e:
        raise _db_error(session, 'create', e) from e
    finally:
        session.close()
    logger.info("Created bonus zone %s (%s, %.2fx)", result['id'], result['name'], result['multiplier'])
    return result


# ── Admin ────────────────────────────────────────────────────────────────────

def create_bonus_zone(name: str, boundary: List[Dict[str, float]], start_time, end_time,
                      multiplier: float = DEFAULT_ZONE_MULTIPLIER, reason: str = '',
                      is_active: bool = True) -> Dict[str, Any]:
    """Polygon zone; boundary is a list of {lat, lng} vertices."""
    if not (name or '').strip():
        raise ValidationError("name is required")
    vertices = validate_boundary(boundary)
    multiplier = _validate_multiplier(multiplier)
    start_time, end_time = _validate_window(start_time, end_time)
    return _save(BonusZone(
        name=name,
        boundary=vertices,
        multiplier=multiplier,
        reason=reason,
        start_time=start_time,
        end_time=end_time,
        is_active=is_active,
    ))


def create_circular_bonus_zone(name: str, center_lat: float, center_lng: float, start_time, end_time,
                               radius_km: float = DEFAULT_ZONE_RADIUS_KM,
                               multiplier: float = DEFAULT_ZONE_MULTIPLIER,
                               reason: str = '') -> Dict[str, Any]:
    """Circle zone, stored as its polygon approximation."""
    if not (name or '').strip():
        raise ValidationError("name is required")
    center = Position(float(center_lat), float(center_lng))
    try:
        radius_km = float(radius_km)
    except (TypeError, ValueError) as e:
        raise ValidationError("radius_km must be numeric") from e
    if not MIN_ZONE_RADIUS_KM <= radius_km <= MAX_ZONE_RADIUS_KM:
        raise ValidationError(
            f"radius_km must be between {MIN_ZONE_RADIUS_KM} and {MAX_ZONE_RADIUS_KM}",
            {'radius_km': radius_km},
        )
    multiplier = _validate_multiplier(multiplier)
    start_time, end_time = _validate_window(start_time, end_time)

    return _save(BonusZone(
        name=name,
        boundary=circle_polygon(center.latitude, center.longitude, radius_km, CIRCLE_POLYGON_POINTS),
        multiplier=multiplier,
        reason=reason,
        center_lat=center.latitude,
        center_lng=center.longitude,
        radius_km=radius_km,
        start_time=start_time,
        end_time=end_time,
        is_active=True,
    ))


def get_bonus_zone(zone_id: int) -> Dict[str, Any]:
    session = get_session()
    try:
        zone = session.get(BonusZone, zone_id)
        if zone is None:
            raise NotFoundError('BonusZone', zone_id)
        return zone.to_dict()
    finally:
        session.close()


def list_bonus_zones(active_only: bool = False) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(BonusZone)
        if active_only:
            query = query.filter(BonusZone.is_active.is_(True))
        return [z.to_dict() for z in query.order_by(BonusZone.id).all()]
    finally:
        session.close()


def get_active_bonus_zones(now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Zones that are flagged active and inside their time window now."""
    session = get_session()
    try:
        return [z.to_dict() for z in _ordered_live_zones(session, now or utcnow())]
    finally:
        session.close()


def update_bonus_zone(zone_id: int, **changes) -> Dict[str, Any]:
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Unknown bonus zone fields", {'unknown': sorted(unknown)})
    if 'boundary' in changes:
        changes['boundary'] = validate_boundary(changes['boundary'])
    if 'multiplier' in changes:
        changes['multiplier'] = _validate_multiplier(changes['multiplier'])

    session = get_session()
    try:
        zone = session.get(BonusZone, zone_id)
        if zone is None:
            raise NotFoundError('BonusZone', zone_id)
        if 'start_time' in changes or 'end_time' in changes:
            changes['start_time'], changes['end_time'] = _validate_window(
                changes.get('start_time', zone.start_time),
                changes.get('end_time', zone.end_time),
            )
        if 'boundary' in changes:
            # A hand-edited boundary is no longer the stored circle
            zone.center_lat = zone.center_lng = zone.radius_km = None
        for field_name, value in changes.items():
            setattr(zone, field_name, value)
        session.commit()
        return zone.to_dict()
    except SQLAlchemyError as e:
        raise _db_error(session, f'update of {zone_id}', e) from e
    finally:
        session.close()


def deactivate_bonus_zone(zone_id: int) -> Dict[str, Any]:
    return update_bonus_zone(zone_id, is_active=False)


def delete_bonus_zone(zone_id: int):
    session = get_session()
    try:
        zone = session.get(BonusZone, zone_id)
        if zone is None:
            raise NotFoundError('BonusZone', zone_id)
        session.delete(zone)
        session.commit()
    except SQLAlchemyError as e:
        raise _db_error(session, f'delete of {zone_id}', e) from e
    finally:
        session.close()


# ── Position checks ──────────────────────────────────────────────────────────

def find_zones_containing(latitude: float, longitude: float,
                          now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    position = Position(latitude, longitude)
    session = get_session()
    try:
        return [
            zone.to_dict() for zone in _ordered_live_zones(session, now or utcnow())
            if contains_point(zone.boundary, position.latitude, position.longitude)
        ]
    finally:
        session.close()


def check_position_in_bonus_zone(latitude: float, longitude: float,
                                 now: Optional[datetime] = None) -> Dict[str, Any]:
    """{'in_zone': bool, 'zone': first matching zone or None}."""
    position = Position(latitude, longitude)
    session = get_session()
    try:
        for zone in _ordered_live_zones(session, now or utcnow()):
            if contains_point(zone.boundary, position.latitude, position.longitude):
                return {'in_zone': True, 'zone': zone.to_dict()}
        return {'in_zone': False, 'zone': None}
    finally:
        session.close()


def get_bonus_zones_in_radius(latitude: float, longitude: float, radius_km: float,
                              now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Live zones whose first boundary vertex lies within radius_km.

    An approximation: a large zone can overlap the radius without its
    reference vertex being inside it.
    """
    if radius_km is None or radius_km <= 0:
        raise ValidationError("radius_km must be positive")
    position = Position(latitude, longitude)
    session = get_session()
    try:
        matches = []
        for zone in _ordered_live_zones(session, now or utcnow()):
            ref = zone.boundary[0]
            distance = haversine_km(position.latitude, position.longitude, ref['lat'], ref['lng'])
            if distance <= radius_km:
                matches.append({**zone.to_dict(), 'distance_km': round(distance, 3)})
        return matches
    finally:
        session.close()


def calculate_bonus_multiplier(zone: Dict[str, Any]) -> float:
    """Zone multiplier clamped to the allowed range."""
    return max(MIN_ZONE_MULTIPLIER, min(MAX_ZONE_MULTIPLIER, float(zone.get('multiplier') or 1.0)))
