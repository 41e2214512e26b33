"""
Reward coordinator — turns achievements, leaderboard finishes and bonus-zone
visits into DriverBonus records, and tracks their payment.

A bonus is written once per reward event (event_key is unique). After that
only the paid transition happens, through mark_bonus_as_paid().
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from gamification.config import (
    BONUS_ZONE_BASE_AMOUNT, MAX_BONUS_RANK, FUEL_DISCOUNT_TIERS, DEFAULT_FUEL_PURCHASE,
)
from gamification.database import get_session, utcnow
from gamification.engine.base import Position
from gamification.engine.ranking import get_bonus_amount
from gamification.errors import (
    GamificationError, ValidationError, NotFoundError, ConflictError, DependencyError,
)
from gamification.models.achievement import Achievement
from gamification.models.bonus_zone import BonusZone
from gamification.models.driver_bonus import DriverBonus
from gamification.models.leaderboard import Leaderboard, LeaderboardEntry
from gamification.services import events, payments, scores, achievements, bonus_zones, leaderboards

logger = logging.getLogger('services.rewards')

SOURCE_TYPES = ('achievement', 'leaderboard', 'bonus_zone')


def _event_key(source_type, source_id, driver_id, assignment_id=None):
    return f'{source_type}:{source_id}:{driver_id}:{assignment_id or "-"}'


def _db_error(session, action, exc):
    session.rollback()
    logger.error("Reward %s failed", action, exc_info=True)
    return DependencyError('database', str(exc))


# ── Fuel discounts (pure) ────────────────────────────────────────────────────

def get_fuel_discount(total_score: Optional[float], purchase_amount: float = DEFAULT_FUEL_PURCHASE) -> Dict[str, float]:
    """Score-threshold discount table; informational, never stored as a bonus."""
    if purchase_amount < 0:
        raise ValidationError("purchase_amount must be non-negative")
    rate = 0.0
    for min_score, discount in FUEL_DISCOUNT_TIERS:
        if total_score is not None and total_score >= min_score:
            rate = discount
            break
    return {
        'discount_percentage': rate * 100,
        'discount_amount': round(purchase_amount * rate, 2),
        'purchase_amount': purchase_amount,
    }


def get_driver_fuel_discount(driver_id: str, purchase_amount: float = DEFAULT_FUEL_PURCHASE) -> Dict[str, Any]:
    latest = scores.get_latest_score_or_none(driver_id)
    total = latest['total_score'] if latest else None
    return {'driver_id': driver_id, 'total_score': total, **get_fuel_discount(total, purchase_amount)}


# ── Bonus creation ───────────────────────────────────────────────────────────

def _validate_source(session, source_type, source_id):
    if source_type == 'achievement':
        source = session.get(Achievement, source_id)
        if source is None:
            raise NotFoundError('Achievement', source_id)
        if not source.is_active:
            raise ValidationError("Achievement is no longer active", {'achievement_id': source_id})
    elif source_type == 'leaderboard':
        source = session.get(Leaderboard, source_id)
        if source is None:
            raise NotFoundError('Leaderboard', source_id)
    else:
        source = session.get(BonusZone, source_id)
        if source is None:
            raise NotFoundError('BonusZone', source_id)
        if not source.is_active:
            raise ValidationError("Bonus zone is no longer active", {'zone_id': source_id})
    return source


def _find_bonus(session, event_key) -> Optional[DriverBonus]:
    return session.query(DriverBonus).filter_by(event_key=event_key).first()


def create_bonus_for_driver(driver_id: str, source_type: str, source_id: int, amount: float,
                            reason: str, assignment_id: Optional[str] = None,
                            correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Record a bonus for one reward event and publish REWARD_CREATED.

    Replaying the same event returns the existing bonus without a new event.
    """
    if not driver_id:
        raise ValidationError("driver_id is required")
    if source_type not in SOURCE_TYPES:
        raise ValidationError(f"Unknown source_type '{source_type}'", {'allowed': list(SOURCE_TYPES)})
    try:
        amount = round(float(amount), 2)
    except (TypeError, ValueError) as e:
        raise ValidationError("amount must be numeric") from e
    if amount < 0:
        raise ValidationError("amount must be non-negative", {'amount': amount})

    key = _event_key(source_type, source_id, driver_id, assignment_id)
    session = get_session()
    try:
        _validate_source(session, source_type, source_id)
        existing = _find_bonus(session, key)
        if existing is not None:
            logger.info("Bonus for %s already recorded (id=%s)", key, existing.id)
            return existing.to_dict()

        bonus = DriverBonus(
            driver_id=driver_id,
            source_type=source_type,
            source_id=source_id,
            assignment_id=assignment_id,
            amount=amount,
            reason=reason,
            paid=False,
            earned_at=utcnow(),
            event_key=key,
        )
        session.add(bonus)
        try:
            session.commit()
        except IntegrityError:
            # Lost a race with a concurrent writer of the same event
            session.rollback()
            logger.info("Bonus for %s was recorded concurrently", key)
            return _find_bonus(session, key).to_dict()
        result = bonus.to_dict()
    except SQLAlchemyError as e:
        raise _db_error(session, f'create for {key}', e) from e
    finally:
        session.close()

    events.publish_event(events.REWARD_CREATED, result, correlation_id)
    logger.info("Created %s bonus %s for driver %s: $%.2f", source_type, result['id'], driver_id, amount)
    return result


def process_achievement_reward(driver_id: str, achievement_id: int,
                               correlation_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Pay achievement.points; None when the achievement carries no points."""
    achievement = achievements.get_achievement(achievement_id)
    if achievement['points'] <= 0:
        return None
    return create_bonus_for_driver(
        driver_id, 'achievement', achievement_id, achievement['points'],
        f"Achievement reward: {achievement['name']}",
        correlation_id=correlation_id,
    )


def process_bonus_zone_reward(driver_id: str, zone_id: int, assignment_id: Optional[str] = None,
                              correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """Pay the multiplier-derived amount for a load delivered inside a zone."""
    zone = bonus_zones.get_bonus_zone(zone_id)
    amount = BONUS_ZONE_BASE_AMOUNT * bonus_zones.calculate_bonus_multiplier(zone)
    return create_bonus_for_driver(
        driver_id, 'bonus_zone', zone_id, amount,
        f"Bonus zone reward: {zone['name']} ({zone['multiplier']}x)",
        assignment_id=assignment_id,
        correlation_id=correlation_id,
    )


def pay_leaderboard_rewards(session, board: Leaderboard,
                            entries: Optional[List[LeaderboardEntry]] = None) -> List[DriverBonus]:
    """
    Add rank-tier bonuses for a leaderboard's entries to the open session.

    The caller holds the leaderboard lock and commits. Entries already paid
    (bonus_paid) or already holding a bonus record are skipped.
    """
    if entries is None:
        entries = session.query(LeaderboardEntry).filter_by(leaderboard_id=board.id).all()
    recorded = {
        key for (key,) in session.query(DriverBonus.event_key).filter(
            DriverBonus.source_type == 'leaderboard',
            DriverBonus.source_id == board.id,
        )
    }
    now = utcnow()
    created = []
    for entry in sorted(entries, key=lambda e: e.rank):
        if entry.rank > MAX_BONUS_RANK:
            break
        amount = get_bonus_amount(entry.rank, board.bonus_structure)
        if amount <= 0 or entry.bonus_paid:
            continue
        entry.bonus_amount = amount
        entry.bonus_paid = True
        key = _event_key('leaderboard', board.id, entry.driver_id)
        if key in recorded:
            continue
        bonus = DriverBonus(
            driver_id=entry.driver_id,
            source_type='leaderboard',
            source_id=board.id,
            amount=amount,
            reason=f"Leaderboard reward for rank {entry.rank} in {board.name}",
            paid=False,
            earned_at=now,
            event_key=key,
        )
        session.add(bonus)
        created.append(bonus)
    session.flush()
    logger.info("Leaderboard %s: %d rank bonuses recorded", board.id, len(created))
    return created


def process_leaderboard_rewards(leaderboard_id: int) -> Dict[str, Any]:
    """Catch-up payout for a finalized leaderboard; live boards pay at finalization."""
    session = get_session()
    try:
        board = (
            session.query(Leaderboard)
            .filter(Leaderboard.id == leaderboard_id)
            .with_for_update()
            .one_or_none()
        )
        if board is None:
            raise NotFoundError('Leaderboard', leaderboard_id)
        if board.is_active:
            raise ConflictError("Leaderboard is still active; bonuses are paid when it is finalized",
                                {'leaderboard_id': leaderboard_id})
        created = pay_leaderboard_rewards(session, board)
        session.commit()
        payloads = [b.to_dict() for b in created]
    except SQLAlchemyError as e:
        raise _db_error(session, f'leaderboard payout {leaderboard_id}', e) from e
    finally:
        session.close()

    for payload in payloads:
        events.publish_event(events.REWARD_CREATED, payload)
    return {
        'leaderboard_id': leaderboard_id,
        'bonuses_created': len(payloads),
        'total_amount': sum(p['amount'] for p in payloads),
    }


def process_timeframe_bonuses(timeframe: str, today=None) -> Dict[str, Any]:
    """
    Weekly / monthly bonus run: finalize and pay every board of the timeframe
    whose period is over. A board is still live on its last (inclusive) day,
    so only boards with end_period before today are picked up.
    """
    if timeframe not in ('weekly', 'monthly'):
        raise ValidationError("timeframe must be 'weekly' or 'monthly'", {'timeframe': timeframe})
    return leaderboards.process_ending_leaderboards(days_threshold=-1, today=today, timeframe=timeframe)


# ── Payment ──────────────────────────────────────────────────────────────────

def mark_bonus_as_paid(bonus_id: int, correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Idempotent: an already-paid bonus is returned unchanged and no event fires.

    The transfer runs before the row lock is taken, so a slow payment service
    never holds the lock. Two concurrent payers both call the payment service
    with the same idempotency key (the bonus event_key); the service pays once
    and only the first to lock the row records the payment.
    """
    session = get_session()
    try:
        bonus = session.get(DriverBonus, bonus_id)
        if bonus is None:
            raise NotFoundError('DriverBonus', bonus_id)
        pending, event_key = bonus.to_dict(), bonus.event_key
    finally:
        session.close()
    if pending['paid']:
        return pending
    reference = payments.transfer_bonus(pending, idempotency_key=event_key)

    session = get_session()
    try:
        bonus = (
            session.query(DriverBonus)
            .filter(DriverBonus.id == bonus_id)
            .with_for_update()
            .one_or_none()
        )
        if bonus is None:
            raise NotFoundError('DriverBonus', bonus_id)
        if bonus.paid:
            return bonus.to_dict()

        bonus.paid = True
        bonus.paid_at = utcnow()
        bonus.payout_reference = reference
        session.commit()
        result = bonus.to_dict()
    except GamificationError:
        session.rollback()
        raise
    except SQLAlchemyError as e:
        raise _db_error(session, f'payment of bonus {bonus_id}', e) from e
    finally:
        session.close()

    events.publish_event(events.REWARD_ISSUED, result, correlation_id)
    return result


def process_bonus_payouts(driver_id: Optional[str] = None, limit: int = 500) -> Dict[str, Any]:
    """Pay out unpaid bonuses one by one; failures are counted, not fatal."""
    summary = {'processed': 0, 'failed': 0, 'total_amount': 0.0, 'errors': []}
    for bonus in get_unpaid_bonuses(driver_id, limit=limit):
        try:
            paid = mark_bonus_as_paid(bonus['id'])
            summary['processed'] += 1
            summary['total_amount'] += paid['amount']
        except GamificationError as e:
            logger.error("Payout failed for bonus %s: %s", bonus['id'], e)
            summary['failed'] += 1
            summary['errors'].append({'bonus_id': bonus['id'], 'error': str(e)})
    logger.info("Bonus payouts: %d processed, %d failed", summary['processed'], summary['failed'])
    return summary


# ── Queries ──────────────────────────────────────────────────────────────────

def get_driver_bonuses(driver_id: str, paid: Optional[bool] = None,
                       start: Optional[datetime] = None, end: Optional[datetime] = None,
                       min_amount: Optional[float] = None,
                       max_amount: Optional[float] = None) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(DriverBonus).filter(DriverBonus.driver_id == driver_id)
        if paid is not None:
            query = query.filter(DriverBonus.paid.is_(paid))
        if start is not None:
            query = query.filter(DriverBonus.earned_at >= start)
        if end is not None:
            query = query.filter(DriverBonus.earned_at < end)
        if min_amount is not None:
            query = query.filter(DriverBonus.amount >= min_amount)
        if max_amount is not None:
            query = query.filter(DriverBonus.amount <= max_amount)
        rows = query.order_by(DriverBonus.earned_at.desc(), DriverBonus.id.desc()).all()
        return [r.to_dict() for r in rows]
    finally:
        session.close()


def get_driver_bonus(bonus_id: int) -> Dict[str, Any]:
    session = get_session()
    try:
        bonus = session.get(DriverBonus, bonus_id)
        if bonus is None:
            raise NotFoundError('DriverBonus', bonus_id)
        return bonus.to_dict()
    finally:
        session.close()


def get_unpaid_bonuses(driver_id: Optional[str] = None, limit: int = 500) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(DriverBonus).filter(DriverBonus.paid.is_(False))
        if driver_id:
            query = query.filter(DriverBonus.driver_id == driver_id)
        rows = query.order_by(DriverBonus.earned_at, DriverBonus.id).limit(limit).all()
        return [r.to_dict() for r in rows]
    finally:
        session.close()


def get_total_unpaid_amount(driver_id: str) -> float:
    session = get_session()
    try:
        total = (
            session.query(func.coalesce(func.sum(DriverBonus.amount), 0.0))
            .filter(DriverBonus.driver_id == driver_id, DriverBonus.paid.is_(False))
            .scalar()
        )
        return float(total or 0.0)
    finally:
        session.close()


def get_driver_reward_summary(driver_id: str, start: Optional[datetime] = None,
                              end: Optional[datetime] = None) -> Dict[str, Any]:
    """Totals, paid/unpaid split and per-source breakdown over [start, end)."""
    if start is not None and end is not None and start >= end:
        raise ValidationError("start must be before end")
    bonuses = get_driver_bonuses(driver_id, start=start, end=end)

    by_source = {source: {'count': 0, 'amount': 0.0} for source in SOURCE_TYPES}
    paid_amount = unpaid_amount = 0.0
    for bonus in bonuses:
        bucket = by_source.setdefault(bonus['source_type'], {'count': 0, 'amount': 0.0})
        bucket['count'] += 1
        bucket['amount'] += bonus['amount']
        if bonus['paid']:
            paid_amount += bonus['amount']
        else:
            unpaid_amount += bonus['amount']

    return {
        'driver_id': driver_id,
        'period': {
            'start': start.isoformat() if start else None,
            'end': end.isoformat() if end else None,
        },
        'bonus_count': len(bonuses),
        'total_amount': round(paid_amount + unpaid_amount, 2),
        'paid_amount': round(paid_amount, 2),
        'unpaid_amount': round(unpaid_amount, 2),
        'by_source': by_source,
        'fuel_discount': get_driver_fuel_discount(driver_id),
    }


# ── Activity entry points ────────────────────────────────────────────────────

def process_load_completion(assignment: Dict[str, Any], metrics: Optional[Dict[str, Any]] = None,
                            region: Optional[str] = None, driver_name: Optional[str] = None,
                            delivery_position: Optional[Dict[str, float]] = None,
                            correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Completed load → score (+ ranking) → achievements → rewards.

    Score and achievement failures propagate. Individual reward failures are
    logged and reported so one bad bonus doesn't hide the rest.
    """
    score = scores.calculate_score_for_load(
        assignment, metrics, region=region, driver_name=driver_name,
        correlation_id=correlation_id,
    )
    driver_id = score['driver_id']
    earned = achievements.detect_achievements(
        driver_id, score=score, metrics=metrics, correlation_id=correlation_id,
    )

    result = {'score': score, 'achievements': earned, 'bonuses': [], 'errors': []}
    for award in earned:
        try:
            bonus = process_achievement_reward(driver_id, award['achievement_id'], correlation_id)
            if bonus:
                result['bonuses'].append(bonus)
        except GamificationError as e:
            logger.error("Achievement reward failed for driver %s: %s", driver_id, e)
            result['errors'].append({'achievement_id': award['achievement_id'], 'error': str(e)})

    if delivery_position:
        position = Position(delivery_position['latitude'], delivery_position['longitude'])
        match = bonus_zones.check_position_in_bonus_zone(position.latitude, position.longitude)
        if match['in_zone']:
            try:
                result['bonuses'].append(process_bonus_zone_reward(
                    driver_id, match['zone']['id'], score['assignment_id'], correlation_id,
                ))
            except GamificationError as e:
                logger.error("Bonus zone reward failed for driver %s: %s", driver_id, e)
                result['errors'].append({'zone_id': match['zone']['id'], 'error': str(e)})
    return result


def process_position_update(driver_id: str, latitude: float, longitude: float,
                            assignment_id: Optional[str] = None,
                            correlation_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Zone check for a GPS fix. Pays only when the fix belongs to an assignment,
    and at most once per (zone, assignment).
    """
    position = Position(latitude, longitude)
    match = bonus_zones.check_position_in_bonus_zone(position.latitude, position.longitude)
    result = {'driver_id': driver_id, 'in_zone': match['in_zone'], 'zone': match['zone'], 'bonus': None}
    if match['in_zone'] and assignment_id:
        result['bonus'] = process_bonus_zone_reward(
            driver_id, match['zone']['id'], assignment_id, correlation_id,
        )
    return result
