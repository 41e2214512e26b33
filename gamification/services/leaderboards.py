"""
Leaderboard service — ranking, queries and period rollover.

Every rank rewrite happens inside one transaction that holds a row lock on the
leaderboard (SELECT ... FOR UPDATE), so two score updates for the same board
never interleave partial rank writes. Different boards don't block each other.

Rollover (process_ending_leaderboards), per leaderboard and in one transaction:
  1. final ranks  2. rank-tier bonuses  3. successor board  4. deactivate
"""
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from gamification.config import (
    LEADERBOARD_TYPES, LEADERBOARD_TIMEFRAMES, DEFAULT_BONUS_STRUCTURE,
    LEADERBOARD_ENDING_DAYS,
)
from gamification.database import get_session, utcnow
from gamification.engine.periods import (
    generate_next_period, period_containing, period_name, leaderboard_name,
    periods_overlap, validate_period,
)
from gamification.engine.ranking import (
    apply_dense_ranks, is_notable_rank_change, score_for_leaderboard, get_bonus_amount,
)
from gamification.errors import (
    GamificationError, ValidationError, NotFoundError, ConflictError, DependencyError,
)
from gamification.models.leaderboard import Leaderboard, LeaderboardEntry
from gamification.services import events

logger = logging.getLogger('services.leaderboards')


def _today():
    return utcnow().date()


def _db_error(session, action, exc):
    session.rollback()
    logger.error("Leaderboard %s failed", action, exc_info=True)
    return DependencyError('database', str(exc))


def _lock(session, leaderboard_id) -> Optional[Leaderboard]:
    return (
        session.query(Leaderboard)
        .filter(Leaderboard.id == leaderboard_id)
        .with_for_update()
        .one_or_none()
    )


def _entries(session, leaderboard_id) -> List[LeaderboardEntry]:
    return session.query(LeaderboardEntry).filter_by(leaderboard_id=leaderboard_id).all()


def _with_status(board: Leaderboard, today=None) -> Dict[str, Any]:
    data = board.to_dict()
    data['status'] = board.status(today or _today(), LEADERBOARD_ENDING_DAYS)
    return data


def _chain_overlap(session, leaderboard_type, timeframe, region, start, end, exclude_id=None):
    query = session.query(Leaderboard).filter(
        Leaderboard.leaderboard_type == leaderboard_type,
        Leaderboard.timeframe == timeframe,
        Leaderboard.region.is_(None) if region is None else Leaderboard.region == region,
    )
    if exclude_id is not None:
        query = query.filter(Leaderboard.id != exclude_id)
    for other in query.all():
        if periods_overlap(start, end, other.start_period, other.end_period):
            return other
    return None


# ── Creation ─────────────────────────────────────────────────────────────────

def create_leaderboard(leaderboard_type: str, timeframe: str, start_period: date, end_period: date,
                       region: Optional[str] = None, name: Optional[str] = None,
                       bonus_structure: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Create an active leaderboard. Periods in one (type, timeframe, region) chain can't overlap."""
    if leaderboard_type not in LEADERBOARD_TYPES:
        raise ValidationError(f"Unknown leaderboard_type '{leaderboard_type}'",
                              {'allowed': LEADERBOARD_TYPES})
    if timeframe not in LEADERBOARD_TIMEFRAMES:
        raise ValidationError(f"Unknown timeframe '{timeframe}'",
                              {'allowed': LEADERBOARD_TIMEFRAMES})
    validate_period(start_period, end_period)
    structure = dict(bonus_structure if bonus_structure is not None else DEFAULT_BONUS_STRUCTURE)
    if any(float(v) < 0 for v in structure.values()):
        raise ValidationError("bonus_structure amounts must be non-negative")

    session = get_session()
    try:
        clash = _chain_overlap(session, leaderboard_type, timeframe, region, start_period, end_period)
        if clash is not None:
            raise ConflictError(
                "Leaderboard period overlaps an existing one",
                {'existing_id': clash.id, 'existing_name': clash.name},
            )
        if not name:
            name = leaderboard_name(leaderboard_type, period_name(timeframe, start_period, end_period), region)

        board = Leaderboard(
            name=name,
            leaderboard_type=leaderboard_type,
            timeframe=timeframe,
            region=region,
            start_period=start_period,
            end_period=end_period,
            is_active=True,
            bonus_structure=structure,
            last_updated=utcnow(),
        )
        session.add(board)
        session.commit()
        result = _with_status(board)
    except SQLAlchemyError as e:
        raise _db_error(session, 'create', e) from e
    finally:
        session.close()

    events.publish_event(events.LEADERBOARD_UPDATED, {
        'leaderboard_id': result['id'],
        'action': 'created',
        'name': result['name'],
    })
    logger.info("Created leaderboard %s (%s)", result['id'], result['name'])
    return result


def create_current_leaderboard(leaderboard_type: str, timeframe: str, region: Optional[str] = None,
                               today: Optional[date] = None, **kwargs) -> Dict[str, Any]:
    """Create the calendar-aligned leaderboard covering today."""
    period = period_containing(timeframe, today or _today())
    return create_leaderboard(
        leaderboard_type, timeframe, period.start, period.end, region=region,
        name=leaderboard_name(leaderboard_type, period.name, region), **kwargs,
    )


# ── Queries ──────────────────────────────────────────────────────────────────

def get_leaderboard(leaderboard_id: int) -> Dict[str, Any]:
    session = get_session()
    try:
        board = session.get(Leaderboard, leaderboard_id)
        if board is None:
            raise NotFoundError('Leaderboard', leaderboard_id)
        return _with_status(board)
    finally:
        session.close()


def list_leaderboards(leaderboard_type: Optional[str] = None, timeframe: Optional[str] = None,
                      region: Optional[str] = None, active_only: bool = True) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(Leaderboard)
        if leaderboard_type:
            query = query.filter(Leaderboard.leaderboard_type == leaderboard_type)
        if timeframe:
            query = query.filter(Leaderboard.timeframe == timeframe)
        if region:
            query = query.filter(Leaderboard.region == region)
        if active_only:
            query = query.filter(Leaderboard.is_active.is_(True))
        boards = query.order_by(Leaderboard.start_period.desc(), Leaderboard.id).all()
        return [_with_status(b) for b in boards]
    finally:
        session.close()


def _covering_query(session, day, region=None, match_region=False):
    query = session.query(Leaderboard).filter(
        Leaderboard.is_active.is_(True),
        Leaderboard.start_period <= day,
        Leaderboard.end_period >= day,
    )
    if match_region:
        # Driver's own region plus global boards
        if region:
            query = query.filter(or_(Leaderboard.region.is_(None), Leaderboard.region == region))
        else:
            query = query.filter(Leaderboard.region.is_(None))
    return query


def get_current_leaderboards(region: Optional[str] = None, today: Optional[date] = None) -> List[Dict[str, Any]]:
    """Active leaderboards whose period covers today (optionally for one region + global)."""
    session = get_session()
    try:
        boards = _covering_query(session, today or _today(), region, match_region=region is not None)
        return [_with_status(b, today) for b in boards.order_by(Leaderboard.id).all()]
    finally:
        session.close()


def find_ending_soon(days_threshold: Optional[int] = None, today: Optional[date] = None,
                     timeframe: Optional[str] = None) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        return [_with_status(b, today) for b in _ending_query(session, days_threshold, today, timeframe)]
    finally:
        session.close()


def _ending_query(session, days_threshold, today, timeframe):
    today = today or _today()
    threshold = LEADERBOARD_ENDING_DAYS if days_threshold is None else days_threshold
    query = session.query(Leaderboard).filter(
        Leaderboard.is_active.is_(True),
        Leaderboard.end_period <= today + timedelta(days=threshold),
    )
    if timeframe:
        query = query.filter(Leaderboard.timeframe == timeframe)
    return query.order_by(Leaderboard.end_period, Leaderboard.id).all()


def get_leaderboard_entries(leaderboard_id: int, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
    if page < 1 or page_size < 1 or page_size > 200:
        raise ValidationError("page must be >= 1 and page_size between 1 and 200")
    session = get_session()
    try:
        if session.get(Leaderboard, leaderboard_id) is None:
            raise NotFoundError('Leaderboard', leaderboard_id)
        query = session.query(LeaderboardEntry).filter_by(leaderboard_id=leaderboard_id)
        total = query.count()
        rows = (
            query.order_by(LeaderboardEntry.rank)
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


def get_top_drivers(leaderboard_id: int, limit: int = 10) -> List[Dict[str, Any]]:
    if limit < 1:
        raise ValidationError("limit must be positive")
    return get_leaderboard_entries(leaderboard_id, page=1, page_size=min(limit, 200))['items']


def get_driver_entry(leaderboard_id: int, driver_id: str) -> Dict[str, Any]:
    session = get_session()
    try:
        entry = session.query(LeaderboardEntry).filter_by(
            leaderboard_id=leaderboard_id, driver_id=driver_id,
        ).first()
        if entry is None:
            raise NotFoundError('LeaderboardEntry', f'{leaderboard_id}/{driver_id}')
        return entry.to_dict()
    finally:
        session.close()


def get_driver_leaderboards(driver_id: str, active_only: bool = True) -> List[Dict[str, Any]]:
    """Every leaderboard a driver appears on, with their entry."""
    session = get_session()
    try:
        query = (
            session.query(LeaderboardEntry, Leaderboard)
            .join(Leaderboard, LeaderboardEntry.leaderboard_id == Leaderboard.id)
            .filter(LeaderboardEntry.driver_id == driver_id)
        )
        if active_only:
            query = query.filter(Leaderboard.is_active.is_(True))
        return [
            {**entry.to_dict(), 'leaderboard': _with_status(board)}
            for entry, board in query.order_by(Leaderboard.end_period.desc()).all()
        ]
    finally:
        session.close()


# ── Ranking ──────────────────────────────────────────────────────────────────

def update_driver_ranking(driver_id: str, score: Dict[str, Any], region: Optional[str] = None,
                          driver_name: Optional[str] = None, correlation_id: Optional[str] = None,
                          today: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Upsert the driver on every live leaderboard for their region (+ global) and
    re-rank each board. One transaction per board.
    """
    today = today or _today()
    rank_events = []
    updated = []

    session = get_session()
    try:
        board_ids = [b.id for b in _covering_query(session, today, region, match_region=True).all()]
        session.commit()

        for board_id in board_ids:
            board = _lock(session, board_id)
            if board is None or not board.is_active:
                # Finalized between the scan and the lock
                session.rollback()
                continue

            entries = _entries(session, board_id)
            value = score_for_leaderboard(board.leaderboard_type, score)
            entry = next((e for e in entries if e.driver_id == driver_id), None)
            is_new = entry is None
            if is_new:
                entry = LeaderboardEntry(
                    leaderboard_id=board_id,
                    driver_id=driver_id,
                    driver_name=driver_name or '',
                    score=value,
                    rank=None,
                    rank_change=0,
                    bonus_amount=0.0,
                    bonus_paid=False,
                )
                entries.append(entry)
            else:
                entry.score = value
                if driver_name:
                    entry.driver_name = driver_name

            old_rank = entry.rank
            apply_dense_ranks(entries)
            now = utcnow()
            entry.updated_at = now
            board.last_updated = now
            if is_new:
                session.add(entry)
            session.commit()

            result = entry.to_dict()
            updated.append(result)
            if is_notable_rank_change(old_rank, entry.rank):
                rank_events.append({
                    'leaderboard_id': board_id,
                    'leaderboard_name': board.name,
                    'driver_id': driver_id,
                    'previous_rank': old_rank,
                    'new_rank': entry.rank,
                    'rank_change': entry.rank_change,
                    'score': value,
                })
    except SQLAlchemyError as e:
        raise _db_error(session, f'ranking for driver {driver_id}', e) from e
    finally:
        session.close()

    for payload in rank_events:
        events.publish_event(events.LEADERBOARD_RANK_CHANGED, payload, correlation_id)
    return updated


def recalculate_leaderboard(leaderboard_id: int) -> Dict[str, Any]:
    """Re-rank every entry of an active leaderboard."""
    session = get_session()
    try:
        board = _lock(session, leaderboard_id)
        if board is None:
            raise NotFoundError('Leaderboard', leaderboard_id)
        if not board.is_active:
            raise ConflictError("Leaderboard is finalized; its ranks are frozen",
                                {'leaderboard_id': leaderboard_id})
        entries = _entries(session, leaderboard_id)
        apply_dense_ranks(entries)
        board.last_updated = utcnow()
        session.commit()
        result = {**_with_status(board), 'entries': len(entries)}
    except SQLAlchemyError as e:
        raise _db_error(session, f'recalculation of {leaderboard_id}', e) from e
    finally:
        session.close()

    events.publish_event(events.LEADERBOARD_UPDATED, {
        'leaderboard_id': leaderboard_id,
        'action': 'recalculated',
        'entries': result['entries'],
    })
    return result


# ── Rollover ─────────────────────────────────────────────────────────────────

def _successor(session, board: Leaderboard) -> Tuple[Leaderboard, bool]:
    """Existing or new leaderboard for the next period in the chain."""
    period = generate_next_period(board.timeframe, board.end_period)
    existing = _chain_overlap(
        session, board.leaderboard_type, board.timeframe, board.region,
        period.start, period.end, exclude_id=board.id,
    )
    if existing is not None:
        logger.info("Successor for leaderboard %s already exists (%s)", board.id, existing.id)
        return existing, False

    successor = Leaderboard(
        name=leaderboard_name(board.leaderboard_type, period.name, board.region),
        leaderboard_type=board.leaderboard_type,
        timeframe=board.timeframe,
        region=board.region,
        start_period=period.start,
        end_period=period.end,
        is_active=True,
        bonus_structure=dict(board.bonus_structure or {}),
        last_updated=utcnow(),
    )
    session.add(successor)
    session.flush()
    return successor, True


def finalize_leaderboard(leaderboard_id: int) -> Dict[str, Any]:
    """Final ranks → bonuses → successor → deactivate, atomically."""
    from gamification.services.rewards import pay_leaderboard_rewards

    session = get_session()
    try:
        board = _lock(session, leaderboard_id)
        if board is None:
            raise NotFoundError('Leaderboard', leaderboard_id)
        if not board.is_active:
            raise ConflictError("Leaderboard already finalized", {'leaderboard_id': leaderboard_id})

        entries = _entries(session, leaderboard_id)
        apply_dense_ranks(entries)
        board.last_updated = utcnow()
        session.flush()

        bonuses = pay_leaderboard_rewards(session, board, entries)
        successor, created = _successor(session, board)
        board.is_active = False
        session.commit()

        result = {
            'leaderboard_id': board.id,
            'name': board.name,
            'period': {'start': board.start_period.isoformat(), 'end': board.end_period.isoformat()},
            'next_period': {
                'start': successor.start_period.isoformat(),
                'end': successor.end_period.isoformat(),
            },
            'next_leaderboard_id': successor.id,
            'successor_created': created,
            'bonuses_paid': len(bonuses),
            'total_bonus_amount': sum(b.amount for b in bonuses),
        }
        bonus_payloads = [b.to_dict() for b in bonuses]
        successor_name = successor.name
    except SQLAlchemyError as e:
        raise _db_error(session, f'finalization of {leaderboard_id}', e) from e
    finally:
        session.close()

    for bonus in bonus_payloads:
        events.publish_event(events.REWARD_CREATED, bonus)
    if result['successor_created']:
        events.publish_event(events.LEADERBOARD_UPDATED, {
            'leaderboard_id': result['next_leaderboard_id'],
            'action': 'created',
            'name': successor_name,
        })
    events.publish_event(events.LEADERBOARD_PERIOD_ENDED, result)
    logger.info(
        "Finalized leaderboard %s: %d bonuses, successor %s",
        leaderboard_id, result['bonuses_paid'], result['next_leaderboard_id'],
    )
    return result


def process_ending_leaderboards(days_threshold: Optional[int] = None, today: Optional[date] = None,
                                timeframe: Optional[str] = None) -> Dict[str, Any]:
    """
    Finalize every active leaderboard ending within days_threshold.

    A failure on one leaderboard is logged and counted; the others still run.
    """
    session = get_session()
    try:
        ids = [b.id for b in _ending_query(session, days_threshold, today, timeframe)]
    except SQLAlchemyError as e:
        raise _db_error(session, 'ending scan', e) from e
    finally:
        session.close()

    summary = {'processed': 0, 'failed': 0, 'leaderboards': [], 'errors': []}
    for leaderboard_id in ids:
        try:
            summary['leaderboards'].append(finalize_leaderboard(leaderboard_id))
            summary['processed'] += 1
        except (GamificationError, SQLAlchemyError) as e:
            logger.error("Failed to finalize leaderboard %s", leaderboard_id, exc_info=True)
            summary['failed'] += 1
            summary['errors'].append({'leaderboard_id': leaderboard_id, 'error': str(e)})

    logger.info(
        "Ending leaderboards: %d processed, %d failed",
        summary['processed'], summary['failed'],
    )
    return summary


def preview_bonus(leaderboard_id: int, rank: int) -> float:
    """Payout a rank would earn on this leaderboard at finalization."""
    board = get_leaderboard(leaderboard_id)
    return get_bonus_amount(rank, board['bonus_structure'])
