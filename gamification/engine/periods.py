"""
Leaderboard period arithmetic + lifecycle state.

Periods are calendar days with an inclusive end day. Month, quarter and year
boundaries go through dateutil's relativedelta so month lengths and leap years
come out right.

Lifecycle:  ACTIVE → ENDING_SOON → FINALIZED
A successor ACTIVE leaderboard is created when one is finalized.
"""
from dataclasses import dataclass
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from gamification.config import LEADERBOARD_TIMEFRAMES
from gamification.errors import ValidationError

ACTIVE = 'ACTIVE'
ENDING_SOON = 'ENDING_SOON'
FINALIZED = 'FINALIZED'


@dataclass(frozen=True)
class Period:
    start: date
    end: date
    name: str


def _check_timeframe(timeframe):
    if timeframe not in LEADERBOARD_TIMEFRAMES:
        raise ValidationError(
            f"Unknown timeframe '{timeframe}'",
            {'allowed': LEADERBOARD_TIMEFRAMES},
        )


def _weekly_name(start, end):
    if start.year != end.year:
        return f"Weekly {start:%b} {start.day}, {start.year} - {end:%b} {end.day}, {end.year}"
    if start.month != end.month:
        return f"Weekly {start:%b} {start.day} - {end:%b} {end.day}, {end.year}"
    return f"Weekly {start:%b} {start.day}-{end.day}, {end.year}"


def period_name(timeframe, start, end):
    """Human-readable period label, e.g. 'Weekly May 22-28, 2023' or 'Q3 2023'."""
    _check_timeframe(timeframe)
    if timeframe == 'weekly':
        return _weekly_name(start, end)
    if timeframe == 'monthly':
        return f"Monthly {start:%B} {start.year}"
    if timeframe == 'quarterly':
        return f"Q{(start.month - 1) // 3 + 1} {start.year}"
    return f"{start.year} Annual"


def period_end(timeframe, start):
    """Last day of the period that begins on `start`."""
    _check_timeframe(timeframe)
    if timeframe == 'weekly':
        return start + timedelta(days=6)
    if timeframe == 'monthly':
        return start + relativedelta(day=31)
    if timeframe == 'quarterly':
        return start + relativedelta(months=3) - timedelta(days=1)
    return start + relativedelta(years=1) - timedelta(days=1)


def generate_next_period(timeframe, current_end):
    """Successor period starting the day after `current_end`."""
    start = current_end + timedelta(days=1)
    end = period_end(timeframe, start)
    return Period(start=start, end=end, name=period_name(timeframe, start, end))


def period_containing(timeframe, day):
    """Calendar-aligned period covering `day` (weeks start on Monday)."""
    _check_timeframe(timeframe)
    if timeframe == 'weekly':
        start = day - timedelta(days=day.weekday())
    elif timeframe == 'monthly':
        start = day.replace(day=1)
    elif timeframe == 'quarterly':
        start = date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)
    else:
        start = date(day.year, 1, 1)
    end = period_end(timeframe, start)
    return Period(start=start, end=end, name=period_name(timeframe, start, end))


def leaderboard_name(leaderboard_type, name_of_period, region=None):
    label = leaderboard_type.replace('_', ' ').title()
    name = f"{label} {name_of_period}"
    if region:
        name += f" - {region}"
    return name


def periods_overlap(a_start, a_end, b_start, b_end):
    """Inclusive-day overlap test."""
    return a_start <= b_end and b_start <= a_end


def validate_period(start, end):
    if start is None or end is None:
        raise ValidationError("start_period and end_period are required")
    if start >= end:
        raise ValidationError(
            "start_period must be before end_period",
            {'start_period': start.isoformat(), 'end_period': end.isoformat()},
        )


def leaderboard_status(is_active, end_period, today, days_threshold=1):
    if not is_active:
        return FINALIZED
    if end_period <= today + timedelta(days=days_threshold):
        return ENDING_SOON
    return ACTIVE
