"""
Engine contracts.

Plain dataclasses passed between the pure engine modules and the services that
persist their output. Nothing in here touches the database or Redis.
"""
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from dateutil import parser

from gamification.errors import ValidationError
from gamification.config import ASSIGNMENT_TYPES


@dataclass
class LoadAssignment:
    """A completed load assignment as delivered by the load service."""
    assignment_id: str
    driver_id: str
    load_id: Optional[str] = None
    assignment_type: str = 'DIRECT'
    status: str = 'COMPLETED'
    rate: float = 0.0
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.assignment_id or not self.driver_id:
            raise ValidationError("assignment_id and driver_id are required")
        self.assignment_type = (self.assignment_type or 'DIRECT').upper()
        if self.assignment_type not in ASSIGNMENT_TYPES:
            raise ValidationError(
                f"Unknown assignment_type '{self.assignment_type}'",
                {'allowed': ASSIGNMENT_TYPES},
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoadAssignment':
        completed_at = data.get('completed_at')
        if isinstance(completed_at, str):
            completed_at = parse_timestamp(completed_at)
        return cls(
            assignment_id=str(data.get('assignment_id') or data.get('id') or ''),
            driver_id=str(data.get('driver_id') or ''),
            load_id=data.get('load_id'),
            assignment_type=data.get('assignment_type', 'DIRECT'),
            status=data.get('status', 'COMPLETED'),
            rate=float(data.get('rate') or 0.0),
            completed_at=completed_at,
        )


@dataclass
class ScoreSnapshot:
    """Output of the score calculator; persisted as one DriverScore row."""
    driver_id: str
    empty_miles_score: float
    network_contribution_score: float
    on_time_score: float
    hub_utilization_score: float
    fuel_efficiency_score: float
    total_score: float
    assignment_id: Optional[str] = None
    load_id: Optional[str] = None
    score_factors: Dict[str, Any] = field(default_factory=dict)
    calculated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Position:
    """A driver GPS fix."""
    latitude: float
    longitude: float
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if not -90 <= self.latitude <= 90 or not -180 <= self.longitude <= 180:
            raise ValidationError(
                "Coordinates out of range",
                {'latitude': self.latitude, 'longitude': self.longitude},
            )


def parse_timestamp(value):
    """ISO-8601 string / datetime / None → naive UTC datetime or None."""
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = parser.isoparse(value)
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid timestamp '{value}'") from e
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def clamp(value, low=0.0, high=100.0):
    return max(low, min(high, value))


def parse_date(value):
    """'YYYY-MM-DD' string / date / datetime / None → date or None."""
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return parser.isoparse(value).date()
    except (ValueError, TypeError) as e:
        raise ValidationError(f"Invalid date '{value}'") from e
