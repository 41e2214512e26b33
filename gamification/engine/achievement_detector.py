"""
Achievement criteria evaluation.

A criterion reads one metric, compares it to a threshold with an operator and
reports progress toward it. Score metrics come from a score snapshot; activity
metrics (loads, miles, relays) come from a metrics dict.

additional_params is parsed into a typed params object chosen by the metric
family, so a criterion can only carry keys that mean something for its metric.
"""
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Optional, Union

from gamification.config import ASSIGNMENT_TYPES
from gamification.errors import ValidationError

# metric_type → attribute on the score snapshot
SCORE_METRICS = {
    'efficiency_score': 'total_score',
    'empty_miles_reduction': 'empty_miles_score',
    'network_contribution': 'network_contribution_score',
    'on_time_percentage': 'on_time_score',
    'smart_hub_usage': 'hub_utilization_score',
    'fuel_efficiency': 'fuel_efficiency_score',
}

# metric_type → key in the activity metrics dict
ACTIVITY_METRICS = {
    'loads_completed': 'loads_completed',
    'miles_driven': 'miles_driven',
    'relay_participation': 'relay_participations',
}

METRIC_TYPES = list(SCORE_METRICS) + list(ACTIVITY_METRICS)

OPERATORS = {
    '>=': lambda v, t: v >= t,
    '>': lambda v, t: v > t,
    '=': lambda v, t: math.isclose(v, t, abs_tol=1e-9),
    '==': lambda v, t: math.isclose(v, t, abs_tol=1e-9),
    '<': lambda v, t: v < t,
    '<=': lambda v, t: v <= t,
}

# timeframe → lookback in days (None = all time)
TIMEFRAMES = {
    'all_time': None,
    'daily': 1,
    'weekly': 7,
    'monthly': 30,
    'yearly': 365,
}


# ── Typed criteria ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ScoreMetricParams:
    # Starting point for lower-is-better progress; defaults to threshold * 2
    base_value: Optional[float] = None


@dataclass(frozen=True)
class ActivityMetricParams:
    base_value: Optional[float] = None
    # Only count loads of this assignment type
    assignment_type: Optional[str] = None


MetricParams = Union[ScoreMetricParams, ActivityMetricParams]


def _params_class(metric_type):
    return ScoreMetricParams if metric_type in SCORE_METRICS else ActivityMetricParams


def parse_params(metric_type: str, raw: Optional[Dict[str, Any]]) -> MetricParams:
    cls = _params_class(metric_type)
    raw = dict(raw or {})
    allowed = set(cls.__dataclass_fields__)
    unknown = set(raw) - allowed
    if unknown:
        raise ValidationError(
            f"Unsupported additional_params for {metric_type}",
            {'unknown': sorted(unknown), 'allowed': sorted(allowed)},
        )
    if raw.get('base_value') is not None:
        try:
            raw['base_value'] = float(raw['base_value'])
        except (TypeError, ValueError) as e:
            raise ValidationError("base_value must be numeric") from e
    if raw.get('assignment_type') is not None:
        raw['assignment_type'] = str(raw['assignment_type']).upper()
        if raw['assignment_type'] not in ASSIGNMENT_TYPES:
            raise ValidationError(f"Unknown assignment_type '{raw['assignment_type']}'")
    return cls(**raw)


@dataclass(frozen=True)
class Criteria:
    metric_type: str
    threshold: float
    comparison_operator: str = '>='
    timeframe: str = 'all_time'
    params: MetricParams = field(default_factory=ScoreMetricParams)

    @property
    def is_activity_metric(self) -> bool:
        return self.metric_type in ACTIVITY_METRICS

    @property
    def lookback_days(self) -> Optional[int]:
        return TIMEFRAMES[self.timeframe]

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'Criteria':
        if not isinstance(raw, dict):
            raise ValidationError("criteria must be an object")
        metric_type = raw.get('metric_type')
        if metric_type not in METRIC_TYPES:
            raise ValidationError(
                f"Unknown metric_type '{metric_type}'", {'allowed': METRIC_TYPES},
            )
        operator = raw.get('comparison_operator', '>=')
        if operator not in OPERATORS:
            raise ValidationError(
                f"Unknown comparison_operator '{operator}'", {'allowed': list(OPERATORS)},
            )
        timeframe = raw.get('timeframe', 'all_time')
        if timeframe not in TIMEFRAMES:
            raise ValidationError(
                f"Unknown timeframe '{timeframe}'", {'allowed': list(TIMEFRAMES)},
            )
        try:
            threshold = float(raw['threshold'])
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("criteria.threshold must be numeric") from e

        return cls(
            metric_type=metric_type,
            threshold=threshold,
            comparison_operator=operator,
            timeframe=timeframe,
            params=parse_params(metric_type, raw.get('additional_params')),
        )

    def to_dict(self) -> Dict[str, Any]:
        params = {k: v for k, v in asdict(self.params).items() if v is not None}
        return {
            'metric_type': self.metric_type,
            'threshold': self.threshold,
            'comparison_operator': self.comparison_operator,
            'timeframe': self.timeframe,
            'additional_params': params,
        }


@dataclass
class AchievementProgress:
    """Computed on demand, never persisted."""
    achievement_id: int
    name: str
    current_value: float
    target_value: float
    progress_percentage: float
    is_completed: bool
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['completed_at'] = self.completed_at.isoformat() if self.completed_at else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AchievementProgress':
        data = dict(data)
        if data.get('completed_at'):
            data['completed_at'] = datetime.fromisoformat(data['completed_at'])
        return cls(**data)


# ── Evaluation ───────────────────────────────────────────────────────────────

def extract_metric_value(criteria: Criteria, score: Any = None,
                         metrics: Optional[Dict[str, Any]] = None) -> float:
    """Scalar for the criterion's metric; 0 when the source has nothing."""
    if criteria.metric_type in SCORE_METRICS:
        if score is None:
            return 0.0
        attr = SCORE_METRICS[criteria.metric_type]
        raw = score.get(attr) if isinstance(score, dict) else getattr(score, attr, None)
        return float(raw or 0.0)
    metrics = metrics or {}
    return float(metrics.get(ACTIVITY_METRICS[criteria.metric_type]) or 0.0)


def evaluate_criteria(criteria: Criteria, value: float) -> bool:
    return OPERATORS[criteria.comparison_operator](value, criteria.threshold)


def calculate_progress(criteria: Criteria, value: float) -> float:
    """
    0-100 progress toward the threshold.

    For < / <= the scale is inverted around base_value (default threshold * 2)
    so lower-is-better metrics still climb toward 100.
    """
    threshold = criteria.threshold
    if criteria.comparison_operator in ('<', '<='):
        if value <= threshold:
            return 100.0
        base = criteria.params.base_value
        if base is None:
            base = threshold * 2
        if base <= threshold:
            return 0.0
        progress = (base - value) / (base - threshold) * 100
    else:
        if threshold <= 0:
            return 100.0 if evaluate_criteria(criteria, value) else 0.0
        progress = value / threshold * 100
    return max(0.0, min(100.0, progress))


def build_progress(achievement, criteria: Criteria, value: float, earned=None) -> AchievementProgress:
    """Progress row for one achievement; earned ones are pinned at 100%."""
    if earned is not None:
        return AchievementProgress(
            achievement_id=achievement.id,
            name=achievement.name,
            current_value=criteria.threshold,
            target_value=criteria.threshold,
            progress_percentage=100.0,
            is_completed=True,
            completed_at=earned.earned_at,
        )
    return AchievementProgress(
        achievement_id=achievement.id,
        name=achievement.name,
        current_value=round(value, 2),
        target_value=criteria.threshold,
        progress_percentage=round(calculate_progress(criteria, value), 2),
        is_completed=False,
    )
