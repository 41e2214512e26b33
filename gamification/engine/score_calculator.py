"""
Driver efficiency scoring — 5-factor weighted score for a completed load.

Components (each 0-100):
  empty miles        — reduction vs. the driver's regional baseline
  network            — contribution to network balance + assignment type bonus
  on-time            — pickup/delivery deviation vs. the allowed window
  hub utilization    — smart hub exchange quality, or historical hub usage
  fuel efficiency    — consumption or MPG vs. expected, idling, eco driving

Pure: takes a LoadAssignment + metrics dict, returns a ScoreSnapshot.
Persistence, ranking and events are done by services.scores.
"""
import os
import logging
from typing import Any, Dict, Iterable, Optional

import yaml

from gamification.database import utcnow
from gamification.engine.base import LoadAssignment, ScoreSnapshot, clamp, parse_timestamp
from gamification.errors import ValidationError

logger = logging.getLogger('engine.score_calculator')

COMPONENTS = [
    'empty_miles',
    'network_contribution',
    'on_time',
    'hub_utilization',
    'fuel_efficiency',
]

NEUTRAL_SCORE = 50.0


# ── Scoring config (YAML with hardcoded fallback) ────────────────────────────

_scoring_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing or invalid."""
    return {
        'version': 'default',
        'weights': {
            'empty_miles': 0.30,
            'network_contribution': 0.25,
            'on_time': 0.20,
            'hub_utilization': 0.15,
            'fuel_efficiency': 0.10,
        },
        'regional_baselines': {
            'NORTHEAST': 0.35,
            'SOUTHEAST': 0.32,
            'MIDWEST': 0.38,
            'SOUTHWEST': 0.36,
            'WEST': 0.34,
            'DEFAULT': 0.35,
        },
        'on_time': {
            'default_window_minutes': 240,
            'pickup_weight': 0.4,
            'delivery_weight': 0.6,
            'incomplete_data_score': 70,
        },
        'hub_exchange': {
            'default_efficiency': 0.8,
            'default_duration_minutes': 30,
            'ideal_duration_minutes': 20,
            'penalty_floor': 70,
        },
        'fuel': {
            'base': 70,
            'ratio_sensitivity': 200,
            'max_idling_penalty': 10,
            'max_eco_bonus': 10,
            'missing_data_score': 50,
        },
    }


def _weights_valid(weights) -> bool:
    if not isinstance(weights, dict) or set(weights) != set(COMPONENTS):
        return False
    return abs(sum(weights.values()) - 1.0) < 1e-6


def load_scoring_config():
    """Load scoring config from YAML, with in-memory cache and hardcoded fallback."""
    global _scoring_config
    if _scoring_config is not None:
        return _scoring_config

    config_path = os.path.join(os.path.dirname(__file__), 'scoring_config.yaml')
    try:
        with open(config_path, 'r') as f:
            loaded = yaml.safe_load(f)
        if not _weights_valid(loaded.get('weights')):
            raise ValueError("weights must cover all components and sum to 1.0")
        _scoring_config = loaded
        logger.info("Scoring config loaded from YAML (version=%s)", loaded.get('version', '?'))
    except Exception as e:
        logger.warning("Scoring config unusable (%s), using defaults", e)
        _scoring_config = _default_config()

    return _scoring_config


def get_weights() -> Dict[str, float]:
    return dict(load_scoring_config()['weights'])


def get_regional_baseline(region: Optional[str]) -> float:
    baselines = load_scoring_config()['regional_baselines']
    return baselines.get((region or '').upper(), baselines['DEFAULT'])


# ── Components ───────────────────────────────────────────────────────────────

def calculate_empty_miles_score(metrics: Dict[str, Any]) -> float:
    """50 at the regional baseline, +0.5 per percent of reduction below it."""
    baseline = get_regional_baseline(metrics.get('region'))
    empty_pct = metrics.get('empty_miles_percentage') or 0.0
    reduction = (baseline - empty_pct) / baseline * 100
    return clamp(50 + 0.5 * reduction)


def calculate_network_contribution_score(assignment: LoadAssignment, metrics: Dict[str, Any]) -> float:
    score = 50.0
    score += clamp(metrics.get('network_impact') or 0.0, -50, 50)
    score += clamp(metrics.get('load_balancing_contribution') or 0.0, 0, 20)
    if metrics.get('high_demand_area_service'):
        score += 15
    utilization = metrics.get('capacity_utilization')
    if utilization is None:
        utilization = 0.7
    score += min(10.0, max(0.0, utilization) * 10)
    score += clamp(metrics.get('strategic_value') or 0.0, 0, 20)

    if assignment.assignment_type == 'RELAY':
        score += 10
    elif assignment.assignment_type == 'SMART_HUB_EXCHANGE':
        score += 15

    return clamp(score)


def _leg_score(scheduled, actual, window_minutes) -> float:
    deviation = (actual - scheduled).total_seconds() / 60
    if deviation <= 0:
        return 100.0
    if deviation <= window_minutes:
        return 80.0
    excess_pct = (deviation - window_minutes) / window_minutes * 100
    return max(0.0, 80 - excess_pct)


def calculate_on_time_score(metrics: Dict[str, Any]) -> float:
    """Pickup 40% / delivery 60%. Incomplete timing data is non-fatal."""
    cfg = load_scoring_config()['on_time']
    keys = (
        'scheduled_pickup_time', 'actual_pickup_time',
        'scheduled_delivery_time', 'actual_delivery_time',
    )
    times = {k: parse_timestamp(metrics.get(k)) for k in keys}
    if any(v is None for v in times.values()):
        logger.warning("Incomplete timing data, using default on-time score")
        return float(cfg['incomplete_data_score'])

    default_window = cfg['default_window_minutes']
    pickup = _leg_score(
        times['scheduled_pickup_time'], times['actual_pickup_time'],
        metrics.get('pickup_window_minutes') or default_window,
    )
    delivery = _leg_score(
        times['scheduled_delivery_time'], times['actual_delivery_time'],
        metrics.get('delivery_window_minutes') or default_window,
    )
    return clamp(pickup * cfg['pickup_weight'] + delivery * cfg['delivery_weight'])


def calculate_hub_utilization_score(assignment: LoadAssignment, metrics: Dict[str, Any]) -> float:
    if assignment.assignment_type == 'SMART_HUB_EXCHANGE':
        cfg = load_scoring_config()['hub_exchange']
        efficiency = metrics.get('exchange_efficiency')
        if efficiency is None:
            efficiency = cfg['default_efficiency']
        duration = metrics.get('exchange_duration')
        if duration is None:
            duration = cfg['default_duration_minutes']
        ideal = metrics.get('ideal_exchange_duration') or cfg['ideal_duration_minutes']

        score = 85 + clamp(efficiency, 0, 1) * 10
        if duration > ideal:
            score = max(cfg['penalty_floor'], score - (duration - ideal) * 0.5)
        else:
            score += min(5.0, (ideal - duration) * 0.5)
        return clamp(score)

    historical = clamp(metrics.get('historical_hub_utilization') or 0.0, 0, 1)
    visits = metrics.get('recent_hub_visits') or 0
    total_loads = metrics.get('total_loads') or 1
    visit_ratio = min(1.0, visits / total_loads)
    return clamp(40 + historical * 30 + visit_ratio * 30)


def calculate_fuel_efficiency_score(metrics: Dict[str, Any]) -> float:
    """Consumption ratio when available, else MPG ratio; 50 when neither is."""
    cfg = load_scoring_config()['fuel']
    actual = metrics.get('actual_fuel_consumed')
    expected = metrics.get('expected_fuel_consumption')
    mpg = metrics.get('miles_per_gallon')
    expected_mpg = metrics.get('expected_miles_per_gallon')

    if actual and expected:
        score = cfg['base'] - (actual / expected - 1) * cfg['ratio_sensitivity']
    elif mpg and expected_mpg:
        score = cfg['base'] + (mpg / expected_mpg - 1) * cfg['ratio_sensitivity']
    else:
        logger.warning("No fuel data available, using default fuel score")
        return float(cfg['missing_data_score'])

    idling_minutes = metrics.get('idling_time') or 0
    score -= min(cfg['max_idling_penalty'], idling_minutes / 30)
    eco = metrics.get('eco_driver_behavior') or 0
    score += min(cfg['max_eco_bonus'], max(0, eco) / 10)
    return clamp(score)


def calculate_total_score(components: Dict[str, float], weights: Optional[Dict[str, float]] = None) -> float:
    weights = weights or get_weights()
    return clamp(sum(components[name] * weights[name] for name in COMPONENTS))


# ── Snapshot ─────────────────────────────────────────────────────────────────

def _score_factors(assignment: LoadAssignment, metrics: Dict[str, Any]) -> Dict[str, Any]:
    baseline = get_regional_baseline(metrics.get('region'))
    empty_pct = metrics.get('empty_miles_percentage') or 0.0

    def _on_time(scheduled_key, actual_key):
        scheduled = parse_timestamp(metrics.get(scheduled_key))
        actual = parse_timestamp(metrics.get(actual_key))
        if scheduled is None or actual is None:
            return None
        return actual <= scheduled

    return {
        'assignment_type': assignment.assignment_type,
        'region': metrics.get('region'),
        'empty_miles_reduction': round((baseline - empty_pct) / baseline * 100, 2),
        'network_impact': metrics.get('network_impact') or 0.0,
        'pickup_on_time': _on_time('scheduled_pickup_time', 'actual_pickup_time'),
        'delivery_on_time': _on_time('scheduled_delivery_time', 'actual_delivery_time'),
        'smart_hub_used': assignment.assignment_type == 'SMART_HUB_EXCHANGE',
        'fuel_efficiency': metrics.get('miles_per_gallon'),
        'miles_driven': metrics.get('miles_driven') or 0.0,
        'rate': assignment.rate,
    }


def calculate_driver_score(assignment: LoadAssignment, metrics: Optional[Dict[str, Any]] = None) -> ScoreSnapshot:
    """Score one completed load. Raises ValidationError on malformed input only."""
    metrics = metrics or {}
    components = {
        'empty_miles': calculate_empty_miles_score(metrics),
        'network_contribution': calculate_network_contribution_score(assignment, metrics),
        'on_time': calculate_on_time_score(metrics),
        'hub_utilization': calculate_hub_utilization_score(assignment, metrics),
        'fuel_efficiency': calculate_fuel_efficiency_score(metrics),
    }
    total = calculate_total_score(components)

    logger.debug(
        "Scored driver %s assignment %s: total=%.2f",
        assignment.driver_id, assignment.assignment_id, total,
    )
    return ScoreSnapshot(
        driver_id=assignment.driver_id,
        assignment_id=assignment.assignment_id,
        load_id=assignment.load_id,
        empty_miles_score=round(components['empty_miles'], 2),
        network_contribution_score=round(components['network_contribution'], 2),
        on_time_score=round(components['on_time'], 2),
        hub_utilization_score=round(components['hub_utilization'], 2),
        fuel_efficiency_score=round(components['fuel_efficiency'], 2),
        total_score=round(total, 2),
        score_factors=_score_factors(assignment, metrics),
        calculated_at=utcnow(),
    )


def snapshot_from_components(driver_id: str, components: Dict[str, float],
                             factors: Optional[Dict[str, Any]] = None) -> ScoreSnapshot:
    """Build a snapshot from already-known component scores (manual adjustments)."""
    missing = [name for name in COMPONENTS if name not in components]
    if missing:
        raise ValidationError("Missing component scores", {'missing': missing})
    clamped = {name: clamp(float(components[name])) for name in COMPONENTS}
    return ScoreSnapshot(
        driver_id=driver_id,
        empty_miles_score=round(clamped['empty_miles'], 2),
        network_contribution_score=round(clamped['network_contribution'], 2),
        on_time_score=round(clamped['on_time'], 2),
        hub_utilization_score=round(clamped['hub_utilization'], 2),
        fuel_efficiency_score=round(clamped['fuel_efficiency'], 2),
        total_score=round(calculate_total_score(clamped), 2),
        score_factors=factors or {},
        calculated_at=utcnow(),
    )


def calculate_historical_score(driver_id: str, scores: Iterable[Any], start=None, end=None) -> ScoreSnapshot:
    """
    Average stored snapshots over a period. Neutral 50s when there are none.

    `scores` are DriverScore rows (anything with the *_score attributes).
    """
    scores = list(scores)
    factors = {
        'period_start': start.isoformat() if start else None,
        'period_end': end.isoformat() if end else None,
        'scores_count': len(scores),
    }
    if not scores:
        return snapshot_from_components(
            driver_id, {name: NEUTRAL_SCORE for name in COMPONENTS}, factors,
        )

    averaged = {
        name: sum(getattr(s, f'{name}_score') for s in scores) / len(scores)
        for name in COMPONENTS
    }
    return snapshot_from_components(driver_id, averaged, factors)
