"""Tests for gamification.engine.achievement_detector -- criteria and progress."""
import pytest
from datetime import datetime
from types import SimpleNamespace

from gamification.engine.achievement_detector import (
    Criteria, ScoreMetricParams, ActivityMetricParams, AchievementProgress,
    extract_metric_value, evaluate_criteria, calculate_progress, build_progress,
)
from gamification.errors import ValidationError


def _criteria(**overrides):
    raw = {'metric_type': 'efficiency_score', 'threshold': 80, 'comparison_operator': '>='}
    raw.update(overrides)
    return Criteria.from_dict(raw)


class TestCriteriaParsing:

    def test_defaults(self):
        criteria = Criteria.from_dict({'metric_type': 'on_time_percentage', 'threshold': '95'})
        assert criteria.threshold == 95.0
        assert criteria.comparison_operator == '>='
        assert criteria.timeframe == 'all_time'
        assert criteria.lookback_days is None
        assert isinstance(criteria.params, ScoreMetricParams)

    def test_activity_metric_gets_activity_params(self):
        criteria = _criteria(metric_type='relay_participation', threshold=10,
                             additional_params={'assignment_type': 'relay'})
        assert criteria.is_activity_metric
        assert isinstance(criteria.params, ActivityMetricParams)
        assert criteria.params.assignment_type == 'RELAY'

    def test_weekly_lookback(self):
        assert _criteria(timeframe='weekly').lookback_days == 7

    @pytest.mark.parametrize('bad', [
        {'metric_type': 'karma'},
        {'comparison_operator': '!='},
        {'timeframe': 'hourly'},
        {'threshold': 'lots'},
    ])
    def test_invalid_fields_rejected(self, bad):
        with pytest.raises(ValidationError):
            _criteria(**bad)

    def test_missing_threshold_rejected(self):
        with pytest.raises(ValidationError):
            Criteria.from_dict({'metric_type': 'efficiency_score'})

    def test_unknown_params_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _criteria(additional_params={'favourite_colour': 'blue'})
        assert 'favourite_colour' in exc.value.details['unknown']

    def test_assignment_type_not_allowed_on_score_metrics(self):
        with pytest.raises(ValidationError):
            _criteria(additional_params={'assignment_type': 'DIRECT'})

    def test_unknown_assignment_type_rejected(self):
        with pytest.raises(ValidationError):
            _criteria(metric_type='loads_completed', additional_params={'assignment_type': 'TELEPORT'})

    def test_to_dict_drops_empty_params(self):
        assert _criteria().to_dict()['additional_params'] == {}


class TestEvaluate:

    def test_greater_or_equal(self):
        criteria = _criteria()
        assert evaluate_criteria(criteria, 80)
        assert not evaluate_criteria(criteria, 79.99)

    def test_equality_tolerates_float_noise(self):
        assert evaluate_criteria(_criteria(comparison_operator='=', threshold=0.3), 0.1 + 0.2)

    def test_lower_is_better(self):
        criteria = _criteria(metric_type='empty_miles_reduction', comparison_operator='<=', threshold=10)
        assert evaluate_criteria(criteria, 10)
        assert not evaluate_criteria(criteria, 11)


class TestProgress:

    def test_monotonic_and_reaches_100_at_threshold(self):
        criteria = _criteria()
        values = [0, 20, 40, 60, 79, 80, 95]
        progress = [calculate_progress(criteria, v) for v in values]
        assert progress == sorted(progress)
        assert calculate_progress(criteria, 80) == 100.0
        assert calculate_progress(criteria, 40) == pytest.approx(50.0)

    def test_capped_at_100(self):
        assert calculate_progress(_criteria(), 500) == 100.0

    def test_inverted_operator_default_base(self):
        criteria = _criteria(comparison_operator='<', threshold=10)
        # base defaults to 20: 15 is halfway from 20 down to 10
        assert calculate_progress(criteria, 15) == pytest.approx(50.0)
        assert calculate_progress(criteria, 25) == 0.0
        assert calculate_progress(criteria, 8) == 100.0

    def test_inverted_operator_custom_base(self):
        criteria = _criteria(comparison_operator='<=', threshold=10, additional_params={'base_value': 50})
        assert calculate_progress(criteria, 30) == pytest.approx(50.0)

    def test_inverted_progress_is_monotonic_as_value_falls(self):
        criteria = _criteria(comparison_operator='<=', threshold=10)
        progress = [calculate_progress(criteria, v) for v in (20, 17, 14, 11, 10)]
        assert progress == sorted(progress)
        assert progress[-1] == 100.0

    def test_zero_threshold(self):
        criteria = _criteria(metric_type='loads_completed', threshold=0)
        assert calculate_progress(criteria, 0) == 100.0


class TestExtractMetricValue:

    def test_score_metric_from_dict(self):
        assert extract_metric_value(_criteria(), score={'total_score': 83.5}) == 83.5

    def test_score_metric_from_object(self):
        assert extract_metric_value(_criteria(), score=SimpleNamespace(total_score=71)) == 71.0

    def test_missing_score_is_zero(self):
        assert extract_metric_value(_criteria()) == 0.0

    def test_activity_metric_from_metrics(self):
        criteria = _criteria(metric_type='relay_participation', threshold=5)
        assert extract_metric_value(criteria, metrics={'relay_participations': 3}) == 3.0


class TestBuildProgress:

    def test_earned_is_pinned_at_100(self):
        achievement = SimpleNamespace(id=1, name='Road Warrior')
        earned = SimpleNamespace(earned_at=datetime(2023, 5, 22, 12, 0))
        progress = build_progress(achievement, _criteria(), 10, earned=earned)
        assert progress.is_completed
        assert progress.progress_percentage == 100.0
        assert progress.to_dict()['completed_at'] == '2023-05-22T12:00:00'

    def test_unearned_reports_partial(self):
        progress = build_progress(SimpleNamespace(id=2, name='Efficiency'), _criteria(), 60)
        assert not progress.is_completed
        assert progress.progress_percentage == 75.0

    def test_progress_dict_round_trip(self):
        progress = build_progress(SimpleNamespace(id=3, name='X'), _criteria(), 40)
        assert AchievementProgress.from_dict(progress.to_dict()) == progress
