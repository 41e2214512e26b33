"""Tests for gamification.services.scores."""
import json
import pytest
from datetime import timedelta
from unittest.mock import patch

from gamification.database import utcnow
from gamification.errors import DependencyError, NotFoundError, ValidationError
from gamification.models.driver_score import DriverScore
from gamification.services import scores


def _components(value):
    return {name: value for name in
            ('empty_miles', 'network_contribution', 'on_time', 'hub_utilization', 'fuel_efficiency')}


def _payloads(mock_redis, event_type):
    found = []
    for c in mock_redis.xadd.call_args_list:
        fields = c.args[1]
        if fields['event_type'] == event_type:
            found.append(json.loads(fields['data'])['payload'])
    return found


def _assignment(assignment_id='A-1', driver_id='drv-1', assignment_type='DIRECT'):
    return {'assignment_id': assignment_id, 'driver_id': driver_id, 'assignment_type': assignment_type}


class TestCheckScoreMilestones:

    def test_crossing_fifty_only(self):
        assert scores.check_score_milestones(48, 52) == [50]

    def test_several_at_once(self):
        assert scores.check_score_milestones(70, 96) == [75, 90, 95]

    def test_downward_move_crosses_nothing(self):
        assert scores.check_score_milestones(92, 60) == []

    def test_landing_exactly_on_milestone(self):
        assert scores.check_score_milestones(74, 75) == [75]


class TestCalculateScoreForLoad:

    def test_persists_and_publishes(self, db_session, load_metrics, published):
        score = scores.calculate_score_for_load(_assignment(), load_metrics())
        assert db_session.query(DriverScore).count() == 1
        assert score['driver_id'] == 'drv-1'
        assert 0 <= score['total_score'] <= 100
        assert 'SCORE_UPDATED' in published()

    def test_redelivered_load_reuses_row(self, db_session, load_metrics, mock_redis):
        first = scores.calculate_score_for_load(_assignment(), load_metrics())
        second = scores.calculate_score_for_load(_assignment(), load_metrics())
        assert first['id'] == second['id']
        assert db_session.query(DriverScore).count() == 1
        assert len(_payloads(mock_redis, 'SCORE_UPDATED')) == 1

    def test_redelivery_after_ranking_failure_publishes(self, db_session, load_metrics, mock_redis):
        """A delivery that failed after the row was written still gets its events on retry."""
        real_ranking = scores.update_driver_ranking
        calls = []

        def fail_first(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise DependencyError('database', 'lock timeout')
            return real_ranking(*args, **kwargs)

        with patch.object(scores, 'update_driver_ranking', side_effect=fail_first):
            with pytest.raises(DependencyError):
                scores.calculate_score_for_load(_assignment(), load_metrics())
            assert _payloads(mock_redis, 'SCORE_UPDATED') == []
            assert db_session.query(DriverScore).one().events_published is False

            score = scores.calculate_score_for_load(_assignment(), load_metrics())

        assert db_session.query(DriverScore).count() == 1
        assert [p['score_id'] for p in _payloads(mock_redis, 'SCORE_UPDATED')] == [score['id']]
        assert [p['milestone'] for p in _payloads(mock_redis, 'SCORE_MILESTONE_REACHED')][0] == 50
        mock_redis.delete.assert_called_with('achievement_progress:drv-1')
        assert db_session.query(DriverScore).one().events_published is True

    def test_region_argument_fills_metrics(self, load_metrics, make_leaderboard, db_session):
        from gamification.models.leaderboard import LeaderboardEntry
        board = make_leaderboard(region='WEST')
        metrics = load_metrics()
        metrics.pop('region')
        scores.calculate_score_for_load(_assignment(), metrics, region='WEST', driver_name='Pat')
        entry = db_session.query(LeaderboardEntry).filter_by(leaderboard_id=board.id).one()
        assert entry.driver_name == 'Pat'

    def test_invalid_assignment_rejected(self, load_metrics):
        with pytest.raises(ValidationError):
            scores.calculate_score_for_load({'assignment_id': 'A-1'}, load_metrics())

    def test_invalidates_progress_cache(self, load_metrics, mock_redis):
        scores.calculate_score_for_load(_assignment(), load_metrics())
        mock_redis.delete.assert_called_with('achievement_progress:drv-1')


class TestUpdateDriverScore:

    def test_milestone_fifty_fires_once_going_from_48_to_52(self, mock_redis):
        scores.update_driver_score('drv-1', _components(48))
        mock_redis.xadd.reset_mock()

        score = scores.update_driver_score('drv-1', _components(52), reason='review')
        assert score['total_score'] == pytest.approx(52.0)
        milestones = _payloads(mock_redis, 'SCORE_MILESTONE_REACHED')
        assert [m['milestone'] for m in milestones] == [50]
        assert milestones[0]['previous_score'] == pytest.approx(48.0)

    def test_adjustment_is_a_new_snapshot(self, db_session):
        scores.update_driver_score('drv-1', _components(60))
        scores.update_driver_score('drv-1', _components(70))
        assert db_session.query(DriverScore).count() == 2
        assert scores.get_driver_score('drv-1')['total_score'] == pytest.approx(70.0)

    def test_factors_record_the_reason(self):
        score = scores.update_driver_score('drv-1', _components(60), reason='dispute')
        assert score['score_factors'] == {'manual_adjustment': True, 'reason': 'dispute'}

    def test_missing_component_rejected(self):
        components = _components(60)
        del components['on_time']
        with pytest.raises(ValidationError):
            scores.update_driver_score('drv-1', components)

    def test_driver_required(self):
        with pytest.raises(ValidationError):
            scores.update_driver_score('', _components(60))


class TestQueries:

    def test_unknown_driver(self):
        with pytest.raises(NotFoundError):
            scores.get_driver_score('ghost')
        assert scores.get_latest_score_or_none('ghost') is None

    def test_history_is_newest_first_and_paginated(self):
        for value in (10, 20, 30, 40, 50):
            scores.update_driver_score('drv-1', _components(value))
        page = scores.get_score_history('drv-1', page=1, page_size=2)
        assert page['total'] == 5
        assert [round(i['total_score']) for i in page['items']] == [50, 40]
        last = scores.get_score_history('drv-1', page=3, page_size=2)
        assert [round(i['total_score']) for i in last['items']] == [10]

    def test_history_rejects_bad_paging(self):
        with pytest.raises(ValidationError):
            scores.get_score_history('drv-1', page=0)
        with pytest.raises(ValidationError):
            scores.get_score_history('drv-1', page_size=500)

    def test_date_range_is_half_open(self, db_session):
        now = utcnow()
        scores.update_driver_score('drv-1', _components(60))
        row = db_session.query(DriverScore).one()
        row.calculated_at = now - timedelta(days=2)
        db_session.commit()

        assert len(scores.get_scores_by_date_range('drv-1', now - timedelta(days=3), now)) == 1
        assert scores.get_scores_by_date_range('drv-1', now - timedelta(days=1), now) == []
        with pytest.raises(ValidationError):
            scores.get_scores_by_date_range('drv-1', now, now)

    def test_historical_score_averages(self):
        scores.update_driver_score('drv-1', _components(60))
        scores.update_driver_score('drv-1', _components(80))
        now = utcnow()
        historical = scores.get_historical_score('drv-1', now - timedelta(hours=1), now + timedelta(hours=1))
        assert historical['total_score'] == pytest.approx(70.0)
        assert historical['score_factors']['scores_count'] == 2

    def test_historical_score_without_data_is_neutral(self):
        now = utcnow()
        historical = scores.get_historical_score('ghost', now - timedelta(days=1), now)
        assert historical['total_score'] == pytest.approx(50.0)


class TestRecalculateDriverScores:

    def test_writes_average_snapshot_per_driver(self, db_session):
        scores.update_driver_score('drv-1', _components(60))
        scores.update_driver_score('drv-1', _components(80))
        now = utcnow()
        summary = scores.recalculate_driver_scores(['drv-1', 'drv-2'], now - timedelta(hours=1), now + timedelta(hours=1))
        assert summary == {'processed': 2, 'failed': 0, 'errors': []}
        assert scores.get_driver_score('drv-1')['score_factors']['reason'] == 'recalculation'

    def test_one_failure_does_not_stop_the_batch(self):
        now = utcnow()
        start, end = now - timedelta(hours=1), now
        real = scores.get_historical_score

        def flaky(driver_id, *args):
            if driver_id == 'bad':
                raise ValidationError("boom")
            return real(driver_id, *args)

        with patch.object(scores, 'get_historical_score', side_effect=flaky):
            summary = scores.recalculate_driver_scores(['bad', 'good'], start, end)
        assert summary['processed'] == 1
        assert summary['failed'] == 1
        assert summary['errors'][0]['driver_id'] == 'bad'
