"""Tests for gamification.services.achievements."""
import json
import pytest
from contextlib import contextmanager
from unittest.mock import patch

from gamification.database import utcnow
from gamification.errors import ConflictError, NotFoundError, ValidationError
from gamification.models.achievement import Achievement, DriverAchievement
from gamification.services import achievements, scores


def _score(driver_id, value):
    return scores.update_driver_score(driver_id, {
        'empty_miles': value, 'network_contribution': value, 'on_time': value,
        'hub_utilization': value, 'fuel_efficiency': value,
    })


@contextmanager
def _concurrent_award(db_session, driver_id, achievement_id):
    """
    Make the award lookup miss once while another writer commits the same
    award, so the insert hits the unique constraint.
    """
    real_find = achievements._find_award
    competitor = DriverAchievement(
        driver_id=driver_id, achievement_id=achievement_id,
        earned_at=utcnow(), achievement_data={'by': 'other-worker'},
    )
    calls = []

    def racing_find(session, *args):
        calls.append(args)
        if len(calls) == 1:
            db_session.add(competitor)
            db_session.commit()
            return None
        return real_find(session, *args)

    with patch.object(achievements, '_find_award', side_effect=racing_find):
        yield competitor


CRITERIA = {'metric_type': 'efficiency_score', 'threshold': 80}


class TestCatalog:

    def test_create_normalizes_criteria(self):
        created = achievements.create_achievement('Road Warrior', 'efficiency', 'gold', 100, CRITERIA)
        assert created['criteria'] == {
            'metric_type': 'efficiency_score',
            'threshold': 80.0,
            'comparison_operator': '>=',
            'timeframe': 'all_time',
            'additional_params': {},
        }

    def test_duplicate_name_conflicts(self):
        achievements.create_achievement('Road Warrior', 'efficiency', 'gold', 100, CRITERIA)
        with pytest.raises(ConflictError):
            achievements.create_achievement('Road Warrior', 'network', 'bronze', 10, CRITERIA)

    @pytest.mark.parametrize('overrides', [
        {'category': 'karaoke'},
        {'level': 'mythril'},
        {'points': -5},
        {'name': '  '},
        {'criteria': {'metric_type': 'efficiency_score'}},
    ])
    def test_invalid_fields_rejected(self, overrides):
        fields = dict(name='X', category='efficiency', level='gold', points=10, criteria=CRITERIA)
        fields.update(overrides)
        with pytest.raises(ValidationError):
            achievements.create_achievement(**fields)

    def test_catalog_change_flushes_progress_cache(self, mock_redis):
        mock_redis.scan_iter.return_value = iter(['achievement_progress:drv-1'])
        achievements.create_achievement('Road Warrior', 'efficiency', 'gold', 100, CRITERIA)
        mock_redis.delete.assert_called_with('achievement_progress:drv-1')

    def test_update_and_filter(self, make_achievement):
        a = make_achievement(category='network')
        updated = achievements.update_achievement(a.id, points=75, is_active=False)
        assert updated['points'] == 75
        assert achievements.list_achievements(active_only=True) == []
        assert len(achievements.list_achievements(category='network')) == 1

    def test_update_unknown_field(self, make_achievement):
        a = make_achievement()
        with pytest.raises(ValidationError):
            achievements.update_achievement(a.id, colour='red')

    def test_delete_removes_awards(self, make_achievement, db_session):
        a = make_achievement()
        achievements.award_achievement('drv-1', a.id)
        achievements.delete_achievement(a.id)
        assert db_session.query(DriverAchievement).count() == 0
        with pytest.raises(NotFoundError):
            achievements.get_achievement(a.id)


class TestDetection:

    def test_awards_when_threshold_met(self, make_achievement, published):
        a = make_achievement()
        earned = achievements.detect_achievements('drv-1', score={'total_score': 85})
        assert [e['achievement_id'] for e in earned] == [a.id]
        assert earned[0]['points'] == 50
        assert 'ACHIEVEMENT_EARNED' in published()

    def test_not_awarded_below_threshold(self, make_achievement):
        make_achievement()
        assert achievements.detect_achievements('drv-1', score={'total_score': 79.9}) == []

    def test_awarded_at_most_once(self, make_achievement, db_session):
        make_achievement()
        achievements.detect_achievements('drv-1', score={'total_score': 85})
        assert achievements.detect_achievements('drv-1', score={'total_score': 95}) == []
        assert db_session.query(DriverAchievement).count() == 1

    def test_concurrent_award_loses_quietly(self, make_achievement, db_session, published):
        """Another worker commits the same award between our check and our insert."""
        achievement = make_achievement()
        with _concurrent_award(db_session, 'drv-1', achievement.id) as competitor:
            assert achievements.detect_achievements('drv-1', score={'total_score': 85}) == []
        award = db_session.query(DriverAchievement).one()
        assert award.id == competitor.id
        assert award.achievement_data == {'by': 'other-worker'}
        assert 'ACHIEVEMENT_EARNED' not in published()

    def test_inactive_achievements_skipped(self, make_achievement):
        make_achievement(is_active=False)
        assert achievements.detect_achievements('drv-1', score={'total_score': 99}) == []

    def test_invalid_stored_criteria_skipped(self, make_achievement):
        make_achievement(criteria={'metric_type': 'karma', 'threshold': 1})
        good = make_achievement()
        earned = achievements.detect_achievements('drv-1', score={'total_score': 90})
        assert [e['achievement_id'] for e in earned] == [good.id]

    def test_defaults_to_latest_stored_score(self, make_achievement):
        a = make_achievement()
        _score('drv-1', 90)
        earned = achievements.check_achievements('drv-1')
        assert [e['achievement_id'] for e in earned] == [a.id]

    def test_activity_metric_from_explicit_metrics(self, make_achievement):
        a = make_achievement(criteria={'metric_type': 'miles_driven', 'threshold': 1000})
        earned = achievements.detect_achievements('drv-1', metrics={'miles_driven': 1200})
        assert [e['achievement_id'] for e in earned] == [a.id]

    def test_loads_completed_derived_from_history(self, make_achievement, load_metrics):
        a = make_achievement(criteria={'metric_type': 'loads_completed', 'threshold': 2})
        for n in (1, 2):
            scores.calculate_score_for_load(
                {'assignment_id': f'A-{n}', 'driver_id': 'drv-1'}, load_metrics(),
            )
        earned = achievements.check_achievements('drv-1')
        assert [e['achievement_id'] for e in earned] == [a.id]


class TestManualAwards:

    def test_award_then_conflict(self, make_achievement, db_session):
        a = make_achievement()
        achievements.award_achievement('drv-1', a.id)
        with pytest.raises(ConflictError):
            achievements.award_achievement('drv-1', a.id)
        assert db_session.query(DriverAchievement).count() == 1

    def test_manual_award_losing_race_conflicts(self, make_achievement, db_session, published):
        a = make_achievement()
        with _concurrent_award(db_session, 'drv-1', a.id):
            with pytest.raises(ConflictError):
                achievements.award_achievement('drv-1', a.id)
        assert db_session.query(DriverAchievement).count() == 1
        assert 'ACHIEVEMENT_EARNED' not in published()

    def test_award_unknown(self):
        with pytest.raises(NotFoundError):
            achievements.award_achievement('drv-1', 999)

    def test_revoke_publishes_and_allows_re_earning(self, make_achievement, published):
        a = make_achievement()
        achievements.award_achievement('drv-1', a.id)
        achievements.revoke_achievement('drv-1', a.id, reason='audit')
        assert published()[-1] == 'ACHIEVEMENT_REVOKED'
        assert achievements.get_driver_achievements('drv-1') == []
        assert len(achievements.detect_achievements('drv-1', score={'total_score': 90})) == 1

    def test_revoke_missing_award(self, make_achievement):
        a = make_achievement()
        with pytest.raises(NotFoundError):
            achievements.revoke_achievement('drv-1', a.id)


class TestProgress:

    def test_progress_toward_threshold(self, make_achievement):
        make_achievement()
        _score('drv-1', 40)
        progress = achievements.get_driver_progress('drv-1')
        assert progress[0]['progress_percentage'] == pytest.approx(50.0)
        assert progress[0]['is_completed'] is False

    def test_earned_is_complete(self, make_achievement):
        a = make_achievement()
        achievements.award_achievement('drv-1', a.id)
        progress = achievements.get_driver_progress('drv-1')
        assert progress[0]['is_completed'] is True
        assert progress[0]['progress_percentage'] == 100.0

    def test_served_from_cache(self, make_achievement, mock_redis):
        make_achievement()
        cached = [{
            'achievement_id': 1, 'name': 'Cached', 'current_value': 10.0, 'target_value': 80.0,
            'progress_percentage': 12.5, 'is_completed': False, 'completed_at': None,
        }]
        mock_redis.get.return_value = json.dumps(cached)
        assert achievements.get_driver_progress('drv-1') == cached

    def test_refresh_bypasses_cache_and_stores(self, make_achievement, mock_redis):
        make_achievement()
        mock_redis.get.return_value = json.dumps([])
        progress = achievements.get_driver_progress('drv-1', use_cache=False)
        assert len(progress) == 1
        mock_redis.setex.assert_called_once()


class TestTopAchievers:

    def test_ordered_by_points(self, make_achievement):
        big = make_achievement(points=100)
        small = make_achievement(points=10)
        other = make_achievement(points=20)
        achievements.award_achievement('drv-a', small.id)
        achievements.award_achievement('drv-a', other.id)
        achievements.award_achievement('drv-b', big.id)
        top = achievements.get_top_achievers(limit=5)
        assert [t['driver_id'] for t in top] == ['drv-b', 'drv-a']
        assert top[1] == {'driver_id': 'drv-a', 'achievement_count': 2, 'total_points': 30}
