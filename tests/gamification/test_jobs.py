"""Tests for gamification.jobs — RQ jobs, enqueue helpers and the driver event handler."""
import pytest
from datetime import datetime
from unittest.mock import patch, MagicMock

import fakeredis
from rq import SimpleWorker
from rq.job import Job, JobStatus

from gamification import jobs
from gamification.config import JOB_TIMEOUT


@pytest.fixture
def mock_queue():
    queue = MagicMock()
    queue.enqueue.return_value.id = 'job-123'
    with patch.object(jobs, '_get_queue', return_value=queue):
        yield queue


def _event(event_type, payload, event_id='evt-1'):
    return {
        'metadata': {'event_id': event_id, 'event_type': event_type, 'correlation_id': 'corr-1'},
        'payload': payload,
    }


# ---------------------------------------------------------------------------
# Enqueue helpers
# ---------------------------------------------------------------------------

class TestEnqueue:

    def test_process_ending(self, mock_queue):
        assert jobs.enqueue_process_ending_leaderboards(2, 'weekly') == 'job-123'
        mock_queue.enqueue.assert_called_once_with(
            jobs.process_ending_leaderboards_job, 2, 'weekly', job_timeout=JOB_TIMEOUT,
        )

    def test_weekly_and_monthly(self, mock_queue):
        jobs.enqueue_weekly_bonuses()
        jobs.enqueue_monthly_bonuses()
        called = [c.args[0] for c in mock_queue.enqueue.call_args_list]
        assert called == [jobs.weekly_bonus_job, jobs.monthly_bonus_job]

    def test_recalculate(self, mock_queue):
        jobs.enqueue_recalculate_scores(['drv-1'], '2023-05-01T00:00:00', '2023-05-08T00:00:00')
        assert mock_queue.enqueue.call_args.args[1:] == (['drv-1'], '2023-05-01T00:00:00', '2023-05-08T00:00:00')

    def test_payouts(self, mock_queue):
        assert jobs.enqueue_bonus_payouts('drv-1') == 'job-123'
        assert mock_queue.enqueue.call_args.args == (jobs.bonus_payouts_job, 'drv-1')


# ---------------------------------------------------------------------------
# Job functions
# ---------------------------------------------------------------------------

class TestJobFunctions:

    def test_weekly_bonus_job(self):
        with patch('gamification.services.rewards.process_timeframe_bonuses', return_value={'processed': 0}) as run:
            assert jobs.weekly_bonus_job() == {'processed': 0}
        run.assert_called_once_with('weekly')

    def test_monthly_bonus_job(self):
        with patch('gamification.services.rewards.process_timeframe_bonuses', return_value={}) as run:
            jobs.monthly_bonus_job()
        run.assert_called_once_with('monthly')

    def test_recalculate_parses_timestamps(self):
        with patch('gamification.services.scores.recalculate_driver_scores', return_value={}) as run:
            jobs.recalculate_scores_job(['drv-1'], '2023-05-01T00:00:00Z', '2023-05-08T00:00:00')
        run.assert_called_once_with(['drv-1'], datetime(2023, 5, 1), datetime(2023, 5, 8))

    def test_process_ending_job_runs_rollover(self, make_leaderboard):
        from gamification.database import utcnow
        make_leaderboard(end_period=utcnow().date())
        assert jobs.process_ending_leaderboards_job(0)['processed'] == 1

    def test_bonus_payouts_job_with_nothing_unpaid(self):
        assert jobs.bonus_payouts_job()['processed'] == 0


# ---------------------------------------------------------------------------
# Worker round trip
# ---------------------------------------------------------------------------

class TestWorkerRoundTrip:
    """Jobs enqueued by the app are executed by an RQ worker."""

    @pytest.fixture
    def rq_redis(self):
        conn = fakeredis.FakeStrictRedis()
        with patch('gamification.extensions.rq_connection', conn), \
             patch.object(jobs, '_queue', None):
            yield conn

    def test_rq_connection_returns_bytes(self):
        from gamification import extensions
        assert not extensions.rq_connection.connection_pool.connection_kwargs.get('decode_responses')

    def test_queue_uses_rq_connection(self, rq_redis):
        assert jobs._get_queue().connection is rq_redis

    def test_enqueued_job_runs_to_finished(self, rq_redis):
        job_id = jobs.enqueue_bonus_payouts()
        SimpleWorker([jobs._get_queue()], connection=rq_redis).work(burst=True)

        job = Job.fetch(job_id, connection=rq_redis)
        assert job.get_status() == JobStatus.FINISHED
        assert job.return_value()['processed'] == 0


# ---------------------------------------------------------------------------
# Driver events
# ---------------------------------------------------------------------------

class TestHandleDriverEvent:

    def test_load_completed(self, load_metrics):
        result = jobs.handle_driver_event(_event(jobs.LOAD_COMPLETED, {
            'assignment': {'assignment_id': 'A-1', 'driver_id': 'drv-1'},
            'metrics': load_metrics(),
            'driver_name': 'Pat',
        }))
        assert result['score']['assignment_id'] == 'A-1'

    def test_position_updated(self, make_zone):
        make_zone()
        result = jobs.handle_driver_event(_event(jobs.POSITION_UPDATED, {
            'driver_id': 'drv-1', 'latitude': 41.88, 'longitude': -87.63, 'assignment_id': 'A-1',
        }))
        assert result['in_zone'] is True
        assert result['bonus']['amount'] == 150.0

    def test_status_changed_checks_achievements(self):
        with patch('gamification.services.achievements.check_achievements', return_value=[]) as check:
            jobs.handle_driver_event(_event(jobs.DRIVER_STATUS_CHANGED, {'driver_id': 'drv-1'}))
        check.assert_called_once_with('drv-1', correlation_id='corr-1')

    def test_unknown_event_ignored(self):
        assert jobs.handle_driver_event(_event('DRIVER_WAVED', {})) is None

    def test_malformed_payload_logged_not_raised(self):
        assert jobs.handle_driver_event(_event(jobs.LOAD_COMPLETED, {'metrics': {}})) is None

    def test_invalid_assignment_logged_not_raised(self):
        assert jobs.handle_driver_event(_event(jobs.LOAD_COMPLETED, {
            'assignment': {'assignment_id': 'A-1', 'driver_id': 'drv-1', 'assignment_type': 'TELEPORT'},
        })) is None

    def test_missing_metadata(self):
        assert jobs.handle_driver_event({}) is None
