"""Tests for gamification.routes.rewards."""
from unittest.mock import patch

import pytest

from gamification.services import rewards


@pytest.fixture
def zone_bonus(make_zone):
    zone = make_zone()
    return rewards.create_bonus_for_driver('drv-1', 'bonus_zone', zone.id, 150, 'zone', assignment_id='A-1')


class TestDriverRewards:

    def test_bonuses_and_filters(self, client, zone_bonus):
        assert [b['id'] for b in client.get('/api/rewards/drivers/drv-1/bonuses').json] == [zone_bonus['id']]
        assert client.get('/api/rewards/drivers/drv-1/bonuses?paid=true').json == []
        assert client.get('/api/rewards/drivers/drv-1/bonuses?min_amount=200').json == []

    def test_unpaid(self, client, zone_bonus):
        resp = client.get('/api/rewards/drivers/drv-1/unpaid').json
        assert resp['total_amount'] == 150.0
        assert len(resp['bonuses']) == 1

    def test_summary(self, client, zone_bonus):
        summary = client.get('/api/rewards/drivers/drv-1/summary').json
        assert summary['unpaid_amount'] == 150.0
        assert summary['by_source']['bonus_zone']['count'] == 1

    def test_fuel_discount(self, client):
        client.post('/api/scores/drivers/drv-1', json={'components': {
            'empty_miles': 85, 'network_contribution': 85, 'on_time': 85,
            'hub_utilization': 85, 'fuel_efficiency': 85,
        }})
        resp = client.get('/api/rewards/drivers/drv-1/fuel-discount?purchase_amount=300').json
        assert resp['discount_percentage'] == 5.0
        assert resp['discount_amount'] == 15.0


class TestBonuses:

    def test_get_and_pay(self, client, zone_bonus):
        assert client.get(f"/api/rewards/bonuses/{zone_bonus['id']}").json['paid'] is False
        paid = client.post(f"/api/rewards/bonuses/{zone_bonus['id']}/pay")
        assert paid.status_code == 200
        assert paid.json['paid'] is True

    def test_missing_bonus_is_404(self, client):
        assert client.post('/api/rewards/bonuses/999/pay').status_code == 404

    def test_leaderboard_payout_for_live_board_is_409(self, client, make_leaderboard):
        board = make_leaderboard()
        assert client.post(f'/api/rewards/leaderboards/{board.id}').status_code == 409

    def test_payouts_are_queued(self, client):
        with patch('gamification.jobs.enqueue_bonus_payouts', return_value='job-7') as enqueue:
            resp = client.post('/api/rewards/payouts', json={'driver_id': 'drv-1'})
        assert resp.status_code == 202
        assert resp.json['job_id'] == 'job-7'
        enqueue.assert_called_once_with(driver_id='drv-1')
