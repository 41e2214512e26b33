#!/usr/bin/env python3
"""
Seed local data for exercising the API by hand.

Creates:
  1. An achievement catalog covering each category
  2. Current weekly + monthly leaderboards (global and MIDWEST)
  3. A circular bonus zone around Chicago, live for the next 7 days
  4. A handful of scored loads so boards and achievements have content

Usage:
    python scripts/seed_data.py          # seed everything
    python scripts/seed_data.py --clear  # wipe all gamification tables first

Requires: DATABASE_URL set (or defaults to sqlite:///local.db). Redis is
optional; event publishing and cache invalidation fail open without it.
"""
import sys
import os
import argparse
from datetime import timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gamification import create_app
from gamification.database import get_session, engine, Base, utcnow
from gamification.errors import ConflictError
from gamification.models.achievement import Achievement, DriverAchievement
from gamification.models.bonus_zone import BonusZone
from gamification.models.driver_bonus import DriverBonus
from gamification.models.driver_score import DriverScore
from gamification.models.leaderboard import Leaderboard, LeaderboardEntry
from gamification.services import achievements, bonus_zones, leaderboards, rewards


# ── Catalog ──────────────────────────────────────────────────────────────────

ACHIEVEMENTS = [
    {'name': 'Efficiency Rookie', 'category': 'efficiency', 'level': 'bronze', 'points': 25,
     'description': 'Reach an efficiency score of 75',
     'criteria': {'metric_type': 'efficiency_score', 'threshold': 75}},
    {'name': 'Efficiency Expert', 'category': 'efficiency', 'level': 'gold', 'points': 100,
     'description': 'Reach an efficiency score of 90',
     'criteria': {'metric_type': 'efficiency_score', 'threshold': 90}},
    {'name': 'Network Player', 'category': 'network', 'level': 'silver', 'points': 50,
     'description': 'Network contribution score of 80 or more',
     'criteria': {'metric_type': 'network_contribution', 'threshold': 80}},
    {'name': 'Relay Regular', 'category': 'network', 'level': 'silver', 'points': 50,
     'description': 'Complete 5 relay loads this month',
     'criteria': {'metric_type': 'relay_participation', 'threshold': 5, 'timeframe': 'monthly'}},
    {'name': 'Clockwork', 'category': 'reliability', 'level': 'gold', 'points': 75,
     'description': 'On-time score of 95 or more',
     'criteria': {'metric_type': 'on_time_percentage', 'threshold': 95}},
    {'name': 'Green Driver', 'category': 'sustainability', 'level': 'silver', 'points': 40,
     'description': 'Fuel efficiency score of 85 or more',
     'criteria': {'metric_type': 'fuel_efficiency', 'threshold': 85}},
    {'name': 'First Ten', 'category': 'milestone', 'level': 'bronze', 'points': 10,
     'description': 'Complete 10 loads',
     'criteria': {'metric_type': 'loads_completed', 'threshold': 10}},
    {'name': 'Road Warrior', 'category': 'milestone', 'level': 'platinum', 'points': 250,
     'description': 'Drive 10,000 miles',
     'criteria': {'metric_type': 'miles_driven', 'threshold': 10000}},
]

DRIVERS = [
    ('drv-001', 'Maria Lopez'),
    ('drv-002', 'James Carter'),
    ('drv-003', 'Aiyana Redcloud'),
    ('drv-004', 'Tom Nguyen'),
    ('drv-005', 'Priya Patel'),
]

CHICAGO = (41.8781, -87.6298)


def seed_achievements():
    for spec in ACHIEVEMENTS:
        try:
            achievements.create_achievement(**spec)
        except ConflictError:
            print(f"  achievement exists: {spec['name']}")
    print(f'  [1] Achievements:  {len(ACHIEVEMENTS)}')


def seed_leaderboards():
    created = 0
    for timeframe in ('weekly', 'monthly'):
        for region in (None, 'MIDWEST'):
            for leaderboard_type in ('efficiency', 'on_time'):
                try:
                    leaderboards.create_current_leaderboard(leaderboard_type, timeframe, region=region)
                    created += 1
                except ConflictError:
                    pass
    print(f'  [2] Leaderboards:  {created} created')


def seed_bonus_zone():
    now = utcnow()
    zone = bonus_zones.create_circular_bonus_zone(
        name='Chicago Outbound Surge',
        center_lat=CHICAGO[0],
        center_lng=CHICAGO[1],
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(days=7),
        radius_km=40,
        multiplier=2.0,
        reason='Outbound capacity shortage',
    )
    print(f"  [3] Bonus zone:    {zone['id']} ({zone['name']})")


def seed_loads():
    now = utcnow()
    for i, (driver_id, driver_name) in enumerate(DRIVERS):
        for n in range(3):
            scheduled = now - timedelta(days=n, hours=8)
            result = rewards.process_load_completion(
                {
                    'assignment_id': f'seed-{driver_id}-{n}',
                    'driver_id': driver_id,
                    'load_id': f'load-{driver_id}-{n}',
                    'assignment_type': ('DIRECT', 'RELAY', 'SMART_HUB_EXCHANGE')[(i + n) % 3],
                    'rate': 1800 + 150 * i,
                },
                {
                    'region': 'MIDWEST',
                    'empty_miles_percentage': 0.12 + 0.04 * i,
                    'network_impact': 20 - 5 * i,
                    'scheduled_pickup_time': scheduled.isoformat(),
                    'actual_pickup_time': (scheduled + timedelta(minutes=10 * i)).isoformat(),
                    'scheduled_delivery_time': (scheduled + timedelta(hours=6)).isoformat(),
                    'actual_delivery_time': (scheduled + timedelta(hours=6, minutes=20 * i)).isoformat(),
                    'miles_per_gallon': 7.5 - 0.3 * i,
                    'expected_miles_per_gallon': 6.5,
                    'miles_driven': 420 + 35 * n,
                },
                region='MIDWEST',
                driver_name=driver_name,
                delivery_position={'latitude': CHICAGO[0], 'longitude': CHICAGO[1]} if n == 0 else None,
            )
            print(f"      {driver_id} load {n}: {result['score']['total_score']:.2f}")
    print(f'  [4] Loads scored:  {len(DRIVERS) * 3}')


# ── Clear / Main ─────────────────────────────────────────────────────────────

def clear_all():
    """Remove every row from the gamification tables."""
    session = get_session()
    try:
        for model in (DriverBonus, LeaderboardEntry, Leaderboard, DriverAchievement,
                      Achievement, BonusZone, DriverScore):
            session.query(model).delete(synchronize_session=False)
        session.commit()
    finally:
        session.close()
    print('Cleared gamification tables.')


def main():
    parser = argparse.ArgumentParser(description='Seed local gamification data')
    parser.add_argument('--clear', action='store_true', help='Clear all tables before seeding')
    parser.add_argument('--clear-only', action='store_true', help='Only clear, do not re-seed')
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        # Ensure tables exist (for SQLite local dev)
        Base.metadata.create_all(engine)

        if args.clear or args.clear_only:
            clear_all()
            if args.clear_only:
                return

        print('Seeding data...')
        seed_achievements()
        seed_leaderboards()
        seed_bonus_zone()
        seed_loads()
        print('\nDone! Try http://localhost:8080/api/leaderboards/current')


if __name__ == '__main__':
    main()
