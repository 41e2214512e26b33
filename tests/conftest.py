"""Shared test fixtures."""
import pytest
from contextlib import ExitStack
from datetime import timedelta
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from gamification.database import Base, utcnow

# Modules that do `from gamification.database import get_session` at import time
SESSION_MODULES = [
    'gamification.database',
    'gamification.services.scores',
    'gamification.services.achievements',
    'gamification.services.leaderboards',
    'gamification.services.bonus_zones',
    'gamification.services.rewards',
    'gamification.routes.health',
]


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import gamification.models.driver_score
    import gamification.models.achievement
    import gamification.models.leaderboard
    import gamification.models.bonus_zone
    import gamification.models.driver_bonus
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that services calling session.close() in their
    finally blocks don't invalidate the shared test session.
    """
    import gamification.routes.health  # noqa: F401 - make the patch target importable
    _real_close = db_session.close
    db_session.close = lambda: None
    with ExitStack() as stack:
        for module in SESSION_MODULES:
            stack.enter_context(patch(f'{module}.get_session', return_value=db_session))
        yield db_session
    db_session.close = _real_close


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock Redis client. Event publishing and the progress cache hit this."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.setex.return_value = True
    mock.delete.return_value = 1
    mock.scan_iter.return_value = iter([])
    mock.xadd.return_value = '1-0'
    with patch('gamification.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def published(mock_redis):
    """Event types written to the stream, in order."""
    def _types():
        return [c.args[1]['event_type'] for c in mock_redis.xadd.call_args_list]
    return _types


@pytest.fixture
def app():
    """Flask test app."""
    from gamification import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


# ── Builders ─────────────────────────────────────────────────────────────────

@pytest.fixture
def make_achievement(db_session):
    """Insert an Achievement directly (committed) and return it."""
    from gamification.models.achievement import Achievement

    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        defaults = dict(
            name=f"Achievement {counter['n']}",
            description='',
            category='efficiency',
            level='bronze',
            points=50,
            criteria={'metric_type': 'efficiency_score', 'threshold': 80,
                      'comparison_operator': '>=', 'timeframe': 'all_time'},
            is_active=True,
        )
        defaults.update(overrides)
        achievement = Achievement(**defaults)
        db_session.add(achievement)
        db_session.commit()
        return achievement
    return _make


@pytest.fixture
def make_leaderboard(db_session):
    """Insert an active Leaderboard covering today (committed)."""
    from gamification.models.leaderboard import Leaderboard
    from gamification.config import DEFAULT_BONUS_STRUCTURE

    def _make(**overrides):
        today = utcnow().date()
        defaults = dict(
            name='Efficiency Weekly Test',
            leaderboard_type='efficiency',
            timeframe='weekly',
            region=None,
            start_period=today - timedelta(days=3),
            end_period=today + timedelta(days=3),
            is_active=True,
            bonus_structure=dict(DEFAULT_BONUS_STRUCTURE),
        )
        defaults.update(overrides)
        board = Leaderboard(**defaults)
        db_session.add(board)
        db_session.commit()
        return board
    return _make


@pytest.fixture
def make_entries(db_session):
    """Insert ranked entries for a leaderboard from a list of (driver_id, score)."""
    from gamification.models.leaderboard import LeaderboardEntry

    def _make(board, scores):
        ordered = sorted(scores, key=lambda s: (-s[1], s[0]))
        entries = []
        for rank, (driver_id, score) in enumerate(ordered, start=1):
            entry = LeaderboardEntry(
                leaderboard_id=board.id, driver_id=driver_id, driver_name=driver_id,
                score=score, rank=rank, rank_change=0, bonus_amount=0.0, bonus_paid=False,
            )
            db_session.add(entry)
            entries.append(entry)
        db_session.commit()
        return entries
    return _make


@pytest.fixture
def make_zone(db_session):
    """Insert a live square BonusZone around (41.88, -87.63) (committed)."""
    from gamification.models.bonus_zone import BonusZone

    def _make(**overrides):
        now = utcnow()
        defaults = dict(
            name='Chicago Square',
            boundary=[
                {'lat': 41.7, 'lng': -87.8},
                {'lat': 41.7, 'lng': -87.4},
                {'lat': 42.0, 'lng': -87.4},
                {'lat': 42.0, 'lng': -87.8},
            ],
            multiplier=1.5,
            reason='test',
            start_time=now - timedelta(hours=1),
            end_time=now + timedelta(hours=1),
            is_active=True,
        )
        defaults.update(overrides)
        zone = BonusZone(**defaults)
        db_session.add(zone)
        db_session.commit()
        return zone
    return _make


@pytest.fixture
def load_metrics():
    """Metrics for a clean, on-time MIDWEST load."""
    def _make(**overrides):
        scheduled = utcnow() - timedelta(hours=8)
        metrics = {
            'region': 'MIDWEST',
            'empty_miles_percentage': 0.10,
            'network_impact': 10,
            'scheduled_pickup_time': scheduled.isoformat(),
            'actual_pickup_time': scheduled.isoformat(),
            'scheduled_delivery_time': (scheduled + timedelta(hours=6)).isoformat(),
            'actual_delivery_time': (scheduled + timedelta(hours=6)).isoformat(),
            'miles_per_gallon': 7.0,
            'expected_miles_per_gallon': 6.5,
            'miles_driven': 400,
        }
        metrics.update(overrides)
        return metrics
    return _make
