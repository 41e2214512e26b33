"""
Centralized configuration — env vars, scoring constants, leaderboard and zone limits.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Event stream ──────────────────────────────────────────────────────────────
EVENT_STREAM = os.getenv('EVENT_STREAM', 'gamification-events')
EVENT_STREAM_MAXLEN = int(os.getenv('EVENT_STREAM_MAXLEN', 10000))
EVENT_PRODUCER = os.getenv('EVENT_PRODUCER', 'gamification-service')
EVENT_VERSION = '1.0'
EVENT_CATEGORY = 'GAMIFICATION'

# ── Achievement progress cache ───────────────────────────────────────────────
# Seconds; 0 keeps entries until they are invalidated.
PROGRESS_CACHE_TTL = int(os.getenv('PROGRESS_CACHE_TTL', 3600))

# ── Payment service ──────────────────────────────────────────────────────────
PAYMENT_SERVICE_URL = os.getenv('PAYMENT_SERVICE_URL')
PAYMENT_API_KEY = os.getenv('PAYMENT_API_KEY')
PAYMENT_TIMEOUT = float(os.getenv('PAYMENT_TIMEOUT', 10))

# ── Background jobs ──────────────────────────────────────────────────────────
JOB_TIMEOUT = int(os.getenv('JOB_TIMEOUT', 600))
LEADERBOARD_ENDING_DAYS = int(os.getenv('LEADERBOARD_ENDING_DAYS', 1))

# ── Scores ───────────────────────────────────────────────────────────────────
SCORE_MILESTONES = [50, 75, 90, 95, 100]

ASSIGNMENT_TYPES = [
    'DIRECT',
    'RELAY',
    'SMART_HUB_EXCHANGE',
]

# ── Achievements ─────────────────────────────────────────────────────────────
ACHIEVEMENT_CATEGORIES = [
    'efficiency',
    'network',
    'reliability',
    'sustainability',
    'milestone',
]

ACHIEVEMENT_LEVELS = [
    'bronze',
    'silver',
    'gold',
    'platinum',
]

# ── Leaderboards ─────────────────────────────────────────────────────────────
LEADERBOARD_TYPES = [
    'efficiency',
    'network_contribution',
    'on_time',
    'hub_utilization',
    'fuel_efficiency',
    'overall',
]

LEADERBOARD_TIMEFRAMES = [
    'weekly',
    'monthly',
    'quarterly',
    'yearly',
]

# Rank or rank range → payout in dollars
DEFAULT_BONUS_STRUCTURE = {
    '1': 450,
    '2': 400,
    '3': 350,
    '4': 300,
    '5': 250,
    '6-10': 200,
    '11-20': 100,
    '21-50': 50,
}

# Entries ranked below this never receive a leaderboard payout
MAX_BONUS_RANK = 50

# Moves of at least this many places publish a rank-changed event
RANK_CHANGE_EVENT_THRESHOLD = 3

# ── Bonus zones ──────────────────────────────────────────────────────────────
DEFAULT_ZONE_RADIUS_KM = 25
MIN_ZONE_RADIUS_KM = 5
MAX_ZONE_RADIUS_KM = 100
DEFAULT_ZONE_MULTIPLIER = 1.5
MIN_ZONE_MULTIPLIER = 1.0
MAX_ZONE_MULTIPLIER = 3.0
CIRCLE_POLYGON_POINTS = 64
BONUS_ZONE_BASE_AMOUNT = float(os.getenv('BONUS_ZONE_BASE_AMOUNT', 100))

# ── Fuel discounts ───────────────────────────────────────────────────────────
# (minimum total score, discount fraction), checked top-down
FUEL_DISCOUNT_TIERS = [
    (90, 0.10),
    (80, 0.05),
]
DEFAULT_FUEL_PURCHASE = 500.0
