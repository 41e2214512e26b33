"""
Leaderboard ranking + rank-tier bonus lookup.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from gamification.config import MAX_BONUS_RANK, RANK_CHANGE_EVENT_THRESHOLD

logger = logging.getLogger('engine.ranking')

# leaderboard_type → score field the board ranks on
LEADERBOARD_SCORE_FIELDS = {
    'efficiency': 'total_score',
    'overall': 'total_score',
    'network_contribution': 'network_contribution_score',
    'on_time': 'on_time_score',
    'hub_utilization': 'hub_utilization_score',
    'fuel_efficiency': 'fuel_efficiency_score',
}


def score_for_leaderboard(leaderboard_type: str, score: Dict[str, Any]) -> float:
    return float(score.get(LEADERBOARD_SCORE_FIELDS.get(leaderboard_type, 'total_score')) or 0.0)


def _default_bonus(rank: int) -> float:
    """Fallback when no tier in the structure covers the rank."""
    if 1 <= rank <= 5:
        return 500.0 - (rank - 1) * 50
    if 6 <= rank <= 10:
        return 250.0 - (rank - 6) * 25
    if 11 <= rank <= 20:
        return 100.0
    if 21 <= rank <= MAX_BONUS_RANK:
        return 50.0
    return 0.0


def _parse_range(key: str) -> Optional[Tuple[int, int]]:
    try:
        low, high = key.split('-', 1)
        return int(low), int(high)
    except ValueError:
        logger.warning("Ignoring malformed bonus tier key '%s'", key)
        return None


def get_bonus_amount(rank: int, bonus_structure: Optional[Dict[str, Any]] = None) -> float:
    """
    Payout for a final rank.

    Lookup order: exact rank key ('1'), then range keys ('6-10'), then the
    default decay formula. Never negative.
    """
    if rank is None or rank < 1:
        return 0.0
    structure = bonus_structure or {}

    exact = structure.get(str(rank))
    if exact is not None:
        return max(0.0, float(exact))

    for key, amount in structure.items():
        if '-' not in str(key):
            continue
        bounds = _parse_range(str(key))
        if bounds and bounds[0] <= rank <= bounds[1]:
            return max(0.0, float(amount))

    return _default_bonus(rank)


def sort_key(entry):
    # Ties are broken on driver_id so ranks stay dense and deterministic
    return (-(entry.score or 0.0), str(entry.driver_id))


def apply_dense_ranks(entries: List[Any]) -> List[Tuple[Any, Optional[int]]]:
    """
    Re-sort entries by score (descending) and write ranks 1..N in place.

    Each entry's previous_rank becomes the rank it held before this pass, and
    rank_change = previous_rank - rank (positive means it moved up). Entries
    that had no rank yet keep previous_rank None and rank_change 0.

    Returns [(entry, old_rank)] in new rank order.
    """
    ordered = sorted(entries, key=sort_key)
    result = []
    for position, entry in enumerate(ordered, start=1):
        old_rank = entry.rank
        entry.rank = position
        if old_rank is None:
            entry.previous_rank = None
            entry.rank_change = 0
        else:
            entry.previous_rank = old_rank
            entry.rank_change = old_rank - position
        result.append((entry, old_rank))
    return result


def is_notable_rank_change(old_rank: Optional[int], new_rank: int) -> bool:
    """New to the board, or moved at least RANK_CHANGE_EVENT_THRESHOLD places."""
    if old_rank is None:
        return True
    return abs(old_rank - new_rank) >= RANK_CHANGE_EVENT_THRESHOLD
