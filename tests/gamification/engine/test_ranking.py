"""Tests for gamification.engine.ranking -- dense ranks and rank-tier bonuses."""
import pytest
from types import SimpleNamespace

from gamification.config import DEFAULT_BONUS_STRUCTURE
from gamification.engine.ranking import (
    get_bonus_amount, apply_dense_ranks, is_notable_rank_change, score_for_leaderboard,
)


def _entry(driver_id, score, rank=None):
    return SimpleNamespace(driver_id=driver_id, score=score, rank=rank, previous_rank=None, rank_change=0)


class TestGetBonusAmount:

    def test_exact_key(self):
        assert get_bonus_amount(1, {'1': 999, '6-10': 200}) == 999

    def test_range_tier(self):
        assert get_bonus_amount(7, DEFAULT_BONUS_STRUCTURE) == DEFAULT_BONUS_STRUCTURE['6-10']

    def test_beyond_fifty_without_tier_is_zero(self):
        assert get_bonus_amount(999, DEFAULT_BONUS_STRUCTURE) == 0.0
        assert get_bonus_amount(999, {}) == 0.0

    def test_default_formula_when_no_tier_matches(self):
        assert get_bonus_amount(1, {}) == 500.0
        assert get_bonus_amount(5, {}) == 300.0
        assert get_bonus_amount(6, {}) == 250.0
        assert get_bonus_amount(10, {}) == 150.0
        assert get_bonus_amount(15, {}) == 100.0
        assert get_bonus_amount(50, {}) == 50.0
        assert get_bonus_amount(51, {}) == 0.0

    def test_malformed_range_key_ignored(self):
        assert get_bonus_amount(7, {'six-ten': 999}) == 225.0

    def test_negative_amount_floors_at_zero(self):
        assert get_bonus_amount(1, {'1': -10}) == 0.0

    def test_invalid_rank(self):
        assert get_bonus_amount(0, DEFAULT_BONUS_STRUCTURE) == 0.0
        assert get_bonus_amount(None, DEFAULT_BONUS_STRUCTURE) == 0.0


class TestApplyDenseRanks:

    def test_ranks_are_dense_and_ordered_by_score(self):
        entries = [_entry('d', 40), _entry('a', 90), _entry('c', 60), _entry('b', 75)]
        apply_dense_ranks(entries)
        by_rank = sorted(entries, key=lambda e: e.rank)
        assert [e.rank for e in by_rank] == [1, 2, 3, 4]
        assert [e.driver_id for e in by_rank] == ['a', 'b', 'c', 'd']

    def test_ties_broken_by_driver_id(self):
        entries = [_entry('zed', 80), _entry('amy', 80)]
        apply_dense_ranks(entries)
        assert {e.driver_id: e.rank for e in entries} == {'amy': 1, 'zed': 2}

    def test_rank_change_is_previous_minus_new(self):
        entries = [_entry('a', 50, rank=1), _entry('b', 95, rank=4), _entry('c', 40, rank=2), _entry('d', 30, rank=3)]
        apply_dense_ranks(entries)
        b = next(e for e in entries if e.driver_id == 'b')
        a = next(e for e in entries if e.driver_id == 'a')
        assert (b.previous_rank, b.rank, b.rank_change) == (4, 1, 3)
        assert (a.previous_rank, a.rank, a.rank_change) == (1, 2, -1)

    def test_new_entry_has_no_previous_rank(self):
        entries = [_entry('a', 50, rank=1), _entry('new', 60)]
        apply_dense_ranks(entries)
        new = next(e for e in entries if e.driver_id == 'new')
        assert new.rank == 1
        assert new.previous_rank is None
        assert new.rank_change == 0

    def test_twelve_entry_board_new_score_lands_at_rank_seven(self):
        entries = [_entry(f'drv-{i:02d}', 100 - i * 5, rank=i + 1) for i in range(12)]
        mover = entries[-1]
        mover.score = 72   # between 75 (rank 6) and 70 (rank 7)
        apply_dense_ranks(entries)
        assert mover.rank == 7
        assert mover.rank_change == 12 - 7
        assert get_bonus_amount(mover.rank, DEFAULT_BONUS_STRUCTURE) == DEFAULT_BONUS_STRUCTURE['6-10']


class TestRankChangeEvents:

    def test_new_driver_is_notable(self):
        assert is_notable_rank_change(None, 5)

    def test_three_places_is_notable(self):
        assert is_notable_rank_change(8, 5)
        assert is_notable_rank_change(5, 8)

    def test_small_moves_are_not(self):
        assert not is_notable_rank_change(5, 4)


class TestScoreForLeaderboard:

    def test_type_picks_the_component(self):
        score = {'total_score': 80, 'on_time_score': 95}
        assert score_for_leaderboard('efficiency', score) == 80
        assert score_for_leaderboard('on_time', score) == 95
