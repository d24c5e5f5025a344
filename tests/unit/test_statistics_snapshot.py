"""Statistics snapshot unit tests."""

from __future__ import annotations

import pytest

from credo.badges.statistics import COUNTER_NAMES, StatisticsSnapshot
from credo.errors import ValidationError


def test_counters_default_to_zero():
    snapshot = StatisticsSnapshot("u1")
    assert all(snapshot.counter(name) == 0 for name in COUNTER_NAMES)


def test_all_counters_present():
    assert set(COUNTER_NAMES) == {
        "alliance_quests_completed",
        "battle_quests_won",
        "speculation_bets_won_for",
        "speculation_bets_won_against",
        "speculation_quests_resolved",
        "lifetime_mojo_earned",
        "lifetime_mojo_spent_on_ranks",
        "lifetime_goals_logged",
    }


def test_negative_counter_is_malformed():
    with pytest.raises(ValidationError, match="Malformed"):
        StatisticsSnapshot("u1", battle_quests_won=-1)


def test_missing_counter_is_malformed():
    with pytest.raises(ValidationError):
        StatisticsSnapshot("u1", lifetime_mojo_earned=None)


def test_unknown_counter_name():
    with pytest.raises(ValidationError, match="Unknown statistics counter"):
        StatisticsSnapshot("u1").counter("user_id")
