"""Credibility formulas. The single authoritative implementation.

Any server-side enforcement must call these functions (or reproduce them
exactly, including ``math.pow``). Results are unrounded floats; rounding is
a display concern.

  weekly allocation   dC = 2 * n_goals^1.5
  per-goal gain       dC / n_goals
  completion bonus    +4 when progress >= frequency
  failure penalty     -2 * n_goals_missed
"""

from __future__ import annotations

import math
from typing import TypedDict

COMPLETION_BONUS = 4
PENALTY_PER_MISSED_GOAL = -2


class WeeklyOutcome(TypedDict):
    bonus: float
    penalty: float
    net: float


def weekly_allocation(n_goals: int) -> float:
    """Total credibility obtainable in a week from goal completions alone.

    weekly_allocation(3) -> ~10.392, weekly_allocation(4) -> 16.0
    """
    if n_goals <= 0:
        return 0
    return 2 * math.pow(n_goals, 1.5)


def per_goal_gain(n_goals: int) -> float:
    """Credibility for one logged goal; n_goals logs sum to the allocation."""
    if n_goals <= 0:
        return 0
    return weekly_allocation(n_goals) / n_goals


def completion_bonus() -> int:
    return COMPLETION_BONUS


def failure_penalty(n_missed: int) -> int:
    """Penalty (negative) for goals missed at settlement."""
    if n_missed <= 0:
        return 0
    return PENALTY_PER_MISSED_GOAL * n_missed


def weekly_outcome(frequency: int, current_progress: int) -> WeeklyOutcome:
    """Bonus/penalty if the week closed now. Exactly one of them is non-zero.

    weekly_outcome(3, 3) -> {"bonus": 4, "penalty": 0, "net": 4}
    weekly_outcome(3, 1) -> {"bonus": 0, "penalty": -4, "net": -4}
    """
    if current_progress >= frequency:
        return {"bonus": completion_bonus(), "penalty": 0, "net": completion_bonus()}
    penalty = failure_penalty(frequency - current_progress)
    return {"bonus": 0, "penalty": penalty, "net": penalty}


def weekly_goal_credibility(frequency: int, completed_count: int) -> float:
    """Sum of per-goal gains for a week, excluding bonus/penalty."""
    return per_goal_gain(frequency) * completed_count


def preview_goal_log_gain(frequency: int) -> float:
    """What the next goal log is worth for a user committed to ``frequency``."""
    return per_goal_gain(frequency)
