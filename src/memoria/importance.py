"""Importance decay and access reinforcement.

A memory's current importance decays exponentially with half-life
semantics from its decay anchor (the last access, or the last decay sweep
that persisted a decayed score):

    current = stored * exp(-λ * Δt_days),  λ = ln(2) / half_life_days

Pinned memories always report 100. Every access closes half of the
remaining gap to 100, so repeated use converges to the ceiling while a
single hit cannot erase a long stretch of disuse.

All functions here are pure; nothing is mutated.
"""

import math
import time

from .models import MAX_IMPORTANCE, Memory, clamp_importance
from .settings import DecayRate

SECONDS_PER_DAY = 86400.0

HALF_LIFE_DAYS: dict[DecayRate, float] = {
    DecayRate.FAST: 3.0,
    DecayRate.NORMAL: 7.0,
    DecayRate.SLOW: 30.0,
}

ACCESS_REINFORCEMENT = 0.5


def decay_constant(rate: DecayRate | str) -> float:
    """Per-day decay constant λ for a named rate."""
    return math.log(2) / HALF_LIFE_DAYS[DecayRate(rate)]


def decay(importance: float, elapsed_days: float, rate: DecayRate | str) -> float:
    """Decay an importance score over elapsed days (negative counts as 0)."""
    elapsed_days = max(0.0, elapsed_days)
    return clamp_importance(importance * math.exp(-decay_constant(rate) * elapsed_days))


def current_importance(
    memory: Memory,
    rate: DecayRate | str = DecayRate.NORMAL,
    now: float | None = None,
) -> float:
    """Compute a memory's importance at ``now`` without mutating it.

    Args:
        memory: The memory to score.
        rate: Decay rate preset.
        now: Epoch seconds; defaults to the current time.

    Returns:
        Unrounded importance in [0, 100]; exactly 100 for pinned memories.
    """
    if memory.pinned:
        return MAX_IMPORTANCE

    if now is None:
        now = time.time()
    elapsed_days = (now - memory.decay_anchor) / SECONDS_PER_DAY
    return decay(memory.importance, elapsed_days, rate)


def reinforce(importance: float) -> float:
    """Importance after one access event."""
    importance = clamp_importance(importance)
    return clamp_importance(importance + (MAX_IMPORTANCE - importance) * ACCESS_REINFORCEMENT)


def display_importance(value: float) -> float:
    """Round an importance score to one decimal for display."""
    return round(clamp_importance(value), 1)
