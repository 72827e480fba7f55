"""Valuation curve: market value → target leverage and valuation score."""

from __future__ import annotations

import math
from typing import Sequence

from .config import DEFAULT_CONSTANTS, ConfigError, StrategyConstants


def _check_bounds(low_mv: float, high_mv: float) -> None:
    if not high_mv > low_mv:
        raise ConfigError(f"high_mv ({high_mv}) must exceed low_mv ({low_mv})")


def valuation_leverage(
    mv: float,
    low_mv: float,
    high_mv: float,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> float:
    """Return the baseline leverage as a function of market value.

    Cheap (``mv <= low_mv``) maps to ``max_leverage`` and expensive
    (``mv >= high_mv``) to ``min_leverage``. In between the curve decays
    exponentially with ``r = (mv - low_mv) / (high_mv - low_mv)``::

        min + (max - min) * exp(-curve_param * r)
    """

    _check_bounds(low_mv, high_mv)
    if mv <= low_mv:
        return constants.max_leverage
    if mv >= high_mv:
        return constants.min_leverage
    r = (mv - low_mv) / (high_mv - low_mv)
    span = constants.max_leverage - constants.min_leverage
    return constants.min_leverage + span * math.exp(-constants.curve_param * r)


def valuation_score(mv: float, low_mv: float, high_mv: float) -> float:
    """Signed valuation score: +1 at/below ``low_mv``, -1 at/above ``high_mv``.

    Linear on each side of the midpoint, each side with its own slope.
    """

    _check_bounds(low_mv, high_mv)
    if mv <= low_mv:
        return 1.0
    if mv >= high_mv:
        return -1.0
    mid_mv = (low_mv + high_mv) / 2.0
    if mv <= mid_mv:
        return (mid_mv - mv) / (mid_mv - low_mv)
    return -(mv - mid_mv) / (high_mv - mid_mv)


def average_score(
    market_values: Sequence[float],
    end: int,
    lookback: int,
    low_mv: float,
    high_mv: float,
) -> float:
    """Mean score over ``market_values[max(0, end - lookback):end]``.

    The window excludes ``end`` itself; an empty window scores 0.
    """

    start = max(0, end - lookback)
    window = market_values[start:end]
    if len(window) == 0:
        return 0.0
    return sum(valuation_score(mv, low_mv, high_mv) for mv in window) / len(window)


__all__ = ["average_score", "valuation_leverage", "valuation_score"]
