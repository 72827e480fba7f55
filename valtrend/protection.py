"""Drawdown protection: entry on deep drawdowns, exit on confirmed recovery."""

from __future__ import annotations

from typing import Sequence, Tuple

from .config import DEFAULT_CONSTANTS, StrategyConstants
from .indicators import TrendSignals
from .valuation import average_score, valuation_score


def update_peak(peak_nav: float, nav: float) -> Tuple[float, float]:
    """Return ``(new_peak, drawdown)`` after observing ``nav``.

    Drawdown is a non-negative fraction of the peak; a non-positive peak
    reports 0.
    """

    peak = nav if nav > peak_nav else peak_nav
    if peak <= 0:
        return peak, 0.0
    return peak, max(0.0, (peak - nav) / peak)


def is_near_low_mv(mv: float, low_mv: float, constants: StrategyConstants = DEFAULT_CONSTANTS) -> bool:
    return mv <= low_mv * (1.0 + constants.low_mv_no_protect)


def should_enter_protection(
    drawdown: float,
    mv: float,
    low_mv: float,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> bool:
    """Deep drawdowns trigger protection unless valuation already sits near the floor."""

    return drawdown > constants.mdd_max and not is_near_low_mv(mv, low_mv, constants)


def entry_leverage(prev_leverage: float, constants: StrategyConstants = DEFAULT_CONSTANTS) -> float:
    return prev_leverage * (1.0 - constants.protect_reduce)


def should_exit_protection(uptrend: bool, current_score: float, recent_avg_score: float) -> bool:
    """Leave protection on an uptrend once valuation is no richer than its recent average."""

    return uptrend and current_score <= recent_avg_score


def protected_day_leverage(
    i: int,
    prev_leverage: float,
    target_leverage: float,
    market_values: Sequence[float],
    signals: TrendSignals,
    low_mv: float,
    high_mv: float,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> Tuple[float, bool, str]:
    """Resolve a day that starts in protection.

    Returns ``(leverage, still_protected, rule)``.
    """

    avg = average_score(market_values, i, constants.recover_days, low_mv, high_mv)
    current = valuation_score(market_values[i], low_mv, high_mv)
    if should_exit_protection(signals.is_uptrend(i), current, avg):
        return target_leverage, False, "protect_exit"
    if signals.is_downtrend(i):
        reduce = signals.slope_reduction(i, constants.slope_scale)
        leverage = max(constants.min_leverage, prev_leverage * (1.0 - reduce * constants.max_trend_cut))
        return leverage, True, "protect_downtrend"
    return prev_leverage, True, "protect_hold"


__all__ = [
    "entry_leverage",
    "is_near_low_mv",
    "protected_day_leverage",
    "should_enter_protection",
    "should_exit_protection",
    "update_peak",
]
