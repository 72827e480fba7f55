"""Summary statistics for a finished simulation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Sequence

import numpy as np
import pandas as pd

from .simulation import SimulationResult


@dataclass(frozen=True)
class PerformanceSummary:
    start: object
    end: object
    years: float
    final_nav: float
    total_return: float
    cagr: float
    max_drawdown: float
    trade_counts: Dict[str, int]
    protection_entries: int

    def summary_lines(self) -> list[str]:
        counts = ", ".join(f"{k}={v}" for k, v in sorted(self.trade_counts.items())) or "none"
        return [
            f"Strategy span: {self.start} -> {self.end} ({self.years:.2f} years)",
            f"Final NAV: {self.final_nav:,.2f}",
            f"Total return: {self.total_return * 100.0:.2f}%",
            f"Strategy CAGR: {self.cagr * 100.0:.2f}%",
            f"Max drawdown: {self.max_drawdown * 100.0:.2f}%",
            f"Trades: {counts}",
            f"Protection entries: {self.protection_entries}",
        ]


def max_drawdown(values: Sequence[float]) -> float:
    """Most negative ``value / running_max - 1`` (0 for monotone or empty input)."""

    arr = np.asarray(values, dtype=float)
    if arr.size == 0 or arr[0] <= 0:
        return 0.0
    running_max = np.maximum.accumulate(arr)
    drawdowns = arr / running_max - 1.0
    return float(min(0.0, np.nanmin(drawdowns)))


def summarize(result: SimulationResult, capital: float) -> PerformanceSummary:
    """Compute span, return, CAGR and drawdown from ``result.history``.

    The equity curve starts at ``capital`` (day 0) followed by each history
    point.
    """

    values = [float(capital)] + [p.val for p in result.history]
    final_nav = values[-1]
    total_return = final_nav / capital - 1.0

    start = result.start_date
    end = result.history[-1].date if result.history else start
    try:
        years = (pd.Timestamp(end) - pd.Timestamp(start)).days / 365.25
    except (TypeError, ValueError):
        years = float("nan")

    if not math.isnan(years) and years > 0 and final_nav > 0:
        cagr = (final_nav / capital) ** (1.0 / years) - 1.0
    else:
        cagr = float("nan")

    counts: Dict[str, int] = {}
    for trade in result.trades:
        counts[trade.type] = counts.get(trade.type, 0) + 1

    return PerformanceSummary(
        start=start,
        end=end,
        years=years,
        final_nav=final_nav,
        total_return=total_return,
        cagr=cagr,
        max_drawdown=max_drawdown(values),
        trade_counts=counts,
        protection_entries=sum(1 for d in result.days if d.rule == "protect_enter"),
    )


__all__ = ["PerformanceSummary", "max_drawdown", "summarize"]
