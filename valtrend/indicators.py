"""Moving averages and the MA-ordering trend classifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .config import DEFAULT_CONSTANTS, StrategyConstants


def moving_average(values: Sequence[float], window: int) -> np.ndarray:
    """Trailing simple moving average with a raw-value warm-up.

    The output has the same length as ``values``. Indices before the first
    full window hold the input value itself instead of NaN.
    """

    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    arr = np.asarray(values, dtype=float)
    if arr.ndim != 1:
        raise ValueError("values must be 1-dimensional")
    out = arr.copy()
    if arr.size >= window:
        windows = np.lib.stride_tricks.sliding_window_view(arr, window)
        out[window - 1 :] = windows.mean(axis=1)
    return out


@dataclass(frozen=True)
class TrendSignals:
    """Precomputed short/mid/long moving averages for a close series."""

    ma_short: np.ndarray
    ma_mid: np.ndarray
    ma_long: np.ndarray
    warmup: int = 20

    @classmethod
    def from_closes(
        cls, closes: Sequence[float], constants: StrategyConstants = DEFAULT_CONSTANTS
    ) -> "TrendSignals":
        short, mid, long_ = constants.ma_windows
        return cls(
            ma_short=moving_average(closes, short),
            ma_mid=moving_average(closes, mid),
            ma_long=moving_average(closes, long_),
            warmup=constants.trend_warmup,
        )

    def is_uptrend(self, i: int) -> bool:
        if i < self.warmup:
            return False
        return bool(self.ma_short[i] > self.ma_mid[i] > self.ma_long[i])

    def is_downtrend(self, i: int) -> bool:
        # No warm-up guard: early raw-value fallbacks can already read as a downtrend.
        return bool(self.ma_short[i] < self.ma_mid[i] < self.ma_long[i])

    def slope_reduction(self, i: int, scale: float = 10.0) -> float:
        """Fraction in [0, 1] measuring how far the mid MA sits from the long MA.

        A non-positive long MA gives 0 (no reduction).
        """

        long_ma = float(self.ma_long[i])
        if not long_ma > 0:
            return 0.0
        slope = (float(self.ma_mid[i]) - long_ma) / long_ma
        return min(1.0, abs(slope) * scale)


__all__ = ["TrendSignals", "moving_average"]
