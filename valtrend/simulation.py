"""Day-by-day simulation of the valuation/trend leverage strategy.

Each day the strategy derives a baseline leverage from the valuation curve,
lets the drawdown protection and the moving-average trend rules override it,
clamps the result to ``[min_leverage, max_leverage]`` and trades whole lots
towards ``nav * leverage`` of exposure.

State carried between days is a :class:`SimulationState` value; the per-day
functions take the previous state and return the next one, so any single day
can be replayed from an arbitrary prior state.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields, replace
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_CONSTANTS, StrategyConfig, StrategyConstants
from .dataset import DailyBar, PriceDataError, bars_from_frame
from .indicators import TrendSignals
from .protection import entry_leverage, protected_day_leverage, should_enter_protection, update_peak
from .valuation import valuation_leverage

TRADE_INIT = "INIT"
TRADE_BUY = "BUY"
TRADE_SELL = "SELL"


class SimulationError(RuntimeError):
    """Raised when the simulation produces a non-finite leverage or value."""


@dataclass(frozen=True)
class SimulationState:
    cash: float
    shares: int
    prev_leverage: float
    peak_nav: float
    in_protect: bool = False

    def nav(self, price: float) -> float:
        return self.cash + self.shares * price


@dataclass(frozen=True)
class Trade:
    date: object
    type: str
    price: float
    volume: int


@dataclass(frozen=True)
class HistoryPoint:
    date: object
    val: float
    close: float


@dataclass(frozen=True)
class DayRecord:
    """Diagnostics for one simulated day."""

    date: object
    close: float
    market_value: float
    target_leverage: float
    leverage: float
    drawdown: float
    peak_nav: float
    in_protect: bool
    rule: str


@dataclass(frozen=True)
class LeverageDecision:
    target: float
    leverage: float
    drawdown: float
    peak_nav: float
    in_protect: bool
    rule: str


@dataclass(frozen=True)
class MarketContext:
    """Per-run inputs precomputed once over the whole bar sequence."""

    closes: np.ndarray
    market_values: np.ndarray
    signals: TrendSignals
    low_mv: float
    high_mv: float

    @classmethod
    def build(
        cls,
        bars: Sequence[DailyBar],
        config: StrategyConfig,
        constants: StrategyConstants = DEFAULT_CONSTANTS,
    ) -> "MarketContext":
        closes = np.asarray([bar.close for bar in bars], dtype=float)
        return cls(
            closes=closes,
            market_values=closes * float(config.total_shares),
            signals=TrendSignals.from_closes(closes, constants),
            low_mv=config.low_mv,
            high_mv=config.high_mv,
        )


@dataclass
class SimulationResult:
    history: List[HistoryPoint] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    days: List[DayRecord] = field(default_factory=list)
    grid_lines: list = field(default_factory=list)
    start_date: object = None

    def history_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(p) for p in self.history], columns=["date", "val", "close"])

    def trades_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(t) for t in self.trades], columns=["date", "type", "price", "volume"])

    def days_frame(self) -> pd.DataFrame:
        columns = [f.name for f in fields(DayRecord)]
        return pd.DataFrame([asdict(d) for d in self.days], columns=columns)

    def to_payload(self) -> dict:
        """Result in the ``{history, trades, gridLines}`` shape used by chart front-ends."""

        return {
            "history": [{"date": p.date, "val": p.val, "close": p.close} for p in self.history],
            "trades": [{"date": t.date, "type": t.type, "price": t.price} for t in self.trades],
            "gridLines": list(self.grid_lines),
        }


def lot_volume(amount: float, price: float, lot_size: int) -> int:
    """Whole-lot share count worth at most ``abs(amount)`` at ``price``."""

    return int(math.floor(abs(amount) / price / lot_size)) * lot_size


def rebalance_to_leverage(
    cash: float,
    shares: int,
    price: float,
    leverage: float,
    lot_size: int,
    fee_rate: float,
) -> Tuple[float, int, Optional[str], int]:
    """Trade whole lots so exposure approaches ``nav * leverage``.

    Returns ``(cash, shares, trade_type, volume)``; ``trade_type`` is None when
    the required move is smaller than a lot. Sells never exceed held shares.
    """

    total_asset = cash + shares * price
    diff = total_asset * leverage - shares * price
    diff_vol = lot_volume(diff, price, lot_size)
    if diff_vol <= 0:
        return cash, shares, None, 0
    if diff > 0:
        cash -= diff_vol * price * (1.0 + fee_rate)
        return cash, shares + diff_vol, TRADE_BUY, diff_vol
    sell_vol = min(shares, diff_vol)
    if sell_vol < lot_size:
        return cash, shares, None, 0
    cash += sell_vol * price * (1.0 - fee_rate)
    return cash, shares - sell_vol, TRADE_SELL, sell_vol


def initialize_position(
    bar: DailyBar,
    config: StrategyConfig,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> Tuple[SimulationState, Optional[Trade]]:
    """Day 0: buy whole lots up to ``capital * leverage(mv)``."""

    price = float(bar.close)
    init_leverage = valuation_leverage(price * config.total_shares, config.low_mv, config.high_mv, constants)
    cash = float(config.capital)
    shares = 0
    trade = None
    buy_vol = lot_volume(config.capital * init_leverage, price, config.lot_size)
    if buy_vol > 0:
        cash -= buy_vol * price * (1.0 + constants.fee_rate)
        shares = buy_vol
        trade = Trade(date=bar.date, type=TRADE_INIT, price=price, volume=buy_vol)
    state = SimulationState(
        cash=cash,
        shares=shares,
        prev_leverage=init_leverage,
        peak_nav=float(config.capital),
        in_protect=False,
    )
    return state, trade


def decide_leverage(
    state: SimulationState,
    i: int,
    ctx: MarketContext,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> LeverageDecision:
    """Arbitrate the day's leverage for day ``i >= 1``.

    Order: protection (already active, or entered today) resolves the day on
    its own; otherwise an uptrend holds or boosts, a downtrend ratchets down,
    and anything else follows the valuation curve.
    """

    price = float(ctx.closes[i])
    mv = float(ctx.market_values[i])
    target = valuation_leverage(mv, ctx.low_mv, ctx.high_mv, constants)
    peak, drawdown = update_peak(state.peak_nav, state.nav(price))
    prev = state.prev_leverage
    in_protect = state.in_protect

    if in_protect:
        leverage, in_protect, rule = protected_day_leverage(
            i, prev, target, ctx.market_values, ctx.signals, ctx.low_mv, ctx.high_mv, constants
        )
    elif should_enter_protection(drawdown, mv, ctx.low_mv, constants):
        leverage = entry_leverage(prev, constants)
        in_protect = True
        peak = state.nav(price)
        rule = "protect_enter"
    elif ctx.signals.is_uptrend(i):
        day_return = price / float(ctx.closes[i - 1]) - 1.0
        if day_return < constants.dip_threshold:
            leverage = prev * constants.dip_boost
            rule = "uptrend_dip"
        else:
            leverage = max(prev, target)
            rule = "uptrend_hold"
    elif ctx.signals.is_downtrend(i):
        reduce = ctx.signals.slope_reduction(i, constants.slope_scale)
        leverage = max(constants.min_leverage, prev * (1.0 - reduce * constants.max_trend_cut))
        rule = "downtrend"
    else:
        leverage = target
        rule = "valuation"

    if not math.isfinite(leverage):
        raise SimulationError(f"Non-finite leverage {leverage!r} on day {i} ({rule})")
    leverage = min(max(leverage, constants.min_leverage), constants.max_leverage)
    return LeverageDecision(
        target=target,
        leverage=leverage,
        drawdown=drawdown,
        peak_nav=peak,
        in_protect=in_protect,
        rule=rule,
    )


def simulate_day(
    state: SimulationState,
    i: int,
    bar: DailyBar,
    ctx: MarketContext,
    config: StrategyConfig,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> Tuple[SimulationState, Optional[Trade], HistoryPoint, DayRecord]:
    """Advance one day: decide leverage, rebalance, and record the outcome."""

    price = float(bar.close)
    decision = decide_leverage(state, i, ctx, constants)
    cash, shares, trade_type, volume = rebalance_to_leverage(
        state.cash, state.shares, price, decision.leverage, config.lot_size, constants.fee_rate
    )
    trade = None
    if trade_type is not None:
        trade = Trade(date=bar.date, type=trade_type, price=price, volume=volume)

    next_state = replace(
        state,
        cash=cash,
        shares=shares,
        prev_leverage=decision.leverage,
        peak_nav=decision.peak_nav,
        in_protect=decision.in_protect,
    )
    nav = next_state.nav(price)
    if not math.isfinite(nav):
        raise SimulationError(f"Non-finite net asset value on day {i}")

    point = HistoryPoint(date=bar.date, val=nav, close=price)
    record = DayRecord(
        date=bar.date,
        close=price,
        market_value=float(ctx.market_values[i]),
        target_leverage=decision.target,
        leverage=decision.leverage,
        drawdown=decision.drawdown,
        peak_nav=decision.peak_nav,
        in_protect=decision.in_protect,
        rule=decision.rule,
    )
    return next_state, trade, point, record


def run_strategy(
    bars: Union[Sequence[DailyBar], pd.DataFrame],
    config: StrategyConfig,
    constants: StrategyConstants = DEFAULT_CONSTANTS,
) -> SimulationResult:
    """Simulate the strategy over chronologically ordered daily bars."""

    config.validate()
    if isinstance(bars, pd.DataFrame):
        bars = bars_from_frame(bars)
    if len(bars) == 0:
        raise ValueError("At least one bar is required")
    closes = np.asarray([bar.close for bar in bars], dtype=float)
    if not np.all(np.isfinite(closes)) or np.any(closes <= 0):
        raise PriceDataError("Bar closes must be finite and positive")

    ctx = MarketContext.build(bars, config, constants)
    result = SimulationResult(start_date=bars[0].date)

    state, trade = initialize_position(bars[0], config, constants)
    if trade is not None:
        result.trades.append(trade)

    for i in range(1, len(bars)):
        state, trade, point, record = simulate_day(state, i, bars[i], ctx, config, constants)
        if trade is not None:
            result.trades.append(trade)
        result.history.append(point)
        result.days.append(record)

    return result


__all__ = [
    "DayRecord",
    "HistoryPoint",
    "LeverageDecision",
    "MarketContext",
    "SimulationError",
    "SimulationResult",
    "SimulationState",
    "TRADE_BUY",
    "TRADE_INIT",
    "TRADE_SELL",
    "Trade",
    "decide_leverage",
    "initialize_position",
    "lot_volume",
    "rebalance_to_leverage",
    "run_strategy",
    "simulate_day",
]
