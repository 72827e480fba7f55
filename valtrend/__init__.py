"""Valuation/trend leverage strategy simulator."""

from .config import (
    ConfigError,
    StrategyConfig,
    StrategyConstants,
    build_config,
    config_from_mapping,
    config_values_from_mapping,
    load_config,
    read_config_file,
)
from .dataset import DailyBar, PriceDataError, bars_from_frame, bars_from_records, download_bars, load_bars_csv
from .indicators import TrendSignals, moving_average
from .metrics import PerformanceSummary, max_drawdown, summarize
from .shares import SharesLookupError, ensure_total_shares
from .simulation import (
    DayRecord,
    HistoryPoint,
    SimulationError,
    SimulationResult,
    SimulationState,
    Trade,
    decide_leverage,
    rebalance_to_leverage,
    run_strategy,
    simulate_day,
)
from .valuation import valuation_leverage, valuation_score

__all__ = [
    "ConfigError",
    "StrategyConfig",
    "StrategyConstants",
    "build_config",
    "config_from_mapping",
    "config_values_from_mapping",
    "read_config_file",
    "load_config",
    "DailyBar",
    "PriceDataError",
    "bars_from_frame",
    "bars_from_records",
    "download_bars",
    "load_bars_csv",
    "TrendSignals",
    "moving_average",
    "PerformanceSummary",
    "max_drawdown",
    "summarize",
    "SharesLookupError",
    "ensure_total_shares",
    "DayRecord",
    "HistoryPoint",
    "SimulationError",
    "SimulationResult",
    "SimulationState",
    "Trade",
    "decide_leverage",
    "rebalance_to_leverage",
    "run_strategy",
    "simulate_day",
    "valuation_leverage",
    "valuation_score",
]
