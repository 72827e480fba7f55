"""
Valuation/trend leverage strategy simulator

Overview
--------
This script replays a leveraged single-stock strategy over daily closes. The
stock's market value (close × total shares) is placed inside a valuation band
[min-cap, max-cap] (in hundred-millions) and mapped to a target leverage:

  leverage(mv) = 0.01 + (2.0 - 0.01) * exp(-2.5 * r),  r = (mv - low) / (high - low)

clamped to 2.0 at/below the band and 0.01 at/above it. The baseline is then
overridden by trend and drawdown rules:

- Uptrend (MA5 > MA10 > MA20, from day 20): never de-lever on valuation alone;
  a single-day drop worse than -2% lifts leverage by 5%.
- Downtrend (MA5 < MA10 < MA20): cut leverage by up to 30% per day, scaled by
  the MA10/MA20 gap.
- Protection: a drawdown beyond 15% (unless valuation is within 5% of the
  band floor) cuts leverage by 60% and holds it until an uptrend appears with
  the valuation score no richer than its 10-day average.

Trades are whole lots (default 100 shares) with a 0.025% fee; leverage above
1.0 borrows cash.

Inputs
------
- A CSV with date, close (optionally high, low) columns, or ``--symbol`` to
  download unadjusted daily bars from Yahoo Finance.
- Strategy sizing via ``--config`` (JSON) and/or flags. With ``--symbol`` and
  no ``--total-shares`` the share count is looked up and cached.

Outputs
-------
- Printed summary (span, final NAV, CAGR, max drawdown, trade counts).
- Plot of strategy NAV vs buy-and-hold, with leverage on a second panel.
- Optional CSV/JSON exports of history, per-day diagnostics, and the
  ``{history, trades, gridLines}`` payload.

CLI
---
python simulate_valtrend.py (--csv bars.csv | --symbol 600519.SS) [--config strategy.json] \
  [--capital 1000000] [--min-cap 5] [--max-cap 15] [--total-shares 1e8] [--lot-size 100] \
  [--start 2015-01-01] [--end 2024-12-31] [--print-trades] [--save-csv history.csv] \
  [--save-debug-csv days.csv] [--save-json result.json] [--save-plot nav.png] [--no-show]
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Optional

import matplotlib.pyplot as plt
import pandas as pd

from valtrend import (
    ConfigError,
    PriceDataError,
    SharesLookupError,
    StrategyConstants,
    build_config,
    config_values_from_mapping,
    download_bars,
    ensure_total_shares,
    load_bars_csv,
    read_config_file,
    run_strategy,
    summarize,
)

SHARES_CACHE_DIR = "symbol_data"


def merge_config(args, symbol: Optional[str]):
    """Merge ``--config`` JSON, flag overrides and the share lookup, then validate."""

    if args.config:
        values, constants = config_values_from_mapping(read_config_file(args.config))
    else:
        values, constants = {}, StrategyConstants()

    for name in ("capital", "min_cap", "max_cap", "total_shares", "lot_size"):
        flag = getattr(args, name)
        if flag is not None:
            values[name] = flag

    if values.get("total_shares") is None and symbol:
        values["total_shares"] = ensure_total_shares(symbol, SHARES_CACHE_DIR)

    return build_config(values), constants


def plot_result(result, config, constants, *, save_plot: Optional[str], show: bool) -> None:
    history = result.history_frame()
    days = result.days_frame()
    if history.empty:
        print("Nothing to plot: the series has a single bar.")
        return
    dates = pd.to_datetime(history["date"])
    strategy_norm = history["val"] / config.capital
    hold_norm = history["close"] / history["close"].iloc[0]

    fig, (ax_nav, ax_lev) = plt.subplots(2, 1, figsize=(11, 7), sharex=True, gridspec_kw={"height_ratios": [3, 1]})
    ax_nav.semilogy(dates, strategy_norm, label="Strategy NAV", color="#d62728")
    ax_nav.semilogy(dates, hold_norm, label="Buy & hold", color="#1f77b4")

    trades = result.trades_frame()
    if not trades.empty:
        nav_by_date = pd.Series(strategy_norm.to_numpy(), index=dates)
        for kind, marker, color in (("BUY", "^", "green"), ("SELL", "v", "black")):
            sub = trades[trades["type"] == kind]
            if sub.empty:
                continue
            points = nav_by_date.reindex(pd.to_datetime(sub["date"]))
            ax_nav.scatter(points.index, points.to_numpy(), marker=marker, color=color, s=12, label=kind)

    ax_nav.set_ylabel("Normalized value (log scale)")
    ax_nav.grid(True, which="both", linestyle=":", alpha=0.4)
    ax_nav.legend(loc="upper left")
    ax_nav.set_title("Valuation/trend leverage strategy")

    ax_lev.plot(dates, days["leverage"], color="#2ca02c", label="Leverage")
    ax_lev.plot(dates, days["target_leverage"], color="#7f7f7f", linestyle=":", label="Valuation target")
    protect = days["in_protect"].astype(bool).to_numpy()
    if protect.any():
        ax_lev.fill_between(dates, 0, constants.max_leverage, where=protect, color="orange", alpha=0.2, label="Protection")
    ax_lev.set_ylabel("Leverage")
    ax_lev.set_xlabel("Date")
    ax_lev.grid(True, linestyle=":", alpha=0.4)
    ax_lev.legend(loc="upper left")
    fig.tight_layout()

    if save_plot:
        fig.savefig(save_plot, dpi=150)
    if show:
        plt.show()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Simulate the valuation/trend leverage strategy on daily bars")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--csv", default=None, help="CSV with date/close (optional high/low) columns")
    source.add_argument("--symbol", default=None, help="Download unadjusted bars for this Yahoo Finance symbol")
    parser.add_argument("--config", default=None, help="JSON config (capital, minCap, maxCap, totalShares, lotSize)")
    parser.add_argument("--capital", type=float, default=None, help="Starting capital")
    parser.add_argument("--min-cap", dest="min_cap", type=float, default=None, help="Valuation floor (hundred-millions)")
    parser.add_argument("--max-cap", dest="max_cap", type=float, default=None, help="Valuation ceiling (hundred-millions)")
    parser.add_argument("--total-shares", dest="total_shares", type=float, default=None, help="Total share count")
    parser.add_argument("--lot-size", dest="lot_size", type=int, default=None, help="Trading lot size (default 100)")
    parser.add_argument("--start", default=None, help="Start date (YYYY-MM-DD) inclusive")
    parser.add_argument("--end", default=None, help="End date (YYYY-MM-DD) inclusive")
    parser.add_argument("--print-trades", action="store_true", help="Print the executed trade log")
    parser.add_argument("--save-csv", default=None, help="If set, save the daily NAV history here")
    parser.add_argument("--save-debug-csv", default=None, help="If set, save per-day leverage diagnostics here")
    parser.add_argument("--save-json", default=None, help="If set, save the {history, trades, gridLines} payload here")
    parser.add_argument("--save-plot", default=None, help="If set, save the plot PNG here")
    parser.add_argument("--no-show", action="store_true", help="Do not display the plot")
    args = parser.parse_args(argv)

    try:
        if args.csv:
            bars = load_bars_csv(args.csv, start=args.start, end=args.end)
        else:
            bars = download_bars(args.symbol, start=args.start, end=args.end)
        config, constants = merge_config(args, args.symbol)
    except ConfigError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 2
    except PriceDataError as exc:
        print(f"Invalid price data: {exc}", file=sys.stderr)
        return 2
    except SharesLookupError as exc:
        print(f"Share count lookup failed: {exc}", file=sys.stderr)
        return 2

    result = run_strategy(bars, config, constants)
    summary = summarize(result, config.capital)
    for line in summary.summary_lines():
        print(line)

    if args.print_trades:
        print()
        trades = result.trades_frame()
        if trades.empty:
            print("No trades were executed in the specified range.")
        else:
            print(trades.to_string(index=False))

    if args.save_csv:
        result.history_frame().to_csv(args.save_csv, index=False)
    if args.save_debug_csv:
        result.days_frame().to_csv(args.save_debug_csv, index=False)
    if args.save_json:
        with open(args.save_json, "w", encoding="utf-8") as fh:
            json.dump(result.to_payload(), fh, indent=2, default=str)
            fh.write("\n")

    if args.save_plot or not args.no_show:
        plot_result(result, config, constants, save_plot=args.save_plot, show=not args.no_show)
    return 0


if __name__ == "__main__":
    sys.exit(main())
