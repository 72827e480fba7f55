"""Loading daily price bars from CSV files, DataFrames, or Yahoo Finance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

import pandas as pd


class PriceDataError(RuntimeError):
    """Raised when an expected price-series input is malformed."""


@dataclass(frozen=True)
class DailyBar:
    """One trading day. Only ``close`` drives the strategy."""

    date: object
    close: float
    high: Optional[float] = None
    low: Optional[float] = None


def _require_columns(df: pd.DataFrame, required: Iterable[str]) -> None:
    missing = [col for col in required if col not in df.columns]
    if missing:
        joined = ", ".join(missing)
        raise PriceDataError(f"Missing required column(s): {joined}")


def clean_price_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Normalise a ``date``/``close`` frame into a chronological bar table.

    Unparsable dates and closes are dropped along with non-positive closes and
    repeated dates (first occurrence wins). Missing ``high``/``low`` columns
    default to the close.
    """

    _require_columns(df, ["date", "close"])
    df = df.copy()
    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    df["close"] = pd.to_numeric(df["close"], errors="coerce")
    df = df.dropna(subset=["date", "close"])
    df = df[df["close"] > 0]
    df = df.sort_values("date", kind="mergesort")
    df = df.drop_duplicates(subset="date", keep="first")
    for col in ("high", "low"):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(df["close"])
        else:
            df[col] = df["close"]
    if df.empty:
        raise PriceDataError("No rows remain after cleaning price data")
    return df[["date", "close", "high", "low"]].reset_index(drop=True)


def bars_from_frame(df: pd.DataFrame) -> List[DailyBar]:
    """Convert a frame with a ``date`` column or a DatetimeIndex into bars."""

    if "date" not in df.columns:
        if isinstance(df.index, pd.DatetimeIndex):
            df = df.rename_axis("date").reset_index()
        else:
            raise PriceDataError("Frame needs a 'date' column or a DatetimeIndex")
    cleaned = clean_price_frame(df)
    return [
        DailyBar(
            date=row.date.date().isoformat(),
            close=float(row.close),
            high=float(row.high),
            low=float(row.low),
        )
        for row in cleaned.itertuples(index=False)
    ]


def bars_from_records(records: Sequence[Mapping[str, object]]) -> List[DailyBar]:
    """Convert host-style ``{date, close, high, low}`` dicts into bars as-is."""

    bars = []
    for record in records:
        if "close" not in record or "date" not in record:
            raise PriceDataError(f"Bar record missing date/close: {record!r}")
        high = record.get("high")
        low = record.get("low")
        bars.append(
            DailyBar(
                date=record["date"],
                close=float(record["close"]),  # type: ignore[arg-type]
                high=None if high is None else float(high),  # type: ignore[arg-type]
                low=None if low is None else float(low),  # type: ignore[arg-type]
            )
        )
    return bars


def load_bars_csv(
    path: str,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[DailyBar]:
    """Load a CSV with ``date``/``close`` (and optionally ``high``/``low``) columns.

    ``start``/``end`` are inclusive ``YYYY-MM-DD`` bounds.
    """

    df = pd.read_csv(path)
    cleaned = clean_price_frame(df)
    cleaned = _filter_span(cleaned, start, end)
    return bars_from_frame(cleaned)


def _filter_span(df: pd.DataFrame, start: Optional[str], end: Optional[str]) -> pd.DataFrame:
    if start:
        df = df[df["date"] >= pd.to_datetime(start)]
    if end:
        df = df[df["date"] <= pd.to_datetime(end)]
    if df.empty:
        raise PriceDataError(f"No bars between {start or 'start'} and {end or 'end'}")
    return df


def download_bars(
    symbol: str,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> List[DailyBar]:
    """Download unadjusted daily bars for ``symbol`` from Yahoo Finance.

    Market value is price × share count, so closes are left unadjusted for
    dividends.
    """

    try:
        import yfinance as yf  # type: ignore
    except ImportError as exc:  # pragma: no cover - exercised via runtime usage
        raise RuntimeError("yfinance is required to download price history") from exc

    data = yf.download(symbol, period="max", auto_adjust=False, progress=False, threads=False)
    if data is None or data.empty:
        ticker = yf.Ticker(symbol)
        try:
            data = ticker.history(period="max", auto_adjust=False)
        except Exception as exc:  # pragma: no cover - runtime fallback
            raise PriceDataError(f"No price data returned for symbol {symbol}") from exc
        if data is None or data.empty:
            raise PriceDataError(f"No price data returned for symbol {symbol}")

    if isinstance(data.columns, pd.MultiIndex):
        data = data.copy()
        data.columns = data.columns.get_level_values(0)

    _require_columns(data, ["Close"])
    frame = pd.DataFrame(
        {
            "date": pd.to_datetime(data.index),
            "close": data["Close"].to_numpy(dtype=float),
            "high": data["High"].to_numpy(dtype=float) if "High" in data.columns else data["Close"].to_numpy(dtype=float),
            "low": data["Low"].to_numpy(dtype=float) if "Low" in data.columns else data["Close"].to_numpy(dtype=float),
        }
    )
    if getattr(frame["date"].dt, "tz", None) is not None:
        frame["date"] = frame["date"].dt.tz_localize(None)
    cleaned = _filter_span(clean_price_frame(frame), start, end)
    return bars_from_frame(cleaned)


__all__ = [
    "DailyBar",
    "PriceDataError",
    "bars_from_frame",
    "bars_from_records",
    "clean_price_frame",
    "download_bars",
    "load_bars_csv",
]
