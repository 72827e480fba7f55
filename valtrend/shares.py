"""Fetching and caching a symbol's total share count."""

from __future__ import annotations

import datetime as _dt
import json
import os
from typing import Optional, Tuple

SHARES_FILENAME = "shares.json"


class SharesLookupError(RuntimeError):
    """Raised when no share count can be fetched or read from cache."""


def _positive_or_none(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _read_cache(path: str) -> Tuple[Optional[float], Optional[_dt.date]]:
    """Cached ``(total_shares, as_of)``; either is None when absent or unreadable."""

    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, ValueError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    as_of = None
    raw_as_of = payload.get("as_of")
    if isinstance(raw_as_of, str):
        try:
            as_of = _dt.date.fromisoformat(raw_as_of)
        except ValueError:
            as_of = None
    return _positive_or_none(payload.get("total_shares")), as_of


def _write_cache(path: str, symbol: str, shares: float, as_of: _dt.date) -> None:
    payload = {"symbol": symbol, "source": "yfinance", "total_shares": shares, "as_of": as_of.isoformat()}
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, sort_keys=True)
        fh.write("\n")


def fetch_shares_outstanding(symbol: str) -> Optional[float]:
    """Return Yahoo Finance's share count for ``symbol`` or None."""

    try:
        import yfinance as yf  # type: ignore
    except ImportError:  # pragma: no cover - runtime dependency
        return None

    ticker = yf.Ticker(symbol)
    try:
        fast_info = getattr(ticker, "fast_info", None)
        if fast_info is not None:
            candidate = _positive_or_none(fast_info["shares"])
            if candidate is not None:
                return candidate
    except Exception:
        pass

    try:
        info = ticker.info  # type: ignore[attr-defined]
    except Exception:
        return None
    if isinstance(info, dict):
        for key in ("sharesOutstanding", "impliedSharesOutstanding"):
            candidate = _positive_or_none(info.get(key))
            if candidate is not None:
                return candidate
    return None


def ensure_total_shares(
    symbol: str,
    cache_dir: str,
    *,
    stale_after_days: int = 30,
) -> float:
    """Cached share count for ``symbol``, refreshed when missing or stale.

    A stale cached value is kept when the refresh fails.
    """

    os.makedirs(cache_dir, exist_ok=True)
    path = os.path.join(cache_dir, f"{symbol.upper()}_{SHARES_FILENAME}")
    cached, as_of = _read_cache(path)
    today = _dt.date.today()

    if cached is not None and as_of is not None and 0 <= (today - as_of).days <= stale_after_days:
        return cached

    fetched = fetch_shares_outstanding(symbol)
    if fetched is not None:
        _write_cache(path, symbol.upper(), fetched, today)
        return fetched
    if cached is not None:
        return cached
    raise SharesLookupError(f"No share count available for {symbol}; pass --total-shares explicitly")


__all__ = ["SHARES_FILENAME", "SharesLookupError", "ensure_total_shares", "fetch_shares_outstanding"]
