"""Strategy configuration and fixed strategy constants."""

from __future__ import annotations

import json
import math
import numbers
from dataclasses import dataclass, fields, replace
from typing import Dict, Mapping, Tuple

MV_UNIT = 100_000_000.0  # min/max caps are quoted in hundred-millions


class ConfigError(ValueError):
    """Raised when a strategy configuration cannot be simulated."""


@dataclass(frozen=True)
class StrategyConstants:
    """Fixed constants of the valuation/trend leverage strategy."""

    max_leverage: float = 2.0
    min_leverage: float = 0.01
    curve_param: float = 2.5
    mdd_max: float = 0.15
    protect_reduce: float = 0.6
    recover_days: int = 10
    low_mv_no_protect: float = 0.05
    fee_rate: float = 0.00025
    trend_warmup: int = 20
    ma_windows: Tuple[int, int, int] = (5, 10, 20)
    slope_scale: float = 10.0
    max_trend_cut: float = 0.3
    dip_threshold: float = -0.02
    dip_boost: float = 1.05


DEFAULT_CONSTANTS = StrategyConstants()


@dataclass
class StrategyConfig:
    """Capital and sizing inputs for a single-instrument run.

    ``min_cap``/``max_cap`` are market-value bounds in hundred-millions of
    currency units; ``total_shares`` converts a close into a market value.
    """

    capital: float
    min_cap: float
    max_cap: float
    total_shares: float
    lot_size: int = 100

    @property
    def low_mv(self) -> float:
        return self.min_cap * MV_UNIT

    @property
    def high_mv(self) -> float:
        return self.max_cap * MV_UNIT

    def validate(self) -> "StrategyConfig":
        for name in ("capital", "min_cap", "max_cap", "total_shares"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Real):
                raise ConfigError(f"{name} must be a number, got {value!r}")
            if not math.isfinite(value):
                raise ConfigError(f"{name} must be finite, got {value!r}")
        if self.capital <= 0:
            raise ConfigError(f"capital must be positive, got {self.capital}")
        if self.total_shares <= 0:
            raise ConfigError(f"total_shares must be positive, got {self.total_shares}")
        if self.min_cap >= self.max_cap:
            raise ConfigError(
                f"min_cap ({self.min_cap}) must be strictly below max_cap ({self.max_cap})"
            )
        if isinstance(self.lot_size, bool) or not isinstance(self.lot_size, numbers.Integral) or self.lot_size <= 0:
            raise ConfigError(f"lot_size must be a positive integer, got {self.lot_size!r}")
        return self


_CONFIG_KEYS = {
    "capital": ("capital",),
    "min_cap": ("minCap", "min_cap"),
    "max_cap": ("maxCap", "max_cap"),
    "total_shares": ("totalShares", "total_shares"),
    "lot_size": ("lotSize", "lot_size"),
}
REQUIRED_FIELDS = ("capital", "min_cap", "max_cap", "total_shares")


def _lookup(payload: Mapping[str, object], keys: Tuple[str, ...]):
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return None


def constants_from_mapping(
    overrides: Mapping[str, object], base: StrategyConstants = DEFAULT_CONSTANTS
) -> StrategyConstants:
    """Return ``base`` with the named fields replaced."""

    known = {f.name for f in fields(StrategyConstants)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise ConfigError(f"Unknown strategy constant(s): {', '.join(unknown)}")
    cleaned = dict(overrides)
    if "ma_windows" in cleaned:
        windows = tuple(int(w) for w in cleaned["ma_windows"])  # type: ignore[union-attr]
        if len(windows) != 3 or any(w <= 0 for w in windows):
            raise ConfigError("ma_windows must hold three positive window lengths")
        cleaned["ma_windows"] = windows
    for key in ("recover_days", "trend_warmup"):
        if key in cleaned:
            cleaned[key] = int(cleaned[key])  # type: ignore[arg-type]
    constants = replace(base, **cleaned)
    if not 0 < constants.min_leverage <= constants.max_leverage:
        raise ConfigError("min_leverage must be positive and no greater than max_leverage")
    return constants


def config_values_from_mapping(
    payload: Mapping[str, object],
) -> Tuple[Dict[str, object], StrategyConstants]:
    """Collect whichever config fields ``payload`` sets, plus its constants.

    Missing fields are simply absent from the returned dict so callers can
    fill them from other sources before validating.
    """

    values: Dict[str, object] = {}
    for name, keys in _CONFIG_KEYS.items():
        value = _lookup(payload, keys)
        if value is not None:
            values[name] = value

    overrides = payload.get("constants") or {}
    if not isinstance(overrides, Mapping):
        raise ConfigError("constants must be a JSON object")
    return values, constants_from_mapping(overrides)


def build_config(values: Mapping[str, object]) -> StrategyConfig:
    """Validated :class:`StrategyConfig` from snake_case ``values``."""

    missing = [_CONFIG_KEYS[name][0] for name in REQUIRED_FIELDS if values.get(name) is None]
    if missing:
        raise ConfigError(f"Missing required config field(s): {', '.join(missing)}")
    kwargs = {name: values[name] for name in _CONFIG_KEYS if values.get(name) is not None}
    return StrategyConfig(**kwargs).validate()  # type: ignore[arg-type]


def config_from_mapping(payload: Mapping[str, object]) -> Tuple[StrategyConfig, StrategyConstants]:
    """Build a validated config (and constants) from a host-style mapping."""

    values, constants = config_values_from_mapping(payload)
    return build_config(values), constants


def read_config_file(path: str) -> Dict[str, object]:
    """Raw JSON object from a config file."""

    with open(path, "r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return payload


def load_config(path: str) -> Tuple[StrategyConfig, StrategyConstants]:
    """Load a complete JSON config file."""

    return config_from_mapping(read_config_file(path))


__all__ = [
    "ConfigError",
    "DEFAULT_CONSTANTS",
    "MV_UNIT",
    "StrategyConfig",
    "StrategyConstants",
    "REQUIRED_FIELDS",
    "build_config",
    "config_from_mapping",
    "config_values_from_mapping",
    "constants_from_mapping",
    "load_config",
    "read_config_file",
]
