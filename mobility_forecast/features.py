from __future__ import annotations

"""
Feature engineering (no-leakage rules)
======================================

Per-county lag features for daily case forecasting.

## Lag rule (critical)
For a row of county \(c\) on date \(t\), the lag-\(k\) value of a column is the
raw value of that column for county \(c\) on date \(t-k\) exactly. Lags are looked
up by calendar date, not by row offset, so a gap in a county's dates can never
make a lag reach further back than \(k\) days. If date \(t-k\) is absent for that
county, the lag is undefined (NaN) and the row is later excluded.

No feature ever reads a value dated on/after the row's own date except the
same-day mobility indicators used by the `full` set.

## Feature sets
- `baseline`:     population density, lag-1/7/14 case counts
- `full`:         baseline + same-day mobility indicators
- `full_lagged`:  baseline + lag-7 mobility indicators
"""

from typing import Iterable

import pandas as pd

from .data import CASES_COL, COUNTY_COL, DATE_COL, DENSITY_COL, MOBILITY_COLS

CASE_LAGS = (1, 7, 14)
MOBILITY_LAG = 7
MAX_LAG = max(CASE_LAGS + (MOBILITY_LAG,))

TARGET_COL = CASES_COL


def lag_name(col: str, k: int) -> str:
    return f"{col}_lag{k}"


CASE_LAG_COLS = tuple(lag_name(CASES_COL, k) for k in CASE_LAGS)
MOBILITY_LAG_COLS = tuple(lag_name(c, MOBILITY_LAG) for c in MOBILITY_COLS)

FEATURE_SETS: dict[str, tuple[str, ...]] = {
    "baseline": (DENSITY_COL,) + CASE_LAG_COLS,
    "full": (DENSITY_COL,) + CASE_LAG_COLS + MOBILITY_COLS,
    "full_lagged": (DENSITY_COL,) + CASE_LAG_COLS + MOBILITY_LAG_COLS,
}


def feature_columns(feature_set: str) -> list[str]:
    """Predictor columns of a named feature set."""
    if feature_set not in FEATURE_SETS:
        raise KeyError(f"Unknown feature set: {feature_set}. Known: {sorted(FEATURE_SETS)}")
    return list(FEATURE_SETS[feature_set])


def compute_lag(df: pd.DataFrame, col: str, k: int) -> pd.Series:
    """Value of `col` for the same county exactly `k` days earlier (NaN if that day is absent).

    `df` must hold at most one row per (county, date).
    """
    source = df.set_index([COUNTY_COL, DATE_COL])[col]
    wanted = pd.MultiIndex.from_arrays(
        [df[COUNTY_COL], df[DATE_COL] - pd.Timedelta(days=k)],
        names=[COUNTY_COL, DATE_COL],
    )
    values = source.reindex(wanted).to_numpy(dtype=float)
    return pd.Series(values, index=df.index, name=lag_name(col, k))


def add_lag_features(
    df: pd.DataFrame,
    *,
    case_lags: Iterable[int] = CASE_LAGS,
    mobility_lag: int = MOBILITY_LAG,
) -> pd.DataFrame:
    """Return a copy of the panel with case lags and lagged mobility columns appended."""
    out = df.copy()
    for k in case_lags:
        out[lag_name(CASES_COL, k)] = compute_lag(df, CASES_COL, k)
    for col in MOBILITY_COLS:
        out[lag_name(col, mobility_lag)] = compute_lag(df, col, mobility_lag)
    return out
