from __future__ import annotations

"""
Feature panel construction
==========================

This module turns the validated daily panel into *feature rows*: one row per
`(county, date)` carrying the raw case count (the target) and every predictor
used by any of the three feature sets.

## Row validity
A feature row exists only when every required field is present:
- all case lags (1, 7, 14 days) -- i.e. the county has the prior days on record,
- population density for that row,
- same-day and lag-7 values of every mobility indicator.

All three feature sets are cut from the *same* base rows, so every model
configuration is tuned and scored on identical rows.

## Dropped rows are reported, never imputed
`FeatureDropReport` records how many rows were excluded and why:
- **insufficient_history**: counties whose whole record is too short to yield a
  single valid row (per county row counts),
- **warmup**: leading rows of counties that do yield valid rows, before their
  first full lag window,
- **history_gap**: later rows of those counties that lose a lag to a missing
  date in the middle of the record,
- **missing_density**: rows without population density,
- **missing_mobility**: rows with a missing same-day or lag-7 mobility value.
Each dropped row is counted under the first reason that applies, in that order.
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from .data import COUNTY_COL, DATE_COL, DENSITY_COL, MOBILITY_COLS, validate_panel
from .errors import InsufficientHistoryError, MissingDensityError
from .features import (
    CASE_LAG_COLS,
    FEATURE_SETS,
    MAX_LAG,
    MOBILITY_LAG_COLS,
    TARGET_COL,
    add_lag_features,
    feature_columns,
)
from .logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class FeatureDropReport:
    """Counts of rows excluded from the feature panel, by reason."""

    insufficient_history: dict[str, int] = field(default_factory=dict)
    warmup: int = 0
    history_gap: int = 0
    missing_density: int = 0
    missing_mobility: int = 0
    missing_density_keys: tuple[tuple[str, int], ...] = ()  # (county, year)

    @property
    def n_insufficient_history(self) -> int:
        return int(sum(self.insufficient_history.values()))

    @property
    def total(self) -> int:
        return (
            self.n_insufficient_history
            + self.warmup
            + self.history_gap
            + self.missing_density
            + self.missing_mobility
        )

    def to_dict(self) -> dict:
        return {
            "insufficient_history": self.n_insufficient_history,
            "insufficient_history_counties": dict(self.insufficient_history),
            "warmup": self.warmup,
            "history_gap": self.history_gap,
            "missing_density": self.missing_density,
            "missing_mobility": self.missing_mobility,
            "total": self.total,
        }


@dataclass(frozen=True)
class FeaturePanel:
    """Valid feature rows sorted by (date, county), plus the drop report.

    Rows are stacked in date order (all counties for day 1, then day 2, ...),
    which is the long-form ordering the splitter's county-day windows walk over.
    """

    rows: pd.DataFrame
    report: FeatureDropReport

    @property
    def n_counties(self) -> int:
        return int(self.rows[COUNTY_COL].nunique())

    @property
    def dates(self) -> pd.Series:
        return self.rows[DATE_COL]

    def matrix(self, feature_set: str, idx: Optional[np.ndarray] = None) -> tuple[np.ndarray, np.ndarray]:
        """Return (X, y) for a feature set, optionally restricted to row positions `idx`."""
        cols = feature_columns(feature_set)
        rows = self.rows if idx is None else self.rows.iloc[idx]
        X = rows[cols].to_numpy(dtype=float)
        y = rows[TARGET_COL].to_numpy(dtype=float)
        return X, y

    def keys(self, idx: Optional[np.ndarray] = None) -> pd.DataFrame:
        """Join-back columns (county, date) for row positions `idx`."""
        rows = self.rows if idx is None else self.rows.iloc[idx]
        return rows[[COUNTY_COL, DATE_COL]].reset_index(drop=True)


def build_feature_panel(
    df: pd.DataFrame,
    *,
    missing_density_policy: str = "drop",
    strict_history: bool = False,
) -> FeaturePanel:
    """Validate the panel, derive lag features and keep only fully-populated rows.

    Parameters
    ----------
    missing_density_policy : {"drop", "raise"}
        "drop" excludes rows without population density and records them;
        "raise" aborts with MissingDensityError.
    strict_history : bool
        If True, counties too short to produce any valid row raise
        InsufficientHistoryError instead of being dropped.
    """
    if missing_density_policy not in ("drop", "raise"):
        raise ValueError(f"Unknown missing_density_policy: {missing_density_policy}")

    panel = validate_panel(df)
    rows = add_lag_features(panel)

    has_history = rows[list(CASE_LAG_COLS)].notna().all(axis=1)

    # Counties with no row that has a full lag window.
    county_has_any = has_history.groupby(rows[COUNTY_COL]).transform("any")
    short_mask = ~county_has_any
    short_counties = rows.loc[short_mask].groupby(COUNTY_COL).size()
    insufficient = {str(c): int(n) for c, n in short_counties.items()}
    if insufficient:
        msg = (
            f"{len(insufficient)} counties have fewer than {MAX_LAG + 1} contiguous days "
            f"of history: {sorted(insufficient)}"
        )
        if strict_history:
            raise InsufficientHistoryError(msg, counties=insufficient)
        logger.warning(msg + f" -> dropping {sum(insufficient.values())} rows")

    first_valid = rows[DATE_COL].where(has_history).groupby(rows[COUNTY_COL]).transform("min")
    leading = rows[DATE_COL] < first_valid
    warmup_mask = county_has_any & ~has_history & leading
    gap_mask = county_has_any & ~has_history & ~leading
    remaining = has_history

    density_missing = remaining & rows[DENSITY_COL].isna()
    missing_keys = tuple(
        sorted(
            {(str(c), int(y)) for c, y in zip(rows.loc[density_missing, COUNTY_COL], rows.loc[density_missing, DATE_COL].dt.year)}
        )
    )
    if density_missing.any():
        msg = f"Population density missing for {int(density_missing.sum())} rows ({len(missing_keys)} county-years)"
        if missing_density_policy == "raise":
            raise MissingDensityError(msg, n_rows=int(density_missing.sum()), details={"county_years": list(missing_keys)})
        logger.warning(msg + " -> dropping")
    remaining = remaining & ~density_missing

    mobility_cols = list(MOBILITY_COLS) + list(MOBILITY_LAG_COLS)
    mobility_missing = remaining & rows[mobility_cols].isna().any(axis=1)
    remaining = remaining & ~mobility_missing

    report = FeatureDropReport(
        insufficient_history=insufficient,
        warmup=int(warmup_mask.sum()),
        history_gap=int(gap_mask.sum()),
        missing_density=int(density_missing.sum()),
        missing_mobility=int(mobility_missing.sum()),
        missing_density_keys=missing_keys,
    )

    all_features = sorted({c for cols in FEATURE_SETS.values() for c in cols})
    out = rows.loc[remaining, [COUNTY_COL, DATE_COL, TARGET_COL] + all_features]
    out = out.sort_values([DATE_COL, COUNTY_COL], kind="mergesort").reset_index(drop=True)

    assert out[list(CASE_LAG_COLS)].notna().all().all()
    assert report.total + len(out) == len(panel)

    logger.info(f"Built {len(out):,} feature rows; dropped {report.total:,} ({report.to_dict()})")
    return FeaturePanel(rows=out, report=report)
