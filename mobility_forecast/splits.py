from __future__ import annotations

"""
Temporal splitting (no-leakage rules)
=====================================

Two layers of time-ordered splitting over the feature panel:

1. **Held-out test window**: the last `test_window_days` calendar days (across all
   counties) are reserved. Everything strictly earlier is the *training region*.
   Test rows never appear in any fold.

2. **Rolling-origin folds** over the training region. Rows are stacked in date
   order (all counties for a day, then the next day), and window sizes are given
   in *county-days* (rows), so folds stay the same size on a multi-county panel:

   - fold k cuts between training and validation at row `train_window + k * step`,
     moved forward to the next day boundary when it lands inside a calendar day;
   - training is the `train_window` rows before the cut, validation the
     `validation_window` rows from it;
   - generation stops when the validation window would run past the end of the
     training region.

   The training window slides; it never grows. Every fold trains on exactly
   `train_window` rows, also on panels with unequal rows per day.

## Invariant
For every fold: `max(train dates) < min(validation dates)`. Cuts always fall on a
day boundary, so no calendar day is shared between a fold's training and
validation rows. `FoldConfigurationError` is raised before any model is fitted
when no fold fits.

Splits are pure functions of (panel, config): no randomness, fully replayable.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd

from .config import PipelineConfig
from .errors import FoldConfigurationError
from .logging_config import get_logger
from .panel import FeaturePanel

logger = get_logger(__name__)


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.asarray(a, dtype=np.int64)
    a.setflags(write=False)
    return a


@dataclass(frozen=True)
class Fold:
    """One (training slice, validation slice) pair as row positions into the feature panel."""

    index: int
    train_idx: np.ndarray
    val_idx: np.ndarray
    train_start: pd.Timestamp
    train_end: pd.Timestamp
    val_start: pd.Timestamp
    val_end: pd.Timestamp

    def describe(self) -> str:
        return (
            f"fold {self.index}: train {self.train_start.date()}..{self.train_end.date()} "
            f"({len(self.train_idx)} rows) | val {self.val_start.date()}..{self.val_end.date()} "
            f"({len(self.val_idx)} rows)"
        )


@dataclass(frozen=True)
class TimeSplits:
    """Training region, held-out test window and the folds over the training region."""

    train_idx: np.ndarray
    test_idx: np.ndarray
    train_end: pd.Timestamp
    test_start: pd.Timestamp
    test_end: pd.Timestamp
    folds: tuple[Fold, ...]

    @property
    def n_folds(self) -> int:
        return len(self.folds)

    def boundaries(self) -> list[tuple[int, int, int, int]]:
        """(train_first, train_last, val_first, val_last) row positions per fold."""
        return [
            (int(f.train_idx[0]), int(f.train_idx[-1]), int(f.val_idx[0]), int(f.val_idx[-1]))
            for f in self.folds
        ]


def _as_sorted_dates(dates) -> pd.Series:
    dates = pd.Series(pd.to_datetime(dates)).reset_index(drop=True)
    if not dates.is_monotonic_increasing:
        raise ValueError("Rows must be sorted by date before splitting")
    return dates


def split_holdout(dates, test_window_days: int) -> tuple[np.ndarray, np.ndarray, pd.Timestamp]:
    """Reserve the last `test_window_days` calendar days as the test window.

    Returns (train_idx, test_idx, test_start) as row positions into `dates`.
    """
    if test_window_days <= 0:
        raise FoldConfigurationError("test_window_days must be positive", details={"test_window_days": test_window_days})

    dates = _as_sorted_dates(dates)
    if dates.empty:
        raise FoldConfigurationError("Cannot split an empty panel")

    max_date = dates.iloc[-1]
    test_start = max_date - pd.Timedelta(days=int(test_window_days) - 1)

    is_test = (dates >= test_start).to_numpy()
    train_idx = np.flatnonzero(~is_test)
    test_idx = np.flatnonzero(is_test)

    if len(train_idx) == 0:
        raise FoldConfigurationError(
            f"Test window of {test_window_days} days leaves no training data",
            details={"first_date": str(dates.iloc[0].date()), "test_start": str(test_start.date())},
        )
    return train_idx, test_idx, test_start


def _day_starts(values: np.ndarray) -> np.ndarray:
    """Row positions where a new calendar day begins in date-sorted rows."""
    if len(values) == 0:
        return np.array([], dtype=np.int64)
    return np.flatnonzero(np.r_[True, values[1:] != values[:-1]])


def rolling_origin_folds(
    dates,
    *,
    train_window: int,
    validation_window: int,
    step: int,
) -> list[Fold]:
    """Sliding (non-cumulative) rolling-origin folds over date-sorted rows.

    All sizes are in rows (county-days). The nominal train/validation cut of
    fold k sits at `train_window + k * step`; it is moved forward to the first
    row of the next calendar day when it would land inside a day, and the
    training slice is the `train_window` rows immediately before the cut.
    Panels with unequal rows per day (late-starting counties, dropped rows)
    therefore keep fixed-size windows without mixing a day across the cut.

    Raises FoldConfigurationError when no fold fits.
    """
    for name, value in (("train_window", train_window), ("validation_window", validation_window), ("step", step)):
        if int(value) <= 0:
            raise FoldConfigurationError(f"{name} must be positive", details={name: value})

    dates = _as_sorted_dates(dates)
    n = len(dates)
    if train_window + validation_window > n:
        raise FoldConfigurationError(
            f"train_window ({train_window}) + validation_window ({validation_window}) county-days "
            f"exceeds the {n} county-days available before the test window",
            details={"available": n, "train_window": train_window, "validation_window": validation_window},
        )

    values = dates.to_numpy()
    day_starts = _day_starts(values)

    folds: list[Fold] = []
    last_cut = -1
    nominal = train_window
    while nominal + validation_window <= n:
        pos = int(np.searchsorted(day_starts, nominal, side="left"))
        cut = int(day_starts[pos]) if pos < len(day_starts) else n
        nominal += step
        if cut + validation_window > n:
            break
        if cut == last_cut:
            continue
        last_cut = cut

        train_idx = np.arange(cut - train_window, cut)
        val_idx = np.arange(cut, cut + validation_window)

        train_start, train_end = pd.Timestamp(values[train_idx[0]]), pd.Timestamp(values[train_idx[-1]])
        val_start, val_end = pd.Timestamp(values[val_idx[0]]), pd.Timestamp(values[val_idx[-1]])
        assert train_end < val_start

        folds.append(
            Fold(
                index=len(folds),
                train_idx=_readonly(train_idx),
                val_idx=_readonly(val_idx),
                train_start=train_start,
                train_end=train_end,
                val_start=val_start,
                val_end=val_end,
            )
        )

    if not folds:
        raise FoldConfigurationError(
            f"No fold fits: train_window ({train_window}) + validation_window ({validation_window}) "
            f"county-days cannot be aligned to whole days within {n} county-days",
            details={"available": n, "train_window": train_window, "validation_window": validation_window},
        )
    return folds


def make_time_splits(panel: FeaturePanel, cfg: PipelineConfig) -> TimeSplits:
    """Held-out test window plus rolling-origin folds for a feature panel."""
    dates = panel.dates
    train_idx, test_idx, test_start = split_holdout(dates, cfg.test_window_days)

    folds = rolling_origin_folds(
        dates.iloc[train_idx],
        train_window=cfg.train_window,
        validation_window=cfg.validation_window,
        step=cfg.step,
    )

    # Training region occupies positions [0, len(train_idx)), so fold positions index the panel directly.
    assert np.array_equal(train_idx, np.arange(len(train_idx)))

    train_end = pd.Timestamp(dates.iloc[train_idx[-1]])
    test_end = pd.Timestamp(dates.iloc[test_idx[-1]]) if len(test_idx) else test_start
    assert train_end < test_start

    splits = TimeSplits(
        train_idx=_readonly(train_idx),
        test_idx=_readonly(test_idx),
        train_end=train_end,
        test_start=pd.Timestamp(test_start),
        test_end=test_end,
        folds=tuple(folds),
    )
    logger.info(
        f"Training region ends {train_end.date()} ({len(train_idx):,} rows); "
        f"test {test_start.date()}..{test_end.date()} ({len(test_idx):,} rows); {splits.n_folds} folds"
    )
    for fold in folds:
        logger.debug(fold.describe())
    return splits
