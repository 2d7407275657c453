# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import numpy as np
import pandas as pd
import pytest

from mobility_forecast.config import PipelineConfig
from mobility_forecast.data import MOBILITY_COLS

START_DATE = "2020-03-01"


def _make_panel(
    n_counties: int = 2,
    n_days: int = 40,
    seed: int = 0,
    county_days: dict = None,
    start: str = START_DATE,
) -> pd.DataFrame:
    """Random daily panel; `county_days` overrides the day count per county."""
    rng = np.random.default_rng(seed)
    county_days = county_days or {f"C{i}": n_days for i in range(n_counties)}
    parts = []
    for i, (county, days) in enumerate(county_days.items()):
        dates = pd.date_range(start=start, periods=days, freq="D")
        part = pd.DataFrame(
            {
                "county": county,
                "date": dates,
                "cases": rng.poisson(20 + 5 * i, size=days),
                "pop_density": 100.0 * (i + 1),
            }
        )
        for col in MOBILITY_COLS:
            part[col] = rng.normal(-10, 15, size=days).round(1)
        parts.append(part)
    return pd.concat(parts, ignore_index=True)


def _make_lagged_linear_panel(n_counties: int = 2, n_days: int = 40, seed: int = 7) -> pd.DataFrame:
    """Panel where cases[t] = 10 - 0.5 * retail_recreation[t - 7] exactly (no noise)."""
    rng = np.random.default_rng(seed)
    parts = []
    for i in range(n_counties):
        dates = pd.date_range(start=START_DATE, periods=n_days, freq="D")
        retail = -2.0 * rng.integers(0, 26, size=n_days)
        cases = rng.integers(10, 36, size=n_days)
        cases[7:] = (10 - 0.5 * retail[:-7]).astype(int)
        part = pd.DataFrame(
            {
                "county": f"C{i}",
                "date": dates,
                "cases": cases,
                "pop_density": 150.0 * (i + 1),
                "retail_recreation": retail,
            }
        )
        for col in MOBILITY_COLS[1:]:
            part[col] = rng.normal(0, 10, size=n_days).round(1)
        parts.append(part)
    return pd.concat(parts, ignore_index=True)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def make_panel():
    """Factory for random county panels"""
    return _make_panel


@pytest.fixture
def sample_panel():
    """Two counties, 40 days each"""
    return _make_panel()


@pytest.fixture
def lagged_linear_panel():
    """Two counties, 40 days, cases driven by lag-7 retail mobility"""
    return _make_lagged_linear_panel()


@pytest.fixture
def small_config():
    """Config small enough for fast tests on a 2-county, 40-day panel"""
    return PipelineConfig(
        test_window_days=5,
        train_window=20,
        validation_window=6,
        step=6,
        lasso_alphas=(1e-4, 1e-3, 1e-2, 1e-1),
        rf_n_estimators=10,
        rf_levels=2,
        rf_min_leaf_range=(2, 5),
        xgb_n_estimators=10,
        xgb_n_candidates=3,
    )
