"""
Configuration for project paths, model constants and the pipeline run.

This module centralizes all file paths and constants used across the project,
ensuring consistency between scripts, tests and library code. A single
`PipelineConfig` object carries every knob a comparison run needs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import numpy as np
import yaml

from .errors import ConfigurationError

# ============================================================================
# Project Structure
# ============================================================================

# Project root directory (parent of mobility_forecast/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ============================================================================
# Data / Output Directories
# ============================================================================

DATA_DIR = PROJECT_ROOT / "data"
DATA_PROCESSED = DATA_DIR / "processed"

OUTPUTS_DIR = PROJECT_ROOT / "outputs"
MODELS_DIR = PROJECT_ROOT / "models"

# ============================================================================
# Split Constants
# ============================================================================

# Window sizes are expressed in county-days (rows of the long-form panel).
DEFAULT_TEST_WINDOW_DAYS = 14
DEFAULT_TRAIN_WINDOW = 2800
DEFAULT_VALIDATION_WINDOW = 700
DEFAULT_STEP = 700

DEFAULT_SEED = 42
DEFAULT_SELECTION_METRIC = "r2"

# ============================================================================
# Model Constants
# ============================================================================

#
# NOTE: Values searched by the tuner live in the grids below; everything else
# is a fixed property of the model family.
#

# --- Lasso ---
DEFAULT_LASSO_ALPHAS = tuple(float(a) for a in np.logspace(-4, 0, 30))
DEFAULT_LASSO_MAX_ITER = 50_000

# --- Random forest ---
DEFAULT_RF_N_ESTIMATORS = 500
DEFAULT_RF_LEVELS = 10
DEFAULT_RF_MIN_LEAF_RANGE = (2, 40)

# --- XGBoost ---
DEFAULT_XGB_N_ESTIMATORS = 500
DEFAULT_XGB_N_CANDIDATES = 30
DEFAULT_XGB_MAX_DEPTH_RANGE = (1, 15)
DEFAULT_XGB_LEARNING_RATE_RANGE = (1e-3, 0.3)
DEFAULT_XGB_GAMMA_RANGE = (1e-8, 30.0)

SELECTION_METRICS = ("r2", "rmse", "mae")
MISSING_DENSITY_POLICIES = ("drop", "raise")
MODEL_FAMILY_NAMES = ("lasso", "random_forest", "xgb")
FEATURE_SET_NAMES = ("baseline", "full", "full_lagged")


@dataclass(frozen=True)
class PipelineConfig:
    """Everything a comparison run needs: windows, grids, seed and selection metric."""

    # ---- Temporal split ----
    test_window_days: int = DEFAULT_TEST_WINDOW_DAYS
    train_window: int = DEFAULT_TRAIN_WINDOW
    validation_window: int = DEFAULT_VALIDATION_WINDOW
    step: int = DEFAULT_STEP

    # ---- Selection / reproducibility ----
    selection_metric: str = DEFAULT_SELECTION_METRIC
    seed: int = DEFAULT_SEED

    # ---- Feature builder ----
    missing_density_policy: str = "drop"

    # ---- Lasso ----
    lasso_alphas: tuple[float, ...] = DEFAULT_LASSO_ALPHAS
    lasso_max_iter: int = DEFAULT_LASSO_MAX_ITER

    # ---- Random forest ----
    rf_n_estimators: int = DEFAULT_RF_N_ESTIMATORS
    rf_levels: int = DEFAULT_RF_LEVELS
    rf_min_leaf_range: tuple[int, int] = DEFAULT_RF_MIN_LEAF_RANGE

    # ---- XGBoost ----
    xgb_n_estimators: int = DEFAULT_XGB_N_ESTIMATORS
    xgb_n_candidates: int = DEFAULT_XGB_N_CANDIDATES
    xgb_max_depth_range: tuple[int, int] = DEFAULT_XGB_MAX_DEPTH_RANGE
    xgb_learning_rate_range: tuple[float, float] = DEFAULT_XGB_LEARNING_RATE_RANGE
    xgb_gamma_range: tuple[float, float] = DEFAULT_XGB_GAMMA_RANGE

    # ---- Execution ----
    n_jobs: int = 1
    grid_n_jobs: int = 1
    families: tuple[str, ...] = MODEL_FAMILY_NAMES
    feature_sets: tuple[str, ...] = FEATURE_SET_NAMES

    def validate(self) -> "PipelineConfig":
        """Reject values that can never produce a run. Returns self for chaining."""
        for name in ("test_window_days", "train_window", "validation_window", "step"):
            value = getattr(self, name)
            if int(value) <= 0:
                raise ConfigurationError(f"{name} must be positive", field=name, value=value)
        if self.selection_metric not in SELECTION_METRICS:
            raise ConfigurationError(
                f"selection_metric must be one of {SELECTION_METRICS}",
                field="selection_metric",
                value=self.selection_metric,
            )
        if self.missing_density_policy not in MISSING_DENSITY_POLICIES:
            raise ConfigurationError(
                f"missing_density_policy must be one of {MISSING_DENSITY_POLICIES}",
                field="missing_density_policy",
                value=self.missing_density_policy,
            )
        if len(self.lasso_alphas) == 0 or min(self.lasso_alphas) <= 0:
            raise ConfigurationError("lasso_alphas must be a non-empty list of positive values", field="lasso_alphas")
        if self.rf_levels <= 0 or self.xgb_n_candidates <= 0:
            raise ConfigurationError("grid sizes must be positive", field="rf_levels/xgb_n_candidates")
        if self.rf_n_estimators <= 0 or self.xgb_n_estimators <= 0:
            raise ConfigurationError("ensemble sizes must be positive", field="n_estimators")
        for name in ("rf_min_leaf_range", "xgb_max_depth_range", "xgb_learning_rate_range", "xgb_gamma_range"):
            low, high = getattr(self, name)
            if low > high or low <= 0:
                raise ConfigurationError(f"{name} must satisfy 0 < low <= high", field=name, value=(low, high))
        unknown = set(self.families) - set(MODEL_FAMILY_NAMES)
        if unknown or not self.families:
            raise ConfigurationError("unknown or empty model families", field="families", value=sorted(unknown))
        unknown = set(self.feature_sets) - set(FEATURE_SET_NAMES)
        if unknown or not self.feature_sets:
            raise ConfigurationError("unknown or empty feature sets", field="feature_sets", value=sorted(unknown))
        return self

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a plain mapping (e.g. parsed YAML); lists become tuples."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {unknown}", details={"unknown": unknown})
        kwargs = {k: tuple(v) if isinstance(v, list) else v for k, v in values.items()}
        return cls(**kwargs).validate()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def load_config(path: Optional[str | Path] = None) -> PipelineConfig:
    """Load a `PipelineConfig` from a YAML file; defaults when no path is given."""
    if path is None:
        return PipelineConfig().validate()

    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", field="path", value=str(path))

    with open(path, "r") as f:
        values = yaml.safe_load(f) or {}
    if not isinstance(values, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return PipelineConfig.from_dict(values)


# ============================================================================
# Utility Functions
# ============================================================================

def ensure_directories():
    """
    Create all necessary directories if they don't exist.

    Useful at the start of scripts to ensure all output directories are available.
    """
    directories = [
        DATA_DIR,
        DATA_PROCESSED,
        OUTPUTS_DIR,
        MODELS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)

    return directories
