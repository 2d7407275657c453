from __future__ import annotations

from typing import Any, Mapping

import numpy as np
from sklearn.ensemble import RandomForestRegressor
from sklearn.model_selection import ParameterGrid

from ..config import PipelineConfig
from .base import ModelFamily


def _levels(low: int, high: int, n: int) -> list[int]:
    """Up to `n` evenly spaced distinct integers in [low, high]."""
    return sorted({int(v) for v in np.linspace(low, high, n).round()})


def build_random_forest(params: Mapping[str, Any], cfg: PipelineConfig, random_state: int) -> RandomForestRegressor:
    """Bagged regression trees; the ensemble size is fixed, not tuned."""
    return RandomForestRegressor(
        n_estimators=cfg.rf_n_estimators,
        max_features=int(params["max_features"]),
        min_samples_leaf=int(params["min_samples_leaf"]),
        random_state=random_state,
        n_jobs=1,
    )


def random_forest_grid(cfg: PipelineConfig, n_features: int, rng: np.random.Generator) -> list[dict]:
    """Regular grid: features per split (1..n_features) x minimum leaf size."""
    grid = ParameterGrid(
        {
            "max_features": _levels(1, n_features, cfg.rf_levels),
            "min_samples_leaf": _levels(*cfg.rf_min_leaf_range, cfg.rf_levels),
        }
    )
    return [{k: int(v) for k, v in p.items()} for p in grid]


RANDOM_FOREST = ModelFamily(
    name="random_forest",
    label="Random forest",
    build=build_random_forest,
    grid=random_forest_grid,
)
