from __future__ import annotations

from typing import Any, Mapping

import numpy as np
from scipy.stats import loguniform, randint
from sklearn.model_selection import ParameterSampler
from xgboost import XGBRegressor

from ..config import PipelineConfig
from .base import ModelFamily


def build_xgb(params: Mapping[str, Any], cfg: PipelineConfig, random_state: int) -> XGBRegressor:
    """Gradient-boosted trees with squared-error loss and a fixed number of rounds."""
    return XGBRegressor(
        objective="reg:squarederror",
        n_estimators=cfg.xgb_n_estimators,
        max_depth=int(params["max_depth"]),
        learning_rate=float(params["learning_rate"]),
        gamma=float(params["gamma"]),
        n_jobs=1,
        random_state=random_state,
    )


def xgb_grid(cfg: PipelineConfig, n_features: int, rng: np.random.Generator) -> list[dict]:
    """Random sample of (depth, learning rate, min split loss) drawn from `rng`.

    The joint space is too large for a full cross-product, so
    `cfg.xgb_n_candidates` points are sampled instead.
    """
    depth_lo, depth_hi = cfg.xgb_max_depth_range
    sampler = ParameterSampler(
        {
            "max_depth": randint(int(depth_lo), int(depth_hi) + 1),
            "learning_rate": loguniform(*cfg.xgb_learning_rate_range),
            "gamma": loguniform(*cfg.xgb_gamma_range),
        },
        n_iter=cfg.xgb_n_candidates,
        random_state=int(rng.integers(2**31 - 1)),
    )
    return [
        {
            "max_depth": int(p["max_depth"]),
            "learning_rate": float(p["learning_rate"]),
            "gamma": float(p["gamma"]),
        }
        for p in sampler
    ]


XGB = ModelFamily(name="xgb", label="XGBoost", build=build_xgb, grid=xgb_grid)
