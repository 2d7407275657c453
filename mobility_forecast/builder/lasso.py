from __future__ import annotations

from typing import Any, Mapping

import numpy as np
from sklearn.linear_model import Lasso
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from ..config import PipelineConfig
from .base import ModelFamily


def build_lasso(params: Mapping[str, Any], cfg: PipelineConfig, random_state: int) -> Pipeline:
    """L1-penalized least squares on standardized predictors.

    The penalty is pure L1; only its strength `alpha` is tuned.
    """
    return Pipeline(
        [
            ("scale", StandardScaler()),
            (
                "lasso",
                Lasso(alpha=float(params["alpha"]), max_iter=cfg.lasso_max_iter, random_state=random_state),
            ),
        ]
    )


def lasso_grid(cfg: PipelineConfig, n_features: int, rng: np.random.Generator) -> list[dict]:
    """Log-spaced penalty strengths, in the configured order."""
    return [{"alpha": float(a)} for a in cfg.lasso_alphas]


LASSO = ModelFamily(name="lasso", label="Lasso", build=build_lasso, grid=lasso_grid)
