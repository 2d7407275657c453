from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Any, Callable, Mapping

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from xgboost.core import XGBoostError

from ..config import PipelineConfig
from ..errors import FitFailure

# (params, cfg, random_state) -> unfitted estimator
EstimatorFactory = Callable[[Mapping[str, Any], PipelineConfig, int], Any]
# (cfg, n_features, rng) -> candidate hyperparameter records
GridFactory = Callable[[PipelineConfig, int, np.random.Generator], list[dict]]

_FIT_ERRORS = (ValueError, ArithmeticError, np.linalg.LinAlgError, XGBoostError, ConvergenceWarning)


@dataclass(frozen=True)
class ModelFamily:
    """A model family as data: how to build an estimator and which grid to search."""

    name: str
    label: str
    build: EstimatorFactory
    grid: GridFactory

    def candidates(self, cfg: PipelineConfig, n_features: int, rng: np.random.Generator) -> list[dict]:
        return [dict(p) for p in self.grid(cfg, n_features, rng)]


@dataclass(frozen=True)
class FittedModel:
    """{feature set, family, hyperparameters} bound to a trained estimator. Never refit in place."""

    family: str
    feature_set: str
    params: dict
    estimator: Any
    feature_names: tuple[str, ...] = ()

    @property
    def label(self) -> str:
        return f"{self.family}/{self.feature_set}"


def fit_model(
    family: ModelFamily,
    params: Mapping[str, Any],
    X: np.ndarray,
    y: np.ndarray,
    cfg: PipelineConfig,
    *,
    random_state: int,
    feature_set: str = "",
    feature_names: tuple[str, ...] = (),
) -> FittedModel:
    """Fit one candidate. Non-convergence and numerical errors surface as FitFailure."""
    estimator = family.build(params, cfg, random_state)
    with warnings.catch_warnings():
        warnings.simplefilter("error", category=ConvergenceWarning)
        try:
            estimator.fit(X, y)
        except _FIT_ERRORS as e:
            raise FitFailure(
                f"{family.name} fit failed: {e}",
                family=family.name,
                params=dict(params),
            ) from e
    return FittedModel(
        family=family.name,
        feature_set=feature_set,
        params=dict(params),
        estimator=estimator,
        feature_names=tuple(feature_names),
    )


def predict(model: FittedModel, X: np.ndarray) -> np.ndarray:
    """Predict with a fitted model; raises FitFailure on non-finite output."""
    pred = np.asarray(model.estimator.predict(X), dtype=float)
    if not np.all(np.isfinite(pred)):
        raise FitFailure(
            f"{model.family} produced non-finite predictions",
            family=model.family,
            params=model.params,
        )
    return pred


def check_not_degenerate(model: FittedModel, pred: np.ndarray) -> None:
    """A fit whose predictions have zero variance carries no signal for selection."""
    if len(pred) > 1 and np.ptp(pred) == 0.0:
        raise FitFailure(
            f"{model.family} produced constant predictions",
            family=model.family,
            params=model.params,
        )
