"""Model families for the forecasting comparison.

Each family is a `ModelFamily` record (estimator factory + hyperparameter grid),
so the tuner and evaluator are written once and parameterized over family.

Naming note:
- This package is called `builder` to avoid confusion with the **project-root** `models/`
  directory, which stores *saved model artifacts* (joblib files) produced by a run.
"""

from .base import FittedModel, ModelFamily, check_not_degenerate, fit_model, predict
from .lasso import LASSO
from .random_forest import RANDOM_FOREST
from .xgb import XGB

MODEL_FAMILIES: dict[str, ModelFamily] = {f.name: f for f in (LASSO, RANDOM_FOREST, XGB)}


def get_family(name: str) -> ModelFamily:
    if name not in MODEL_FAMILIES:
        raise KeyError(f"Unknown model family: {name}. Known: {sorted(MODEL_FAMILIES)}")
    return MODEL_FAMILIES[name]


__all__ = [
    "FittedModel",
    "ModelFamily",
    "MODEL_FAMILIES",
    "get_family",
    "fit_model",
    "predict",
    "check_not_degenerate",
    "LASSO",
    "RANDOM_FOREST",
    "XGB",
]
