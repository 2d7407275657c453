from __future__ import annotations

"""
Hyperparameter tuning over rolling-origin folds, then a final refit.

For one (model family, feature set) pair:

1. Draw the pair's candidate grid (an explicit list of parameter records).
2. For every candidate, fit on each fold's training slice, predict its validation
   slice, and average RMSE / R^2 / MAE over folds.
3. Select the candidate that is best on `cfg.selection_metric` (max R^2, min
   RMSE/MAE). Ties keep the first candidate in grid order.
4. Refit the winner once on the *entire* training region (every row before the
   test window), producing the final model.

A candidate that fails on any fold (non-convergence, numerical error, constant or
non-finite predictions) scores worst-possible and is skipped by selection. If no
candidate survives, `GridSearchError` is raised for this pair only.

Randomness comes from a `numpy.random.Generator` derived from
`(cfg.seed, family, feature set)`, so each pair is reproducible regardless of
the order (or process) in which pairs run.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from joblib import Parallel, delayed

from .builder import FittedModel, ModelFamily, check_not_degenerate, fit_model, get_family, predict
from .config import FEATURE_SET_NAMES, MODEL_FAMILY_NAMES, PipelineConfig
from .errors import FitFailure, GridSearchError
from .evaluation import METRICS, compute_metrics, is_better, worst_score
from .features import feature_columns
from .logging_config import LogContext, get_logger
from .panel import FeaturePanel
from .splits import Fold, TimeSplits

logger = get_logger(__name__)


@dataclass(frozen=True)
class CandidateScore:
    """Fold-averaged validation metrics for one hyperparameter record."""

    params: dict
    rmse: float
    r2: float
    mae: float
    fold_scores: tuple[dict, ...] = ()
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def score(self, metric: str) -> float:
        value = float(getattr(self, metric))
        return worst_score(metric) if self.failed or np.isnan(value) else value


@dataclass(frozen=True)
class TuningResult:
    family: str
    feature_set: str
    selection_metric: str
    candidates: tuple[CandidateScore, ...]
    best_index: int
    random_state: int

    @property
    def best(self) -> CandidateScore:
        return self.candidates[self.best_index]

    @property
    def best_params(self) -> dict:
        return dict(self.best.params)

    @property
    def n_failed(self) -> int:
        return sum(c.failed for c in self.candidates)


@dataclass(frozen=True)
class TrainedConfiguration:
    """Final model (refit on the whole training region) and the search that chose it."""

    model: FittedModel
    tuning: TuningResult
    n_train_rows: int = 0
    feature_names: tuple[str, ...] = field(default=())


def job_rng(seed: int, family: str, feature_set: str) -> np.random.Generator:
    """Independent, order-free random source for one (family, feature set) pair."""
    return np.random.default_rng([int(seed), MODEL_FAMILY_NAMES.index(family), FEATURE_SET_NAMES.index(feature_set)])


def _fold_mean(values: Sequence[float]) -> float:
    """Mean over folds where the metric is defined (R^2 is not on a constant slice)."""
    defined = [v for v in values if not np.isnan(v)]
    return float(np.mean(defined)) if defined else float("nan")


def evaluate_candidate(
    family: ModelFamily,
    params: dict,
    X: np.ndarray,
    y: np.ndarray,
    folds: Sequence[Fold],
    cfg: PipelineConfig,
    *,
    random_state: int,
) -> CandidateScore:
    """Average validation metrics of one candidate over all folds."""
    fold_scores: list[dict] = []
    try:
        for fold in folds:
            model = fit_model(family, params, X[fold.train_idx], y[fold.train_idx], cfg, random_state=random_state)
            pred = predict(model, X[fold.val_idx])
            check_not_degenerate(model, pred)
            fold_scores.append(compute_metrics(y[fold.val_idx], pred))
    except FitFailure as e:
        return CandidateScore(
            params=dict(params),
            rmse=float("nan"),
            r2=float("nan"),
            mae=float("nan"),
            fold_scores=tuple(fold_scores),
            error=e.message,
        )

    means = {m: _fold_mean([s[m] for s in fold_scores]) for m in METRICS}
    return CandidateScore(params=dict(params), fold_scores=tuple(fold_scores), **means)


def select_best(candidates: Sequence[CandidateScore], metric: str) -> int:
    """Index of the best non-failed candidate; first-encountered wins ties."""
    best_index = None
    best_value = worst_score(metric)
    for i, cand in enumerate(candidates):
        if cand.failed:
            continue
        value = cand.score(metric)
        if best_index is None or is_better(value, best_value, metric):
            best_index, best_value = i, value
    if best_index is None:
        raise GridSearchError(f"All {len(candidates)} candidates failed")
    return best_index


def tune(
    family: ModelFamily,
    feature_set: str,
    panel: FeaturePanel,
    splits: TimeSplits,
    cfg: PipelineConfig,
) -> TuningResult:
    """Grid search one (family, feature set) pair over the rolling-origin folds."""
    rng = job_rng(cfg.seed, family.name, feature_set)
    random_state = int(rng.integers(2**31 - 1))

    X, y = panel.matrix(feature_set)
    grid = family.candidates(cfg, X.shape[1], rng)
    if not grid:
        raise GridSearchError(f"Empty grid for {family.name}/{feature_set}", family=family.name)

    if cfg.grid_n_jobs == 1:
        candidates = [
            evaluate_candidate(family, p, X, y, splits.folds, cfg, random_state=random_state) for p in grid
        ]
    else:
        candidates = Parallel(n_jobs=cfg.grid_n_jobs)(
            delayed(evaluate_candidate)(family, p, X, y, splits.folds, cfg, random_state=random_state)
            for p in grid
        )

    n_failed = sum(c.failed for c in candidates)
    if n_failed:
        logger.warning(f"{family.name}/{feature_set}: {n_failed}/{len(candidates)} candidates failed")

    try:
        best_index = select_best(candidates, cfg.selection_metric)
    except GridSearchError as e:
        raise GridSearchError(
            f"No valid candidate for {family.name}/{feature_set}: all {len(candidates)} failed",
            family=family.name,
            details={"feature_set": feature_set, "first_error": candidates[0].error},
        ) from e

    result = TuningResult(
        family=family.name,
        feature_set=feature_set,
        selection_metric=cfg.selection_metric,
        candidates=tuple(candidates),
        best_index=best_index,
        random_state=random_state,
    )
    best = result.best
    logger.info(
        f"{family.name}/{feature_set}: best {best.params} "
        f"(cv rmse={best.rmse:.4f} r2={best.r2:.4f} mae={best.mae:.4f})"
    )
    return result


def train_configuration(
    family_name: str,
    feature_set: str,
    panel: FeaturePanel,
    splits: TimeSplits,
    cfg: PipelineConfig,
) -> TrainedConfiguration:
    """Tune on the folds, then refit the winner on the full training region."""
    family = get_family(family_name)
    with LogContext(logger, f"Training {family_name}/{feature_set}"):
        tuning = tune(family, feature_set, panel, splits, cfg)

        X_train, y_train = panel.matrix(feature_set, splits.train_idx)
        names = tuple(feature_columns(feature_set))
        model = fit_model(
            family,
            tuning.best_params,
            X_train,
            y_train,
            cfg,
            random_state=tuning.random_state,
            feature_set=feature_set,
            feature_names=names,
        )

    return TrainedConfiguration(model=model, tuning=tuning, n_train_rows=len(y_train), feature_names=names)
