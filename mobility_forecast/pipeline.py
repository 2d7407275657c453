from __future__ import annotations

"""
End-to-end comparison run.

    validated panel -> feature panel -> time splits -> 9 training jobs -> evaluation

Fatal errors (schema, fold configuration) stop the run before any model is fitted.
A failure inside one (model family x feature set) job is recorded in that job's
table row and never aborts its siblings. Jobs share only read-only inputs, so
they can fan out across processes (`cfg.n_jobs`).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import joblib
import pandas as pd
from joblib import Parallel, delayed

from .config import MODELS_DIR, PROJECT_ROOT, PipelineConfig
from .data import COUNTY_COL, DATE_COL
from .errors import MobilityForecastError
from .evaluation import (
    MetricsRecord,
    best_by_metric,
    build_comparison_table,
    configuration_label,
    evaluate_model,
    failed_record,
)
from .logging_config import LogContext, get_logger
from .panel import FeatureDropReport, FeaturePanel, build_feature_panel
from .splits import TimeSplits, make_time_splits
from .tuning import TrainedConfiguration, train_configuration

logger = get_logger(__name__)

JobKey = tuple[str, str]  # (family, feature set)


@dataclass(frozen=True)
class ComparisonResult:
    table: pd.DataFrame
    best: dict
    predictions: pd.DataFrame
    trained: dict[JobKey, TrainedConfiguration]
    failures: dict[JobKey, dict]
    splits: TimeSplits
    report: FeatureDropReport

    def selected_params(self) -> dict[JobKey, dict]:
        return {k: t.tuning.best_params for k, t in self.trained.items()}


def _run_job(family: str, feature_set: str, panel: FeaturePanel, splits: TimeSplits, cfg: PipelineConfig):
    """Train one pair; errors are returned, not raised, so siblings keep running."""
    try:
        return (family, feature_set), train_configuration(family, feature_set, panel, splits, cfg), None
    except MobilityForecastError as e:
        logger.error(f"{family}/{feature_set} failed: {e}")
        return (family, feature_set), None, e.to_dict()


def run_comparison(df: pd.DataFrame, cfg: Optional[PipelineConfig] = None) -> ComparisonResult:
    """Build features, split, tune/refit every configuration and score it on the test window."""
    cfg = (cfg or PipelineConfig()).validate()

    with LogContext(logger, "Building feature panel"):
        panel = build_feature_panel(df, missing_density_policy=cfg.missing_density_policy)

    # Raises FoldConfigurationError before any fitting.
    splits = make_time_splits(panel, cfg)

    jobs = [(family, fs) for family in cfg.families for fs in cfg.feature_sets]
    logger.info(f"Running {len(jobs)} training jobs over {splits.n_folds} folds (n_jobs={cfg.n_jobs})")
    if cfg.n_jobs == 1:
        outcomes = [_run_job(family, fs, panel, splits, cfg) for family, fs in jobs]
    else:
        outcomes = Parallel(n_jobs=cfg.n_jobs)(
            delayed(_run_job)(family, fs, panel, splits, cfg) for family, fs in jobs
        )

    keys = panel.keys(splits.test_idx)
    records: list[MetricsRecord] = []
    prediction_parts: list[pd.DataFrame] = []
    trained: dict[JobKey, TrainedConfiguration] = {}
    failures: dict[JobKey, dict] = {}

    for (family, fs), result, error in outcomes:
        if result is None:
            failures[(family, fs)] = error
            records.append(failed_record(family, fs, error["message"]))
            continue

        X_test, y_test = panel.matrix(fs, splits.test_idx)
        try:
            record, y_pred = evaluate_model(result.model, X_test, y_test)
        except MobilityForecastError as e:
            logger.error(f"{family}/{fs} evaluation failed: {e}")
            failures[(family, fs)] = e.to_dict()
            records.append(failed_record(family, fs, e.message, n_test=len(y_test)))
            continue

        trained[(family, fs)] = result
        records.append(record)
        prediction_parts.append(
            pd.DataFrame(
                {
                    "label": configuration_label(family, fs),
                    COUNTY_COL: keys[COUNTY_COL],
                    DATE_COL: keys[DATE_COL],
                    "actual": y_test,
                    "predicted": y_pred,
                }
            )
        )

    table = build_comparison_table(records)
    best = best_by_metric(table)
    predictions = (
        pd.concat(prediction_parts, ignore_index=True)
        if prediction_parts
        else pd.DataFrame(columns=["label", COUNTY_COL, DATE_COL, "actual", "predicted"])
    )

    if failures:
        logger.warning(f"{len(failures)}/{len(jobs)} configurations failed: {sorted(failures)}")
    logger.info(f"Best per metric: {best}")

    return ComparisonResult(
        table=table,
        best=best,
        predictions=predictions,
        trained=trained,
        failures=failures,
        splits=splits,
        report=panel.report,
    )


def save_models(result: ComparisonResult, model_dir: str | Path = MODELS_DIR) -> list[Path]:
    """Persist every final model with its selection metadata (one joblib file per configuration)."""
    model_dir = Path(model_dir)
    if not model_dir.is_absolute():
        model_dir = PROJECT_ROOT / model_dir
    model_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for (family, fs), trained in result.trained.items():
        path = model_dir / f"{family}_{fs}.joblib"
        meta = {
            "family": family,
            "feature_set": fs,
            "params": trained.tuning.best_params,
            "selection_metric": trained.tuning.selection_metric,
            "cv_rmse": trained.tuning.best.rmse,
            "cv_r2": trained.tuning.best.r2,
            "cv_mae": trained.tuning.best.mae,
            "feature_names": list(trained.feature_names),
            "train_end": result.splits.train_end,
            "n_train_rows": trained.n_train_rows,
            "saved_to": str(path),
        }
        joblib.dump({"model": trained.model, "meta": meta}, path)
        paths.append(path)
    logger.info(f"Saved {len(paths)} models to {model_dir}")
    return paths
