from __future__ import annotations

"""
Held-out evaluation and the comparison table.

Every (model family x feature set) configuration is scored on the same held-out
test rows with RMSE, R^2 and MAE. Configurations whose training failed still get
a row (status "failed", metrics NaN) so nothing disappears from the table.
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import mean_absolute_error, mean_squared_error, r2_score

from .builder import FittedModel, get_family, predict
from .logging_config import get_logger

logger = get_logger(__name__)

METRICS = ("rmse", "r2", "mae")
HIGHER_IS_BETTER = {"rmse": False, "r2": True, "mae": False}

TABLE_COLUMNS = ["label", "model", "feature_set", "rmse", "r2", "mae", "n_test", "status", "error"]


def compute_metrics(y_true, y_pred) -> dict[str, float]:
    """RMSE, R^2 (1 - SSR/SST about the mean of y_true) and MAE.

    R^2 is NaN when y_true is constant (SST = 0); callers treat it as unscored.
    """
    y_true = np.asarray(y_true, dtype=float)
    y_pred = np.asarray(y_pred, dtype=float)
    mse = mean_squared_error(y_true, y_pred)
    constant = bool(np.all(y_true == y_true[0])) if len(y_true) else True
    return {
        "rmse": float(mse**0.5),
        "r2": float("nan") if constant else float(r2_score(y_true, y_pred)),
        "mae": float(mean_absolute_error(y_true, y_pred)),
    }


def worst_score(metric: str) -> float:
    return -np.inf if HIGHER_IS_BETTER[metric] else np.inf


def is_better(candidate: float, incumbent: float, metric: str) -> bool:
    """Strict improvement only, so ties keep the first-encountered value."""
    if np.isnan(candidate):
        return False
    if np.isnan(incumbent):
        return True
    return candidate > incumbent if HIGHER_IS_BETTER[metric] else candidate < incumbent


def configuration_label(family: str, feature_set: str) -> str:
    return f"{get_family(family).label} ({feature_set})"


@dataclass(frozen=True)
class MetricsRecord:
    label: str
    model: str
    feature_set: str
    rmse: float
    r2: float
    mae: float
    n_test: int
    status: str = "ok"
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


def evaluate_model(model: FittedModel, X_test: np.ndarray, y_test: np.ndarray) -> tuple[MetricsRecord, np.ndarray]:
    """Score a finalized model on the held-out rows. Returns (record, predictions)."""
    y_pred = predict(model, X_test)
    m = compute_metrics(y_test, y_pred)
    record = MetricsRecord(
        label=configuration_label(model.family, model.feature_set),
        model=model.family,
        feature_set=model.feature_set,
        rmse=m["rmse"],
        r2=m["r2"],
        mae=m["mae"],
        n_test=int(len(y_test)),
    )
    return record, y_pred


def failed_record(family: str, feature_set: str, error: str, n_test: int = 0) -> MetricsRecord:
    return MetricsRecord(
        label=configuration_label(family, feature_set),
        model=family,
        feature_set=feature_set,
        rmse=float("nan"),
        r2=float("nan"),
        mae=float("nan"),
        n_test=int(n_test),
        status="failed",
        error=error,
    )


def build_comparison_table(records: Iterable[MetricsRecord]) -> pd.DataFrame:
    """One row per configuration, in the order the records were produced."""
    rows = [asdict(r) for r in records]
    return pd.DataFrame(rows, columns=TABLE_COLUMNS)


def best_by_metric(table: pd.DataFrame) -> dict[str, Optional[str]]:
    """Label of the best successful row per metric (min RMSE/MAE, max R^2); first row wins ties."""
    ok = table[table["status"] == "ok"]
    best: dict[str, Optional[str]] = {}
    for metric in METRICS:
        values = ok[metric].to_numpy(dtype=float)
        if len(values) == 0 or np.all(np.isnan(values)):
            best[metric] = None
            continue
        pos = int(np.nanargmax(values)) if HIGHER_IS_BETTER[metric] else int(np.nanargmin(values))
        best[metric] = str(ok["label"].iloc[pos])
    return best


def save_comparison_table(table: pd.DataFrame, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(path, index=False)
    logger.info(f"Saved comparison table ({len(table)} rows) to {path}")
    return path


def save_predictions(predictions: pd.DataFrame, path: str | Path) -> Path:
    """Persist predicted-vs-actual pairs (label, county, date, actual, predicted)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    predictions.to_csv(path, index=False)
    logger.info(f"Saved {len(predictions):,} predictions to {path}")
    return path
