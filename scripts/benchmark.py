#!/usr/bin/env python
from __future__ import annotations

"""
Compare Lasso / random forest / XGBoost over the baseline, full and full-lagged
feature sets on a cleaned county panel.

Usage (examples):
  poetry run scripts/benchmark.py --panel data/processed/county_panel.csv
  poetry run scripts/benchmark.py --panel data/processed/county_panel.csv --config configs/small.yaml \
      --predictions outputs/predictions.csv --models-dir models
"""

import argparse
import logging
from pathlib import Path

import pandas as pd

from mobility_forecast.config import OUTPUTS_DIR, ensure_directories, load_config
from mobility_forecast.data import load_panel
from mobility_forecast.evaluation import save_comparison_table, save_predictions
from mobility_forecast.logging_config import setup_logging
from mobility_forecast.pipeline import run_comparison, save_models


def benchmark(
    panel_path,
    *,
    config_path=None,
    output: Path = OUTPUTS_DIR / "comparison.csv",
    predictions: Path | None = None,
    models_dir: Path | None = None,
) -> None:
    cfg = load_config(config_path)
    df = load_panel(Path(panel_path))

    result = run_comparison(df, cfg)

    print(f"Dropped rows: {result.report.to_dict()}")
    print(
        f"Train region ends {result.splits.train_end.date()} | "
        f"test {result.splits.test_start.date()}..{result.splits.test_end.date()} | "
        f"{result.splits.n_folds} folds | selection metric: {cfg.selection_metric}"
    )

    print("\n=== Results ===")
    with pd.option_context("display.width", 160, "display.max_columns", None):
        print(result.table.drop(columns=["error"]).to_string(index=False, float_format="%.4f"))
    for metric, label in result.best.items():
        print(f"Best {metric.upper():<4} {label}")

    save_comparison_table(result.table, output)
    if predictions is not None:
        save_predictions(result.predictions, predictions)
    if models_dir is not None:
        save_models(result, models_dir)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Compare model families and feature sets on a county case panel.")
    p.add_argument("--panel", required=True, help="Cleaned panel CSV (county, date, cases, pop_density, mobility).")
    p.add_argument("--config", default=None, help="YAML file with PipelineConfig overrides.")
    p.add_argument(
        "--output",
        default=str(OUTPUTS_DIR / "comparison.csv"),
        help="Where to write the comparison table (default: outputs/comparison.csv).",
    )
    p.add_argument("--predictions", default=None, help="Optional CSV for predicted-vs-actual pairs.")
    p.add_argument("--models-dir", default=None, help="Optional directory for joblib model artifacts.")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)
    ensure_directories()
    benchmark(
        args.panel,
        config_path=args.config,
        output=Path(args.output),
        predictions=Path(args.predictions) if args.predictions else None,
        models_dir=Path(args.models_dir) if args.models_dir else None,
    )


if __name__ == "__main__":
    main()
