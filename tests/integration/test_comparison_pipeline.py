# =============================================================================
# tests/integration/test_comparison_pipeline.py
# Integration Tests for the end-to-end model comparison
# =============================================================================

import joblib
import numpy as np
import pandas as pd
import pytest

import mobility_forecast.pipeline as pipeline_module
from mobility_forecast.config import PipelineConfig
from mobility_forecast.errors import FoldConfigurationError, GridSearchError, SchemaError
from mobility_forecast.pipeline import run_comparison, save_models


class TestLaggedSignalScenario:
    """cases[t] = 10 - 0.5 * mobility[t - 7], two counties, 40 days"""

    @pytest.fixture
    def result(self, lagged_linear_panel, small_config):
        cfg = PipelineConfig(
            **{**small_config.to_dict(), "families": ("lasso",), "feature_sets": ("baseline", "full_lagged")}
        )
        return run_comparison(lagged_linear_panel, cfg)

    def test_lagged_linear_model_is_near_perfect(self, result):
        row = result.table.set_index("feature_set").loc["full_lagged"]
        assert row["status"] == "ok"
        assert row["n_test"] == 10
        assert row["rmse"] < 0.1
        assert row["r2"] == pytest.approx(1.0, abs=1e-3)

    def test_baseline_is_strictly_worse(self, result):
        table = result.table.set_index("feature_set")
        assert table.loc["baseline", "rmse"] > table.loc["full_lagged", "rmse"]
        assert result.best["rmse"] == "Lasso (full_lagged)"

    def test_final_training_precedes_test(self, result):
        assert result.splits.train_end < result.splits.test_start
        test_dates = pd.to_datetime(result.predictions["date"])
        assert test_dates.min() == result.splits.test_start
        assert len(result.predictions) == 2 * 10


class TestComparisonRun:
    """All families and feature sets on a random panel"""

    @pytest.fixture
    def cfg(self, small_config):
        return small_config

    def test_nine_configurations(self, sample_panel, cfg):
        result = run_comparison(sample_panel, cfg)

        assert len(result.table) == 9
        assert set(result.table["model"]) == {"lasso", "random_forest", "xgb"}
        assert set(result.table["feature_set"]) == {"baseline", "full", "full_lagged"}
        ok = result.table[result.table["status"] == "ok"]
        assert (ok["rmse"] >= 0).all()
        assert (ok["mae"] >= 0).all()
        assert (ok["r2"] <= 1).all()

    def test_determinism(self, sample_panel, cfg):
        a = run_comparison(sample_panel, cfg)
        b = run_comparison(sample_panel, cfg)

        assert a.splits.boundaries() == b.splits.boundaries()
        assert a.selected_params() == b.selected_params()
        np.testing.assert_allclose(
            a.table[["rmse", "r2", "mae"]].to_numpy(dtype=float),
            b.table[["rmse", "r2", "mae"]].to_numpy(dtype=float),
            atol=1e-6,
        )

    def test_parallel_jobs_match_serial(self, sample_panel, cfg):
        serial = run_comparison(sample_panel, cfg)
        parallel = run_comparison(sample_panel, PipelineConfig(**{**cfg.to_dict(), "n_jobs": 2}))

        assert serial.selected_params() == parallel.selected_params()
        np.testing.assert_allclose(
            serial.table[["rmse", "r2", "mae"]].to_numpy(dtype=float),
            parallel.table[["rmse", "r2", "mae"]].to_numpy(dtype=float),
            atol=1e-6,
        )

    def test_failed_job_does_not_abort_siblings(self, sample_panel, cfg, monkeypatch):
        real = pipeline_module.train_configuration

        def flaky(family, feature_set, panel, splits, cfg):
            if (family, feature_set) == ("xgb", "full"):
                raise GridSearchError("No valid candidate", family=family)
            return real(family, feature_set, panel, splits, cfg)

        monkeypatch.setattr(pipeline_module, "train_configuration", flaky)
        result = run_comparison(sample_panel, cfg)

        assert len(result.table) == 9
        failed = result.table[result.table["status"] == "failed"]
        assert list(zip(failed["model"], failed["feature_set"])) == [("xgb", "full")]
        assert "No valid candidate" in failed["error"].iloc[0]
        assert ("xgb", "full") in result.failures
        assert len(result.trained) == 8

    def test_save_models(self, sample_panel, cfg, tmp_path):
        small = PipelineConfig(**{**cfg.to_dict(), "families": ("lasso",), "feature_sets": ("baseline",)})
        result = run_comparison(sample_panel, small)
        paths = save_models(result, tmp_path)

        assert [p.name for p in paths] == ["lasso_baseline.joblib"]
        payload = joblib.load(paths[0])
        assert payload["meta"]["params"] == result.trained[("lasso", "baseline")].tuning.best_params
        assert payload["model"].feature_set == "baseline"


class TestUnbalancedPanels:
    """Panels with unequal rows per day still produce folds and results"""

    @pytest.fixture
    def cfg(self, small_config):
        return PipelineConfig(
            **{**small_config.to_dict(), "families": ("lasso",), "feature_sets": ("baseline", "full_lagged")}
        )

    def _assert_runs(self, df, cfg):
        result = run_comparison(df, cfg)

        assert result.splits.n_folds >= 1
        assert {len(f.train_idx) for f in result.splits.folds} == {cfg.train_window}
        for f in result.splits.folds:
            assert f.train_end < f.val_start
        assert len(result.table) == 2
        assert (result.table["status"] == "ok").all()
        return result

    def test_missing_mobility_cell(self, sample_panel, cfg):
        df = sample_panel.copy()
        hole = (df["county"] == "C1") & (df["date"] == pd.Timestamp("2020-03-20"))
        df.loc[hole, "workplaces"] = np.nan

        result = self._assert_runs(df, cfg)
        # The row itself and the row that needs it as its lag-7 value.
        assert result.report.missing_mobility == 2

    def test_county_starting_late(self, make_panel, cfg):
        df = pd.concat(
            [
                make_panel(county_days={"A": 40}),
                make_panel(county_days={"B": 37}, seed=1, start="2020-03-04"),
            ],
            ignore_index=True,
        )
        self._assert_runs(df, cfg)


class TestFatalErrors:
    """Errors that stop a run before any model is fitted"""

    def test_oversized_fold_window_fails_before_fitting(self, sample_panel, monkeypatch):
        def must_not_run(*args, **kwargs):
            raise AssertionError("training started")

        monkeypatch.setattr(pipeline_module, "train_configuration", must_not_run)
        # 2 counties x 26 valid days, last day held out -> 50 county-days of history.
        cfg = PipelineConfig(test_window_days=1, train_window=120, validation_window=6, step=6)
        with pytest.raises(FoldConfigurationError):
            run_comparison(sample_panel, cfg)

    def test_schema_mismatch(self, sample_panel, small_config):
        with pytest.raises(SchemaError):
            run_comparison(sample_panel.drop(columns=["cases"]), small_config)

    def test_short_county_absent_from_results(self, make_panel, small_config):
        df = make_panel(county_days={"A": 40, "B": 40, "SHORT": 10})
        cfg = PipelineConfig(**{**small_config.to_dict(), "families": ("lasso",), "feature_sets": ("baseline",)})
        result = run_comparison(df, cfg)

        assert result.report.n_insufficient_history == 10
        assert "SHORT" not in set(result.predictions["county"])
