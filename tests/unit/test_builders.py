# =============================================================================
# tests/unit/test_builders.py
# Unit Tests for model families
# =============================================================================

import warnings

import numpy as np
import pytest
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LinearRegression

from mobility_forecast.builder import (
    LASSO,
    MODEL_FAMILIES,
    RANDOM_FOREST,
    XGB,
    ModelFamily,
    check_not_degenerate,
    fit_model,
    get_family,
    predict,
)
from mobility_forecast.config import PipelineConfig
from mobility_forecast.errors import FitFailure


@pytest.fixture
def regression_data():
    rng = np.random.default_rng(3)
    X = rng.normal(size=(80, 4))
    y = 2.0 * X[:, 0] - X[:, 2] + rng.normal(scale=0.1, size=80)
    return X, y


class _WarningRegression(LinearRegression):
    def fit(self, X, y, sample_weight=None):
        warnings.warn("did not converge", ConvergenceWarning)
        return super().fit(X, y, sample_weight)


class TestGrids:
    """Hyperparameter grids are explicit lists of records"""

    def test_registry(self):
        assert set(MODEL_FAMILIES) == {"lasso", "random_forest", "xgb"}
        assert get_family("xgb") is XGB
        with pytest.raises(KeyError):
            get_family("svm")

    def test_lasso_grid_is_log_spaced(self):
        grid = LASSO.candidates(PipelineConfig(), 4, np.random.default_rng(0))
        alphas = [p["alpha"] for p in grid]
        assert len(alphas) == 30
        assert alphas[0] == pytest.approx(1e-4)
        assert alphas[-1] == pytest.approx(1.0)
        assert np.allclose(np.diff(np.log10(alphas)), np.diff(np.log10(alphas))[0])

    def test_random_forest_grid_bounded_by_features(self):
        grid = RANDOM_FOREST.candidates(PipelineConfig(), 4, np.random.default_rng(0))
        assert {p["max_features"] for p in grid} == {1, 2, 3, 4}
        assert len({p["min_samples_leaf"] for p in grid}) == 10
        assert len(grid) == 40
        assert len({tuple(sorted(p.items())) for p in grid}) == len(grid)

    def test_xgb_grid_sampled_from_rng(self):
        cfg = PipelineConfig(xgb_n_candidates=30)
        a = XGB.candidates(cfg, 8, np.random.default_rng(11))
        b = XGB.candidates(cfg, 8, np.random.default_rng(11))
        c = XGB.candidates(cfg, 8, np.random.default_rng(12))

        assert len(a) == 30
        assert a == b
        assert a != c
        for p in a:
            assert 1 <= p["max_depth"] <= 15
            assert 1e-3 <= p["learning_rate"] <= 0.3
            assert 1e-8 <= p["gamma"] <= 30.0


class TestFitPredict:
    """Uniform fit/predict over families"""

    @pytest.mark.parametrize("family", [LASSO, RANDOM_FOREST, XGB])
    def test_each_family_fits(self, family, regression_data):
        X, y = regression_data
        cfg = PipelineConfig(rf_n_estimators=10, xgb_n_estimators=20)
        params = family.candidates(cfg, X.shape[1], np.random.default_rng(0))[0]

        model = fit_model(family, params, X, y, cfg, random_state=0, feature_set="baseline")
        pred = predict(model, X)

        assert pred.shape == y.shape
        assert model.params == params
        assert model.label == f"{family.name}/baseline"

    def test_same_seed_same_forest(self, regression_data):
        X, y = regression_data
        cfg = PipelineConfig(rf_n_estimators=10)
        params = {"max_features": 2, "min_samples_leaf": 3}
        a = predict(fit_model(RANDOM_FOREST, params, X, y, cfg, random_state=5), X)
        b = predict(fit_model(RANDOM_FOREST, params, X, y, cfg, random_state=5), X)
        np.testing.assert_allclose(a, b)

    def test_nan_input_is_fit_failure(self, regression_data):
        X, y = regression_data
        X = X.copy()
        X[0, 0] = np.nan
        with pytest.raises(FitFailure) as exc:
            fit_model(LASSO, {"alpha": 0.1}, X, y, PipelineConfig(), random_state=0)
        assert exc.value.details["family"] == "lasso"

    def test_convergence_warning_is_fit_failure(self, regression_data):
        X, y = regression_data
        family = ModelFamily(
            name="lasso",
            label="Warns",
            build=lambda params, cfg, rs: _WarningRegression(),
            grid=lambda cfg, n, rng: [{}],
        )
        with pytest.raises(FitFailure, match="did not converge"):
            fit_model(family, {}, X, y, PipelineConfig(), random_state=0)

    def test_constant_predictions_are_degenerate(self, regression_data):
        X, y = regression_data
        model = fit_model(LASSO, {"alpha": 100.0}, X, y, PipelineConfig(), random_state=0)
        pred = predict(model, X)
        with pytest.raises(FitFailure, match="constant"):
            check_not_degenerate(model, pred)
