"""Tests for the feature-weighted forest."""

import numpy as np
import pytest

from irf.errors import ConfigurationError, DataError
from irf.forest import WeightedRandomForest, grow_forest


class TestFit:
    """Tests for `WeightedRandomForest.fit`."""

    def test_fitted_attributes(self, threshold_data) -> None:
        X, y = threshold_data
        forest = WeightedRandomForest(n_estimators=20, random_state=0).fit(X, y)
        assert forest.task_ == "classification"
        assert forest.mtry_ == 2
        assert len(forest.estimators_) == 20
        assert forest.inbag_.shape == (20, X.shape[0])
        assert forest.feature_importances_.sum() == pytest.approx(1.0)
        assert int(np.argmax(forest.importance_)) == 0

    def test_oob_accuracy_on_separable_target(self, threshold_data) -> None:
        X, y = threshold_data
        forest = WeightedRandomForest(n_estimators=30, random_state=0).fit(X, y)
        assert forest.oob_score_ > 0.9
        assert forest.heldout_score_ == forest.oob_score_

    def test_zero_weight_features_have_zero_importance(self, and_data) -> None:
        X, y = and_data
        weight = np.array([0.0, 1.0, 1.0, 1.0, 0.0, 0.0])
        forest = WeightedRandomForest(n_estimators=10, random_state=0).fit(X, y, feature_weight=weight)
        assert np.all(forest.importance_[[0, 4, 5]] == 0.0)
        np.testing.assert_allclose(forest.feature_weight_, weight / 3.0)

    def test_result_does_not_depend_on_n_jobs(self, and_data) -> None:
        """Per-tree seeds make the forest identical for any worker count."""
        X, y = and_data
        serial = WeightedRandomForest(n_estimators=12, random_state=7, n_jobs=1).fit(X, y)
        threaded = WeightedRandomForest(n_estimators=12, random_state=7, n_jobs=3).fit(X, y)
        np.testing.assert_array_equal(serial.importance_, threaded.importance_)
        np.testing.assert_array_equal(serial.inbag_, threaded.inbag_)

    def test_held_out_scores(self, threshold_data) -> None:
        X, y = threshold_data
        X_test, y_test = X[:60], y[:60]
        forest = WeightedRandomForest(n_estimators=15, random_state=0).fit(
            X[60:], y[60:], X_test=X_test, y_test=y_test,
        )
        assert forest.test_tree_predictions_.shape == (15, 60)
        assert forest.test_score_ > 0.8
        assert 0.5 < forest.test_auc_ <= 1.0
        assert forest.heldout_score_ == forest.test_score_

    def test_regression(self, regression_data) -> None:
        X, y = regression_data
        forest = WeightedRandomForest(n_estimators=30, random_state=0).fit(X, y)
        assert forest.task_ == "regression"
        assert forest.mtry_ == 2
        assert forest.classes_ is None
        assert forest.oob_score_ > 0.7
        assert int(np.argmax(forest.importance_)) == 0

    def test_grow_forest_matches_estimator(self, and_data) -> None:
        X, y = and_data
        forest = grow_forest(X, y, n_estimators=5, random_state=3)
        reference = WeightedRandomForest(n_estimators=5, random_state=3).fit(X, y)
        np.testing.assert_array_equal(forest.importance_, reference.importance_)


class TestValidation:
    """Invalid input is rejected before any tree is grown."""

    def test_all_zero_weights(self, and_data) -> None:
        X, y = and_data
        forest = WeightedRandomForest(n_estimators=5)
        with pytest.raises(ConfigurationError):
            forest.fit(X, y, feature_weight=np.zeros(X.shape[1]))
        assert not hasattr(forest, "estimators_")
        assert not hasattr(forest, "importance_")

    @pytest.mark.parametrize(
        "weight",
        [
            np.ones(3),
            np.array([1.0, -1.0, 1.0, 1.0, 1.0, 1.0]),
            np.array([1.0, np.nan, 1.0, 1.0, 1.0, 1.0]),
        ],
    )
    def test_bad_weight_vectors(self, and_data, weight) -> None:
        X, y = and_data
        with pytest.raises(ConfigurationError):
            WeightedRandomForest(n_estimators=5).fit(X, y, feature_weight=weight)

    @pytest.mark.parametrize("params", [{"n_estimators": 0}, {"mtry": 7}, {"mtry": 0}])
    def test_bad_parameters(self, and_data, params) -> None:
        X, y = and_data
        with pytest.raises(ConfigurationError):
            WeightedRandomForest(**params).fit(X, y)

    def test_single_class(self, and_data) -> None:
        X, _ = and_data
        with pytest.raises(DataError):
            WeightedRandomForest(n_estimators=5).fit(X, np.zeros(X.shape[0], dtype=int))

    def test_row_mismatch(self, and_data) -> None:
        X, y = and_data
        with pytest.raises(DataError):
            WeightedRandomForest(n_estimators=5).fit(X, y[:-1])

    def test_nan_features(self, and_data) -> None:
        X, y = and_data
        X = X.copy()
        X[0, 0] = np.nan
        with pytest.raises(DataError):
            WeightedRandomForest(n_estimators=5).fit(X, y)

    def test_empty_data(self) -> None:
        with pytest.raises(DataError):
            WeightedRandomForest(n_estimators=5).fit(np.zeros((0, 3)), np.zeros(0))

    def test_test_set_needs_both_parts(self, and_data) -> None:
        X, y = and_data
        with pytest.raises(DataError):
            WeightedRandomForest(n_estimators=5).fit(X, y, X_test=X)


class TestPrediction:
    def test_predict_proba_and_predict(self, threshold_data) -> None:
        X, y = threshold_data
        forest = WeightedRandomForest(n_estimators=10, random_state=0).fit(X, y)
        proba = forest.predict_proba(X)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)
        assert set(np.unique(forest.predict(X))) <= {0, 1}
        assert forest.score(X, y) > 0.9

    def test_apply_shape(self, threshold_data) -> None:
        X, y = threshold_data
        forest = WeightedRandomForest(n_estimators=4, random_state=0).fit(X, y)
        assert forest.apply(X[:7]).shape == (7, 4)
