"""Tests for iterative reweighting and bootstrap stability selection."""

import threading

import numpy as np
import pytest

from irf.errors import ConfigurationError, PartialFailure
from irf.interactions import TABLE_COLUMNS, parse_interaction
from irf.stability import IterativeRandomForest, iterative_rf

SMALL = {
    "n_estimators": 10,
    "n_bootstrap": 3,
    "rit_n_trees": 10,
    "random_state": 0,
}


def _failing_resample(failed: set[int]):
    def resample(y, rng, replicate):
        if replicate in failed:
            raise PartialFailure(f"forced failure of replicate {replicate}")
        return rng.integers(0, y.shape[0], size=y.shape[0])

    return resample


class _StopAfter:
    """Event stand-in that reports "set" from its ``calls``-th check on."""

    def __init__(self, calls: int) -> None:
        self.calls = calls
        self.checks = 0

    def is_set(self) -> bool:
        self.checks += 1
        return self.checks >= self.calls


class TestIterations:
    """Reweighting across iterations."""

    def test_history_weights(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(n_iter=3, **SMALL).fit(X, y)
        assert [h["iteration"] for h in model.history_] == [1, 2, 3]
        np.testing.assert_allclose(model.history_[0]["feature_weight"], np.full(6, 1 / 6))
        for prev, cur in zip(model.history_, model.history_[1:]):
            np.testing.assert_allclose(cur["feature_weight"], prev["importance"])
        for h in model.history_:
            assert not h["feature_weight"].flags.writeable
            assert not h["importance"].flags.writeable

    def test_last_iteration_by_default(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(n_iter=2, **SMALL).fit(X, y)
        assert model.selected_iteration_ == 2
        assert model.forest_ is model.forests_[1]

    def test_select_iter_picks_best_score(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(n_iter=3, select_iter=True, **SMALL).fit(
            X[:200], y[:200], X_test=X[200:], y_test=y[200:],
        )
        scores = [h["score"] for h in model.history_]
        assert scores == [f.test_score_ for f in model.forests_]
        assert model.selected_iteration_ == int(np.argmax(scores)) + 1

    def test_signal_features_gain_weight(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(n_iter=2, **SMALL).fit(X, y)
        weight = model.history_[1]["feature_weight"]
        assert set(np.argsort(weight)[::-1][:3].tolist()) == {1, 2, 3}


class TestBootstrap:
    """Replicates, failures and the stability table."""

    def test_table_shape_and_ranges(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(**SMALL).fit(X, y)
        table = model.interactions_
        assert list(table.columns) == TABLE_COLUMNS
        assert not table.empty
        assert model.targets_ == [1]
        assert set(table["class"]) == {1}
        for col in ("stability", "recovery", "sta_diff", "sta_precision"):
            assert table[col].between(0.0, 1.0).all()
        assert (table["stability"] <= table["recovery"]).all()
        stability = table["stability"].to_numpy()
        assert np.all(np.diff(stability) <= 0)

    def test_failed_replicates_leave_the_denominator(self, and_data) -> None:
        """Three single-class resamples out of ten leave seven successful replicates."""
        X, y = and_data

        def resample(y, rng, replicate):
            if replicate in (1, 4, 7):
                return np.flatnonzero(y == 0)
            return rng.integers(0, y.shape[0], size=y.shape[0])

        params = {**SMALL, "n_bootstrap": 10}
        model = IterativeRandomForest(resample=resample, **params).fit(X, y)
        assert model.n_replicates_ok_ == 7
        assert model.n_replicates_failed_ == 3
        assert (model.interactions_["n_replicates"] == 7).all()
        scaled = model.interactions_["recovery"].to_numpy() * 7
        np.testing.assert_allclose(scaled, np.round(scaled))

    def test_partial_failure_in_resample_is_skipped(self, and_data) -> None:
        X, y = and_data
        params = {**SMALL, "n_bootstrap": 4}
        model = IterativeRandomForest(resample=_failing_resample({2}), **params).fit(X, y)
        assert model.n_replicates_ok_ == 3
        assert (model.interactions_["n_replicates"] == 3).all()

    def test_sample_weight_scales_signature_weights(self, and_data) -> None:
        """Uniform per-sample weights leave every score unchanged."""
        X, y = and_data
        plain = IterativeRandomForest(**SMALL).fit(X, y).interactions_
        weighted = IterativeRandomForest(**SMALL).fit(
            X, y, sample_weight=np.full(X.shape[0], 3.0),
        ).interactions_
        assert plain["interaction"].tolist() == weighted["interaction"].tolist()
        np.testing.assert_allclose(plain["prevalence"], weighted["prevalence"])

    def test_zero_weight_target_leaves_skip_the_replicate(self) -> None:
        """A resample that drops the only weighted positive row is skipped."""
        gen = np.random.default_rng(5)
        X = gen.uniform(0.0, 1.0, size=(100, 4))
        y = (X[:, 0] > 0.5).astype(int)
        weighted_positive = int(np.flatnonzero(y == 1)[0])
        sw = np.where(y == 0, 1.0, 0.0)
        sw[weighted_positive] = 1.0

        def resample(y, rng, replicate):
            rows = np.arange(y.shape[0])
            if replicate in (0, 3):
                return rows[rows != weighted_positive]
            return rows

        model = IterativeRandomForest(
            n_estimators=10, n_bootstrap=6, rit_n_trees=10, resample=resample, random_state=0,
        ).fit(X, y, sample_weight=sw)
        assert model.n_replicates_ok_ == 4
        assert model.n_replicates_failed_ == 2
        assert (model.interactions_["n_replicates"] == 4).all()

    def test_all_zero_sample_weight_rejected_before_growing(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(**SMALL)
        with pytest.raises(ConfigurationError):
            model.fit(X, y, sample_weight=np.zeros(X.shape[0]))
        assert not hasattr(model, "forests_")

    def test_all_replicates_failing_raises(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(resample=_failing_resample({0, 1, 2}), **SMALL)
        with pytest.raises(PartialFailure):
            model.fit(X, y)

    def test_keep_impvar_quantile_restricts_features(self, and_data) -> None:
        """Keeping only the most important feature leaves one-feature interactions."""
        X, y = and_data
        model = IterativeRandomForest(keep_impvar_quantile=0.99, **SMALL).fit(X, y)
        assert not model.interactions_.empty
        for name in model.interactions_["interaction"]:
            cols = parse_interaction(name, 6)
            assert len({c % 6 for c in cols}) == 1

    def test_same_seed_same_table(self, and_data) -> None:
        X, y = and_data
        first = IterativeRandomForest(**SMALL).fit(X, y).interactions_
        second = IterativeRandomForest(n_jobs=3, **SMALL).fit(X, y).interactions_
        assert first["interaction"].tolist() == second["interaction"].tolist()
        np.testing.assert_allclose(first["stability"], second["stability"])

    def test_feature_names_in_table(self, and_data) -> None:
        X, y = and_data
        names = [f"g{i}" for i in range(6)]
        model = IterativeRandomForest(**SMALL).fit(X, y, feature_names=names)
        for name in model.interactions_["interaction"]:
            assert all(token.startswith("g") for token in name.split("_"))

    def test_regression_uses_median_cut(self, regression_data) -> None:
        X, y = regression_data
        model = IterativeRandomForest(**{**SMALL, "n_bootstrap": 2}).fit(X, y)
        assert model.class_cut_ == pytest.approx(float(np.median(y)))
        assert model.targets_ == [1]
        assert model.n_replicates_ok_ == 2


class TestStopping:
    def test_stop_before_first_iteration(self, and_data) -> None:
        X, y = and_data
        event = threading.Event()
        event.set()
        model = IterativeRandomForest(stop_event=event, **SMALL).fit(X, y)
        assert model.stopped_early_
        assert model.history_ == []
        assert model.forest_ is None
        assert model.interactions_.empty

    def test_stop_before_bootstrap(self, and_data) -> None:
        X, y = and_data
        model = IterativeRandomForest(n_iter=2, stop_event=_StopAfter(3), **SMALL).fit(X, y)
        assert model.stopped_early_
        assert len(model.history_) == 2
        assert model.selected_iteration_ == 2
        assert model.interactions_.empty


class TestValidation:
    @pytest.mark.parametrize(
        "params",
        [
            {"n_bootstrap": 0},
            {"n_iter": 0},
            {"rit_depth": 0},
            {"keep_impvar_quantile": 1.5},
            {"class_id": 5},
            {"class_cut": 0.5},
            {"resample": "bootstrap"},
        ],
    )
    def test_bad_parameters(self, and_data, params) -> None:
        X, y = and_data
        with pytest.raises(ConfigurationError):
            IterativeRandomForest(**{**SMALL, **params}).fit(X, y)

    def test_feature_names_length(self, and_data) -> None:
        X, y = and_data
        with pytest.raises(ConfigurationError):
            IterativeRandomForest(**SMALL).fit(X, y, feature_names=["a", "b"])


def test_iterative_rf_returns_pipeline_outputs(and_data) -> None:
    X, y = and_data
    result = iterative_rf(X, y, n_iter=2, **SMALL)
    assert set(result) == {"forest", "interactions", "selected_iteration", "history"}
    assert result["selected_iteration"] == 2
    assert len(result["history"]) == 2


@pytest.mark.slow
def test_boolean_and_recovers_three_way_interaction() -> None:
    """Reweighting on y = AND(x1 > 0, x2 > 0, x3 > 0) finds the full triple."""
    gen = np.random.default_rng(42)
    X = gen.uniform(-1.0, 1.0, size=(500, 250))
    y = ((X[:, 1] > 0) & (X[:, 2] > 0) & (X[:, 3] > 0)).astype(int)

    model = IterativeRandomForest(
        n_estimators=100,
        n_iter=4,
        n_bootstrap=3,
        rit_n_trees=100,
        class_id=1,
        random_state=42,
        n_jobs=-1,
    ).fit(X, y)

    top3 = np.argsort(model.forest_.feature_importances_)[::-1][:3]
    assert set(top3.tolist()) == {1, 2, 3}
    table = model.interactions_
    triple = table[table["interaction"] == "1+_2+_3+"].iloc[0]
    assert triple["stability"] == table["stability"].max()
    assert triple["stability"] >= 2 / 3
