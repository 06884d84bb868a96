import numpy as np
import pytest

from urbdisperse.models import fit_exploration
from urbdisperse.spatial import model_correlogram, morans_i, residual_correlogram, sturges_classes


def test_single_class_equals_expectation():
    rng = np.random.default_rng(1)
    x = rng.normal(size=15)
    mask = ~np.eye(15, dtype=bool)
    res = morans_i(x, mask)
    assert res["moran_i"] == pytest.approx(res["expected"])
    assert res["expected"] == pytest.approx(-1 / 14)


def test_detects_spatial_trend_at_short_distance():
    rng = np.random.default_rng(2)
    coords = rng.uniform(0, 5000, size=(120, 2))
    resid = coords[:, 0] / 5000 + rng.normal(0, 0.1, 120)
    corr = residual_correlogram(resid, coords, n_classes=5)
    assert len(corr) == 5
    assert corr.loc[0, "moran_i"] > 0.2
    assert corr.loc[0, "p_holm"] < 0.01
    assert corr["moran_i"].iloc[2:].min() < 0


def test_independent_residuals_show_no_structure():
    rng = np.random.default_rng(3)
    coords = rng.uniform(0, 5000, size=(100, 2))
    corr = residual_correlogram(rng.normal(size=100), coords, n_classes=6)
    assert (corr["p_holm"].dropna() > 0.001).all()


def test_class_count_and_pairs():
    rng = np.random.default_rng(4)
    coords = rng.uniform(0, 100, size=(30, 2))
    corr = residual_correlogram(rng.normal(size=30), coords)
    assert len(corr) == sturges_classes(30 * 29 // 2)
    assert corr["n_pairs"].sum() == 30 * 29 // 2


def test_bad_coordinates_are_rejected():
    with pytest.raises(ValueError):
        residual_correlogram(np.zeros(5), np.zeros((4, 2)))


def test_model_correlogram_uses_site_coordinates(exploration_data):
    corr = model_correlogram(fit_exploration(exploration_data, "urb_50m"), n_classes=4)
    assert list(corr.columns[:4]) == ["dist_lower", "dist_upper", "dist_mean", "n_pairs"]
    n = len(exploration_data)
    assert corr["n_pairs"].sum() == n * (n - 1) // 2


def test_empty_distance_class_is_left_out_of_holm():
    rng = np.random.default_rng(5)
    left = rng.uniform(0, 10, size=(12, 2))
    right = rng.uniform(0, 10, size=(12, 2)) + [1000, 0]
    corr = residual_correlogram(rng.normal(size=24), np.vstack([left, right]), n_classes=4)
    empty = corr["n_pairs"] == 0
    assert empty.any()
    assert corr.loc[empty, "moran_i"].isna().all()
    assert corr.loc[empty, "p_holm"].isna().all()
    assert corr.loc[~empty, "variance"].gt(0).all()


def test_permutation_p_value_is_reported_on_request():
    rng = np.random.default_rng(6)
    coords = rng.uniform(0, 1000, size=(40, 2))
    resid = coords[:, 1] / 1000 + rng.normal(0, 0.1, 40)
    corr = residual_correlogram(resid, coords, n_classes=3, permutations=99)
    assert "p_sim" in corr.columns
    assert corr["p_sim"].between(0.01, 1).all()
    assert corr.loc[0, "p_sim"] <= 0.05
    assert "p_sim" not in residual_correlogram(resid, coords, n_classes=3).columns
