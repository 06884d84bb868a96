import numpy as np
import pandas as pd
import pytest
from scipy import stats

from urbdisperse.errors import NonConvergenceError
from urbdisperse.models import (
    default_start,
    design_matrix,
    expand_terms,
    fit_dissection,
    fit_exploration,
    fit_exploration_family,
    fit_perception,
    fit_perception_family,
)


def test_expand_terms_orders_by_degree():
    assert expand_terms("subadult * urb_50m") == ["subadult", "urb_50m", "subadult:urb_50m"]
    terms = expand_terms("a * b + c * a")
    assert terms == ["a", "b", "c", "a:b", "c:a"]


def test_design_matrix_products():
    df = pd.DataFrame({"a": [1.0, 2.0], "b": [3.0, 4.0]})
    X = design_matrix(df, ["a", "b", "a:b"])
    assert list(X.columns) == ["Intercept", "a", "b", "a:b"]
    assert X["a:b"].tolist() == [3.0, 8.0]


def test_exploration_family_labels_and_shapes(exploration_data):
    fam = fit_exploration_family(exploration_data)
    assert set(fam) == {"null", "urb_10m", "urb_50m"}
    m = fam["urb_50m"]
    assert list(m.params.index) == ["Intercept", "subadult", "urb_50m", "subadult:urb_50m"]
    assert m.cov.shape == (4, 4)
    assert m.nobs == len(exploration_data)
    assert fam["null"].k == 2


def test_exploration_recovers_urbanization_effect(exploration_data):
    m = fit_exploration(exploration_data, "urb_50m")
    # the less urbanized the site (positive score), the less it explores
    assert m.params["urb_50m"] < 0
    assert m.params["urb_50m"] / m.bse["urb_50m"] < -3
    assert np.allclose(m.fitted, exploration_data["successes"] / exploration_data["trials"] - m.resid)


def test_exploration_loglik_is_the_exact_binomial_one(exploration_data):
    m = fit_exploration(exploration_data, "urb_10m")
    d = exploration_data
    expected = stats.binom.logpmf(d["successes"], d["trials"], m.fitted).sum()
    assert m.llf == pytest.approx(expected, rel=1e-6)


def test_perception_variants(perception_data):
    full = fit_perception(perception_data, "urb_10m", full=True)
    hist = fit_perception(perception_data, "urb_10m", full=False)
    assert "urb_10m:subadult:stimulus:distance" in full.params.index
    assert "urb_10m:subadult:stimulus:distance" not in hist.params.index
    assert "urb_10m:subadult" in hist.params.index
    assert full.k == len(full.params) + 1
    assert full.llf >= hist.llf
    assert set(fit_perception_family(perception_data, full=False)) == {"null", "urb_10m", "urb_50m"}


def test_dissection_recovers_power_law(dissection_data):
    m = fit_dissection(dissection_data, "urb_50m")
    assert m.params["b0"] == pytest.approx(2.3, abs=0.15)
    assert m.params["delta"] == pytest.approx(1.0, abs=0.25)
    assert m.cov.shape == (6, 6)
    assert np.all(np.diag(m.cov) > 0)
    # prefactor and exponent estimates are strongly correlated
    corr = m.cov.loc["a0", "b0"] / np.sqrt(m.cov.loc["a0", "a0"] * m.cov.loc["b0", "b0"])
    assert corr < -0.8
    assert m.meta["start"]["a1"] == 0.0


def test_dissection_baseline_has_four_parameters(dissection_data):
    m = fit_dissection(dissection_data)
    assert list(m.params.index) == ["a0", "b0", "log_sigma", "delta"]
    assert m.covariate is None


def test_default_start_is_declared(dissection_data):
    start = default_start(dissection_data, "urb_10m")
    assert list(start.index) == ["a0", "a1", "b0", "b1", "log_sigma", "delta"]
    assert start["b0"] == pytest.approx(2.3, abs=0.2)


def test_dissection_non_convergence_is_fatal(dissection_data):
    with pytest.raises(NonConvergenceError) as err:
        fit_dissection(dissection_data, "urb_50m", maxiter=5)
    assert err.value.label == "urb_50m"
    assert err.value.start is not None


def test_dissection_invalid_start_is_fatal(dissection_data):
    with pytest.raises(NonConvergenceError, match="not finite"):
        fit_dissection(dissection_data, "urb_50m", start=[-1.0, 0.0, 2.0, 0.0, 0.0, 1.0])
