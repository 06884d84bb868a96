import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from urbdisperse.dataframe_ops import (
    add_design_columns,
    aggregate_exploration,
    coverage_report,
    join_sites,
    site_coordinates,
)
from urbdisperse.errors import JoinMismatchWarning


def _sites(names=("A", "B", "C"), crs="EPSG:2154"):
    return gpd.GeoDataFrame(
        {"site": list(names), "habitat_50m": [10.0, 20.0, 30.0][: len(names)]},
        geometry=gpd.points_from_xy([0.0, 100.0, 200.0][: len(names)], [0.0, 0.0, 50.0][: len(names)]),
        crs=crs,
    )


def test_join_reports_unmatched_site():
    survey = pd.DataFrame({"site": ["A", "B", "D", "D"], "v": [1, 2, 3, 4]})
    with pytest.warns(JoinMismatchWarning, match="D"):
        res = join_sites(survey, _sites(), table="perception")

    assert res.unmatched == ["D"]
    assert res.n_unmatched_rows == 2
    # unmatched rows are kept, flagged, with no site attributes
    assert len(res.data) == 4
    d_rows = res.data[res.data["site"] == "D"]
    assert d_rows["habitat_50m"].isna().all()
    assert not d_rows["site_matched"].any()


def test_matched_drops_only_unmatched_rows():
    survey = pd.DataFrame({"site": ["A", "B", "D"], "v": [1, 2, 3]})
    with pytest.warns(JoinMismatchWarning):
        res = join_sites(survey, _sites())
    kept = res.matched()
    assert list(kept["site"]) == ["A", "B"]
    assert "site_matched" not in kept.columns
    assert kept.loc[kept["site"] == "B", "x"].iloc[0] == pytest.approx(100.0)


def test_join_without_mismatch_is_silent(recwarn):
    survey = pd.DataFrame({"site": ["C", "A"], "v": [1, 2]})
    res = join_sites(survey, _sites())
    assert res.unmatched == []
    assert not [w for w in recwarn if issubclass(w.category, JoinMismatchWarning)]
    assert res.data.loc[0, "habitat_50m"] == 30.0


def test_duplicate_site_names_are_rejected():
    with pytest.raises(ValueError, match="duplicate"):
        join_sites(pd.DataFrame({"site": ["A"]}), _sites(names=("A", "A", "B")))


def test_aggregate_exploration_counts():
    df = pd.DataFrame({"stage": ["a", "a", "a", "s"], "site": ["X", "X", "X", "X"],
                       "explored": [1, 0, 1, 0]})
    out = aggregate_exploration(df).set_index(["stage", "site"])
    assert out.loc[("a", "X"), "successes"] == 2
    assert out.loc[("a", "X"), "trials"] == 3
    assert out.loc[("a", "X"), "failures"] == 1
    assert out.loc[("s", "X"), "trials"] == 1


def test_geographic_sites_are_projected():
    sites = gpd.GeoDataFrame({"site": ["A", "B"]},
                             geometry=gpd.points_from_xy([2.35, 2.36], [48.85, 48.85]), crs="EPSG:4326")
    xy = site_coordinates(sites)
    dist = np.hypot(*(xy[["x", "y"]].iloc[1] - xy[["x", "y"]].iloc[0]))
    # 0.01 degree of longitude at 48.85N is about 730 m
    assert 650 < dist < 800


def test_design_columns():
    df = pd.DataFrame({"stage": ["a", "s"], "stimulus": [True, False], "angle": [0.0, 90.0],
                       "foot_mass": [0.25, 0.5]})
    out = add_design_columns(df)
    assert out["subadult"].tolist() == [0, 1]
    assert out["stimulus"].tolist() == [1, 0]
    assert out["response"].tolist() == [1.0, 0.5]
    assert out["foot_scaled"].tolist() == [250.0, 500.0]


def test_coverage_report_flags_missing_sites():
    rep = coverage_report({
        "sites": pd.DataFrame({"site": ["A", "B", "C"]}),
        "exploration": pd.DataFrame({"site": ["A", "B", "D"]}),
    })
    assert list(rep.index) == ["A", "B", "C", "D"]
    assert not rep.loc["D", "sites"]
    assert not rep.loc["C", "exploration"]
