import matplotlib

matplotlib.use("Agg")

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from urbdisperse.ingest import prepare_dissection, prepare_exploration, prepare_perception, prepare_sites


def make_sites(n_sites=30, seed=0):
    """Sites whose 10 m and 50 m metrics follow independent latent gradients."""
    rng = np.random.default_rng(seed)
    u10, u50 = rng.normal(size=n_sites), rng.normal(size=n_sites)
    metrics = {}
    for buf, u in (("10m", u10), ("50m", u50)):
        metrics[f"para_{buf}"] = np.clip(0.5 - 0.15 * u + rng.normal(0, 0.03, n_sites), 0.01, None)
        metrics[f"habitat_{buf}"] = np.clip(50 + 15 * u + rng.normal(0, 3, n_sites), 0, 100)
        metrics[f"matrix_{buf}"] = np.clip(40 - 12 * u + rng.normal(0, 3, n_sites), 0, 100)
        metrics[f"lpi_{buf}"] = np.clip(30 + 8 * u + rng.normal(0, 3, n_sites), 0, 100)
    sites = gpd.GeoDataFrame(
        {"id": np.arange(1, n_sites + 1), "name": [f"S{i:02d}" for i in range(n_sites)], **metrics},
        geometry=gpd.points_from_xy(rng.uniform(0, 5000, n_sites), rng.uniform(0, 5000, n_sites)),
        crs="EPSG:2154",
    )
    return prepare_sites(sites), u10, u50


def make_tables(n_sites=30, per_site=20, seed=0, slope50=1.2):
    """
    Synthetic tables: exploration depends on the 50 m gradient only, perception
    has a distance-decaying stimulus effect, foot mass follows a power law whose
    prefactor depends on the 50 m gradient.
    """
    sites, _, u50 = make_sites(n_sites, seed)
    rng = np.random.default_rng(seed + 1)
    names = sites["site"].to_numpy()
    site = np.repeat(names, per_site)
    u = np.repeat(u50, per_site)
    stage = np.tile(["a", "s"], n_sites * per_site // 2)

    p = 1 / (1 + np.exp(-(-0.2 + 0.5 * (stage == "s") - slope50 * u)))
    exploration = pd.DataFrame({"site": site, "date": "03/06/2021", "stage": stage,
                                "explored": rng.binomial(1, p)})

    stim = np.tile([True, True, False, False], n_sites * per_site // 4)
    dist = rng.choice([5.0, 10.0, 20.0, 40.0], size=site.size)
    resp = 0.5 + 0.3 * stim * np.exp(-dist / 20) + rng.normal(0, 0.12, site.size)
    angle = np.clip(np.round(180 * (1 - resp) / 5) * 5, 0, 180)
    perception = pd.DataFrame({"site": site, "date": "04/06/2021", "stage": stage,
                               "distance": dist, "stimulus": stim, "angle": angle})

    shell = np.round(rng.uniform(18, 34, site.size) * 2) / 2
    mu = (0.12 + 0.015 * u) * shell ** 2.3
    foot = mu * np.exp(rng.normal(0, 0.08, site.size)) / 1000
    dissection = pd.DataFrame({"site": site, "stage": stage, "shell_diameter": shell,
                               "foot_mass": foot, "reserve_mass": foot * 0.3})

    return (sites, prepare_exploration(exploration), prepare_perception(perception),
            prepare_dissection(dissection))


@pytest.fixture(scope="session")
def tables():
    return make_tables()


@pytest.fixture(scope="session")
def scored_sites(tables):
    from urbdisperse.urbanization import add_urbanization_scores
    sites, _ = add_urbanization_scores(tables[0])
    return sites


@pytest.fixture(scope="session")
def exploration_data(tables, scored_sites):
    from urbdisperse.dataframe_ops import build_exploration_dataset
    return build_exploration_dataset(tables[1], scored_sites).matched()


@pytest.fixture(scope="session")
def perception_data(tables, scored_sites):
    from urbdisperse.dataframe_ops import build_perception_dataset
    return build_perception_dataset(tables[2], scored_sites).matched()


@pytest.fixture(scope="session")
def dissection_data(tables, scored_sites):
    from urbdisperse.dataframe_ops import build_dissection_dataset
    return build_dissection_dataset(tables[3], scored_sites).matched()
