from __future__ import annotations
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List

import geopandas as gpd
import pandas as pd

from .config import DISSECTION_SCALE, KEYS
from .errors import JoinMismatchWarning, SchemaMismatchError

logger = logging.getLogger(__name__)

# -------------------------------
# Site attributes
# -------------------------------

def site_coordinates(sites: gpd.GeoDataFrame) -> pd.DataFrame:
    """
    Planar x/y per site from point geometry. Geographic CRSs are projected to
    their estimated UTM zone first so that distances are in metres.
    """
    gdf = sites
    if not gdf.geom_type.eq("Point").all():
        bad = gdf.loc[~gdf.geom_type.eq("Point"), "site"].tolist()
        raise SchemaMismatchError("sites", f"non-point geometry for site(s): {bad[:10]}")
    if gdf.crs is not None and gdf.crs.is_geographic:
        gdf = gdf.to_crs(gdf.estimate_utm_crs())
    return pd.DataFrame({"site": gdf["site"].to_numpy(),
                         "x": gdf.geometry.x.to_numpy(),
                         "y": gdf.geometry.y.to_numpy()})


def site_attributes(sites: gpd.GeoDataFrame) -> pd.DataFrame:
    """Plain attribute table (geometry replaced by x/y) indexed by nothing, keyed by `site`."""
    attrs = pd.DataFrame(sites.drop(columns=sites.geometry.name))
    assert_unique_key(attrs, "sites")
    return attrs.merge(site_coordinates(sites), on="site", how="left", validate="one_to_one")


# -------------------------------
# Joining
# -------------------------------

@dataclass
class JoinResult:
    table: str
    data: pd.DataFrame           # every survey row, unmatched ones carry NaN site attributes
    unmatched: List[str] = field(default_factory=list)

    @property
    def n_unmatched_rows(self) -> int:
        return int((~self.data["site_matched"]).sum())

    def matched(self) -> pd.DataFrame:
        """Rows with site attributes. The drop is logged, never silent."""
        if self.unmatched:
            logger.warning("%s: dropping %d row(s) from unmatched site(s) %s before modelling",
                           self.table, self.n_unmatched_rows, self.unmatched)
        return self.data.loc[self.data["site_matched"]].drop(columns="site_matched").reset_index(drop=True)


def join_sites(survey: pd.DataFrame, sites: gpd.GeoDataFrame, table: str = "survey") -> JoinResult:
    """
    Left-join a survey table with site attributes and planar coordinates on `site`.
    Sites missing from the site table are listed on the result and raised as a
    JoinMismatchWarning.
    """
    attrs = site_attributes(sites) if isinstance(sites, gpd.GeoDataFrame) else sites
    overlap = [c for c in attrs.columns if c in survey.columns and c not in KEYS]
    if overlap:
        raise ValueError(f"Columns already exist in {table}: {overlap[:10]} ...")

    merged = survey.merge(attrs, on=KEYS, how="left", validate="many_to_one", indicator=True)
    merged["site_matched"] = merged.pop("_merge").eq("both")
    unmatched = sorted(merged.loc[~merged["site_matched"], "site"].unique().tolist())
    if unmatched:
        msg = f"{table}: {len(unmatched)} site(s) not in site table: {unmatched}"
        warnings.warn(msg, JoinMismatchWarning, stacklevel=2)
        logger.warning(msg)
    return JoinResult(table=table, data=merged, unmatched=unmatched)


def coverage_report(tables: Dict[str, pd.DataFrame], key: str = "site") -> pd.DataFrame:
    """
    Availability table: rows=union of sites, cols=table names, values=site present (True/False).
    """
    all_sites = pd.Index([])
    for t in tables.values():
        all_sites = all_sites.union(pd.Index(t[key].unique()))
    rep = {name: all_sites.isin(t[key].unique()) for name, t in tables.items()}
    out = pd.DataFrame(rep, index=all_sites).sort_index()
    out.index.name = key
    return out


# -------------------------------
# Per-domain derived columns
# -------------------------------

def aggregate_exploration(df: pd.DataFrame) -> pd.DataFrame:
    """
    Successes/trials per (stage, site) from individual 0/1 exploration outcomes.
    """
    out = (
        df.groupby(["stage", "site"], sort=True)["explored"]
        .agg(successes="sum", trials="count")
        .reset_index()
    )
    out["successes"] = out["successes"].astype(int)
    out["failures"] = out["trials"] - out["successes"]
    out["proportion"] = out["successes"] / out["trials"]
    return out


def add_design_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Numeric predictors used by every model formula:
      - subadult: 1 for stage 's', 0 for adults
      - stimulus: 0/1 (perception)
      - response: (180 - angle) / 180, 1 = heading straight at the stimulus (perception)
      - foot_scaled: foot dry mass in mg (dissection)
    """
    out = df.copy()
    out["subadult"] = out["stage"].eq("s").astype(int)
    if "stimulus" in out.columns:
        out["stimulus"] = out["stimulus"].astype(int)
    if "angle" in out.columns:
        out["response"] = (180.0 - out["angle"]) / 180.0
    if "foot_mass" in out.columns:
        out["foot_scaled"] = out["foot_mass"] * DISSECTION_SCALE
    return out


def build_exploration_dataset(exploration: pd.DataFrame, sites: gpd.GeoDataFrame) -> JoinResult:
    return join_sites(add_design_columns(aggregate_exploration(exploration)), sites, table="exploration")


def build_perception_dataset(perception: pd.DataFrame, sites: gpd.GeoDataFrame) -> JoinResult:
    return join_sites(add_design_columns(perception), sites, table="perception")


def build_dissection_dataset(dissection: pd.DataFrame, sites: gpd.GeoDataFrame) -> JoinResult:
    return join_sites(add_design_columns(dissection), sites, table="dissection")


# -------------------------------
# Validation / Safety
# -------------------------------

def assert_unique_key(df: pd.DataFrame, name: str = "frame", key: str = "site") -> None:
    if not df[key].is_unique:
        dups = df.loc[df[key].duplicated(), key].unique()
        raise ValueError(f"{name} has duplicate {key} values (first 10): {dups[:10].tolist()}")
