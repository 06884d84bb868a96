from __future__ import annotations
import logging
from pathlib import Path

import geopandas as gpd
import pandas as pd

from .cleaning import harmonize_sites, normalize_columns, parse_dates, parse_flag, require_columns, stage_codes
from .config import RAW_DISSECTION_CSV, RAW_EXPLORATION_CSV, RAW_PERCEPTION_CSV, RAW_SITES
from .validators import validate_table

logger = logging.getLogger(__name__)

_SITE_ALIASES = {"id": "site_id", "name": "site", "site_name": "site"}

REQUIRED = {
    "exploration": ["site", "date", "stage", "explored"],
    "perception": ["site", "date", "stage", "distance", "stimulus", "angle"],
    "dissection": ["site", "stage", "shell_diameter", "foot_mass"],
}


def _read_table(path) -> pd.DataFrame:
    path = Path(path)
    if path.suffix.lower() in (".xlsx", ".xls"):
        return pd.read_excel(path, engine="openpyxl")
    return pd.read_csv(path)


def prepare_sites(raw: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
    """Normalize and validate a site table; the geometry column is left alone."""
    geom = raw.geometry.name
    attrs = normalize_columns(pd.DataFrame(raw.drop(columns=geom)))
    attrs = attrs.rename(columns={k: v for k, v in _SITE_ALIASES.items() if k in attrs.columns and v not in attrs.columns})
    attrs = harmonize_sites(attrs)
    require_columns(attrs, ["site"], "sites")
    attrs = validate_table(attrs, "sites")
    return gpd.GeoDataFrame(attrs, geometry=raw.geometry.values, crs=raw.crs)


def _prepare_survey(raw: pd.DataFrame, table: str) -> pd.DataFrame:
    df = normalize_columns(raw)
    df = harmonize_sites(df)
    df = stage_codes(df)
    require_columns(df, REQUIRED[table], table)
    df = parse_dates(df, table)
    if table == "perception":
        df = parse_flag(df, "stimulus")
    return validate_table(df, table)


def prepare_exploration(raw: pd.DataFrame) -> pd.DataFrame:
    return _prepare_survey(raw, "exploration")


def prepare_perception(raw: pd.DataFrame) -> pd.DataFrame:
    return _prepare_survey(raw, "perception")


def prepare_dissection(raw: pd.DataFrame) -> pd.DataFrame:
    return _prepare_survey(raw, "dissection")


def read_sites(path: str | None = None) -> gpd.GeoDataFrame:
    sites = prepare_sites(gpd.read_file(path or RAW_SITES))
    logger.info("read %d sites from %s", len(sites), path or RAW_SITES)
    return sites


def read_exploration(path: str | None = None) -> pd.DataFrame:
    return prepare_exploration(_read_table(path or RAW_EXPLORATION_CSV))


def read_perception(path: str | None = None) -> pd.DataFrame:
    return prepare_perception(_read_table(path or RAW_PERCEPTION_CSV))


def read_dissection(path: str | None = None) -> pd.DataFrame:
    return prepare_dissection(_read_table(path or RAW_DISSECTION_CSV))
