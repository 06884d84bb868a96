from __future__ import annotations
import pandas as pd

from .config import DATE_FORMAT
from .errors import SchemaMismatchError

_TRUE = {"true", "t", "yes", "1"}
_FALSE = {"false", "f", "no", "0"}


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalize column names by stripping whitespace, replacing spaces with underscores,
    removing special characters and lower-casing.
    """
    df = df.copy()
    df.columns = (
        df.columns
        .astype(str)
        .str.strip()
        .str.replace(r"\s+", "_", regex=True)
        .str.replace(r"[^0-9A-Za-z_]", "", regex=True)
        .str.lower()
    )
    return df


def require_columns(df: pd.DataFrame, columns, table: str) -> pd.DataFrame:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise SchemaMismatchError(table, f"missing column(s) {missing}; found {list(df.columns)}")
    return df


def _strip(s: pd.Series, lower: bool = False) -> pd.Series:
    # missing values stay missing so that schema validation reports them
    out = s.astype(str).str.strip()
    if lower:
        out = out.str.lower()
    return out.where(s.notna(), s)


def harmonize_sites(df: pd.DataFrame, col: str = "site") -> pd.DataFrame:
    """
    Strip surrounding whitespace from the site key. Case is kept: joins need an exact match.
    """
    df = df.copy()
    if col in df.columns:
        df[col] = _strip(df[col])
    return df


def parse_dates(df: pd.DataFrame, table: str, col: str = "date", fmt: str = DATE_FORMAT) -> pd.DataFrame:
    """
    Parse day/month/year dates. Unparseable values are a schema failure, never NaT.
    """
    df = df.copy()
    if col not in df.columns or pd.api.types.is_datetime64_any_dtype(df[col]):
        return df
    try:
        df[col] = pd.to_datetime(df[col], format=fmt, errors="raise")
    except (ValueError, TypeError) as e:
        raise SchemaMismatchError(table, f"column '{col}' is not {fmt}: {e}") from e
    return df


def parse_flag(df: pd.DataFrame, col: str) -> pd.DataFrame:
    """
    Map textual/0-1 flags onto booleans. Unknown tokens are left untouched so
    that schema validation reports them.
    """
    df = df.copy()
    if col not in df.columns or pd.api.types.is_bool_dtype(df[col]):
        return df
    tokens = df[col].astype(str).str.strip().str.lower()
    if tokens.isin(_TRUE | _FALSE).all():
        df[col] = tokens.isin(_TRUE)
    return df


def stage_codes(df: pd.DataFrame, col: str = "stage") -> pd.DataFrame:
    df = df.copy()
    if col in df.columns:
        df[col] = _strip(df[col], lower=True)
    return df
