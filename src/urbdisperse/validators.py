from __future__ import annotations
import numpy as np
import pandas as pd
import pandera as pa
from pandera import Column, DataFrameSchema, Check
from pandera.errors import SchemaErrors

from .config import BUFFER_VARIABLES, STAGES
from .errors import SchemaMismatchError

_STAGE = Column(str, Check.isin(list(STAGES)), nullable=False)
_SITE = Column(str, nullable=False)


def _on_grid(step: float, unit: str) -> Check:
    """Values must be whole multiples of the recording resolution."""
    return Check(lambda s: pd.Series(np.isclose(s / step, np.round(s / step)), index=s.index),
                 name=f"multiple_of_{step}", error=f"not recorded to the nearest {step} {unit}")


def _metric_columns() -> dict:
    cols = {}
    for variables in BUFFER_VARIABLES.values():
        for var in variables:
            if var.startswith("para"):
                checks = Check.ge(0)
            else:
                # percentages and largest-patch index
                checks = Check.in_range(0, 100)
            cols[var] = Column(float, checks, nullable=False, coerce=True)
    return cols


site_schema = DataFrameSchema(
    {"site": Column(str, nullable=False, unique=True), **_metric_columns()},
    strict=False,
)

exploration_schema = DataFrameSchema({
    "site": _SITE,
    "date": Column(pa.DateTime, nullable=False),
    "stage": _STAGE,
    "explored": Column(int, Check.isin([0, 1]), nullable=False, coerce=True),
}, strict=False)

perception_schema = DataFrameSchema({
    "site": _SITE,
    "date": Column(pa.DateTime, nullable=False),
    "stage": _STAGE,
    "distance": Column(float, Check.ge(0), nullable=False, coerce=True),
    "stimulus": Column(bool, nullable=False),
    "angle": Column(float, [Check.in_range(0, 180), _on_grid(5, "degrees")], nullable=False, coerce=True),
}, strict=False)

dissection_schema = DataFrameSchema({
    "site": _SITE,
    "stage": _STAGE,
    "shell_diameter": Column(float, [Check.gt(0), _on_grid(0.5, "mm")], nullable=False, coerce=True),
    "foot_mass": Column(float, Check.gt(0), nullable=False, coerce=True),
    "reserve_mass": Column(float, Check.ge(0), nullable=True, coerce=True, required=False),
}, strict=False)

SCHEMAS = {
    "sites": site_schema,
    "exploration": exploration_schema,
    "perception": perception_schema,
    "dissection": dissection_schema,
}


def validate_table(df: pd.DataFrame, table: str) -> pd.DataFrame:
    """
    Validate a table against its schema, collecting every failure before raising.

    Raises:
        SchemaMismatchError: listing the failing columns, checks and row indices
    """
    schema = SCHEMAS[table]
    try:
        return schema.validate(df, lazy=True)
    except SchemaErrors as e:
        cases = e.failure_cases
        shown = cases[[c for c in ("column", "check", "index", "failure_case") if c in cases.columns]]
        raise SchemaMismatchError(
            table,
            f"{len(cases)} schema failure(s):\n{shown.head(20).to_string(index=False)}",
            failure_cases=cases,
        ) from e
