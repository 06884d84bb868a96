from __future__ import annotations
from pathlib import Path

import pandas as pd

from .config import FIGURES, REPORTS


def save_report(df: pd.DataFrame, name: str, directory: Path = REPORTS) -> Path:
    """
    Save a report table as CSV.

    Args:
        df: table to save (index kept when it carries names, e.g. term tests)
        name: filename without directory
        directory: target directory, created if needed

    Returns:
        Path: the full path of the written file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    df.to_csv(path, index=df.index.name is not None)
    return path


def save_figure(fig, name: str, directory: Path = FIGURES, dpi: int = 150) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    return path
