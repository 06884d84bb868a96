"""
Residual spatial autocorrelation check.

Moran's I is computed separately for each distance class, using binary weights
(w_ij = 1 when the pair distance falls into the class). Expectation and variance
follow the randomisation assumption; p-values are two-sided normal approximations,
also given Holm-adjusted across classes. Diagnostic only: nothing is corrected.
"""
from __future__ import annotations
from typing import Optional

import numpy as np
import pandas as pd
from esda.moran import Moran
from libpysal import weights
from scipy.spatial.distance import pdist, squareform
from statsmodels.stats.multitest import multipletests

from .models import FittedModel


def sturges_classes(n_pairs: int) -> int:
    return int(np.ceil(np.log2(max(n_pairs, 1)) + 1))


def morans_i(values: np.ndarray, mask: np.ndarray, permutations: int = 0) -> dict:
    """Moran's I for one binary neighbour mask (n x n, zero diagonal)."""
    x = np.asarray(values, dtype=float)
    n = x.size
    out = {"moran_i": np.nan, "expected": -1.0 / (n - 1), "variance": np.nan, "z": np.nan, "p_value": np.nan}
    if permutations:
        out["p_sim"] = np.nan
    if not mask.any() or np.var(x) == 0 or n < 4:
        return out

    w = weights.full2W(mask.astype(float), silence_warnings=True)
    mi = Moran(x, w, transformation="B", permutations=permutations)
    out.update(moran_i=mi.I, expected=mi.EI, variance=mi.VI_rand, z=mi.z_rand, p_value=mi.p_rand)
    if permutations:
        out["p_sim"] = mi.p_sim
    return out


def residual_correlogram(
    resid,
    coords,
    n_classes: Optional[int] = None,
    max_distance: Optional[float] = None,
    permutations: int = 0,
) -> pd.DataFrame:
    """
    Moran's I correlogram of residuals over equal-width distance classes.

    Args:
        resid: residual per observation
        coords: (n x 2) planar coordinates per observation
        n_classes: number of distance classes (Sturges' rule on the pair count when None)
        max_distance: upper bound of the last class (largest pair distance when None)
        permutations: when > 0, also report a permutation p-value (p_sim)

    Returns:
        DataFrame, one row per class: dist_lower, dist_upper, dist_mean, n_pairs,
        moran_i, expected, variance, z, p_value, [p_sim,] p_holm
    """
    x = np.asarray(resid, dtype=float)
    xy = np.asarray(coords, dtype=float)
    if xy.ndim != 2 or xy.shape[1] != 2 or xy.shape[0] != x.size:
        raise ValueError(f"coords must be ({x.size}, 2), got {xy.shape}")
    if np.isnan(x).any() or np.isnan(xy).any():
        raise ValueError("Residuals and coordinates must not contain missing values")

    d_pairs = pdist(xy)
    D = squareform(d_pairs)
    n_classes = n_classes or sturges_classes(d_pairs.size)
    upper = float(max_distance if max_distance is not None else d_pairs.max())
    edges = np.linspace(0.0, upper, n_classes + 1)
    off_diag = ~np.eye(x.size, dtype=bool)

    rows = []
    for i in range(n_classes):
        lo, hi = edges[i], edges[i + 1]
        in_class = (D >= lo) & ((D <= hi) if i == n_classes - 1 else (D < hi))
        mask = in_class & off_diag
        n_pairs = int(mask.sum() // 2)
        row = {"dist_lower": lo, "dist_upper": hi,
               "dist_mean": float(D[mask].mean()) if n_pairs else np.nan,
               "n_pairs": n_pairs}
        row.update(morans_i(x, mask, permutations=permutations))
        rows.append(row)
    out = pd.DataFrame(rows)

    out["p_holm"] = np.nan
    ok = out["p_value"].notna()
    if ok.any():
        out.loc[ok, "p_holm"] = multipletests(out.loc[ok, "p_value"], method="holm")[1]
    out.index.name = "distance_class"
    return out


def model_correlogram(model: FittedModel, n_classes: Optional[int] = None,
                      max_distance: Optional[float] = None, permutations: int = 0) -> pd.DataFrame:
    """Correlogram of a fitted model's Pearson residuals against site coordinates."""
    coords = model.data[["x", "y"]].to_numpy(dtype=float)
    return residual_correlogram(model.resid_pearson.to_numpy(), coords, n_classes=n_classes,
                                max_distance=max_distance, permutations=permutations)
