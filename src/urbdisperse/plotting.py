from __future__ import annotations
from typing import Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import STAGES

_STAGE_COLORS = {"adult": "#1f4e79", "subadult": "#d97706"}
_PALETTE = ["#1f4e79", "#d97706", "#15803d", "#b91c1c", "#6d28d9", "#0e7490"]


def _axes(ax):
    if ax is None:
        fig, ax = plt.subplots(1, 1, figsize=(7, 4.5))
        return fig, ax, True
    return ax.figure, ax, False


def binned_means(data: pd.DataFrame, x: str, y: str, weight: Optional[str] = None,
                 n_bins: int = 8, by: Optional[str] = None) -> pd.DataFrame:
    """
    Mean of `y` within equal-width bins of `x` (weighted by `weight` if given),
    optionally per group `by`.
    """
    df = data.copy()
    df["_bin"] = pd.cut(df[x], bins=n_bins)
    w = df[weight] if weight else pd.Series(1.0, index=df.index)
    df["_wy"] = df[y] * w
    df["_w"] = w
    keys = ["_bin"] + ([by] if by else [])
    g = df.groupby(keys, observed=True)
    out = pd.DataFrame({
        x: g[x].mean(),
        y: g["_wy"].sum() / g["_w"].sum(),
        "n": g["_w"].sum(),
    }).reset_index()
    return out.drop(columns="_bin")


def plot_binned_fit(
    data: pd.DataFrame,
    x: str,
    y: str,
    summary: pd.DataFrame,
    *,
    weight: Optional[str] = None,
    n_bins: int = 8,
    ax=None,
    title: Optional[str] = None,
    ylabel: Optional[str] = None,
):
    """
    Binned scatter of the observations per stage, with the simulated median curve
    and interval ribbon of each stage from `summary` (quantity = 'adult'/'subadult').

    Returns (fig, ax).
    """
    fig, ax, created = _axes(ax)
    bins = binned_means(data, x, y, weight=weight, n_bins=n_bins, by="stage")
    for code, stage in STAGES.items():
        color = _STAGE_COLORS[stage]
        pts = bins[bins["stage"] == code]
        sizes = 20 + 80 * pts["n"] / max(bins["n"].max(), 1)
        ax.scatter(pts[x], pts[y], s=sizes, color=color, alpha=0.8, label=f"{stage} (binned)")
        curve = summary[summary["quantity"] == stage]
        if not curve.empty:
            ax.fill_between(curve[x], curve["lower"], curve["upper"], color=color, alpha=0.2)
            ax.plot(curve[x], curve["median"], color=color, lw=2, label=f"{stage} (fit)")
    ax.set_xlabel(x)
    ax.set_ylabel(ylabel or y)
    ax.set_title(title or f"{y} vs {x}")
    ax.legend(loc="best", fontsize=8)
    if created:
        fig.tight_layout()
    return fig, ax


def plot_correlogram(corr: pd.DataFrame, *, alpha: float = 0.05, ax=None, title: Optional[str] = None):
    """
    Moran's I per distance class; filled markers are classes significant after Holm adjustment.
    """
    fig, ax, created = _axes(ax)
    ok = corr["moran_i"].notna()
    c = corr[ok]
    mid = (c["dist_lower"] + c["dist_upper"]) / 2
    sig = c["p_holm"] < alpha
    ax.axhline(0, color="#9ca3af", lw=1)
    ax.plot(mid, c["expected"], color="#9ca3af", ls="--", lw=1, label="E[I]")
    ax.plot(mid, c["moran_i"], color="#1f2937", lw=1)
    ax.scatter(mid[~sig], c.loc[~sig, "moran_i"], facecolors="white", edgecolors="#1f2937", zorder=3, label="n.s.")
    ax.scatter(mid[sig], c.loc[sig, "moran_i"], color="#ef4444", zorder=3, label=f"p(Holm) < {alpha}")
    ax.set_xlabel("Distance class midpoint")
    ax.set_ylabel("Moran's I")
    ax.set_title(title or "Residual correlogram")
    ax.legend(loc="upper right", fontsize=8)
    if created:
        fig.tight_layout()
    return fig, ax


def plot_contrast_ribbons(
    summary: pd.DataFrame,
    x: str,
    quantities: Optional[Sequence[str]] = None,
    *,
    reference: Optional[float] = 0.0,
    ax=None,
    title: Optional[str] = None,
    ylabel: str = "Estimate",
):
    """Median curve and interval ribbon for each simulated quantity."""
    fig, ax, created = _axes(ax)
    quantities = list(quantities) if quantities is not None else list(pd.unique(summary["quantity"]))
    for i, q in enumerate(quantities):
        s = summary[summary["quantity"] == q]
        color = _PALETTE[i % len(_PALETTE)]
        ax.fill_between(s[x], s["lower"], s["upper"], color=color, alpha=0.2)
        ax.plot(s[x], s["median"], color=color, lw=2, label=q)
    if reference is not None:
        ax.axhline(reference, color="#9ca3af", lw=1, ls="--")
    ax.set_xlabel(x)
    ax.set_ylabel(ylabel)
    ax.set_title(title or ", ".join(quantities))
    ax.legend(loc="best", fontsize=8)
    if created:
        fig.tight_layout()
    return fig, ax
