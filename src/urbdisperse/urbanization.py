"""
Urbanization indices from landscape metrics.

One PCA is run per buffer radius on the z-scored metrics of that buffer only, and
the site score on the first component is used as the urbanization index. Each
run keeps its own centring and scaling statistics.

PC1 is oriented so that the habitat-cover loading is positive: positive scores
denote *less* urbanized sites (more habitat, less artificial matrix).
"""
from __future__ import annotations
import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from sklearn.decomposition import PCA

from .config import BUFFER_VARIABLES, ORIENT_BY, URBANIZATION_COLUMNS
from .errors import DegeneratePCAError

logger = logging.getLogger(__name__)


class UrbanizationPCA:
    """
    Result of one buffer-radius PCA.

    Attributes:
        buffer (str): buffer label, e.g. "50m"
        scores (pd.DataFrame): site x component scores, PC1 oriented
        loadings (pd.DataFrame): variable x component loadings
        explained_variance_ratio (np.ndarray): proportion of variance per component
        center (pd.Series): column means used for standardisation
        scale (pd.Series): column standard deviations (ddof=1)
        pca (sklearn.decomposition.PCA): fitted PCA object
        flipped (bool): whether PC1 was sign-flipped during orientation
    """

    def __init__(self, buffer: str, scores: pd.DataFrame, loadings: pd.DataFrame,
                 explained_variance_ratio: np.ndarray, center: pd.Series, scale: pd.Series,
                 pca: PCA, flipped: bool):
        self.buffer = buffer
        self.scores = scores
        self.loadings = loadings
        self.explained_variance_ratio = explained_variance_ratio
        self.center = center
        self.scale = scale
        self.pca = pca
        self.flipped = flipped

    @property
    def index(self) -> pd.Series:
        """PC1 scores: the urbanization index of each site."""
        return self.scores["PC1"]

    def __repr__(self):
        return (
            f"UrbanizationPCA(buffer='{self.buffer}', sites={self.scores.shape[0]}, "
            f"variables={self.loadings.shape[0]}, "
            f"var_explained_PC1={self.explained_variance_ratio[0]:.3f})"
        )


def standardize(df: pd.DataFrame) -> Tuple[pd.DataFrame, pd.Series, pd.Series]:
    """
    Z-score by column with the n-1 standard deviation. Zero-variance columns are an error.
    """
    X = df.to_numpy(dtype=float, copy=True)
    mu = X.mean(axis=0)
    sd = X.std(axis=0, ddof=1)
    flat = [c for c, s in zip(df.columns, sd) if not np.isfinite(s) or s == 0]
    if flat:
        raise DegeneratePCAError(f"Zero-variance variable(s) in PCA input: {flat}")
    Z = (X - mu) / sd
    return (pd.DataFrame(Z, index=df.index, columns=df.columns),
            pd.Series(mu, index=df.columns), pd.Series(sd, index=df.columns))


def urbanization_pca(
    sites: pd.DataFrame,
    variables: Sequence[str],
    *,
    buffer: str = "",
    orient_by: Optional[str] = None,
    index_col: str = "site",
) -> UrbanizationPCA:
    """
    Run a scaled PCA over one buffer's landscape metrics.

    Args:
        sites: site table holding `variables`
        variables: metric columns for this buffer radius
        buffer: label stored on the result
        orient_by: variable whose PC1 loading is forced positive (None keeps sklearn's sign)
        index_col: column used to index the scores (ignored if absent)

    Returns:
        UrbanizationPCA with oriented scores and loadings

    Raises:
        DegeneratePCAError: fewer than 2 variables, missing values, zero variance, or < 3 sites
    """
    variables = list(variables)
    if len(variables) < 2:
        raise DegeneratePCAError(f"Insufficient variables for PCA (found {len(variables)}, need >=2)")
    missing = [v for v in variables if v not in sites.columns]
    if missing:
        raise DegeneratePCAError(f"PCA variables not found in site table: {missing}")

    data = pd.DataFrame(sites[variables]).astype(float)
    if index_col in sites.columns:
        data.index = pd.Index(sites[index_col], name=index_col)
    if data.isna().any().any():
        bad = data.columns[data.isna().any()].tolist()
        raise DegeneratePCAError(f"Missing values in PCA variable(s): {bad}")
    if data.shape[0] < 3:
        raise DegeneratePCAError(f"Need at least 3 sites for PCA, found {data.shape[0]}")

    Z, center, scale = standardize(data)

    pca = PCA()
    raw_scores = pca.fit_transform(Z.values)
    components = pca.components_.copy()

    flipped = False
    if orient_by is not None:
        if orient_by not in variables:
            raise ValueError(f"orient_by='{orient_by}' is not one of {variables}")
        if components[0, variables.index(orient_by)] < 0:
            components[0] *= -1
            raw_scores[:, 0] *= -1
            flipped = True

    pcs = [f"PC{i+1}" for i in range(components.shape[0])]
    scores = pd.DataFrame(raw_scores, index=data.index, columns=pcs)
    loadings = pd.DataFrame(components.T, index=variables, columns=pcs)

    result = UrbanizationPCA(buffer, scores, loadings, pca.explained_variance_ratio_,
                             center, scale, pca, flipped)
    logger.info("urbanization PCA %s: PC1 explains %.1f%% of variance",
                buffer or "?", 100 * result.explained_variance_ratio[0])
    return result


def add_urbanization_scores(
    sites: pd.DataFrame,
    buffers: Optional[Dict[str, Sequence[str]]] = None,
    orient_by: Optional[Dict[str, str]] = None,
) -> Tuple[pd.DataFrame, Dict[str, UrbanizationPCA]]:
    """
    Attach one PC1 score per buffer radius to a copy of the site table.

    Returns (sites_with_scores, {buffer: UrbanizationPCA}).
    """
    buffers = buffers or BUFFER_VARIABLES
    orient_by = ORIENT_BY if orient_by is None else orient_by

    out = sites.copy()
    results = {}
    for buffer, variables in buffers.items():
        res = urbanization_pca(sites, variables, buffer=buffer, orient_by=orient_by.get(buffer))
        col = URBANIZATION_COLUMNS.get(buffer, f"urb_{buffer}")
        out[col] = res.index.to_numpy()
        results[buffer] = res
    return out, results
