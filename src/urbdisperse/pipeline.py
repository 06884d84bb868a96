"""
Ordered analysis run: load -> urbanization PCA -> join -> fit -> compare -> diagnose -> simulate.

Every stage must finish before the next consumes its output; any error stops the
run and is logged with the stage it came from.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Optional

import geopandas as gpd
import matplotlib.pyplot as plt
import pandas as pd

from .config import CI_LEVEL, N_DRAWS, SEED
from .data_io import save_figure, save_report
from .dataframe_ops import (
    JoinResult, build_dissection_dataset, build_exploration_dataset,
    build_perception_dataset, coverage_report,
)
from .errors import AnalysisError
from .ingest import read_dissection, read_exploration, read_perception, read_sites
from .models import FittedModel, fit_dissection_family, fit_exploration_family, fit_perception_family
from .plotting import plot_binned_fit, plot_contrast_ribbons, plot_correlogram
from .selection import aicc_table, print_comparison, term_tests
from .simulation import dissection_contrast, exploration_contrast, perception_contrast
from .spatial import model_correlogram
from .urbanization import UrbanizationPCA, add_urbanization_scores

logger = logging.getLogger(__name__)

# model of each family whose coefficients feed the diagnostics and contrast plots
CONTRAST_MODELS = {
    "exploration": "urb_50m",
    "perception": "urb_50m",
    "dissection": "urb_50m",
}


@contextmanager
def stage(name: str):
    logger.info("stage '%s' started", name)
    try:
        yield
    except AnalysisError as e:
        e.stage = name
        logger.error("stage '%s' failed: %s", name, e)
        raise
    except Exception:
        logger.exception("stage '%s' failed", name)
        raise
    logger.info("stage '%s' done", name)


@dataclass
class AnalysisResult:
    sites: gpd.GeoDataFrame
    pca: Dict[str, UrbanizationPCA]
    datasets: Dict[str, JoinResult]
    coverage: pd.DataFrame
    families: Dict[str, Dict[str, FittedModel]] = field(default_factory=dict)
    comparisons: Dict[str, pd.DataFrame] = field(default_factory=dict)
    term_tests: Dict[str, pd.DataFrame] = field(default_factory=dict)
    correlograms: Dict[str, pd.DataFrame] = field(default_factory=dict)
    contrasts: Dict[str, pd.DataFrame] = field(default_factory=dict)
    figures: Dict[str, object] = field(default_factory=dict)


def run_analysis_frames(
    sites: gpd.GeoDataFrame,
    exploration: pd.DataFrame,
    perception: pd.DataFrame,
    dissection: pd.DataFrame,
    *,
    contrast_models: Optional[Dict[str, str]] = None,
    dissection_starts: Optional[Dict[str, list]] = None,
    n_draws: int = N_DRAWS,
    level: float = CI_LEVEL,
    seed: int = SEED,
    plots: bool = False,
    save: bool = False,
    verbose: bool = True,
) -> AnalysisResult:
    """
    Run every stage on already loaded and validated tables.

    Args:
        contrast_models: family -> model label used for correlograms and contrasts
        dissection_starts: model label -> explicit start values for the power model
        plots: build the figures (saved too when `save`)
        save: write report tables (and figures) under config.REPORTS
        verbose: print model comparison tables
    """
    chosen = {**CONTRAST_MODELS, **(contrast_models or {})}

    with stage("urbanization"):
        sites, pca = add_urbanization_scores(sites)

    with stage("join"):
        datasets = {
            "exploration": build_exploration_dataset(exploration, sites),
            "perception": build_perception_dataset(perception, sites),
            "dissection": build_dissection_dataset(dissection, sites),
        }
        coverage = coverage_report({"sites": sites, "exploration": exploration,
                                    "perception": perception, "dissection": dissection})
        frames = {name: j.matched() for name, j in datasets.items()}

    result = AnalysisResult(sites=sites, pca=pca, datasets=datasets, coverage=coverage)

    with stage("fit"):
        result.families["exploration"] = fit_exploration_family(frames["exploration"])
        result.families["perception"] = fit_perception_family(frames["perception"], full=True)
        result.families["perception_historical"] = fit_perception_family(frames["perception"], full=False)
        result.families["dissection"] = fit_dissection_family(frames["dissection"], starts=dissection_starts)

    with stage("select"):
        for family, models in result.families.items():
            table = aicc_table(models)
            result.comparisons[family] = table
            if verbose:
                print_comparison(table, family)
            for label, model in models.items():
                if model.covariate is not None:
                    result.term_tests[f"{family}:{label}"] = term_tests(model)

    picked = {domain: result.families[domain][label] for domain, label in chosen.items()}

    with stage("spatial"):
        for domain, model in picked.items():
            result.correlograms[domain] = model_correlogram(model)

    with stage("simulate"):
        result.contrasts["exploration"] = exploration_contrast(
            picked["exploration"], n_draws=n_draws, level=level, rng=seed)
        result.contrasts["perception"] = perception_contrast(
            picked["perception"], n_draws=n_draws, level=level, rng=seed + 1)
        result.contrasts["perception_distance"] = perception_contrast(
            picked["perception"], over="distance", n_draws=n_draws, level=level, rng=seed + 2)
        result.contrasts["dissection"] = dissection_contrast(
            picked["dissection"], n_draws=n_draws, level=level, rng=seed + 3)

    if plots:
        with stage("plot"):
            result.figures = _make_figures(result, picked)

    if save:
        with stage("save"):
            _save(result)
    return result


def run_analysis(
    sites_path: Optional[str] = None,
    exploration_path: Optional[str] = None,
    perception_path: Optional[str] = None,
    dissection_path: Optional[str] = None,
    **kwargs,
) -> AnalysisResult:
    """Load the four input files (config defaults when paths are None) and run every stage."""
    with stage("load"):
        sites = read_sites(sites_path)
        exploration = read_exploration(exploration_path)
        perception = read_perception(perception_path)
        dissection = read_dissection(dissection_path)
    return run_analysis_frames(sites, exploration, perception, dissection, **kwargs)


def _make_figures(result: AnalysisResult, picked: Dict[str, FittedModel]) -> Dict[str, object]:
    figs = {}
    expl = picked["exploration"]
    contrast = result.contrasts["exploration"]
    fig, _ = plot_binned_fit(expl.data, expl.covariate, "proportion", contrast, weight="trials",
                             title=f"Exploration ~ {expl.covariate}", ylabel="P(explore matrix)")
    figs["exploration_fit"] = fig
    fig, _ = plot_contrast_ribbons(contrast, expl.covariate, ["subadult - adult"],
                                   title="Exploration: subadult - adult", ylabel="Difference in probability")
    figs["exploration_stage_difference"] = fig

    perc = picked["perception"]
    for key, x in (("perception", perc.covariate), ("perception_distance", "distance")):
        s = result.contrasts[key]
        fig, _ = plot_contrast_ribbons(s, x, [q for q in s["quantity"].unique() if "detectability" in q],
                                       title=f"Detectability vs {x}")
        figs[f"{key}_detectability"] = fig
        fig, _ = plot_contrast_ribbons(s, x, [q for q in s["quantity"].unique() if "bias" in q],
                                       title=f"Response bias vs {x}")
        figs[f"{key}_bias"] = fig

    diss = picked["dissection"]
    s = result.contrasts["dissection"]
    for q in s["quantity"].unique():
        fig, _ = plot_contrast_ribbons(s, diss.covariate, [q], reference=None, title=f"Dissection: {q}")
        figs[f"dissection_{'exponent' if 'exponent' in q else 'mass'}"] = fig

    for domain, corr in result.correlograms.items():
        fig, _ = plot_correlogram(corr, title=f"Residual correlogram: {domain} ({picked[domain].label})")
        figs[f"correlogram_{domain}"] = fig
    return figs


def _save(result: AnalysisResult) -> None:
    save_report(result.coverage, "site_coverage.csv")
    for buffer, res in result.pca.items():
        save_report(res.loadings.rename_axis("variable"), f"pca_loadings_{buffer}.csv")
    for family, table in result.comparisons.items():
        save_report(table, f"aicc_{family}.csv")
    for key, table in result.term_tests.items():
        save_report(table.rename_axis("term"), f"terms_{key.replace(':', '_')}.csv")
    for domain, corr in result.correlograms.items():
        save_report(corr, f"correlogram_{domain}.csv")
    for key, table in result.contrasts.items():
        save_report(table, f"contrast_{key}.csv")
    for name, fig in result.figures.items():
        save_figure(fig, f"{name}.png")
        plt.close(fig)
