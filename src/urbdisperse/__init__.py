"""
urbdisperse - re-analysis of snail dispersal behaviour along an urbanization gradient

Stages: load site/survey tables, build PCA urbanization indices per buffer radius,
join surveys to sites, fit exploration/perception/dissection model families,
rank them by AICc, check residual spatial autocorrelation and simulate derived
contrasts from the coefficients' sampling distributions.
"""

from .urbanization import urbanization_pca, add_urbanization_scores, UrbanizationPCA
from .dataframe_ops import (
    join_sites, aggregate_exploration, coverage_report, JoinResult,
    build_exploration_dataset, build_perception_dataset, build_dissection_dataset,
)
from .models import (
    FittedModel, fit_exploration, fit_exploration_family, fit_perception,
    fit_perception_family, fit_dissection, fit_dissection_family,
)
from .selection import aicc, aicc_table, best_model, term_tests
from .spatial import residual_correlogram, model_correlogram
from .simulation import (
    draw_coefficients, simulate_contrast, exploration_contrast,
    perception_contrast, dissection_contrast,
)
from .errors import (
    AnalysisError, SchemaMismatchError, DegeneratePCAError,
    NonConvergenceError, JoinMismatchWarning,
)
from .pipeline import run_analysis, run_analysis_frames, AnalysisResult

__all__ = [
    # Urbanization
    "urbanization_pca", "add_urbanization_scores", "UrbanizationPCA",
    # Joining
    "join_sites", "aggregate_exploration", "coverage_report", "JoinResult",
    "build_exploration_dataset", "build_perception_dataset", "build_dissection_dataset",
    # Models
    "FittedModel", "fit_exploration", "fit_exploration_family", "fit_perception",
    "fit_perception_family", "fit_dissection", "fit_dissection_family",
    # Selection and diagnostics
    "aicc", "aicc_table", "best_model", "term_tests",
    "residual_correlogram", "model_correlogram",
    # Simulation
    "draw_coefficients", "simulate_contrast", "exploration_contrast",
    "perception_contrast", "dissection_contrast",
    # Errors
    "AnalysisError", "SchemaMismatchError", "DegeneratePCAError",
    "NonConvergenceError", "JoinMismatchWarning",
    # Pipeline
    "run_analysis", "run_analysis_frames", "AnalysisResult",
]

__version__ = "0.1.0"
