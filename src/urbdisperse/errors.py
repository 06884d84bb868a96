"""Error taxonomy of the analysis run. Every error is terminal for the run."""
from __future__ import annotations


class AnalysisError(Exception):
    """Base class for failures that stop the pipeline."""


class SchemaMismatchError(AnalysisError, ValueError):
    """Input table is missing a column or holds an out-of-range value."""

    def __init__(self, table: str, message: str, failure_cases=None):
        super().__init__(f"[{table}] {message}")
        self.table = table
        self.failure_cases = failure_cases


class DegeneratePCAError(AnalysisError, ValueError):
    """Urbanization PCA input cannot produce a meaningful index."""


class NonConvergenceError(AnalysisError, RuntimeError):
    """Nonlinear model did not converge from its declared starting values."""

    def __init__(self, label: str, message: str, start=None):
        super().__init__(f"[{label}] {message}")
        self.label = label
        self.start = start


class JoinMismatchWarning(UserWarning):
    """Survey rows reference sites that are not in the site table."""
