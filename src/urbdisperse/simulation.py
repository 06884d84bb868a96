"""
Simulation-based intervals for derived quantities.

Coefficient vectors are drawn from the asymptotic normal sampling distribution of
a fitted model and pushed through a closed-form function over a grid, giving a
distribution of curves that is summarised pointwise (median and equal-tailed
interval). Draws are joint (multivariate normal with the full covariance) unless
explicitly requested otherwise: with correlated coefficients, independent draws
give wrong interval widths for any nonlinear combination.
"""
from __future__ import annotations
from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.special import expit

from .config import CI_LEVEL, N_DRAWS, STAGES
from .models import FittedModel, power_mean

RngLike = Union[None, int, np.random.Generator]


def draw_coefficients(
    params: pd.Series,
    cov: pd.DataFrame,
    n_draws: int = N_DRAWS,
    *,
    joint: bool = True,
    rng: RngLike = None,
) -> pd.DataFrame:
    """
    Draw coefficient vectors.

    joint=True samples MVN(params, cov); joint=False samples each coefficient from
    its own normal with the diagonal variance (correlations ignored).
    """
    rng = np.random.default_rng(rng)
    mean = np.asarray(params, dtype=float)
    V = np.asarray(cov.loc[params.index, params.index] if isinstance(cov, pd.DataFrame) else cov, dtype=float)
    if joint:
        draws = rng.multivariate_normal(mean, V, size=n_draws)
    else:
        draws = rng.normal(mean, np.sqrt(np.diag(V)), size=(n_draws, mean.size))
    return pd.DataFrame(draws, columns=params.index)


def draw_model(model: FittedModel, n_draws: int = N_DRAWS, *, joint: bool = True, rng: RngLike = None) -> pd.DataFrame:
    return draw_coefficients(model.params, model.cov, n_draws, joint=joint, rng=rng)


def linear_predictor(draws: pd.DataFrame, newdata: pd.DataFrame) -> np.ndarray:
    """
    (n_draws x n_rows) linear predictor for numeric designs. A coefficient named
    'a:b' multiplies newdata['a'] * newdata['b']; 'Intercept' multiplies 1.
    """
    X = np.empty((len(newdata), draws.shape[1]))
    for j, name in enumerate(draws.columns):
        if name == "Intercept":
            X[:, j] = 1.0
            continue
        col = np.ones(len(newdata))
        for part in name.split(":"):
            if part not in newdata.columns:
                raise KeyError(f"newdata lacks column '{part}' needed by coefficient '{name}'")
            col = col * newdata[part].to_numpy(dtype=float)
        X[:, j] = col
    return draws.to_numpy() @ X.T


def summarize_draws(curves: np.ndarray, grid: Union[pd.DataFrame, pd.Series, np.ndarray],
                    level: float = CI_LEVEL) -> pd.DataFrame:
    """Pointwise median and equal-tailed `level` interval of simulated curves."""
    curves = np.asarray(curves, dtype=float)
    if curves.ndim == 1:
        curves = curves[:, None]
    alpha = (1.0 - level) / 2.0
    lower, median, upper = np.quantile(curves, [alpha, 0.5, 1.0 - alpha], axis=0)
    out = pd.DataFrame(grid).reset_index(drop=True) if not isinstance(grid, np.ndarray) else pd.DataFrame({"x": grid})
    out["median"] = median
    out["lower"] = lower
    out["upper"] = upper
    return out


def simulate_contrast(
    params: pd.Series,
    cov: pd.DataFrame,
    func: Callable[[pd.DataFrame], np.ndarray],
    grid=None,
    *,
    n_draws: int = N_DRAWS,
    joint: bool = True,
    level: float = CI_LEVEL,
    rng: RngLike = None,
) -> pd.DataFrame:
    """Summary of func(draws) where func maps a draws frame to (n_draws,) or (n_draws, len(grid))."""
    draws = draw_coefficients(params, cov, n_draws, joint=joint, rng=rng)
    values = np.asarray(func(draws), dtype=float)
    if grid is None:
        grid = np.arange(1 if values.ndim == 1 else values.shape[1])
    return summarize_draws(values, grid, level)


def default_grid(model: FittedModel, column: str, n: int = 100) -> np.ndarray:
    values = model.data[column].to_numpy(dtype=float)
    return np.linspace(values.min(), values.max(), n)


def _stack(parts: Dict[str, np.ndarray], grid: pd.DataFrame, level: float) -> pd.DataFrame:
    frames = []
    for quantity, curves in parts.items():
        s = summarize_draws(curves, grid, level)
        s.insert(0, "quantity", quantity)
        frames.append(s)
    return pd.concat(frames, ignore_index=True)


def exploration_contrast(
    model: FittedModel,
    grid: Optional[Sequence[float]] = None,
    *,
    n_draws: int = N_DRAWS,
    joint: bool = True,
    level: float = CI_LEVEL,
    rng: RngLike = None,
) -> pd.DataFrame:
    """
    Probability of exploring the artificial matrix per stage over the urbanization
    grid, and the subadult - adult difference.
    """
    cov_name = model.covariate
    if cov_name is None:
        raise ValueError("exploration_contrast needs a model with an urbanization covariate")
    grid = default_grid(model, cov_name) if grid is None else np.asarray(grid, dtype=float)
    draws = draw_model(model, n_draws, joint=joint, rng=rng)

    p = {}
    for code, stage in STAGES.items():
        newdata = pd.DataFrame({cov_name: grid, "subadult": int(code == "s")})
        p[stage] = expit(linear_predictor(draws, newdata))
    p["subadult - adult"] = p["subadult"] - p["adult"]
    return _stack(p, pd.DataFrame({cov_name: grid}), level)


def perception_contrast(
    model: FittedModel,
    over: Optional[str] = None,
    grid: Optional[Sequence[float]] = None,
    at: Optional[Dict[str, float]] = None,
    *,
    n_draws: int = N_DRAWS,
    joint: bool = True,
    level: float = CI_LEVEL,
    rng: RngLike = None,
) -> pd.DataFrame:
    """
    Detectability and response bias per stage, and their subadult - adult differences.

    detectability = response(stimulus) - response(control)
    response bias = response(control) - 0.5 (0.5 is a random heading)

    Args:
        over: column varied along the grid (the model covariate by default, else 'distance')
        at: fixed values for the remaining numeric predictors; distance defaults to
            its median, urbanization to 0 (the average site)
    """
    over = over or model.covariate or "distance"
    grid = default_grid(model, over) if grid is None else np.asarray(grid, dtype=float)
    fixed = {"distance": float(model.data["distance"].median())}
    if model.covariate is not None:
        fixed[model.covariate] = 0.0
    fixed.update(at or {})
    fixed.pop(over, None)

    draws = draw_model(model, n_draws, joint=joint, rng=rng)
    parts = {}
    for code, stage in STAGES.items():
        base = pd.DataFrame({over: grid, **fixed, "subadult": int(code == "s")})
        stim = linear_predictor(draws, base.assign(stimulus=1))
        ctrl = linear_predictor(draws, base.assign(stimulus=0))
        parts[f"detectability ({stage})"] = stim - ctrl
        parts[f"response bias ({stage})"] = ctrl - 0.5
    parts["detectability (subadult - adult)"] = parts["detectability (subadult)"] - parts["detectability (adult)"]
    parts["response bias (subadult - adult)"] = parts["response bias (subadult)"] - parts["response bias (adult)"]
    return _stack(parts, pd.DataFrame({over: grid}), level)


def dissection_contrast(
    model: FittedModel,
    grid: Optional[Sequence[float]] = None,
    shell_size: Optional[float] = None,
    *,
    n_draws: int = N_DRAWS,
    level: float = CI_LEVEL,
    rng: RngLike = None,
) -> pd.DataFrame:
    """
    Predicted foot mass at a reference shell diameter and the allometric exponent
    over the urbanization grid. Always drawn jointly: a and b are strongly correlated.
    """
    cov_name = model.covariate
    if cov_name is None:
        raise ValueError("dissection_contrast needs a model with an urbanization covariate")
    grid = default_grid(model, cov_name) if grid is None else np.asarray(grid, dtype=float)
    shell_size = float(model.data["shell_diameter"].median()) if shell_size is None else float(shell_size)

    draws = draw_model(model, n_draws, joint=True, rng=rng).to_numpy()
    shell = np.full_like(grid, shell_size)
    mass = np.vstack([power_mean(theta, shell, grid) for theta in draws])
    exponent = draws[:, [2]] + draws[:, [3]] * grid[None, :]
    parts = {f"foot mass at {shell_size:g} mm": mass, "allometric exponent": exponent}
    return _stack(parts, pd.DataFrame({cov_name: grid}), level)
