"""
Model families per behavioural domain.

Each domain is fitted three times: without urbanization, with the 10 m index and
with the 50 m index. All predictors are numeric (`subadult`, `stimulus`,
`distance`, `urb_10m`, `urb_50m`), so coefficient labels are products of column
names joined by ':' and can be re-evaluated on any grid of those columns.
"""
from __future__ import annotations
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
import statsmodels.formula.api as smf
from scipy.optimize import minimize
from statsmodels.tools.numdiff import approx_hess3

from .config import URBANIZATION_COLUMNS
from .errors import NonConvergenceError

logger = logging.getLogger(__name__)

COVARIATES = [None] + list(URBANIZATION_COLUMNS.values())


@dataclass(frozen=True)
class FittedModel:
    label: str
    domain: str
    formula: str
    params: pd.Series
    cov: pd.DataFrame
    fitted: pd.Series
    resid: pd.Series
    resid_pearson: pd.Series
    llf: float
    nobs: int
    k: int                      # estimated parameters, scale/variance parameters included
    covariate: Optional[str] = None
    data: pd.DataFrame = field(default=None, repr=False)
    result: Any = field(default=None, repr=False)
    meta: Dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def aic(self) -> float:
        return -2.0 * self.llf + 2.0 * self.k

    @property
    def bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.cov)), index=self.params.index)


def _label(covariate: Optional[str]) -> str:
    return "null" if covariate is None else covariate


# -------------------------------
# Term expansion for numeric designs
# -------------------------------

def expand_terms(rhs: str) -> List[str]:
    """
    Expand 'a * b + c' into ['a', 'b', 'c', 'a:b'], ordered by interaction degree
    and then by first appearance.
    """
    seen = {}
    for chunk in rhs.split("+"):
        factors = [f.strip() for f in chunk.split("*") if f.strip()]
        for r in range(1, len(factors) + 1):
            for combo in itertools.combinations(factors, r):
                key = frozenset(combo)
                if key not in seen:
                    seen[key] = ":".join(combo)
    return sorted(seen.values(), key=lambda t: t.count(":"))


def design_matrix(data: pd.DataFrame, terms: Sequence[str], intercept: bool = True) -> pd.DataFrame:
    cols = {}
    if intercept:
        cols["Intercept"] = np.ones(len(data))
    for term in terms:
        col = np.ones(len(data))
        for name in term.split(":"):
            col = col * data[name].to_numpy(dtype=float)
        cols[term] = col
    return pd.DataFrame(cols, index=data.index)


# -------------------------------
# Exploration: binomial GLM on success/failure counts
# -------------------------------

def fit_binomial(data: pd.DataFrame, terms: Sequence[str], *, label: str = "model",
                 covariate: Optional[str] = None, formula: Optional[str] = None) -> FittedModel:
    X = design_matrix(data, terms)
    endog = data[["successes", "failures"]].to_numpy(dtype=float)
    res = sm.GLM(endog, X, family=sm.families.Binomial()).fit()
    params = pd.Series(res.params, index=X.columns)
    fitted = pd.Series(np.asarray(res.fittedvalues), index=data.index)
    return FittedModel(
        label=label,
        domain="exploration",
        formula=formula or "successes/trials ~ " + (" + ".join(terms) or "1"),
        params=params,
        cov=pd.DataFrame(res.cov_params(), index=X.columns, columns=X.columns),
        fitted=fitted,
        resid=data["successes"] / data["trials"] - fitted,
        resid_pearson=pd.Series(res.resid_pearson, index=data.index),
        llf=float(res.llf),
        nobs=int(res.nobs),
        k=len(params),
        covariate=covariate,
        data=data,
        result=res,
        meta={"terms": list(terms)},
    )


def fit_exploration(data: pd.DataFrame, covariate: Optional[str] = None) -> FittedModel:
    """Binomial GLM: stage, plus urbanization and its stage interaction when `covariate` is given."""
    rhs = "subadult" if covariate is None else f"subadult * {covariate}"
    return fit_binomial(data, expand_terms(rhs), label=_label(covariate), covariate=covariate,
                        formula=f"successes/trials ~ {rhs}")


def fit_exploration_family(data: pd.DataFrame, covariates: Sequence[Optional[str]] = COVARIATES) -> Dict[str, FittedModel]:
    return {_label(c): fit_exploration(data, c) for c in covariates}


# -------------------------------
# Perception: OLS on the rescaled angle
# -------------------------------

def perception_formula(covariate: Optional[str] = None, full: bool = True) -> str:
    """
    full=False is the historical specification in which urbanization only
    interacts with stage; full=True crosses it with stage, stimulus and distance.
    """
    if covariate is None:
        return "response ~ subadult * stimulus * distance"
    if full:
        return f"response ~ {covariate} * subadult * stimulus * distance"
    return f"response ~ subadult * stimulus * distance + {covariate} * subadult"


def fit_perception(data: pd.DataFrame, covariate: Optional[str] = None, full: bool = True) -> FittedModel:
    formula = perception_formula(covariate, full)
    res = smf.ols(formula, data=data).fit()
    return FittedModel(
        label=_label(covariate),
        domain="perception",
        formula=formula,
        params=res.params,
        cov=res.cov_params(),
        fitted=res.fittedvalues,
        resid=res.resid,
        resid_pearson=pd.Series(res.resid_pearson, index=res.resid.index),
        llf=float(res.llf),
        nobs=int(res.nobs),
        k=len(res.params) + 1,
        covariate=covariate,
        data=data,
        result=res,
        meta={"full": full},
    )


def fit_perception_family(data: pd.DataFrame, full: bool = True,
                          covariates: Sequence[Optional[str]] = COVARIATES) -> Dict[str, FittedModel]:
    return {_label(c): fit_perception(data, c, full=full) for c in covariates}


# -------------------------------
# Dissection: power-law allometry with power-of-mean variance
# -------------------------------

def power_mean(theta: np.ndarray, shell: np.ndarray, urb: Optional[np.ndarray]) -> np.ndarray:
    """mu = (a0 + a1*urb) * shell ** (b0 + b1*urb); without urb, mu = a0 * shell ** b0."""
    if urb is None:
        a, b = theta[0], theta[1]
    else:
        a = theta[0] + theta[1] * urb
        b = theta[2] + theta[3] * urb
    return a * np.power(shell, b)


def _negloglike(theta, y, shell, urb):
    mu = power_mean(theta, shell, urb)
    if not np.all(np.isfinite(mu)) or np.any(mu <= 0):
        return np.inf
    log_sigma, delta = theta[-2], theta[-1]
    sd = np.exp(log_sigma) * np.power(mu, delta)
    z = (y - mu) / sd
    return float(np.sum(np.log(sd) + 0.5 * z * z) + 0.5 * len(y) * np.log(2 * np.pi))


def dissection_param_names(covariate: Optional[str]) -> List[str]:
    if covariate is None:
        return ["a0", "b0", "log_sigma", "delta"]
    return ["a0", "a1", "b0", "b1", "log_sigma", "delta"]


def default_start(data: pd.DataFrame, covariate: Optional[str] = None) -> pd.Series:
    """
    Starting values: a0, b0 from a log-log OLS of foot mass on shell diameter,
    a1 = b1 = 0, delta = 1 and log_sigma from the log-scale residual spread.
    """
    logx = np.log(data["shell_diameter"].to_numpy(dtype=float))
    logy = np.log(data["foot_scaled"].to_numpy(dtype=float))
    ols = sm.OLS(logy, sm.add_constant(logx)).fit()
    a0, b0 = float(np.exp(ols.params[0])), float(ols.params[1])
    log_sigma = float(np.log(max(np.std(ols.resid, ddof=2), 1e-6)))
    names = dissection_param_names(covariate)
    values = {"a0": a0, "a1": 0.0, "b0": b0, "b1": 0.0, "log_sigma": log_sigma, "delta": 1.0}
    return pd.Series([values[n] for n in names], index=names)


def fit_dissection(
    data: pd.DataFrame,
    covariate: Optional[str] = None,
    start: Optional[Sequence[float]] = None,
    *,
    maxiter: int = 20000,
    tol: float = 1e-8,
) -> FittedModel:
    """
    Maximum-likelihood fit of the heteroskedastic power model (Nelder-Mead).

    Args:
        data: dissection rows with `foot_scaled`, `shell_diameter` and the covariate
        covariate: urbanization column or None for the baseline model
        start: starting values in `dissection_param_names(covariate)` order;
            default_start() when None
        maxiter: iteration cap for the optimizer
        tol: absolute tolerance on parameters and objective

    Raises:
        NonConvergenceError: optimizer stops without converging, or the Hessian at
            the optimum is not positive definite. No other start is tried.
    """
    label = _label(covariate)
    names = dissection_param_names(covariate)
    x0 = default_start(data, covariate) if start is None else pd.Series(np.asarray(start, dtype=float), index=names)
    if len(x0) != len(names):
        raise ValueError(f"start must have {len(names)} values ({names}), got {len(x0)}")

    y = data["foot_scaled"].to_numpy(dtype=float)
    shell = data["shell_diameter"].to_numpy(dtype=float)
    urb = None if covariate is None else data[covariate].to_numpy(dtype=float)
    args = (y, shell, urb)

    if not np.isfinite(_negloglike(x0.to_numpy(), *args)):
        raise NonConvergenceError(label, "log-likelihood is not finite at the starting values", start=x0.to_dict())

    opt = minimize(_negloglike, x0.to_numpy(), args=args, method="Nelder-Mead",
                   options={"maxiter": maxiter, "maxfev": 2 * maxiter,
                            "xatol": tol, "fatol": tol, "adaptive": True})
    if not opt.success:
        raise NonConvergenceError(label, f"no convergence from declared start: {opt.message}", start=x0.to_dict())

    hess = approx_hess3(opt.x, _negloglike, args=args)
    eig = np.linalg.eigvalsh((hess + hess.T) / 2)
    if not np.all(np.isfinite(eig)) or eig.min() <= 0:
        raise NonConvergenceError(label, "Hessian at the optimum is not positive definite", start=x0.to_dict())
    cov = np.linalg.inv(hess)

    params = pd.Series(opt.x, index=names)
    mu = power_mean(opt.x, shell, urb)
    sd = np.exp(params["log_sigma"]) * np.power(mu, params["delta"])
    formula = ("foot_scaled ~ a0 * shell_diameter^b0" if covariate is None else
               f"foot_scaled ~ (a0 + a1*{covariate}) * shell_diameter^(b0 + b1*{covariate})")
    logger.info("dissection %s converged after %d iterations (llf=%.3f)", label, opt.nit, -opt.fun)
    return FittedModel(
        label=label,
        domain="dissection",
        formula=formula + ", sd = sigma * mu^delta",
        params=params,
        cov=pd.DataFrame(cov, index=names, columns=names),
        fitted=pd.Series(mu, index=data.index),
        resid=pd.Series(y - mu, index=data.index),
        resid_pearson=pd.Series((y - mu) / sd, index=data.index),
        llf=float(-opt.fun),
        nobs=len(y),
        k=len(names),
        covariate=covariate,
        data=data,
        result=opt,
        meta={"start": x0.to_dict()},
    )


def fit_dissection_family(data: pd.DataFrame, starts: Optional[Dict[str, Sequence[float]]] = None,
                          covariates: Sequence[Optional[str]] = COVARIATES) -> Dict[str, FittedModel]:
    starts = starts or {}
    return {_label(c): fit_dissection(data, c, start=starts.get(_label(c))) for c in covariates}
