from __future__ import annotations
from typing import Iterable, Mapping, Union

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.anova import anova_lm

from .models import FittedModel, fit_binomial

Models = Union[Mapping[str, FittedModel], Iterable[FittedModel]]


def aicc(llf: float, k: int, n: int) -> float:
    """Second-order (small-sample) AIC. Infinite when n - k - 1 <= 0."""
    denom = n - k - 1
    if denom <= 0:
        return np.inf
    return -2.0 * llf + 2.0 * k + 2.0 * k * (k + 1) / denom


def _as_list(models: Models) -> list:
    return list(models.values()) if isinstance(models, Mapping) else list(models)


def aicc_table(models: Models) -> pd.DataFrame:
    """
    Rank a model family by AICc, lowest first, with delta AICc and Akaike weights.
    All models must be fitted to the same rows.
    """
    models = _as_list(models)
    if not models:
        raise ValueError("No models to compare")
    nobs = {m.nobs for m in models}
    if len(nobs) > 1:
        raise ValueError(f"Models are fitted to different numbers of rows: {sorted(nobs)}")

    rows = [{
        "model": m.label,
        "k": m.k,
        "nobs": m.nobs,
        "logLik": m.llf,
        "AICc": aicc(m.llf, m.k, m.nobs),
    } for m in models]
    tab = pd.DataFrame(rows).sort_values("AICc", kind="stable").reset_index(drop=True)
    tab["delta_AICc"] = tab["AICc"] - tab["AICc"].iloc[0]
    rel = np.exp(-0.5 * tab["delta_AICc"])
    tab["weight"] = rel / rel.sum()
    return tab


def best_model(models: Models) -> str:
    """Label of the lowest-AICc model. Reporting only."""
    return aicc_table(models)["model"].iloc[0]


# -------------------------------
# Per-term tests
# -------------------------------

def _binomial_type2(model: FittedModel) -> pd.DataFrame:
    """
    Type-II likelihood-ratio tests: each term is added to the model holding every
    term that does not contain it.
    """
    terms = model.meta["terms"]
    rows = []
    for term in terms:
        parts = set(term.split(":"))
        kept = [t for t in terms if not parts < set(t.split(":"))]
        reduced = [t for t in kept if t != term]
        m1 = fit_binomial(model.data, kept)
        m0 = fit_binomial(model.data, reduced)
        lr = max(2.0 * (m1.llf - m0.llf), 0.0)
        df = m1.k - m0.k
        rows.append({"term": term, "LR_chisq": lr, "df": df, "p_value": stats.chi2.sf(lr, df)})
    return pd.DataFrame(rows).set_index("term")


def _wald_tests(model: FittedModel) -> pd.DataFrame:
    """Wald chi-square tests per mean parameter plus a joint test of the urbanization terms."""
    mean_params = [p for p in model.params.index if p not in ("log_sigma", "delta")]
    se = model.bse
    rows = []
    for p in mean_params:
        chisq = float((model.params[p] / se[p]) ** 2)
        rows.append({"term": p, "estimate": model.params[p], "se": se[p],
                     "chisq": chisq, "df": 1, "p_value": stats.chi2.sf(chisq, 1)})
    urb = [p for p in ("a1", "b1") if p in model.params.index]
    if urb:
        beta = model.params[urb].to_numpy()
        V = model.cov.loc[urb, urb].to_numpy()
        chisq = float(beta @ np.linalg.solve(V, beta))
        rows.append({"term": f"{model.covariate} (joint)", "estimate": np.nan, "se": np.nan,
                     "chisq": chisq, "df": len(urb), "p_value": stats.chi2.sf(chisq, len(urb))})
    return pd.DataFrame(rows).set_index("term")


def term_tests(model: FittedModel) -> pd.DataFrame:
    """
    Type-II decomposition per term:
      - perception (OLS): F tests from anova_lm(typ=2)
      - exploration (binomial GLM): likelihood-ratio chi-square tests
      - dissection (power model): Wald chi-square tests
    """
    if model.domain == "perception":
        return anova_lm(model.result, typ=2)
    if model.domain == "exploration":
        return _binomial_type2(model)
    if model.domain == "dissection":
        return _wald_tests(model)
    raise ValueError(f"Unknown model domain: {model.domain}")


def print_comparison(table: pd.DataFrame, title: str = "") -> None:
    print(f"\n=== Model comparison{': ' + title if title else ''} ===")
    print(f"{'Model':<12} {'k':>3} {'logLik':>11} {'AICc':>11} {'dAICc':>8} {'weight':>7}")
    print("-" * 56)
    for _, r in table.iterrows():
        print(f"{r['model']:<12} {int(r['k']):>3} {r['logLik']:>11.3f} {r['AICc']:>11.3f} "
              f"{r['delta_AICc']:>8.3f} {r['weight']:>7.3f}")
    print("-" * 56)
    print(f"Lowest AICc: {table['model'].iloc[0]} (n = {int(table['nobs'].iloc[0])})")
