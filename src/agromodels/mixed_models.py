"""
Linear mixed-effects models fitted by (restricted) maximum likelihood.

Random terms are random intercepts: a single grouping column becomes the
model groups, several columns (e.g. crossed field rows and columns) become
variance components on one constant group.
"""

from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.tools.sm_exceptions import ConvergenceWarning

from .constants import (
    CONSTANT_GROUP_COL,
    DDF_METHODS,
    DEFAULT_CONF_LEVEL,
    DEFAULT_DDF,
    DEFAULT_REML,
    MIXEDLM_OPTIMIZERS,
)
from .model_spec import ModelFitError, ModelSpec, build_formula, fixed_design_info, prepare_model_frame

logger = logging.getLogger(__name__)


@dataclass
class MixedModelFit:
    """A fitted MixedLM model and what it was fitted from."""

    spec: ModelSpec
    formula: str
    data: pd.DataFrame
    result: Any
    optimizer: str
    vc_names: list[str] = field(default_factory=list)
    kind: str = field(default="mixed", init=False)

    @property
    def fe_params(self) -> pd.Series:
        return self.result.fe_params

    @property
    def fe_cov(self) -> pd.DataFrame:
        names = list(self.result.fe_params.index)
        k = len(names)
        cov = np.asarray(self.result.cov_params())[:k, :k]
        return pd.DataFrame(cov, index=names, columns=names)

    @property
    def design_info(self):
        return fixed_design_info(self.result)

    def inference_df(self, ddf: Optional[str] = DEFAULT_DDF) -> float:
        """
        Denominator degrees of freedom for fixed-effect inference.

        ``"residual"``: observations minus the rank of the fixed design minus
        the levels absorbed by each random intercept (one per level, less
        one), at least 1. ``"asymptotic"``: infinite (z and chi-square tests).
        """
        ddf = ddf or DEFAULT_DDF
        if ddf not in DDF_METHODS:
            raise ValueError(f"Unknown ddf method '{ddf}'. Available: {DDF_METHODS}")
        if ddf == "asymptotic":
            return float("inf")
        exog = self.result.model.exog
        absorbed = sum(len(self.data[r].cat.categories) - 1 for r in self.spec.random)
        return float(max(1, exog.shape[0] - np.linalg.matrix_rank(exog) - absorbed))


def _build_model(model_df: pd.DataFrame, spec: ModelSpec, formula: str):
    if len(spec.random) == 1:
        return smf.mixedlm(formula, model_df, groups=spec.random[0]), []

    vc_names = sorted(spec.random)
    vc_formula = {name: f"0 + C({name})" for name in vc_names}
    model_df[CONSTANT_GROUP_COL] = 1
    model = smf.mixedlm(
        formula,
        model_df,
        groups=CONSTANT_GROUP_COL,
        re_formula="0",
        vc_formula=vc_formula,
    )
    names = getattr(getattr(model, "exog_vc", None), "names", None)
    return model, list(names) if names else vc_names


def fit_mixed_model(
    df: pd.DataFrame,
    spec: ModelSpec,
    reml: bool = DEFAULT_REML,
    optimizers: Optional[list[tuple[str, dict]]] = None,
) -> MixedModelFit:
    """
    Fit a linear mixed model with random intercepts for ``spec.random``.

    Optimizers are tried in order; the first converged fit is kept, otherwise
    the first fit that ran at all.

    Raises
    ------
    ValueError
        If ``spec`` has no random terms.
    ModelFitError
        If every optimizer fails.
    """
    if not spec.is_mixed:
        raise ValueError("Model has no random terms; use fit_linear_model")

    model_df = prepare_model_frame(df, spec)
    formula = build_formula(spec)
    model, vc_names = _build_model(model_df, spec, formula)

    errors: list[str] = []
    fallback: Optional[tuple[str, Any]] = None
    for method, kwargs in optimizers or MIXEDLM_OPTIMIZERS:
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore", ConvergenceWarning)
                result = model.fit(reml=reml, method=method, **kwargs)
        except (ValueError, np.linalg.LinAlgError) as exc:
            logger.warning("MixedLM optimizer '%s' failed: %s", method, exc)
            errors.append(f"{method}: {exc}")
            continue
        if result.converged:
            logger.info("Fitted %s with optimizer '%s'", formula, method)
            return MixedModelFit(spec, formula, model_df, result, method, vc_names)
        logger.warning("MixedLM optimizer '%s' did not converge", method)
        if fallback is None:
            fallback = (method, result)

    if fallback is not None:
        method, result = fallback
        logger.warning("No optimizer converged for %s; keeping the '%s' fit", formula, method)
        return MixedModelFit(spec, formula, model_df, result, method, vc_names)
    raise ModelFitError(f"MixedLM fit failed for '{formula}': " + "; ".join(errors))


def coefficient_table(fit: MixedModelFit, level: float = DEFAULT_CONF_LEVEL) -> pd.DataFrame:
    """
    Fixed-effect coefficients with Wald z tests and CIs.

    Returns
    -------
    pd.DataFrame
        Columns: term, estimate, std_error, z_value, p_value, ci_low, ci_high
    """
    beta = fit.fe_params
    se = np.sqrt(np.diag(fit.fe_cov.to_numpy()))
    z = beta.values / se
    crit = stats.norm.ppf(0.5 + level / 2)
    return pd.DataFrame({
        "term": beta.index,
        "estimate": beta.values,
        "std_error": se,
        "z_value": z,
        "p_value": 2 * stats.norm.sf(np.abs(z)),
        "ci_low": beta.values - crit * se,
        "ci_high": beta.values + crit * se,
    })


def variance_components(fit: MixedModelFit) -> pd.DataFrame:
    """
    Variance of each random intercept and of the residual.

    Returns
    -------
    pd.DataFrame
        Columns: term, variance, std_dev, proportion. Negative estimates are
        truncated to zero.
    """
    res = fit.result
    if fit.vc_names:
        values = np.asarray(res.vcomp, dtype=float)
        rows = list(zip(fit.vc_names, values))
    else:
        rows = [(fit.spec.random[0], float(np.asarray(res.cov_re)[0, 0]))]
    rows.append(("Residual", float(res.scale)))

    out = pd.DataFrame(rows, columns=["term", "variance"])
    if (out["variance"] < 0).any():
        logger.warning("Negative variance estimates truncated to zero")
    out["variance"] = out["variance"].clip(lower=0.0)
    out["std_dev"] = np.sqrt(out["variance"])
    total = out["variance"].sum()
    out["proportion"] = out["variance"] / total if total > 0 else np.nan
    return out


def fixed_effects_tests(fit: MixedModelFit, ddf: str = DEFAULT_DDF) -> pd.DataFrame:
    """
    Omnibus Wald test for each fixed term.

    Returns
    -------
    pd.DataFrame
        Columns: term, num_df, den_df, chi2, F, PR(>F)
    """
    den_df = fit.inference_df(ddf)
    beta = fit.fe_params.to_numpy()
    cov = fit.fe_cov.to_numpy()
    info = fit.design_info

    rows = []
    for term in info.terms:
        name = term.name()
        if name == "Intercept":
            continue
        L = np.eye(len(beta))[info.slice(term)]
        Lb = L @ beta
        LVL = L @ cov @ L.T
        num_df = int(np.linalg.matrix_rank(LVL))
        chi2 = float(Lb @ np.linalg.pinv(LVL) @ Lb)
        F = chi2 / num_df
        if np.isinf(den_df):
            p = float(stats.chi2.sf(chi2, num_df))
        else:
            p = float(stats.f.sf(F, num_df, den_df))
        rows.append({"term": name, "num_df": num_df, "den_df": den_df, "chi2": chi2, "F": F, "PR(>F)": p})
    return pd.DataFrame(rows, columns=["term", "num_df", "den_df", "chi2", "F", "PR(>F)"])


def r2_nakagawa(fit: MixedModelFit) -> dict[str, float]:
    """
    Marginal and conditional pseudo-R-squared (Nakagawa & Schielzeth).

    The marginal value is the share of variance explained by the fixed
    effects, the conditional value the share explained by fixed and random
    effects together.
    """
    X = fit.result.model.exog
    var_fixed = float(np.var(X @ fit.fe_params.to_numpy(), ddof=1))
    vc = variance_components(fit)
    var_random = float(vc.loc[vc["term"] != "Residual", "variance"].sum())
    var_resid = float(vc.loc[vc["term"] == "Residual", "variance"].iloc[0])
    total = var_fixed + var_random + var_resid
    return {
        "r2_marginal": var_fixed / total,
        "r2_conditional": (var_fixed + var_random) / total,
    }


def fit_statistics(fit: MixedModelFit) -> dict[str, Any]:
    res = fit.result
    return {
        "method": "REML" if res.model.reml else "ML",
        "log_likelihood": float(res.llf),
        "aic": float(res.aic),
        "bic": float(res.bic),
        "n_obs": float(res.model.nobs),
        "n_groups": {r: len(fit.data[r].cat.categories) for r in fit.spec.random},
        "converged": bool(res.converged),
        "optimizer": fit.optimizer,
        "residual_sd": float(np.sqrt(res.scale)),
    }


def model_summary(fit: MixedModelFit) -> str:
    return str(fit.result.summary())


_VC_LEVEL = re.compile(r"^(?P<term>[^\[]+)\[.*\[(?P<level>[^\]]*)\]\]$")


def random_effects(fit: MixedModelFit) -> pd.DataFrame:
    """Predicted random effects (BLUPs), one row per level of each random term."""
    rows = []
    for group, effects in fit.result.random_effects.items():
        if not fit.vc_names:
            rows.append({"term": fit.spec.random[0], "level": str(group), "effect": float(effects.iloc[0])})
            continue
        for name, value in effects.items():
            m = _VC_LEVEL.match(str(name))
            term, level = (m.group("term"), m.group("level")) if m else (str(name), str(name))
            rows.append({"term": term, "level": level, "effect": float(value)})
    return pd.DataFrame(rows, columns=["term", "level", "effect"])
