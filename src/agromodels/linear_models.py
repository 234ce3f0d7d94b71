"""
General linear models: regression, ANOVA and ANCOVA fitted by least squares.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
import pandas as pd
from statsmodels.formula.api import ols
from statsmodels.stats.anova import anova_lm

from .constants import DEFAULT_ANOVA_TYPE, DEFAULT_CONF_LEVEL
from .model_spec import ModelSpec, build_formula, fixed_design_info, prepare_model_frame

logger = logging.getLogger(__name__)


@dataclass
class LinearModelFit:
    """A fitted ordinary least squares model and what it was fitted from."""

    spec: ModelSpec
    formula: str
    data: pd.DataFrame
    result: Any
    kind: str = field(default="linear", init=False)

    @property
    def fe_params(self) -> pd.Series:
        return self.result.params

    @property
    def fe_cov(self) -> pd.DataFrame:
        return self.result.cov_params()

    @property
    def design_info(self):
        return fixed_design_info(self.result)

    def inference_df(self, ddf: Optional[str] = None) -> float:
        """Residual degrees of freedom (``ddf`` is accepted for symmetry with mixed models)."""
        return float(self.result.df_resid)


def fit_linear_model(df: pd.DataFrame, spec: ModelSpec) -> LinearModelFit:
    """
    Fit an ordinary least squares model without random terms.

    Raises
    ------
    ValueError
        If ``spec`` has random terms or the data cannot support it.
    """
    if spec.is_mixed:
        raise ValueError("Model has random terms; use fit_mixed_model")
    model_df = prepare_model_frame(df, spec)
    formula = build_formula(spec)
    result = ols(formula, data=model_df).fit()
    if result.df_resid <= 0:
        raise ValueError(
            f"Model '{formula}' has no residual degrees of freedom; simplify terms or add data"
        )
    logger.info("Fitted %s on %d rows", formula, int(result.nobs))
    return LinearModelFit(spec=spec, formula=formula, data=model_df, result=result)


def coefficient_table(fit: LinearModelFit, level: float = DEFAULT_CONF_LEVEL) -> pd.DataFrame:
    """
    Coefficient table with estimates, standard errors, t tests and CIs.

    Returns
    -------
    pd.DataFrame
        Columns: term, estimate, std_error, t_value, p_value, ci_low, ci_high
    """
    res = fit.result
    ci = res.conf_int(alpha=1 - level)
    return pd.DataFrame({
        "term": res.params.index,
        "estimate": res.params.values,
        "std_error": res.bse.values,
        "t_value": res.tvalues.values,
        "p_value": res.pvalues.values,
        "ci_low": ci.iloc[:, 0].values,
        "ci_high": ci.iloc[:, 1].values,
    })


def _safe_anova_table(model, typ: int) -> pd.DataFrame:
    """
    Compute an ANOVA table, falling back when the requested type fails.

    Falls back to type 1, then to an HC3-robust type 2 table.
    """
    try:
        return anova_lm(model, typ=typ)
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.warning("Type %s ANOVA failed (%s); falling back to type 1", typ, exc)
    try:
        return anova_lm(model, typ=1)
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.warning("Type 1 ANOVA failed (%s); falling back to robust type 2", exc)
    return anova_lm(model, typ=2, robust="hc3")


def anova_table(fit: LinearModelFit, typ: int = DEFAULT_ANOVA_TYPE) -> pd.DataFrame:
    """
    Omnibus ANOVA table for a fitted linear model.

    Parameters
    ----------
    fit : LinearModelFit
        Fitted model.
    typ : int, default=2
        Type of sum of squares (1, 2, or 3).

    Returns
    -------
    pd.DataFrame
        ANOVA table with columns: term, sum_sq (or mean_sq for type 1), df, F, PR(>F).
    """
    if typ not in (1, 2, 3):
        raise ValueError(f"ANOVA type must be 1, 2 or 3, got {typ}")
    table = _safe_anova_table(fit.result, typ=typ)
    return table.reset_index().rename(columns={"index": "term"})


def fit_statistics(fit: LinearModelFit) -> dict[str, float]:
    res = fit.result
    return {
        "r_squared": float(res.rsquared),
        "adj_r_squared": float(res.rsquared_adj),
        "sigma": float(np.sqrt(res.scale)),
        "aic": float(res.aic),
        "bic": float(res.bic),
        "n_obs": float(res.nobs),
        "df_resid": float(res.df_resid),
        "f_statistic": float(res.fvalue) if res.fvalue is not None else float("nan"),
        "f_pvalue": float(res.f_pvalue) if res.f_pvalue is not None else float("nan"),
    }


def model_summary(fit: LinearModelFit) -> str:
    return str(fit.result.summary())


def _is_deterministic_mapping(a: pd.Series, b: pd.Series) -> bool:
    """Check if column a deterministically maps to column b."""
    tmp = pd.DataFrame({"a": a.astype(str), "b": b.astype(str)}).dropna()
    if tmp.empty:
        return False
    return bool((tmp.groupby("a")["b"].nunique() <= 1).all())


def _clean_factor_list(df: pd.DataFrame, factors: list[str]) -> list[str]:
    """Drop missing, single-level and confounded factors, keeping the first of each confounded set."""
    cleaned: list[str] = []
    for f in factors:
        if f not in df.columns or df[f].dropna().nunique() <= 1:
            logger.info("Dropping factor '%s': missing or single level", f)
            continue
        confounded = any(
            _is_deterministic_mapping(df[f], df[kept]) or _is_deterministic_mapping(df[kept], df[f])
            for kept in cleaned
        )
        if confounded:
            logger.info("Dropping factor '%s': confounded with an earlier factor", f)
            continue
        cleaned.append(f)
    return cleaned


def anova_analysis(
    df: pd.DataFrame,
    response: str,
    factors: list[str],
    typ: int = DEFAULT_ANOVA_TYPE,
    block_factor: Optional[str] = None,
) -> pd.DataFrame:
    """
    Factorial ANOVA (CRD, or RCBD when a block factor is given) in one call.

    Factors are crossed (``A * B``); single-level and confounded factors are
    dropped first. If the factorial table is empty the additive model is used.

    Raises
    ------
    ValueError
        If no valid factor or block factor remains.
    """
    factors = _clean_factor_list(df, [f for f in factors if f != block_factor])
    if not factors and not block_factor:
        raise ValueError("At least one valid factor (or block factor) is required for ANOVA")

    spec = ModelSpec(response=response, factors=factors, block=block_factor, interactions=True)
    try:
        table = anova_table(fit_linear_model(df, spec), typ=typ)
    except ValueError as exc:
        if len(factors) < 2:
            raise
        logger.warning("Factorial model failed (%s); using the additive model", exc)
        table = pd.DataFrame()
    if table.empty and len(factors) > 1:
        spec.interactions = False
        table = anova_table(fit_linear_model(df, spec), typ=1)
    return table


def nested_anova(
    df: pd.DataFrame,
    response: str,
    parent_factor: str,
    nested_factor: str,
    typ: int = DEFAULT_ANOVA_TYPE,
    block_factor: Optional[str] = None,
) -> pd.DataFrame:
    """
    Nested ANOVA with the child factor nested within the parent factor.

    Raises
    ------
    ValueError
        If parent and nested factors are the same, missing, or have < 2 levels.
    """
    if parent_factor == nested_factor:
        raise ValueError("parent_factor and nested_factor must be different")

    spec = ModelSpec(response=response, factors=[parent_factor, nested_factor], block=block_factor)
    model_df = prepare_model_frame(df, spec)
    rhs = f"C({parent_factor})/C({nested_factor})"
    if block_factor:
        rhs = f"C({block_factor}) + {rhs}"
    model = ols(f"{response} ~ {rhs}", data=model_df).fit()
    table = _safe_anova_table(model, typ=typ)
    return table.reset_index().rename(columns={"index": "term"})
