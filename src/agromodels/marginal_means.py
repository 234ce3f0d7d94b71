"""
Estimated marginal means and pairwise comparisons from a fitted model.

Means are computed on a reference grid: every combination of the levels of
the fixed categorical terms, with covariates held at their mean. The mean of
a focal level is the equally weighted average of the model predictions over
the grid rows that carry that level.
"""

from __future__ import annotations

import logging
from itertools import combinations, product
from typing import Optional, Union

import numpy as np
import pandas as pd
from patsy import build_design_matrices
from scipy import stats
from statsmodels.stats.multitest import multipletests

from .cld_utils import make_cld_from_significance, significance_from_pairs
from .constants import (
    ADJUST_METHODS,
    DEFAULT_ADJUST,
    DEFAULT_ALPHA,
    DEFAULT_CONF_LEVEL,
    DEFAULT_DDF,
    ESTIMABILITY_TOL,
)
from .linear_models import LinearModelFit
from .mixed_models import MixedModelFit

logger = logging.getLogger(__name__)

ModelFit = Union[LinearModelFit, MixedModelFit]


def _check_focal(fit: ModelFit, focal: str, by: Optional[str]) -> None:
    categorical = fit.spec.categorical
    if focal not in categorical:
        raise ValueError(f"Focal predictor '{focal}' must be a fixed categorical term: {categorical}")
    if by is not None:
        if by not in categorical:
            raise ValueError(f"'by' predictor '{by}' must be a fixed categorical term: {categorical}")
        if by == focal:
            raise ValueError("'focal' and 'by' must be different predictors")


def reference_grid(fit: ModelFit, focal: str, by: Optional[str] = None) -> pd.DataFrame:
    """
    Build the reference grid for a fitted model.

    Returns
    -------
    pd.DataFrame
        One row per combination of fixed categorical levels, covariates at
        their sample mean.
    """
    _check_focal(fit, focal, by)
    data = fit.data
    categorical = fit.spec.categorical
    levels = [list(data[c].cat.categories) for c in categorical]
    grid = pd.DataFrame(list(product(*levels)), columns=categorical)
    for col in categorical:
        grid[col] = pd.Categorical(grid[col], categories=data[col].cat.categories)
    for cov in fit.spec.covariates:
        grid[cov] = float(data[cov].mean())
    return grid


def _grid_design(fit: ModelFit, grid: pd.DataFrame) -> np.ndarray:
    X = build_design_matrices([fit.design_info], grid, return_type="dataframe")[0]
    return X[list(fit.fe_params.index)].to_numpy()


def _linear_functions(fit: ModelFit, focal: str, by: Optional[str]) -> tuple[pd.DataFrame, np.ndarray]:
    """Rows of the emmeans table and the matching averaging matrix over the grid."""
    grid = reference_grid(fit, focal, by)
    X = _grid_design(fit, grid)
    keys = [by, focal] if by else [focal]

    labels = []
    rows = []
    for key in product(*(grid[k].cat.categories for k in keys)):
        mask = np.logical_and.reduce([(grid[k] == v).to_numpy() for k, v in zip(keys, key)])
        labels.append(dict(zip(keys, key)))
        rows.append(X[mask].mean(axis=0))
    return pd.DataFrame(labels, columns=keys), np.vstack(rows)


def _estimable(fit: ModelFit, L: np.ndarray, tol: float = ESTIMABILITY_TOL) -> np.ndarray:
    """
    Flag the rows of ``L`` that are estimable from the fitted design.

    A row is estimable when it lies in the row space of the fixed design
    matrix. Empty cells of a crossed design leave means outside it, and their
    least-squares value only reflects the minimum-norm solution.
    """
    X = np.asarray(fit.result.model.exog, dtype=float)
    _, s, vt = np.linalg.svd(X, full_matrices=False)
    basis = vt[s > s.max() * max(X.shape) * np.finfo(float).eps]
    outside = L - (L @ basis.T) @ basis
    scale = np.maximum(np.abs(L).max(axis=1), 1.0)
    return np.abs(outside).max(axis=1) <= tol * scale


def _log_nonestimable(labels: pd.DataFrame, ok: np.ndarray) -> None:
    if not ok.all():
        missing = [" / ".join(map(str, row)) for row in labels[~ok].itertuples(index=False)]
        logger.warning("Marginal means not estimable (empty cells): %s", ", ".join(missing))


def _critical_value(df: float, level: float) -> float:
    q = 0.5 + level / 2
    return float(stats.norm.ppf(q) if np.isinf(df) else stats.t.ppf(q, df))


def estimated_marginal_means(
    fit: ModelFit,
    focal: str,
    by: Optional[str] = None,
    level: float = DEFAULT_CONF_LEVEL,
    ddf: str = DEFAULT_DDF,
) -> pd.DataFrame:
    """
    Estimated marginal means of a fixed categorical predictor.

    Parameters
    ----------
    fit : LinearModelFit or MixedModelFit
        Fitted model.
    focal : str
        Predictor whose levels are compared.
    by : str, optional
        Second predictor; means are then computed within each of its levels.
    level : float, default=0.95
        Confidence level of the intervals.
    ddf : str, default="residual"
        Degrees-of-freedom rule for mixed models.

    Returns
    -------
    pd.DataFrame
        Columns: focal, [by], emmean, std_error, df, ci_low, ci_high.
        Means that are not estimable (a crossed design with an empty cell)
        are NaN.
    """
    labels, L = _linear_functions(fit, focal, by)
    beta = fit.fe_params.to_numpy()
    V = fit.fe_cov.to_numpy()
    df = fit.inference_df(ddf)
    ok = _estimable(fit, L)
    _log_nonestimable(labels, ok)

    est = np.where(ok, L @ beta, np.nan)
    se = np.where(ok, np.sqrt(np.abs(np.einsum("ij,jk,ik->i", L, V, L))), np.nan)
    crit = _critical_value(df, level)

    cols = [focal] + ([by] if by else [])
    out = labels[cols].astype(str).reset_index(drop=True)
    out["emmean"] = est
    out["std_error"] = se
    out["df"] = df
    out["ci_low"] = est - crit * se
    out["ci_high"] = est + crit * se
    return out


def _adjust_pvalues(t_ratio: np.ndarray, df: float, k: int, adjust: str) -> np.ndarray:
    if adjust == "tukey":
        return stats.studentized_range.sf(np.abs(t_ratio) * np.sqrt(2.0), k, df)
    raw = 2 * (stats.norm.sf(np.abs(t_ratio)) if np.isinf(df) else stats.t.sf(np.abs(t_ratio), df))
    if adjust == "none":
        return raw
    return multipletests(raw, method=adjust)[1]


def pairwise_comparisons(
    fit: ModelFit,
    focal: str,
    by: Optional[str] = None,
    adjust: str = DEFAULT_ADJUST,
    ddf: str = DEFAULT_DDF,
) -> pd.DataFrame:
    """
    All pairwise differences between focal levels, with adjusted p-values.

    The family for the adjustment is the set of pairs within one ``by`` level.
    ``tukey`` uses the studentized range distribution with k equal to the
    number of focal levels. Levels whose mean is not estimable are left out.

    Returns
    -------
    pd.DataFrame
        Columns: [by], level_a, level_b, contrast, estimate, std_error, df,
        t_ratio, p_value

    Raises
    ------
    ValueError
        If ``adjust`` is not a known method.
    """
    if adjust not in ADJUST_METHODS:
        raise ValueError(f"Unknown adjustment '{adjust}'. Available: {ADJUST_METHODS}")

    labels, L = _linear_functions(fit, focal, by)
    beta = fit.fe_params.to_numpy()
    V = fit.fe_cov.to_numpy()
    df = fit.inference_df(ddf)
    ok = _estimable(fit, L)
    _log_nonestimable(labels, ok)
    labels = labels.astype(str)

    families = labels.groupby(by, sort=False).indices if by else {None: np.arange(len(labels))}
    frames = []
    for by_level, idx in families.items():
        idx = [i for i in idx if ok[i]]
        rows = []
        for i, j in combinations(idx, 2):
            c = L[i] - L[j]
            est = float(c @ beta)
            se = float(np.sqrt(c @ V @ c))
            a, b = labels[focal].iloc[i], labels[focal].iloc[j]
            rows.append({
                "level_a": a,
                "level_b": b,
                "contrast": f"{a} - {b}",
                "estimate": est,
                "std_error": se,
                "df": df,
                "t_ratio": est / se,
            })
        fam = pd.DataFrame(rows)
        if fam.empty:
            continue
        fam["p_value"] = _adjust_pvalues(fam["t_ratio"].to_numpy(), df, len(idx), adjust)
        if by:
            fam.insert(0, by, by_level)
        frames.append(fam)

    if not frames:
        logger.warning("No pairs to compare for '%s'", focal)
        cols = ([by] if by else []) + [
            "level_a", "level_b", "contrast", "estimate", "std_error", "df", "t_ratio", "p_value"
        ]
        return pd.DataFrame(columns=cols)
    return pd.concat(frames, ignore_index=True)


def cld_table(
    emmeans: pd.DataFrame,
    pairs: pd.DataFrame,
    alpha: float = DEFAULT_ALPHA,
) -> pd.DataFrame:
    """
    Add compact letter display letters to an emmeans table.

    Levels are ranked by descending mean (within each ``by`` level) so the
    highest mean carries ``a``. Levels that share a letter do not differ at
    ``alpha``. Levels without an estimable mean get an empty string.

    Returns
    -------
    pd.DataFrame
        The emmeans table sorted by rank, with an extra ``letters`` column.
    """
    focal = emmeans.columns[0]
    by = emmeans.columns[1] if emmeans.columns[1] != "emmean" else None

    chunks = emmeans.groupby(by, sort=False) if by else [(None, emmeans)]
    frames = []
    for by_level, chunk in chunks:
        chunk = chunk.sort_values("emmean", ascending=False).copy()
        order = chunk.loc[chunk["emmean"].notna(), focal].astype(str).tolist()
        fam = pairs if by is None else pairs[pairs[by].astype(str) == str(by_level)]
        sig = significance_from_pairs(fam, order, alpha=alpha)
        letters = make_cld_from_significance(sig, order)
        # not estimable: no letter
        chunk["letters"] = chunk[focal].astype(str).map(letters).fillna("")
        frames.append(chunk)
    return pd.concat(frames, ignore_index=True)
