"""
Descriptive statistics and assumption screens run before model fitting.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats

from .constants import CORRELATION_METHODS, DEFAULT_ALPHA, MIN_GROUPS_FOR_LEVENE, MIN_SAMPLES_FOR_SHAPIRO
from .data_loader import coerce_numeric_columns, split_columns


def summarize_by_group(
    df: pd.DataFrame,
    response: str,
    groups: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Describe a response overall or per group.

    Parameters
    ----------
    df : pd.DataFrame
        Input data.
    response : str
        Numeric response column name.
    groups : Optional[list[str]]
        Grouping columns. If None or empty, summarizes the whole column.

    Returns
    -------
    pd.DataFrame
        Columns: [groups], n, mean, sd, se, min, max, cv (percent)
    """
    data = df.copy()
    data[response] = pd.to_numeric(data[response], errors="coerce")
    data = data.dropna(subset=[response])
    if not groups:
        data = data.assign(_all="ALL")
        keys = ["_all"]
    else:
        keys = list(groups)

    out = (
        data.groupby(keys, observed=True, sort=True)[response]
        .agg(n="count", mean="mean", sd="std", min="min", max="max")
        .reset_index()
    )
    out["se"] = out["sd"] / np.sqrt(out["n"])
    out["cv"] = 100 * out["sd"] / out["mean"].where(out["mean"] != 0)
    out = out[keys + ["n", "mean", "sd", "se", "min", "max", "cv"]]
    return out.drop(columns="_all") if not groups else out


def layout_table(df: pd.DataFrame, response: str, row: str = "row", col: str = "col") -> pd.DataFrame:
    """Pivot a response onto the field grid (rows x columns)."""
    values = pd.to_numeric(df[response], errors="coerce")
    grid = pd.DataFrame({row: df[row], col: df[col], response: values})
    return grid.pivot_table(index=row, columns=col, values=response, aggfunc="mean", observed=False)


def normality_checks(
    df: pd.DataFrame,
    response: str,
    group: Optional[str] = None
) -> pd.DataFrame:
    """
    Shapiro-Wilk normality test on the response, overall or by group.

    Returns
    -------
    pd.DataFrame
        Columns: group, n, stat, p_value, normal_at_0.05
    """
    out = []
    if group is None:
        parts = [("ALL", df)]
    else:
        parts = list(df.groupby(group, observed=True))

    for g, sub in parts:
        vals = pd.to_numeric(sub[response], errors="coerce").dropna()
        if len(vals) < MIN_SAMPLES_FOR_SHAPIRO:
            out.append({"group": str(g), "n": len(vals), "stat": np.nan, "p_value": np.nan})
            continue
        stat, p = stats.shapiro(vals)
        out.append({"group": str(g), "n": len(vals), "stat": stat, "p_value": p})

    result = pd.DataFrame(out)
    result["normal_at_0.05"] = result["p_value"] > DEFAULT_ALPHA
    return result


def levene_homogeneity(df: pd.DataFrame, response: str, group: str) -> pd.DataFrame:
    """
    Levene's test (median centred) of equal response variance across groups.

    A single row; the statistic stays NaN with fewer than two non-empty groups.
    """
    values = pd.to_numeric(df[response], errors="coerce")
    samples = [v.dropna().to_numpy() for _, v in values.groupby(df[group], observed=True)]
    samples = [s for s in samples if s.size]

    stat = p = np.nan
    if len(samples) >= MIN_GROUPS_FOR_LEVENE:
        stat, p = stats.levene(*samples, center="median")
    return pd.DataFrame([{
        "test": "Levene",
        "groups": len(samples),
        "stat": stat,
        "p_value": p,
        "homogeneous_at_0.05": (p > DEFAULT_ALPHA) if pd.notna(p) else np.nan,
    }])


def correlation_table(
    df: pd.DataFrame,
    method: str = "pearson",
    columns: Optional[list[str]] = None
) -> pd.DataFrame:
    """Pairwise correlations of plot measurements, e.g. yield against Striga count."""
    if method not in CORRELATION_METHODS:
        raise ValueError(f"Unknown correlation method '{method}'. Available: {CORRELATION_METHODS}")
    columns = columns or split_columns(df)[0]
    return coerce_numeric_columns(df, columns)[columns].corr(method=method)
