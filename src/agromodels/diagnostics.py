"""
Residual diagnostics for fitted linear and mixed models.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from scipy import stats
from statsmodels.nonparametric.smoothers_lowess import lowess

from .constants import COOKS_CONTOURS, DIAGNOSTIC_HEIGHT, DIAGNOSTIC_WIDTH
from .linear_models import LinearModelFit
from .mixed_models import MixedModelFit, random_effects

ModelFit = Union[LinearModelFit, MixedModelFit]


def _normal_quantiles(values: np.ndarray) -> np.ndarray:
    """Theoretical normal quantiles (Blom plotting positions) in the original order."""
    n = len(values)
    ranks = stats.rankdata(values, method="ordinal")
    return stats.norm.ppf((ranks - 0.375) / (n + 0.25))


def residual_frame(fit: ModelFit) -> pd.DataFrame:
    """
    Per-observation residual diagnostics.

    Returns
    -------
    pd.DataFrame
        Indexed like the model frame, columns: fitted, residual, std_resid,
        sqrt_abs_std_resid, theoretical_quantile and, for linear models,
        leverage and cooks_d.
    """
    res = fit.result
    out = pd.DataFrame(index=fit.data.index)
    out["fitted"] = np.asarray(res.fittedvalues, dtype=float)
    out["residual"] = np.asarray(res.resid, dtype=float)

    if fit.kind == "linear":
        infl = res.get_influence()
        out["std_resid"] = infl.resid_studentized_internal
        out["leverage"] = infl.hat_matrix_diag
        out["cooks_d"] = infl.cooks_distance[0]
    else:
        out["std_resid"] = out["residual"] / np.sqrt(res.scale)

    out["sqrt_abs_std_resid"] = np.sqrt(np.abs(out["std_resid"]))
    out["theoretical_quantile"] = _normal_quantiles(out["std_resid"].to_numpy())
    return out


def influential_points(fit: LinearModelFit, threshold: Optional[float] = None) -> pd.DataFrame:
    """
    Observations whose Cook's distance exceeds ``threshold`` (default 4/n).

    Raises
    ------
    ValueError
        For mixed models, where Cook's distance is not computed.
    """
    if fit.kind != "linear":
        raise ValueError("Influence measures are only available for linear models")
    frame = residual_frame(fit)
    cutoff = 4.0 / len(frame) if threshold is None else threshold
    flagged = frame[frame["cooks_d"] > cutoff]
    return fit.data.loc[flagged.index].join(flagged[["std_resid", "leverage", "cooks_d"]])


def _add_reference_line(fig: go.Figure, lo: float, hi: float, row: int, col: int) -> None:
    line_x = np.linspace(lo, hi, 50)
    fig.add_trace(
        go.Scatter(x=line_x, y=line_x, mode="lines", line=dict(color="black", dash="dash"), showlegend=False),
        row=row,
        col=col,
    )


def _add_lowess(fig: go.Figure, x: np.ndarray, y: np.ndarray, row: int, col: int) -> None:
    if len(x) < 4:
        return
    smooth = lowess(y, x, frac=2 / 3, return_sorted=True)
    fig.add_trace(
        go.Scatter(x=smooth[:, 0], y=smooth[:, 1], mode="lines", line=dict(color="firebrick"), showlegend=False),
        row=row,
        col=col,
    )


def diagnostic_figure(fit: ModelFit, title: Optional[str] = None) -> go.Figure:
    """
    Four-panel diagnostic plot.

    Residuals vs fitted, normal Q-Q of standardized residuals, scale-location
    and, for linear models, residuals vs leverage with Cook's distance
    contours. Mixed models show a normal Q-Q of the predicted random effects
    in the last panel instead.
    """
    frame = residual_frame(fit)
    last_title = "Residuals vs Leverage" if fit.kind == "linear" else "Random Effects Q-Q"
    fig = make_subplots(
        rows=2,
        cols=2,
        subplot_titles=("Residuals vs Fitted", "Normal Q-Q", "Scale-Location", last_title),
        horizontal_spacing=0.12,
        vertical_spacing=0.14,
    )
    marker = dict(color="steelblue", size=7, opacity=0.8)
    fitted = frame["fitted"].to_numpy()

    fig.add_trace(go.Scatter(x=fitted, y=frame["residual"], mode="markers", marker=marker, showlegend=False), row=1, col=1)
    fig.add_hline(y=0, line=dict(color="grey", dash="dot"), row=1, col=1)
    _add_lowess(fig, fitted, frame["residual"].to_numpy(), 1, 1)

    tq = frame["theoretical_quantile"].to_numpy()
    fig.add_trace(go.Scatter(x=tq, y=frame["std_resid"], mode="markers", marker=marker, showlegend=False), row=1, col=2)
    _add_reference_line(fig, float(tq.min()), float(tq.max()), 1, 2)

    fig.add_trace(
        go.Scatter(x=fitted, y=frame["sqrt_abs_std_resid"], mode="markers", marker=marker, showlegend=False),
        row=2,
        col=1,
    )
    _add_lowess(fig, fitted, frame["sqrt_abs_std_resid"].to_numpy(), 2, 1)

    if fit.kind == "linear":
        lev = frame["leverage"].to_numpy()
        fig.add_trace(
            go.Scatter(
                x=lev,
                y=frame["std_resid"],
                mode="markers",
                marker=marker,
                text=[str(i) for i in frame.index],
                showlegend=False,
            ),
            row=2,
            col=2,
        )
        n_params = len(fit.fe_params)
        h = np.linspace(max(lev.min(), 1e-3), min(lev.max() * 1.05, 0.999), 100)
        for c in COOKS_CONTOURS:
            bound = np.sqrt(c * n_params * (1 - h) / h)
            for sign in (1, -1):
                fig.add_trace(
                    go.Scatter(
                        x=h,
                        y=sign * bound,
                        mode="lines",
                        line=dict(color="firebrick", dash="dash", width=1),
                        name=f"Cook's D = {c}",
                        showlegend=sign == 1,
                    ),
                    row=2,
                    col=2,
                )
        x4, y4 = "Leverage", "Standardized residuals"
    else:
        blups = random_effects(fit)
        for term, sub in blups.groupby("term", sort=False):
            vals = sub["effect"].to_numpy()
            sd = vals.std(ddof=1) if len(vals) > 1 else 0.0
            scaled = (vals - vals.mean()) / sd if sd > 0 else vals - vals.mean()
            fig.add_trace(
                go.Scatter(x=_normal_quantiles(scaled), y=scaled, mode="markers", name=str(term), text=sub["level"]),
                row=2,
                col=2,
            )
        _add_reference_line(fig, -2.0, 2.0, 2, 2)
        x4, y4 = "Theoretical quantiles", "Standardized random effects"

    axis_titles = [
        ("Fitted values", "Residuals"),
        ("Theoretical quantiles", "Standardized residuals"),
        ("Fitted values", "sqrt(|Standardized residuals|)"),
        (x4, y4),
    ]
    for i, (xt, yt) in enumerate(axis_titles):
        r, c = divmod(i, 2)
        fig.update_xaxes(title_text=xt, showline=True, linecolor="black", mirror=True, row=r + 1, col=c + 1)
        fig.update_yaxes(title_text=yt, showline=True, linecolor="black", mirror=True, row=r + 1, col=c + 1)

    fig.update_layout(
        template="simple_white",
        title=dict(text=title or f"Diagnostics: {fit.formula}", x=0.5, xanchor="center"),
        height=DIAGNOSTIC_HEIGHT,
        width=DIAGNOSTIC_WIDTH,
        legend=dict(orientation="h", yanchor="bottom", y=-0.15, xanchor="left", x=0.0),
    )
    return fig
