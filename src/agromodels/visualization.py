"""
Exploratory and effect plots for the workbook.
"""

from __future__ import annotations

from typing import Optional

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from scipy import stats

from .cld_utils import _ordered_levels
from .constants import (
    EFFECT_PLOT_HEIGHT,
    EFFECT_PLOT_WIDTH,
    LAYOUT_HEATMAP_HEIGHT,
    QQPLOT_HEIGHT,
)
from .exploration import layout_table


def apply_paper_layout(
    fig: go.Figure,
    title: str,
    x_title: str,
    y_title: str,
    height: int = EFFECT_PLOT_HEIGHT,
    width: int = EFFECT_PLOT_WIDTH,
) -> go.Figure:
    """
    Apply consistent publication-ready styling to a Plotly figure.

    Parameters
    ----------
    fig : go.Figure
        Input Plotly figure.
    title : str
        Plot title.
    x_title : str
        X-axis title.
    y_title : str
        Y-axis title.
    height : int, default=560
        Figure height in pixels.
    width : int, default=860
        Figure width in pixels.

    Returns
    -------
    go.Figure
        Styled figure.
    """
    fig.update_layout(
        template="simple_white",
        title=dict(text=title, x=0.5, xanchor="center", font=dict(size=18)),
        font=dict(size=14),
        legend=dict(orientation="h", yanchor="bottom", y=1.02, xanchor="left", x=0.0),
        margin=dict(l=70, r=30, t=85, b=70),
        height=height,
        width=width,
    )
    axis_style = dict(showline=True, linewidth=1, linecolor="black", mirror=True, ticks="outside")
    fig.update_xaxes(title=x_title, **axis_style)
    fig.update_yaxes(title=y_title, **axis_style)
    return fig


def _qq_standardized(values: np.ndarray) -> tuple[Optional[np.ndarray], Optional[np.ndarray]]:
    vals = np.asarray(values, dtype=float)
    vals = vals[~np.isnan(vals)]
    if len(vals) < 3:
        return None, None
    std = np.std(vals, ddof=1)
    if std == 0:
        return None, None
    osm, osr = stats.probplot(vals, dist="norm", fit=False)
    return np.asarray(osm), (np.asarray(osr) - np.mean(vals)) / std


def qqplot_figure(
    df: pd.DataFrame,
    response: str,
    group: Optional[str] = None
) -> Optional[go.Figure]:
    """
    Normal Q-Q plot of the raw response, overall or one trace per group.

    Returns None when no group has at least three non-constant values.
    """
    fig = go.Figure()
    parts = [("ALL", df)] if group is None else list(df.groupby(group, observed=True))

    x_ranges = []
    for g, sub in parts:
        osm, osr_std = _qq_standardized(pd.to_numeric(sub[response], errors="coerce").values)
        if osm is None:
            continue
        x_ranges.append((osm.min(), osm.max()))
        fig.add_trace(go.Scatter(x=osm, y=osr_std, mode="markers", name=str(g)))
    if not x_ranges:
        return None

    line_x = np.linspace(min(v[0] for v in x_ranges), max(v[1] for v in x_ranges), 200)
    fig.add_trace(
        go.Scatter(x=line_x, y=line_x, mode="lines", name="y = x", line=dict(color="black", dash="dash"))
    )
    fig.update_layout(
        title=f"{response} QQ Plot",
        xaxis_title="Theoretical Quantiles",
        yaxis_title="Standardized Sample Quantiles",
        legend_title=group if group else "Group",
        height=QQPLOT_HEIGHT,
        template="simple_white",
    )
    return fig


def _category_order(df: pd.DataFrame, col: str) -> list[str]:
    return _ordered_levels(df[col].dropna().astype(str).tolist())


def boxplot_figure(df: pd.DataFrame, response: str, group: str) -> go.Figure:
    """Box plot of the response per group with the individual plots overlaid."""
    data = df[[response, group]].dropna().astype({group: str})
    fig = px.box(
        data,
        x=group,
        y=response,
        points="all",
        category_orders={group: _category_order(data, group)},
    )
    return apply_paper_layout(fig, title=f"{response} by {group}", x_title=group, y_title=response)


def scatter_figure(
    df: pd.DataFrame,
    x: str,
    y: str,
    color: Optional[str] = None,
    trendline: bool = True,
) -> go.Figure:
    """Scatter plot with an optional least-squares line (overall, or per colour group)."""
    data = df.dropna(subset=[x, y]).copy()
    if color:
        data[color] = data[color].astype(str)
    fig = px.scatter(data, x=x, y=y, color=color, trendline="ols" if trendline else None)
    return apply_paper_layout(fig, title=f"{y} vs {x}", x_title=x, y_title=y)


def interaction_plot(df: pd.DataFrame, response: str, x_factor: str, trace_factor: str) -> go.Figure:
    """Cell means of ``response`` across ``x_factor``, one line per ``trace_factor`` level."""
    tmp = df[[response, x_factor, trace_factor]].copy()
    tmp[response] = pd.to_numeric(tmp[response], errors="coerce")
    tmp = tmp.dropna()
    tmp[x_factor] = tmp[x_factor].astype(str)
    tmp[trace_factor] = tmp[trace_factor].astype(str)

    means = tmp.groupby([x_factor, trace_factor])[response].mean().reset_index()
    fig = px.line(
        means,
        x=x_factor,
        y=response,
        color=trace_factor,
        markers=True,
        category_orders={
            x_factor: _category_order(tmp, x_factor),
            trace_factor: _category_order(tmp, trace_factor),
        },
    )
    fig = apply_paper_layout(
        fig,
        title=f"{response} Interaction: {x_factor} x {trace_factor}",
        x_title=x_factor,
        y_title=f"Mean {response}",
    )
    fig.update_traces(line=dict(width=2), marker=dict(size=8))
    return fig


def layout_heatmap(df: pd.DataFrame, response: str, row: str = "row", col: str = "col") -> go.Figure:
    """Heatmap of a response on the field grid, to spot spatial trends."""
    grid = layout_table(df, response, row=row, col=col)
    fig = px.imshow(
        grid,
        aspect="auto",
        color_continuous_scale="Viridis",
        labels=dict(x=col, y=row, color=response),
        text_auto=".2f",
    )
    fig.update_layout(
        template="simple_white",
        title=dict(text=f"{response} field layout", x=0.5, xanchor="center"),
        height=LAYOUT_HEATMAP_HEIGHT,
    )
    return fig


def emmeans_figure(cld_frame: pd.DataFrame, focal: str, response: str) -> go.Figure:
    """
    Bar chart of estimated marginal means with confidence intervals.

    ``cld_frame`` is the output of ``cld_table``; its letters are drawn above
    the upper confidence limit of each bar.
    """
    summary = cld_frame.copy()
    summary[focal] = summary[focal].astype(str)

    bar = go.Figure()
    bar.add_trace(
        go.Bar(
            x=summary[focal],
            y=summary["emmean"],
            error_y=dict(
                type="data",
                symmetric=False,
                array=summary["ci_high"] - summary["emmean"],
                arrayminus=summary["emmean"] - summary["ci_low"],
                thickness=1.4,
                width=4,
            ),
            marker_line=dict(width=0.8, color="black"),
            showlegend=False,
            name="",
        )
    )

    if "letters" in summary.columns:
        span = float(summary["ci_high"].max() - min(summary["ci_low"].min(), 0.0))
        offset = max(span, 1e-9) * 0.04
        bar.add_trace(
            go.Scatter(
                x=summary[focal],
                y=summary["ci_high"] + offset,
                mode="text",
                text=summary["letters"].astype(str),
                textposition="top center",
                textfont=dict(size=15, color="black"),
                showlegend=False,
                hoverinfo="skip",
                cliponaxis=False,
            )
        )

    order = _ordered_levels(summary[focal].tolist())
    bar.update_xaxes(categoryorder="array", categoryarray=order)
    return apply_paper_layout(
        bar,
        title=f"{response}: estimated marginal means by {focal}",
        x_title=focal,
        y_title=f"{response} (emmean, CI)",
    )
