"""
The model-fit-and-report workflow.

One call fits a linear or mixed model, builds its coefficient and omnibus
tables and diagnostic plots and, when a categorical predictor of interest is
given, its estimated marginal means, adjusted pairwise comparisons and compact
letter display.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import pandas as pd
import plotly.graph_objects as go

from . import linear_models, mixed_models
from .constants import (
    DEFAULT_ADJUST,
    DEFAULT_ALPHA,
    DEFAULT_ANOVA_TYPE,
    DEFAULT_CONF_LEVEL,
    DEFAULT_DDF,
    DEFAULT_REML,
)
from .diagnostics import diagnostic_figure
from .linear_models import LinearModelFit
from .marginal_means import cld_table, estimated_marginal_means, pairwise_comparisons
from .mixed_models import MixedModelFit
from .model_spec import ModelSpec
from .visualization import emmeans_figure

logger = logging.getLogger(__name__)


@dataclass
class ModelReport:
    """Everything the workflow produces for one fitted model."""

    fit: Union[LinearModelFit, MixedModelFit]
    coefficients: pd.DataFrame
    omnibus: pd.DataFrame
    fit_statistics: dict[str, Any]
    r_squared: dict[str, float]
    summary: str
    diagnostics: go.Figure
    variance_components: Optional[pd.DataFrame] = None
    focal: Optional[str] = None
    by: Optional[str] = None
    emmeans: Optional[pd.DataFrame] = None
    pairwise: Optional[pd.DataFrame] = None
    cld: Optional[pd.DataFrame] = None
    effect_figure: Optional[go.Figure] = None

    @property
    def kind(self) -> str:
        return self.fit.kind

    @property
    def formula(self) -> str:
        return self.fit.formula

    def to_frames(self) -> dict[str, pd.DataFrame]:
        """Named tables of the report, for display or export."""
        stats_row = {k: v for k, v in self.fit_statistics.items() if not isinstance(v, dict)}
        stats_row.update(self.r_squared)
        frames = {
            "coefficients": self.coefficients,
            "omnibus": self.omnibus,
            "fit_statistics": pd.DataFrame([stats_row]),
            "variance_components": self.variance_components,
            "emmeans": self.emmeans,
            "pairwise": self.pairwise,
            "cld": self.cld,
        }
        return {name: frame for name, frame in frames.items() if frame is not None}


def fit_and_report(
    df: pd.DataFrame,
    response: str,
    factors: Sequence[str] = (),
    covariates: Sequence[str] = (),
    block: Optional[str] = None,
    random: Sequence[str] = (),
    focal: Optional[str] = None,
    by: Optional[str] = None,
    interactions: bool = False,
    anova_type: int = DEFAULT_ANOVA_TYPE,
    adjust: str = DEFAULT_ADJUST,
    alpha: float = DEFAULT_ALPHA,
    level: float = DEFAULT_CONF_LEVEL,
    reml: bool = DEFAULT_REML,
    ddf: str = DEFAULT_DDF,
) -> ModelReport:
    """
    Fit a model and build its full report.

    Parameters
    ----------
    df : pd.DataFrame
        One row per plot.
    response : str
        Numeric response column.
    factors : sequence of str
        Fixed categorical predictors.
    covariates : sequence of str
        Fixed continuous predictors.
    block : str, optional
        Fixed blocking factor.
    random : sequence of str
        Grouping columns with a random intercept each; a mixed model is
        fitted when any are given.
    focal : str, optional
        Categorical predictor for marginal means. Defaults to the first
        factor; with no factors the means section is skipped.
    by : str, optional
        Compute means and comparisons within levels of this factor.
    interactions : bool, default=False
        Cross the factors (full factorial) instead of an additive model.
    anova_type : int, default=2
        Sum of squares type for linear models.
    adjust : str, default="tukey"
        P-value adjustment for pairwise comparisons.
    alpha : float, default=0.05
        Significance level of the letter display.
    level : float, default=0.95
        Confidence level of coefficient and mean intervals.
    reml : bool, default=True
        REML (True) or ML estimation for mixed models.
    ddf : str, default="residual"
        Denominator degrees-of-freedom rule for mixed models.

    Returns
    -------
    ModelReport
    """
    spec = ModelSpec(
        response=response,
        factors=list(factors),
        covariates=list(covariates),
        block=block,
        random=list(random),
        interactions=interactions,
    )

    if spec.is_mixed:
        fit = mixed_models.fit_mixed_model(df, spec, reml=reml)
        report = ModelReport(
            fit=fit,
            coefficients=mixed_models.coefficient_table(fit, level=level),
            omnibus=mixed_models.fixed_effects_tests(fit, ddf=ddf),
            fit_statistics=mixed_models.fit_statistics(fit),
            r_squared=mixed_models.r2_nakagawa(fit),
            summary=mixed_models.model_summary(fit),
            diagnostics=diagnostic_figure(fit),
            variance_components=mixed_models.variance_components(fit),
        )
    else:
        fit = linear_models.fit_linear_model(df, spec)
        stats = linear_models.fit_statistics(fit)
        report = ModelReport(
            fit=fit,
            coefficients=linear_models.coefficient_table(fit, level=level),
            omnibus=linear_models.anova_table(fit, typ=anova_type),
            fit_statistics=stats,
            r_squared={"r_squared": stats["r_squared"], "adj_r_squared": stats["adj_r_squared"]},
            summary=linear_models.model_summary(fit),
            diagnostics=diagnostic_figure(fit),
        )

    focal = focal or (spec.factors[0] if spec.factors else None)
    if focal is None:
        logger.info("No categorical focal predictor; skipping marginal means")
        return report

    report.focal = focal
    report.by = by
    report.emmeans = estimated_marginal_means(fit, focal, by=by, level=level, ddf=ddf)
    report.pairwise = pairwise_comparisons(fit, focal, by=by, adjust=adjust, ddf=ddf)
    report.cld = cld_table(report.emmeans, report.pairwise, alpha=alpha)
    if by is None:
        report.effect_figure = emmeans_figure(report.cld, focal, response)
    return report


def _format_statistics(report: ModelReport) -> str:
    lines = [f"Model: {report.formula}", f"Type: {report.kind}"]
    for key, value in {**report.fit_statistics, **report.r_squared}.items():
        if isinstance(value, float):
            lines.append(f"{key}: {value:.6g}")
        else:
            lines.append(f"{key}: {value}")
    return "\n".join(lines)


def write_report(report: ModelReport, outdir: Union[str, Path]) -> list[Path]:
    """
    Write a report to ``outdir``: one CSV per table, ``summary.txt`` and
    ``diagnostics.html`` (plus ``emmeans.html`` when means were computed).

    Returns
    -------
    list[Path]
        Paths of the written files.
    """
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    written = []
    for name, frame in report.to_frames().items():
        path = outdir / f"{name}.csv"
        frame.to_csv(path, index=False)
        written.append(path)

    summary_path = outdir / "summary.txt"
    summary_path.write_text(_format_statistics(report) + "\n\n" + report.summary + "\n", encoding="utf-8")
    written.append(summary_path)

    diag_path = outdir / "diagnostics.html"
    report.diagnostics.write_html(str(diag_path), include_plotlyjs="cdn")
    written.append(diag_path)

    if report.effect_figure is not None:
        effect_path = outdir / "emmeans.html"
        report.effect_figure.write_html(str(effect_path), include_plotlyjs="cdn")
        written.append(effect_path)

    logger.info("Wrote %d files to %s", len(written), outdir)
    return written
