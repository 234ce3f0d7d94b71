"""
Agromodels - a workbook on linear models, ANOVA and mixed models for
agricultural field trials.

The package wraps statsmodels fits in one model-fit-and-report workflow
(coefficients, omnibus tests, diagnostic plots, estimated marginal means,
adjusted comparisons and compact letter display), with built-in datasets,
an exercise sheet, a CLI and a Streamlit workbook (``app.py``).
"""

from .constants import *
from .data_loader import (
    as_factors,
    coerce_numeric_columns,
    load_data,
    load_data_from_path,
    sanitize_columns,
    split_columns,
)
from .datasets import list_datasets, load_dataset, plant_growth, simulate_field_trial, striga_trial
from .diagnostics import diagnostic_figure, influential_points, residual_frame
from .exercises import EXERCISES, Exercise, get_exercise, run_solution
from .exploration import (
    correlation_table,
    layout_table,
    levene_homogeneity,
    normality_checks,
    summarize_by_group,
)
from .linear_models import LinearModelFit, anova_analysis, anova_table, fit_linear_model, nested_anova
from .marginal_means import cld_table, estimated_marginal_means, pairwise_comparisons, reference_grid
from .mixed_models import (
    MixedModelFit,
    fit_mixed_model,
    fixed_effects_tests,
    r2_nakagawa,
    random_effects,
    variance_components,
)
from .model_spec import ModelFitError, ModelSpec, build_formula
from .posthoc_tests import tukey_posthoc
from .visualization import (
    apply_paper_layout,
    boxplot_figure,
    emmeans_figure,
    interaction_plot,
    layout_heatmap,
    qqplot_figure,
    scatter_figure,
)
from .workflow import ModelReport, fit_and_report, write_report

__version__ = "0.1.0"
__author__ = "Agromodels Team"

__all__ = [
    # Data
    "load_data",
    "load_data_from_path",
    "sanitize_columns",
    "split_columns",
    "coerce_numeric_columns",
    "as_factors",
    "plant_growth",
    "striga_trial",
    "simulate_field_trial",
    "list_datasets",
    "load_dataset",
    # Exploration
    "summarize_by_group",
    "layout_table",
    "normality_checks",
    "levene_homogeneity",
    "correlation_table",
    # Models
    "ModelSpec",
    "ModelFitError",
    "build_formula",
    "LinearModelFit",
    "fit_linear_model",
    "anova_table",
    "anova_analysis",
    "nested_anova",
    "MixedModelFit",
    "fit_mixed_model",
    "variance_components",
    "fixed_effects_tests",
    "r2_nakagawa",
    "random_effects",
    # Diagnostics and means
    "residual_frame",
    "diagnostic_figure",
    "influential_points",
    "reference_grid",
    "estimated_marginal_means",
    "pairwise_comparisons",
    "cld_table",
    "tukey_posthoc",
    # Workflow
    "ModelReport",
    "fit_and_report",
    "write_report",
    "Exercise",
    "EXERCISES",
    "get_exercise",
    "run_solution",
    # Visualization
    "apply_paper_layout",
    "qqplot_figure",
    "boxplot_figure",
    "scatter_figure",
    "interaction_plot",
    "layout_heatmap",
    "emmeans_figure",
]
