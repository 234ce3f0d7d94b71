"""
Global constants and defaults for the Agromodels workbook.
"""

# Statistical Analysis Constants
DEFAULT_ALPHA = 0.05
DEFAULT_CONF_LEVEL = 0.95
DEFAULT_ANOVA_TYPE = 2  # Type II sum of squares
MIN_SAMPLES_FOR_SHAPIRO = 3
MIN_GROUPS_FOR_LEVENE = 2
CORRELATION_METHODS = ["pearson", "spearman"]

# Multiple comparisons
ADJUST_METHODS = ["tukey", "bonferroni", "holm", "fdr_bh", "none"]
DEFAULT_ADJUST = "tukey"
ESTIMABILITY_TOL = 1e-8  # relative size of a mean outside the row space of the design

# Mixed models
DEFAULT_REML = True
MIXEDLM_OPTIMIZERS = [
    ("lbfgs", {"maxiter": 2000}),
    ("powell", {"maxiter": 4000}),
    ("cg", {"maxiter": 4000}),
    ("nm", {"maxiter": 6000}),
]
DDF_METHODS = ["residual", "asymptotic"]
DEFAULT_DDF = "residual"
CONSTANT_GROUP_COL = "_all_plots"

# Diagnostics
COOKS_CONTOURS = (0.5, 1.0)

# Plot sizes
QQPLOT_HEIGHT = 520
DIAGNOSTIC_HEIGHT = 760
DIAGNOSTIC_WIDTH = 980
EFFECT_PLOT_HEIGHT = 560
EFFECT_PLOT_WIDTH = 860
LAYOUT_HEATMAP_HEIGHT = 520

# Column Sanitization
COL_REPLACE_MAP = {
    " ": "_",
    "-": "_",
    "(": "",
    ")": "",
    ":": "_",
    "/": "_",
    ".": "_",
    "*": "",
}
