import sys
from pathlib import Path

import numpy as np
import pandas as pd
import plotly.graph_objects as go
import streamlit as st
from patsy import PatsyError

# Ensure `src/agromodels` is importable in Streamlit Cloud/local execution.
SRC_DIR = Path(__file__).resolve().parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from agromodels import (
    ADJUST_METHODS,
    EXERCISES,
    ModelFitError,
    boxplot_figure,
    correlation_table,
    fit_and_report,
    interaction_plot,
    layout_heatmap,
    levene_homogeneity,
    list_datasets,
    load_data,
    load_dataset,
    normality_checks,
    qqplot_figure,
    run_solution,
    scatter_figure,
    split_columns,
    summarize_by_group,
    tukey_posthoc,
)

MAX_CODED_LEVELS = 30
MODEL_ERRORS = (ValueError, KeyError, ModelFitError, PatsyError, np.linalg.LinAlgError)


def highlight_significant_rows(table: pd.DataFrame, alpha: float = 0.05):
    p_col = next((c for c in ["PR(>F)", "p_value"] if c in table.columns), None)
    if p_col is None:
        return table

    def _row_style(row: pd.Series) -> list[str]:
        p_val = pd.to_numeric(row.get(p_col), errors="coerce")
        term = str(row.get("term", "")).strip().lower()
        is_sig = pd.notna(p_val) and p_val < alpha and term not in ("residual", "intercept")
        row_style = "background-color: #fff3bf;" if is_sig else ""
        return [row_style for _ in row.index]

    return table.style.apply(_row_style, axis=1)


def render_centered_plot(fig: go.Figure):
    left, center, right = st.columns([1, 3, 1])
    with center:
        st.plotly_chart(fig, use_container_width=False)


@st.cache_data
def cached_dataset(name: str) -> pd.DataFrame:
    return load_dataset(name)


@st.cache_resource
def cached_report(df: pd.DataFrame, **kwargs):
    return fit_and_report(df, **kwargs)


@st.cache_resource
def cached_solution(exercise_id: str):
    return run_solution(exercise_id)


def render_report(report, alpha: float) -> None:
    st.markdown(f"**Model:** `{report.formula}` ({report.kind})")
    stats_cols = st.columns(len(report.r_squared))
    for col, (name, value) in zip(stats_cols, report.r_squared.items()):
        col.metric(name, f"{value:.3f}")

    st.markdown("##### Coefficients")
    st.dataframe(highlight_significant_rows(report.coefficients, alpha), use_container_width=True)
    st.markdown("##### Omnibus tests")
    st.dataframe(highlight_significant_rows(report.omnibus, alpha), use_container_width=True)
    if report.variance_components is not None:
        st.markdown("##### Variance components")
        st.dataframe(report.variance_components, use_container_width=True)

    with st.expander("Diagnostic plots", expanded=True):
        st.plotly_chart(report.diagnostics, use_container_width=False)

    if report.cld is None:
        st.info("No categorical focal predictor: marginal means are not computed.")
        return
    st.markdown(f"##### Estimated marginal means of `{report.focal}`")
    st.dataframe(report.cld, use_container_width=True)
    if report.effect_figure is not None:
        render_centered_plot(report.effect_figure)
    with st.expander("Pairwise comparisons"):
        st.dataframe(highlight_significant_rows(report.pairwise, alpha), use_container_width=True)
    with st.expander("Model summary"):
        st.text(report.summary)


st.set_page_config(page_title="Agromodels Workbook", layout="wide")
st.title("Linear and Mixed Models for Field Trials")
st.caption(
    "Load a dataset, explore it, fit a model, check its diagnostics and separate "
    "the means with a compact letter display."
)

with st.sidebar:
    source = st.radio("Data source", options=["Built-in dataset", "Upload file"])
    if source == "Built-in dataset":
        dataset_name = st.selectbox("Dataset", options=list_datasets(), index=list_datasets().index("striga_trial"))
        df = cached_dataset(dataset_name)
    else:
        uploaded = st.file_uploader("Upload data (CSV / XLSX)", type=["csv", "xlsx"])
        if not uploaded:
            st.info("Upload a data file to continue.")
            st.stop()
        sheet_name = None
        if uploaded.name.lower().endswith(".xlsx"):
            xls = pd.ExcelFile(uploaded)
            sheet_name = st.selectbox("Sheet", options=xls.sheet_names)
            uploaded.seek(0)
        df = load_data(uploaded, sheet_name=sheet_name)
    alpha = st.number_input("Significance level", min_value=0.001, max_value=0.2, value=0.05, step=0.01)

all_cols = df.columns.tolist()
numeric_cols, _ = split_columns(df)
coded_cols = [c for c in numeric_cols if pd.api.types.is_integer_dtype(df[c]) and df[c].nunique() <= MAX_CODED_LEVELS]
factor_cols = [c for c in all_cols if c not in numeric_cols or c in coded_cols]

tab_data, tab_explore, tab_model, tab_ex = st.tabs(["Data", "Explore", "Fit and report", "Exercises"])

with tab_data:
    st.subheader("Data preview")
    st.dataframe(df, use_container_width=True)
    st.write(f"{len(df)} rows, {len(all_cols)} columns")

with tab_explore:
    if not numeric_cols:
        st.warning("No numeric column to explore.")
    else:
        c1, c2 = st.columns(2)
        response = c1.selectbox("Response", options=numeric_cols, key="explore_response")
        group = c2.selectbox("Group by", options=[None] + factor_cols, key="explore_group")

        st.markdown("#### Summary")
        st.dataframe(summarize_by_group(df, response, [group] if group else None), use_container_width=True)

        if group:
            render_centered_plot(boxplot_figure(df, response, group))
            st.markdown("#### Assumption screens")
            st.dataframe(normality_checks(df, response=response, group=group), use_container_width=True)
            st.dataframe(levene_homogeneity(df, response=response, group=group), use_container_width=True)
        qq_fig = qqplot_figure(df, response=response, group=group)
        if qq_fig is not None:
            render_centered_plot(qq_fig)
        else:
            st.info(f"Not enough data for a Q-Q plot of {response} (at least 3 per group).")

        if {"row", "col"} <= set(all_cols):
            st.markdown("#### Field layout")
            render_centered_plot(layout_heatmap(df, response))

        other_numeric = [c for c in numeric_cols if c != response]
        if other_numeric:
            st.markdown("#### Relationship with another variable")
            x_col = st.selectbox("X", options=other_numeric, key="explore_x")
            render_centered_plot(scatter_figure(df, x=x_col, y=response, color=None))
            method = st.radio("Correlation", options=["pearson", "spearman"], horizontal=True)
            st.dataframe(correlation_table(df, method=method, columns=numeric_cols), use_container_width=True)

        if len(factor_cols) >= 2:
            st.markdown("#### Interaction plot")
            i1, i2 = st.columns(2)
            x_factor = i1.selectbox("X factor", options=factor_cols, key="int_x")
            trace_factor = i2.selectbox("Trace factor", options=[c for c in factor_cols if c != x_factor], key="int_t")
            render_centered_plot(interaction_plot(df, response, x_factor, trace_factor))

        if group:
            with st.expander("Raw-data Tukey HSD (ignores blocks and covariates)"):
                st.dataframe(tukey_posthoc(df, response, group, alpha=alpha), use_container_width=True)

with tab_model:
    st.caption("Significant rows are highlighted (p < significance level).")
    with st.form("model_form"):
        m1, m2, m3 = st.columns(3)
        response = m1.selectbox("Response", options=numeric_cols, key="model_response")
        factors = m2.multiselect("Fixed factors", options=factor_cols, key="model_factors")
        covariates = m3.multiselect("Covariates", options=[c for c in numeric_cols if c != response])
        m4, m5, m6 = st.columns(3)
        block = m4.selectbox("Fixed block (optional)", options=[None] + factor_cols)
        random = m5.multiselect("Random intercepts", options=factor_cols)
        focal = m6.selectbox("Focal factor for means", options=[None] + factor_cols)
        m7, m8, m9 = st.columns(3)
        by = m7.selectbox("Compare within (optional)", options=[None] + factor_cols)
        adjust = m8.selectbox("P-value adjustment", options=ADJUST_METHODS)
        anova_type = m9.selectbox("ANOVA type", options=[1, 2, 3], index=1)
        interactions = st.checkbox("Cross fixed factors (full factorial)")
        run_model = st.form_submit_button("Fit model")

    if run_model:
        try:
            report = cached_report(
                df,
                response=response,
                factors=tuple(factors),
                covariates=tuple(covariates),
                block=block,
                random=tuple(random),
                focal=focal,
                by=by,
                interactions=interactions,
                anova_type=anova_type,
                adjust=adjust,
                alpha=alpha,
            )
        except MODEL_ERRORS as e:
            st.error(f"Model fit failed: {e}")
        else:
            render_report(report, alpha)

with tab_ex:
    ex_id = st.selectbox(
        "Exercise",
        options=list(EXERCISES),
        format_func=lambda k: EXERCISES[k].title,
    )
    ex = EXERCISES[ex_id]
    st.markdown(f"**Dataset:** `{ex.dataset}`")
    st.write(ex.prompt)
    for hint in ex.hints:
        st.caption(f"Hint: {hint}")
    if st.button("Show solution"):
        try:
            render_report(cached_solution(ex_id), alpha)
        except MODEL_ERRORS as e:
            st.error(f"Solution failed: {e}")
