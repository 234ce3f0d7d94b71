from __future__ import annotations

import logging
from types import SimpleNamespace

import numpy as np
import pandas as pd
import pytest
from patsy import DesignInfo

from agromodels import linear_models
from agromodels.datasets import plant_growth, simulate_field_trial
from agromodels.linear_models import (
    anova_analysis,
    anova_table,
    coefficient_table,
    fit_linear_model,
    fit_statistics,
    nested_anova,
)
from agromodels.model_spec import ModelSpec, build_formula, fixed_design_info, prepare_model_frame


def test_build_formula_variants() -> None:
    assert build_formula(ModelSpec("grain_yield", factors=["genotype"], block="block")) == (
        "grain_yield ~ C(block) + C(genotype)"
    )
    assert build_formula(ModelSpec("y", factors=["a", "b"], interactions=True)) == "y ~ C(a) * C(b)"
    assert build_formula(ModelSpec("y", covariates=["x"])) == "y ~ x"
    assert build_formula(ModelSpec("y")) == "y ~ 1"


def test_spec_validation() -> None:
    with pytest.raises(ValueError, match="both fixed and random"):
        ModelSpec("y", factors=["block"], random=["block"]).validate()
    with pytest.raises(ValueError, match="cannot also be a predictor"):
        ModelSpec("y", covariates=["y"]).validate()
    with pytest.raises(ValueError, match="both the block and a factor"):
        ModelSpec("y", factors=["block", "genotype"], block="block").validate()


def test_prepare_model_frame_drops_missing_and_checks_levels() -> None:
    df = pd.DataFrame({"y": [1.0, 2.0, np.nan, 4.0], "g": ["a", "b", "b", "a"]})
    frame = prepare_model_frame(df, ModelSpec("y", factors=["g"]))
    assert len(frame) == 3
    assert list(frame["g"].cat.categories) == ["a", "b"]

    single = pd.DataFrame({"y": [1.0, 2.0], "g": ["a", "a"]})
    with pytest.raises(ValueError, match="at least two levels"):
        prepare_model_frame(single, ModelSpec("y", factors=["g"]))

    with pytest.raises(ValueError, match="not found"):
        prepare_model_frame(df, ModelSpec("y", factors=["missing"]))


def test_ols_coefficients_match_least_squares() -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))

    X = fit.result.model.exog
    y = fit.result.model.endog
    beta, *_ = np.linalg.lstsq(X, y, rcond=None)

    np.testing.assert_allclose(fit.fe_params.to_numpy(), beta, rtol=1e-10)


def test_coefficient_table_columns_and_intervals() -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))
    table = coefficient_table(fit)

    assert list(table.columns) == ["term", "estimate", "std_error", "t_value", "p_value", "ci_low", "ci_high"]
    assert (table["ci_low"] < table["estimate"]).all()
    assert (table["estimate"] < table["ci_high"]).all()
    assert table.loc[0, "estimate"] == pytest.approx(5.032)


def test_type1_sums_of_squares_partition_total() -> None:
    df = simulate_field_trial(n_genotypes=6, n_blocks=4, seed=3)
    fit = fit_linear_model(df, ModelSpec("grain_yield", factors=["genotype"], block="block"))

    table = anova_table(fit, typ=1)
    y = df["grain_yield"].to_numpy()

    assert table["sum_sq"].sum() == pytest.approx(((y - y.mean()) ** 2).sum())
    assert table["term"].tolist() == ["C(block)", "C(genotype)", "Residual"]


def test_one_way_anova_matches_textbook_values() -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))
    table = anova_table(fit)
    row = table.set_index("term").loc["C(group)"]

    assert row["df"] == 2
    assert row["F"] == pytest.approx(4.846, abs=1e-3)
    assert row["PR(>F)"] == pytest.approx(0.01591, abs=1e-4)

    stats = fit_statistics(fit)
    assert stats["df_resid"] == 27
    assert 0 < stats["r_squared"] < 1


def test_invalid_anova_type_and_random_spec() -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))
    with pytest.raises(ValueError, match="ANOVA type"):
        anova_table(fit, typ=4)
    with pytest.raises(ValueError, match="random terms"):
        fit_linear_model(plant_growth(), ModelSpec("weight", random=["group"]))


def test_anova_analysis_drops_confounded_factor() -> None:
    df = simulate_field_trial(n_genotypes=6, n_blocks=3, seed=11)
    df["family"] = df["genotype"].astype(str).map(lambda g: f"F{g}")

    table = anova_analysis(df, "grain_yield", factors=["genotype", "family"], block_factor="block")

    assert "C(genotype)" in table["term"].tolist()
    assert not any("family" in t for t in table["term"])


def test_nested_anova_terms() -> None:
    rng = np.random.default_rng(5)
    df = pd.DataFrame({
        "farm": np.repeat(["A", "B", "C"], 8),
        "field": np.tile(np.repeat(["1", "2"], 4), 3),
    })
    df["y"] = rng.normal(10, 1, len(df))

    table = nested_anova(df, "y", parent_factor="farm", nested_factor="field")

    assert "C(farm)" in table["term"].tolist()
    assert any("C(field)" in t for t in table["term"])
    with pytest.raises(ValueError):
        nested_anova(df, "y", parent_factor="farm", nested_factor="farm")


def test_design_info_comes_from_installed_statsmodels() -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))

    assert isinstance(fit.design_info, DesignInfo)
    assert fit.design_info.column_names == list(fit.fe_params.index)


def test_fixed_design_info_prefers_model_spec() -> None:
    info = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"])).design_info
    newer = SimpleNamespace(model=SimpleNamespace(data=SimpleNamespace(model_spec=info)))
    older = SimpleNamespace(model=SimpleNamespace(data=SimpleNamespace(design_info=info)))

    assert fixed_design_info(newer) is info
    assert fixed_design_info(older) is info


def _failing_anova(failing_types):
    real = linear_models.anova_lm

    def anova(model, typ=1, **kwargs):
        if typ in failing_types and not kwargs:
            raise ValueError(f"type {typ} not available")
        return real(model, typ=typ, **kwargs)

    return anova


def test_anova_falls_back_to_type1(monkeypatch, caplog) -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))
    monkeypatch.setattr(linear_models, "anova_lm", _failing_anova({3}))

    with caplog.at_level(logging.WARNING, logger="agromodels.linear_models"):
        table = anova_table(fit, typ=3)

    assert "mean_sq" in table.columns
    assert table["term"].tolist() == ["C(group)", "Residual"]
    assert "Type 3 ANOVA failed" in caplog.text


def test_anova_falls_back_to_robust_type2(monkeypatch, caplog) -> None:
    fit = fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))
    monkeypatch.setattr(linear_models, "anova_lm", _failing_anova({1, 3}))

    with caplog.at_level(logging.WARNING, logger="agromodels.linear_models"):
        table = anova_table(fit, typ=3)

    assert "mean_sq" not in table.columns
    assert "C(group)" in table["term"].tolist()
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 2
    assert "robust type 2" in warnings[-1].getMessage()
