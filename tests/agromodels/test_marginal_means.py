from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from agromodels.cld_utils import significance_from_pairs
from agromodels.datasets import plant_growth, simulate_field_trial
from agromodels.linear_models import fit_linear_model
from agromodels.marginal_means import (
    cld_table,
    estimated_marginal_means,
    pairwise_comparisons,
    reference_grid,
)
from agromodels.mixed_models import fit_mixed_model
from agromodels.model_spec import ModelSpec
from agromodels.posthoc_tests import tukey_posthoc


@pytest.fixture(scope="module")
def one_way():
    return fit_linear_model(plant_growth(), ModelSpec("weight", factors=["group"]))


@pytest.fixture(scope="module")
def rcbd_data():
    return simulate_field_trial(n_genotypes=6, n_blocks=4, seed=99)


def test_one_way_emmeans_equal_group_means(one_way) -> None:
    em = estimated_marginal_means(one_way, "group")
    raw = plant_growth().groupby("group", observed=True)["weight"].mean()

    assert em["group"].tolist() == ["ctrl", "trt1", "trt2"]
    np.testing.assert_allclose(em["emmean"].to_numpy(), raw.to_numpy())
    assert (em["df"] == 27).all()
    assert (em["ci_low"] < em["emmean"]).all()
    assert (em["emmean"] < em["ci_high"]).all()


def test_one_way_tukey_matches_tukeyhsd(one_way) -> None:
    pairs = pairwise_comparisons(one_way, "group", adjust="tukey")
    hsd = tukey_posthoc(plant_growth(), "weight", "group")

    merged = pairs.merge(hsd, on=["level_a", "level_b"], suffixes=("", "_hsd"))
    assert len(merged) == 3
    np.testing.assert_allclose(merged["p_value"], merged["p_value_hsd"], atol=2e-3)
    np.testing.assert_allclose(-merged["estimate"], merged["mean_diff"], atol=1e-10)


def test_adjustments_are_ordered(one_way) -> None:
    raw = pairwise_comparisons(one_way, "group", adjust="none")["p_value"]
    bonf = pairwise_comparisons(one_way, "group", adjust="bonferroni")["p_value"]
    holm = pairwise_comparisons(one_way, "group", adjust="holm")["p_value"]

    assert (bonf >= raw).all()
    assert (holm <= bonf + 1e-12).all()
    assert (holm >= raw).all()


def test_unknown_adjustment_and_focal(one_way) -> None:
    with pytest.raises(ValueError, match="Unknown adjustment"):
        pairwise_comparisons(one_way, "group", adjust="scheffe")
    with pytest.raises(ValueError, match="fixed categorical"):
        estimated_marginal_means(one_way, "weight")


def test_rcbd_emmeans_equal_raw_means_when_balanced(rcbd_data) -> None:
    fit = fit_linear_model(rcbd_data, ModelSpec("grain_yield", factors=["genotype"], block="block"))

    grid = reference_grid(fit, "genotype")
    assert len(grid) == 6 * 4

    em = estimated_marginal_means(fit, "genotype")
    raw = rcbd_data.groupby("genotype", observed=True)["grain_yield"].mean()
    np.testing.assert_allclose(em["emmean"].to_numpy(), raw.loc[em["genotype"]].to_numpy())
    assert (em["df"] == 15).all()


def test_random_block_emmeans_equal_raw_means_when_balanced(rcbd_data) -> None:
    fit = fit_mixed_model(rcbd_data, ModelSpec("grain_yield", factors=["genotype"], random=["block"]))

    em = estimated_marginal_means(fit, "genotype")
    raw = rcbd_data.groupby("genotype", observed=True)["grain_yield"].mean()

    np.testing.assert_allclose(em["emmean"].to_numpy(), raw.loc[em["genotype"]].to_numpy(), atol=1e-6)
    assert (em["df"] == 15).all()


def test_covariate_held_at_mean() -> None:
    rng = np.random.default_rng(4)
    df = pd.DataFrame({"g": np.repeat(["a", "b", "c"], 10), "x": rng.normal(5, 1, 30)})
    df["y"] = 2 + 0.5 * df["x"] + np.repeat([0.0, 1.0, 2.0], 10) + rng.normal(0, 0.1, 30)
    fit = fit_linear_model(df, ModelSpec("y", factors=["g"], covariates=["x"]))

    grid = reference_grid(fit, "g")
    assert grid["x"].unique().tolist() == [pytest.approx(df["x"].mean())]

    em = estimated_marginal_means(fit, "g")
    beta = fit.fe_params
    expected_a = beta["Intercept"] + beta["x"] * df["x"].mean()
    assert em.loc[em["g"] == "a", "emmean"].iloc[0] == pytest.approx(expected_a)


def test_comparisons_within_by_levels() -> None:
    rng = np.random.default_rng(12)
    df = pd.DataFrame({
        "variety": np.tile(np.repeat(["V1", "V2", "V3"], 4), 2),
        "nitrogen": np.repeat(["low", "high"], 12),
    })
    df["y"] = rng.normal(5, 0.3, len(df)) + (df["nitrogen"] == "high") * (df["variety"] == "V3") * 2.0
    fit = fit_linear_model(df, ModelSpec("y", factors=["variety", "nitrogen"], interactions=True))

    em = estimated_marginal_means(fit, "variety", by="nitrogen")
    pairs = pairwise_comparisons(fit, "variety", by="nitrogen")
    letters = cld_table(em, pairs)

    assert list(em.columns[:2]) == ["variety", "nitrogen"]
    assert len(em) == 6
    assert len(pairs) == 6
    assert set(pairs["nitrogen"]) == {"low", "high"}
    assert set(letters["nitrogen"]) == {"low", "high"}
    high = letters[letters["nitrogen"] == "high"]
    assert high.iloc[0]["variety"] == "V3"
    assert high.iloc[0]["letters"] == "a"


def test_cld_letters_agree_with_pairs(one_way) -> None:
    em = estimated_marginal_means(one_way, "group")
    pairs = pairwise_comparisons(one_way, "group")
    letters = cld_table(em, pairs, alpha=0.05)

    assert letters.iloc[0]["letters"].startswith("a")
    assert letters["emmean"].is_monotonic_decreasing
    assert letters["group"].tolist() == ["trt2", "ctrl", "trt1"]

    labels = dict(zip(letters["group"], letters["letters"]))
    sig = significance_from_pairs(pairs, list(labels), alpha=0.05)
    for (a, b), is_sig in sig.items():
        if a == b:
            continue
        shares = bool(set(labels[a]) & set(labels[b]))
        assert shares == (not is_sig)


def _trial_with_empty_cell() -> pd.DataFrame:
    rng = np.random.default_rng(8)
    cells = [
        (v, n) for v in ["V1", "V2", "V3"] for n in ["lo", "hi"] if (v, n) != ("V3", "hi")
    ]
    rows = [
        {"variety": v, "nitrogen": n, "y": 5.0 + 0.4 * i + rng.normal(0.0, 0.2)}
        for i, (v, n) in enumerate(cells)
        for _ in range(4)
    ]
    return pd.DataFrame(rows)


@pytest.fixture(scope="module")
def empty_cell_fit():
    spec = ModelSpec("y", factors=["variety", "nitrogen"], interactions=True)
    return fit_linear_model(_trial_with_empty_cell(), spec)


def test_nonestimable_mean_is_nan(empty_cell_fit, caplog) -> None:
    with caplog.at_level("WARNING", logger="agromodels.marginal_means"):
        em = estimated_marginal_means(empty_cell_fit, "variety").set_index("variety")

    assert em.loc[["V1", "V2"], "emmean"].notna().all()
    assert em.loc[["V1", "V2"], "std_error"].notna().all()
    assert em.loc["V3", ["emmean", "std_error", "ci_low", "ci_high"]].isna().all()
    assert "not estimable" in caplog.text


def test_nonestimable_cell_within_by_level(empty_cell_fit) -> None:
    em = estimated_marginal_means(empty_cell_fit, "variety", by="nitrogen")
    v3 = em[em["variety"] == "V3"].set_index("nitrogen")["emmean"]

    assert np.isfinite(v3["lo"])
    assert np.isnan(v3["hi"])

    pairs = pairwise_comparisons(empty_cell_fit, "variety", by="nitrogen")
    assert (pairs["nitrogen"] == "lo").sum() == 3
    hi = pairs[pairs["nitrogen"] == "hi"]
    assert hi[["level_a", "level_b"]].values.tolist() == [["V1", "V2"]]


def test_nonestimable_level_left_out_of_comparisons(empty_cell_fit) -> None:
    em = estimated_marginal_means(empty_cell_fit, "variety")
    pairs = pairwise_comparisons(empty_cell_fit, "variety")

    assert len(pairs) == 1
    assert "V3" not in set(pairs["level_a"]) | set(pairs["level_b"])

    letters = cld_table(em, pairs).set_index("variety")["letters"]
    assert letters["V3"] == ""
    assert letters["V1"] != "" and letters["V2"] != ""
