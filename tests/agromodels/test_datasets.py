from __future__ import annotations

import pandas as pd
import pytest

from agromodels.datasets import list_datasets, load_dataset, plant_growth, simulate_field_trial, striga_trial


def test_plant_growth_shape_and_levels() -> None:
    df = plant_growth()

    assert df.shape == (30, 2)
    assert list(df["group"].cat.categories) == ["ctrl", "trt1", "trt2"]
    assert df.groupby("group", observed=True)["weight"].mean()["ctrl"] == pytest.approx(5.032)


def test_striga_trial_layout() -> None:
    df = striga_trial()

    assert len(df) == 24
    assert df["genotype"].nunique() == 8
    assert df["block"].nunique() == 3
    assert df["row"].nunique() == 6
    assert df["col"].nunique() == 4
    assert (df.groupby("block", observed=True)["genotype"].nunique() == 8).all()
    assert {"grain_yield", "striga"} <= set(df.columns)


def test_simulate_field_trial_is_reproducible() -> None:
    a = simulate_field_trial(n_genotypes=6, n_blocks=3, seed=7)
    b = simulate_field_trial(n_genotypes=6, n_blocks=3, seed=7)
    c = simulate_field_trial(n_genotypes=6, n_blocks=3, seed=8)

    assert len(a) == 18
    pd.testing.assert_frame_equal(a, b)
    assert not a["grain_yield"].equals(c["grain_yield"])
    assert (a.groupby("block", observed=True)["genotype"].nunique() == 6).all()
    assert (a["striga"] >= 0).all()


def test_simulate_field_trial_rejects_tiny_designs() -> None:
    with pytest.raises(ValueError):
        simulate_field_trial(n_genotypes=1)


def test_load_dataset_by_name() -> None:
    assert list_datasets() == ["plant_growth", "simulated_trial", "striga_trial"]
    assert len(load_dataset("plant_growth")) == 30
    with pytest.raises(ValueError, match="Unknown dataset"):
        load_dataset("iris")
