from __future__ import annotations

import pandas as pd
import pytest

from agromodels.cld_utils import _ordered_levels
from agromodels.data_loader import (
    as_factors,
    coerce_numeric_columns,
    load_data_from_path,
    sanitize_columns,
    split_columns,
)


def test_sanitize_columns_makes_formula_safe_names() -> None:
    df = pd.DataFrame(columns=["Grain Yield (t/ha)", "plant-height", "yield", " block "])

    out = sanitize_columns(df)

    assert list(out.columns) == ["Grain_Yield_t_ha", "plant_height", "yield_", "block"]


def test_load_data_from_path_reads_csv(tmp_path) -> None:
    path = tmp_path / "trial.csv"
    pd.DataFrame({"Plot No": [1, 2], "Yield kg": [3.1, 2.9]}).to_csv(path, index=False)

    df = load_data_from_path(path)

    assert list(df.columns) == ["Plot_No", "Yield_kg"]
    assert len(df) == 2


def test_load_data_from_path_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_data_from_path(tmp_path / "missing.csv")

    txt = tmp_path / "notes.txt"
    txt.write_text("a,b\n1,2\n")
    with pytest.raises(ValueError, match="Unsupported"):
        load_data_from_path(txt)


def test_split_and_coerce_columns() -> None:
    df = pd.DataFrame({"y": ["1.5", "x", "2"], "g": ["a", "b", "c"]})

    numeric, categorical = split_columns(df)
    assert numeric == []
    assert categorical == ["y", "g"]

    out = coerce_numeric_columns(df, ["y"])
    assert out["y"].isna().sum() == 1
    assert out["y"].iloc[0] == pytest.approx(1.5)


def test_as_factors_treats_numeric_codes_as_levels() -> None:
    df = pd.DataFrame({"block": [10.0, 2.0, 1.0, 2.0], "y": [1, 2, 3, 4]})

    out = as_factors(df, ["block"])

    assert isinstance(out["block"].dtype, pd.CategoricalDtype)
    assert list(out["block"].cat.categories) == ["1", "2", "10"]
    assert df["block"].dtype == float


def test_as_factors_missing_column() -> None:
    with pytest.raises(ValueError, match="not found"):
        as_factors(pd.DataFrame({"a": [1]}), ["b"])


def test_ordered_levels_natural_order() -> None:
    assert _ordered_levels(["G10", "G2", "G1"]) == ["G1", "G2", "G10"]
    assert _ordered_levels(["10", "9", "1"]) == ["1", "9", "10"]
    assert _ordered_levels(["trt2", "ctrl", "trt1"]) == ["ctrl", "trt1", "trt2"]
