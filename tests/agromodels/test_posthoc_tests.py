from __future__ import annotations

import pandas as pd
import pytest

from agromodels.datasets import plant_growth
from agromodels.posthoc_tests import tukey_posthoc


def test_tukey_posthoc_on_plant_growth() -> None:
    table = tukey_posthoc(plant_growth(), "weight", "group")

    assert list(table.columns) == ["level_a", "level_b", "mean_diff", "p_value", "ci_low", "ci_high", "reject"]
    row = table[(table["level_a"] == "trt1") & (table["level_b"] == "trt2")].iloc[0]
    assert row["mean_diff"] == pytest.approx(0.865)
    assert row["p_value"] == pytest.approx(0.012, abs=1e-3)
    assert bool(row["reject"])


def test_tukey_posthoc_single_group() -> None:
    df = pd.DataFrame({"y": [1.0, 2.0], "g": ["a", "a"]})

    assert tukey_posthoc(df, "y", "g").empty
