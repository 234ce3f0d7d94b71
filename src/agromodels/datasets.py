"""
Built-in and packaged datasets used throughout the workbook and exercises.
"""

from __future__ import annotations

from importlib import resources
from typing import Callable

import numpy as np
import pandas as pd

from .data_loader import as_factors, load_data_from_path

FIELD_FACTORS = ["block", "row", "col", "genotype"]

_PLANT_GROWTH_WEIGHTS = {
    "ctrl": [4.17, 5.58, 5.18, 6.11, 4.50, 4.61, 5.17, 4.53, 5.33, 5.14],
    "trt1": [4.81, 4.17, 4.41, 3.59, 5.87, 3.83, 6.03, 4.89, 4.32, 4.69],
    "trt2": [6.31, 5.12, 5.54, 5.50, 5.37, 5.29, 4.92, 6.15, 5.80, 5.26],
}


def plant_growth() -> pd.DataFrame:
    """
    Dried plant weights under a control and two treatments.

    30 rows, columns ``weight`` (g) and ``group`` (``ctrl``, ``trt1``, ``trt2``).
    """
    rows = [
        {"weight": w, "group": group}
        for group, weights in _PLANT_GROWTH_WEIGHTS.items()
        for w in weights
    ]
    return as_factors(pd.DataFrame(rows), ["group"])


def striga_trial() -> pd.DataFrame:
    """
    Row-column field trial of 8 sorghum genotypes under Striga pressure.

    Three complete blocks laid out on a 6 x 4 grid (two rows per block).
    ``grain_yield`` is grain yield in t/ha and ``striga`` the number of emerged
    Striga plants per plot.
    """
    source = resources.files("agromodels") / "data" / "striga_trial.csv"
    with resources.as_file(source) as path:
        df = load_data_from_path(path)
    return as_factors(df, FIELD_FACTORS)


def simulate_field_trial(
    n_genotypes: int = 10,
    n_blocks: int = 4,
    seed: int = 2024,
    mean_yield: float = 3.0,
    genotype_sd: float = 0.5,
    block_sd: float = 0.3,
    row_sd: float = 0.15,
    col_sd: float = 0.15,
    resid_sd: float = 0.25,
) -> pd.DataFrame:
    """
    Simulate a randomized complete block trial on a row-column grid.

    Each block occupies two field rows; genotypes are randomized within
    blocks. Yield is the sum of genotype, block, row, column and residual
    effects; Striga counts are Poisson with a rate that falls as the genotype
    effect rises.

    Raises
    ------
    ValueError
        If fewer than two genotypes or blocks are requested.
    """
    if n_genotypes < 2 or n_blocks < 2:
        raise ValueError("A field trial needs at least two genotypes and two blocks")

    rng = np.random.default_rng(seed)
    n_cols = int(np.ceil(n_genotypes / 2))
    n_rows = 2 * n_blocks

    genotypes = [f"G{i + 1}" for i in range(n_genotypes)]
    g_eff = dict(zip(genotypes, rng.normal(0.0, genotype_sd, n_genotypes)))
    b_eff = rng.normal(0.0, block_sd, n_blocks)
    r_eff = rng.normal(0.0, row_sd, n_rows)
    c_eff = rng.normal(0.0, col_sd, n_cols)

    rows = []
    plot = 0
    for b in range(n_blocks):
        cells = [(2 * b + r, c) for r in range(2) for c in range(n_cols)][:n_genotypes]
        for (r, c), g in zip(cells, rng.permutation(genotypes)):
            plot += 1
            y = mean_yield + g_eff[g] + b_eff[b] + r_eff[r] + c_eff[c] + rng.normal(0.0, resid_sd)
            rate = np.exp(np.log(40.0) - 1.5 * g_eff[g])
            rows.append({
                "plot": plot,
                "block": b + 1,
                "row": r + 1,
                "col": c + 1,
                "genotype": g,
                "grain_yield": round(float(y), 3),
                "striga": int(rng.poisson(rate)),
            })

    return as_factors(pd.DataFrame(rows), FIELD_FACTORS)


DATASETS: dict[str, Callable[[], pd.DataFrame]] = {
    "plant_growth": plant_growth,
    "striga_trial": striga_trial,
    "simulated_trial": simulate_field_trial,
}


def list_datasets() -> list[str]:
    return sorted(DATASETS)


def load_dataset(name: str) -> pd.DataFrame:
    """Load a built-in dataset by name."""
    try:
        loader = DATASETS[name]
    except KeyError:
        raise ValueError(f"Unknown dataset '{name}'. Available: {list_datasets()}") from None
    return loader()
