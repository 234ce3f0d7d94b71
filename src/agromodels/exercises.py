"""
Companion exercise sheet: short tasks with a worked solution each.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

import numpy as np
import pandas as pd

from .datasets import load_dataset
from .workflow import ModelReport, fit_and_report


@dataclass(frozen=True)
class Exercise:
    """One exercise: what to do, on which dataset, and how it is solved."""

    id: str
    title: str
    dataset: str
    prompt: str
    solution: Callable[[pd.DataFrame], ModelReport]
    hints: list[str] = field(default_factory=list)


def _one_way(df: pd.DataFrame) -> ModelReport:
    return fit_and_report(df, "weight", factors=["group"])


def _rcbd(df: pd.DataFrame) -> ModelReport:
    return fit_and_report(df, "grain_yield", factors=["genotype"], block="block")


def _random_block(df: pd.DataFrame) -> ModelReport:
    return fit_and_report(df, "grain_yield", factors=["genotype"], random=["block"])


def _row_column(df: pd.DataFrame) -> ModelReport:
    return fit_and_report(df, "grain_yield", factors=["genotype"], block="block", random=["row", "col"])


def _regression(df: pd.DataFrame) -> ModelReport:
    return fit_and_report(df, "grain_yield", covariates=["striga"])


def _log_striga(df: pd.DataFrame) -> ModelReport:
    data = df.assign(log_striga=np.log1p(pd.to_numeric(df["striga"], errors="coerce")))
    return fit_and_report(data, "log_striga", factors=["genotype"], block="block")


EXERCISES: dict[str, Exercise] = {
    ex.id: ex
    for ex in [
        Exercise(
            id="one-way",
            title="One-way ANOVA on plant growth",
            dataset="plant_growth",
            prompt=(
                "Fit weight ~ group. Do the treatments change dried weight? "
                "Which groups differ according to Tukey's HSD?"
            ),
            solution=_one_way,
            hints=[
                "Check the Q-Q panel before trusting the F test.",
                "Groups sharing a letter are not significantly different.",
            ],
        ),
        Exercise(
            id="rcbd",
            title="RCBD: genotypes in fixed blocks",
            dataset="striga_trial",
            prompt=(
                "Fit grain_yield with genotype and a fixed block effect. "
                "How much residual variation does blocking remove?"
            ),
            solution=_rcbd,
            hints=["Compare the residual mean square with and without block."],
        ),
        Exercise(
            id="random-block",
            title="Blocks as a random effect",
            dataset="striga_trial",
            prompt=(
                "Refit the RCBD with a random block intercept. Compare the "
                "genotype means and their standard errors with the fixed-block model."
            ),
            solution=_random_block,
            hints=[
                "Balanced data give the same means; standard errors change.",
                "Read the block share in the variance components table.",
            ],
        ),
        Exercise(
            id="row-column",
            title="Row-column model with crossed random effects",
            dataset="striga_trial",
            prompt=(
                "Add random row and column effects to the RCBD. Do they "
                "absorb any spatial variation shown in the layout heatmap?"
            ),
            solution=_row_column,
            hints=["Variance components near zero mean the term can be dropped."],
        ),
        Exercise(
            id="striga-regression",
            title="Regression of yield on Striga count",
            dataset="striga_trial",
            prompt=(
                "Regress grain_yield on the Striga count. How much yield is "
                "lost per additional emerged Striga plant?"
            ),
            solution=_regression,
            hints=["The slope is in t/ha per plant; look at its confidence interval."],
        ),
        Exercise(
            id="log-striga",
            title="Transforming count data",
            dataset="striga_trial",
            prompt=(
                "Analyse log(striga + 1) by genotype with blocks. Compare the "
                "scale-location panel with that of the untransformed counts."
            ),
            solution=_log_striga,
            hints=["Counts have variance that grows with the mean."],
        ),
    ]
}


def get_exercise(exercise_id: str) -> Exercise:
    """
    Look up an exercise by id.

    Raises
    ------
    KeyError
        If no exercise has that id.
    """
    try:
        return EXERCISES[exercise_id]
    except KeyError:
        raise KeyError(f"Unknown exercise '{exercise_id}'. Available: {sorted(EXERCISES)}") from None


def run_solution(exercise_id: str) -> ModelReport:
    """Load the exercise dataset and run its worked solution."""
    ex = get_exercise(exercise_id)
    return ex.solution(load_dataset(ex.dataset))
