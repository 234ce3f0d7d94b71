from __future__ import annotations

import pytest

from agromodels.datasets import list_datasets
from agromodels.exercises import EXERCISES, get_exercise, run_solution


def test_registry_references_known_datasets() -> None:
    assert len(EXERCISES) == 6
    for ex in EXERCISES.values():
        assert ex.dataset in list_datasets()
        assert ex.prompt


@pytest.mark.parametrize("exercise_id", sorted(EXERCISES))
def test_every_solution_runs(exercise_id: str) -> None:
    report = run_solution(exercise_id)

    assert not report.coefficients.empty
    assert not report.omnibus.empty


def test_row_column_solution_is_mixed() -> None:
    report = run_solution("row-column")

    assert report.kind == "mixed"
    assert set(report.variance_components["term"]) == {"row", "col", "Residual"}


def test_unknown_exercise() -> None:
    with pytest.raises(KeyError):
        get_exercise("three-way")
