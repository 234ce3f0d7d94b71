"""
Compact Letter Display (CLD) generation from pairwise comparisons.

Groups that share a letter are not significantly different under the chosen
multiple-comparison procedure.
"""

from __future__ import annotations

import re
from itertools import permutations

import numpy as np
import pandas as pd

from .constants import DEFAULT_ALPHA

MAX_PERMUTED_LETTERS = 8


def _ordered_levels(values: list) -> list[str]:
    """
    Order factor levels naturally.

    Numeric labels follow numeric order (``1, 2, 10``), labels sharing one
    alphabetic prefix follow their number (``G1, G2, G10``), anything else is
    sorted alphabetically. Duplicates are removed.
    """
    uniq = list(dict.fromkeys(str(v) for v in values))
    if not uniq:
        return uniq

    try:
        nums = [float(v) for v in uniq]
    except ValueError:
        nums = None
    if nums is not None and all(np.isfinite(n) for n in nums):
        return [x for _, x in sorted(zip(nums, uniq), key=lambda t: t[0])]

    matches = [re.match(r"^([A-Za-z_]+)(\d+)$", v) for v in uniq]
    if all(m is not None for m in matches):
        prefixes = {m.group(1) for m in matches}
        if len(prefixes) == 1:
            return [v for _, v in sorted(zip((int(m.group(2)) for m in matches), uniq))]

    return sorted(uniq)


def significance_from_pairs(
    pairs: pd.DataFrame,
    levels: list[str],
    alpha: float = DEFAULT_ALPHA,
    p_col: str = "p_value",
) -> dict[tuple[str, str], bool]:
    """
    Build a symmetric significance map from a pairwise comparison table.

    Parameters
    ----------
    pairs : pd.DataFrame
        Table with ``level_a``, ``level_b`` and an (adjusted) p-value column.
    levels : list[str]
        All levels of the compared factor.
    alpha : float
        Significance level.
    p_col : str
        Name of the p-value column.

    Returns
    -------
    dict[tuple[str, str], bool]
        ``{(a, b): is_significant}`` for every ordered pair of levels.
        Pairs missing from the table are treated as not significant.
    """
    levels = [str(x) for x in levels]
    sig = {(a, b): False for a in levels for b in levels}
    for _, row in pairs.iterrows():
        a = str(row["level_a"])
        b = str(row["level_b"])
        p = pd.to_numeric(row.get(p_col), errors="coerce")
        if a in levels and b in levels and pd.notna(p):
            sig[(a, b)] = sig[(b, a)] = bool(p < alpha)
    return sig


def _reduce_sets(sets_in: list[set[str]]) -> list[set[str]]:
    """Drop empty, duplicate and strictly contained letter sets."""
    unique: list[set[str]] = []
    seen = set()
    for s in sets_in:
        fs = frozenset(s)
        if fs and fs not in seen:
            seen.add(fs)
            unique.append(set(s))
    return [s for i, s in enumerate(unique) if not any(i != j and s < t for j, t in enumerate(unique))]


def _is_valid_cover(
    sets_in: list[set[str]],
    levels: list[str],
    sig: dict[tuple[str, str], bool],
) -> bool:
    if not sets_in:
        return False
    for g in levels:
        if not any(g in s for s in sets_in):
            return False
    for i, a in enumerate(levels):
        for b in levels[i + 1:]:
            shared = any(a in s and b in s for s in sets_in)
            if shared == sig.get((a, b), False):
                return False
    return True


def _letter_positions(order, letter_sets: list[set[str]], levels: list[str]) -> dict[str, list[int]]:
    pos = {old_i: new_i for new_i, old_i in enumerate(order)}
    return {g: sorted(pos[i] for i, s in enumerate(letter_sets) if g in s) for g in levels}


def _order_score(order, letter_sets: list[set[str]], levels: list[str]):
    idxs_by_group = _letter_positions(order, letter_sets, levels)

    # top ranked group carries 'a'
    top = idxs_by_group[levels[0]]
    top_has_a = 0 if (top and top[0] == 0) else 1

    first_pos = tuple(idxs_by_group[g][0] if idxs_by_group[g] else 10**6 for g in levels)

    # prefer 'cd' over 'bd'
    gap_penalty = sum(
        idxs[-1] - idxs[0] + 1 - len(idxs)
        for idxs in idxs_by_group.values()
        if len(idxs) >= 2
    )
    complexity = tuple(len(idxs_by_group[g]) for g in levels)
    flat = tuple(x for g in levels for x in idxs_by_group[g])
    return top_has_a, gap_penalty, first_pos, complexity, flat


def _letter(i: int) -> str:
    if i < 26:
        return chr(ord("a") + i)
    return f"a{i - 25}"


def make_cld_from_significance(
    sig: dict[tuple[str, str], bool],
    group_order: list[str]
) -> dict[str, str]:
    """
    Generate a Compact Letter Display from a significance map.

    Starts from one letter shared by all groups, splits it for every
    significant pair (insert-and-absorb), drops redundant letters, then picks
    the letter order that gives early letters to highly ranked groups.

    Parameters
    ----------
    sig : dict[tuple[str, str], bool]
        Significance map from pairwise tests.
    group_order : list[str]
        Order of groups, typically by mean, descending.

    Returns
    -------
    dict[str, str]
        Mapping of group -> letters (e.g. ``{"A": "a", "B": "ab", "C": "b"}``).
    """
    levels = [str(x) for x in group_order]
    if not levels:
        return {}

    letter_sets: list[set[str]] = [set(levels)]
    for i, a in enumerate(levels):
        for b in levels[i + 1:]:
            if not sig.get((a, b), False):
                continue
            updated: list[set[str]] = []
            for s in letter_sets:
                if a in s and b in s:
                    updated.extend([s - {a}, s - {b}])
                else:
                    updated.append(set(s))
            letter_sets = _reduce_sets(updated)

    changed = True
    while changed and len(letter_sets) > 1:
        changed = False
        for i in range(len(letter_sets) - 1, -1, -1):
            trial = [s for j, s in enumerate(letter_sets) if j != i]
            if _is_valid_cover(trial, levels, sig):
                letter_sets = trial
                changed = True
                break

    indices = list(range(len(letter_sets)))
    if len(indices) <= MAX_PERMUTED_LETTERS:
        best_order = min(permutations(indices), key=lambda o: _order_score(o, letter_sets, levels))
    else:
        rank = {g: i for i, g in enumerate(levels)}
        best_order = tuple(
            sorted(
                indices,
                key=lambda i: (
                    min(rank[g] for g in letter_sets[i]),
                    len(letter_sets[i]),
                    sorted(rank[g] for g in letter_sets[i]),
                ),
            )
        )

    symbol = {old_i: _letter(new_i) for new_i, old_i in enumerate(best_order)}
    labels: dict[str, str] = {}
    for g in levels:
        chars = sorted({symbol[i] for i, s in enumerate(letter_sets) if g in s}, key=lambda c: (len(c) > 1, c))
        labels[g] = "".join(chars)
    return labels
