"""
Data loading and preprocessing utilities.
"""

from __future__ import annotations

import keyword
from pathlib import Path
from typing import Any, Optional

import numpy as np
import pandas as pd

from .cld_utils import _ordered_levels
from .constants import COL_REPLACE_MAP


def sanitize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Standardize column names for formula processing.

    Replaces spaces, hyphens, dots and other special characters so that
    every column can be referenced directly in a model formula. Python
    keywords (e.g. ``yield``) get a trailing underscore.

    Parameters
    ----------
    df : pd.DataFrame
        DataFrame with potentially problematic column names.

    Returns
    -------
    pd.DataFrame
        DataFrame with sanitized column names.
    """
    rename_map = {}
    for col in df.columns:
        name = str(col).strip()
        for old, new in COL_REPLACE_MAP.items():
            name = name.replace(old, new)
        if keyword.iskeyword(name):
            name = f"{name}_"
        rename_map[col] = name
    return df.rename(columns=rename_map)


def _read_table(source: Any, suffix: str, sheet_name: Optional[str]) -> pd.DataFrame:
    if suffix == ".csv":
        return pd.read_csv(source)
    if suffix in (".xlsx", ".xls"):
        return pd.read_excel(source, sheet_name=sheet_name or 0)
    raise ValueError(f"Unsupported file format: {suffix}")


def load_data(uploaded_file: Any, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    Load data from CSV or Excel file (Streamlit uploaded file object).

    Parameters
    ----------
    uploaded_file : Any
        Streamlit UploadedFile object.
    sheet_name : Optional[str]
        Sheet name for Excel files. If None, uses first sheet.

    Returns
    -------
    pd.DataFrame
        Loaded and sanitized DataFrame.

    Raises
    ------
    ValueError
        If file format is not CSV or XLSX.
    """
    suffix = Path(uploaded_file.name.lower()).suffix
    return sanitize_columns(_read_table(uploaded_file, suffix, sheet_name))


def load_data_from_path(
    path: str | Path,
    sheet_name: Optional[str] = None
) -> pd.DataFrame:
    """
    Load data from file path (for CLI and exercise usage).

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If file format is not CSV or XLSX.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Input dataset not found: {p}")
    return sanitize_columns(_read_table(p, p.suffix.lower(), sheet_name))


def split_columns(df: pd.DataFrame) -> tuple[list[str], list[str]]:
    """Split DataFrame columns into (numeric_columns, categorical_columns)."""
    numeric_cols = df.select_dtypes(include=[np.number]).columns.tolist()
    categorical_cols = [c for c in df.columns if c not in numeric_cols]
    return numeric_cols, categorical_cols


def coerce_numeric_columns(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """Coerce columns to numeric type (NaN for non-convertible values)."""
    out = df.copy()
    for col in columns:
        out[col] = pd.to_numeric(out[col], errors="coerce")
    return out


def _normalize_factor_label(v) -> Optional[str]:
    if pd.isna(v):
        return None
    s = str(v).strip()
    if not s:
        return None
    try:
        n = float(s)
    except ValueError:
        return s
    if np.isfinite(n) and n.is_integer():
        return str(int(n))
    return s


def as_factors(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """
    Convert columns to categorical factors with naturally ordered levels.

    Numeric codes such as block ``1, 2, 3`` become the levels ``"1", "2", "3"``
    so that model formulas treat them as groups rather than numbers.

    Raises
    ------
    ValueError
        If a column is missing from the DataFrame.
    """
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Columns not found in data: {missing}")

    out = df.copy()
    for col in columns:
        labels = out[col].astype(object).map(_normalize_factor_label)
        levels = _ordered_levels(labels.dropna().tolist())
        out[col] = pd.Categorical(labels, categories=levels)
    return out
