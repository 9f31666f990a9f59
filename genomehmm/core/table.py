"""
Observation table helpers.

An observation table is a plain `pandas.DataFrame`: rows are ordered genomic
positions (bins), columns are integer observations per dimension. Columns
are addressed either by position or by label.
"""

from typing import List, Sequence, Union

import numpy as np
import pandas as pd

Column = Union[int, str]

STATE_LABEL = "state"


def dimension_labels(num_dimensions: int, prefix: str = "d") -> List[str]:
    """Column labels for sampled tables: d0, d1, ..."""
    if num_dimensions < 1:
        raise ValueError(f"number of dimensions {num_dimensions} must be > 0")
    return [f"{prefix}{d}" for d in range(num_dimensions)]


def validate_table(df: pd.DataFrame) -> pd.DataFrame:
    """Fail fast on tables the models cannot consume."""
    if not isinstance(df, pd.DataFrame):
        raise TypeError(f"expected a pandas DataFrame, got {type(df).__name__}")
    if len(df) == 0:
        raise ValueError("observation table has no rows")
    return df


def column_values(df: pd.DataFrame, column: Column) -> np.ndarray:
    """Return a column as a numpy array, by position or by label."""
    if isinstance(column, (int, np.integer)):
        return df.iloc[:, int(column)].to_numpy()
    return df[column].to_numpy()


def write_column(df: pd.DataFrame, column: Column, values: np.ndarray) -> None:
    """Replace a column of `df` in place."""
    if isinstance(column, (int, np.integer)):
        df.isetitem(int(column), values)
    else:
        df[column] = values


def empty_sample_table(num_rows: int, num_dimensions: int) -> pd.DataFrame:
    """A zero-filled integer table to sample observations into."""
    if num_rows < 1:
        raise ValueError(f"number of observations {num_rows} must be > 0")
    return pd.DataFrame({
        label: np.zeros(num_rows, dtype=np.int64)
        for label in dimension_labels(num_dimensions)
    })


def row_bind(dfs: Sequence[pd.DataFrame]) -> pd.DataFrame:
    """Stack tables with identical columns on top of each other."""
    if len(dfs) == 0:
        raise ValueError("no tables to bind")
    if len(dfs) == 1:
        return dfs[0]
    columns = list(dfs[0].columns)
    for df in dfs[1:]:
        if list(df.columns) != columns:
            raise ValueError(f"column mismatch: {list(df.columns)} != {columns}")
    return pd.concat(dfs, ignore_index=True)
