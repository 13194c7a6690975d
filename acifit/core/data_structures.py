"""
Data structures for acifit, including the ExtendedDataFrame class.

ExtendedDataFrame wraps a pandas DataFrame with per-column units and
categories, resolves fields by name (raising FieldNotFound rather than
returning missing data) and partitions a multi-curve table into one
table per curve.
"""

from typing import Dict, List, Optional, Union, Hashable
import warnings

import pandas as pd
import numpy as np
from copy import deepcopy

from .exceptions import FieldNotFound, InvalidGroupKey, EmptyGroup


# Units of the columns acifit knows about
ACI_COLUMN_UNITS = {
    'Ci': 'micromol mol^(-1)',
    'Assimilation': 'micromol m^(-2) s^(-1)',
    'Tleaf': 'degrees C',
    'PPFD': 'micromol m^(-2) s^(-1)',
}


class ExtendedDataFrame:
    """
    Enhanced DataFrame with units and metadata tracking.

    Attributes:
        data: The main pandas DataFrame containing the data
        units: Dictionary mapping column names to their units
        categories: Dictionary mapping column names to their categories/sources
    """

    def __init__(
        self,
        data: Union[pd.DataFrame, Dict, List],
        units: Optional[Dict[str, str]] = None,
        categories: Optional[Dict[str, str]] = None
    ):
        """
        Initialize an ExtendedDataFrame.

        Args:
            data: Data to store (DataFrame, dict, or list)
            units: Dictionary of column names to unit strings
            categories: Dictionary of column names to category strings
        """
        if isinstance(data, pd.DataFrame):
            self.data = data.copy()
        else:
            self.data = pd.DataFrame(data)

        self.units = units or {}
        self.categories = categories or {}

        for col in self.data.columns:
            if col not in self.units:
                self.units[col] = ACI_COLUMN_UNITS.get(col, "dimensionless")
            if col not in self.categories:
                self.categories[col] = "measured"

    def check_required_variables(
        self,
        required: List[str],
        raise_error: bool = True
    ) -> bool:
        """
        Check if required columns exist in the data.

        Args:
            required: List of required column names
            raise_error: If True, raise FieldNotFound for the first missing column

        Returns:
            True if all required columns exist, False otherwise

        Raises:
            FieldNotFound: If raise_error=True and columns are missing
        """
        missing = [col for col in required if col not in self.data.columns]

        if missing:
            if raise_error:
                raise FieldNotFound(missing[0], self.data.columns)
            warnings.warn(f"Missing required columns: {', '.join(map(str, missing))}")
            return False
        return True

    def has_column(self, column: Optional[str]) -> bool:
        return column is not None and column in self.data.columns

    def column(self, name: str) -> pd.Series:
        """
        Look up a column by name.

        Raises:
            FieldNotFound: If the column does not exist
        """
        if name not in self.data.columns:
            raise FieldNotFound(name, self.data.columns)
        return self.data[name]

    def set_variable(
        self,
        name: str,
        values: Union[np.ndarray, pd.Series, List, float],
        units: str = "dimensionless",
        category: str = "calculated"
    ) -> None:
        """
        Add or update a variable in the ExtendedDataFrame.

        Args:
            name: Column name
            values: Values to set
            units: Units for the variable
            category: Category/source for the variable
        """
        self.data[name] = values
        self.units[name] = units
        self.categories[name] = category

    def subset_rows(self, indices: Union[pd.Index, pd.Series, np.ndarray, List]) -> 'ExtendedDataFrame':
        """
        Create a subset of the ExtendedDataFrame with specified rows.

        Args:
            indices: Row labels or boolean mask

        Returns:
            New ExtendedDataFrame with subset of rows, renumbered from zero
        """
        return ExtendedDataFrame(
            data=self.data.loc[indices].reset_index(drop=True),
            units=deepcopy(self.units),
            categories=deepcopy(self.categories)
        )

    def drop_missing(self, columns: List[str]) -> 'ExtendedDataFrame':
        """Return a copy without the rows that have a missing value in any of `columns`."""
        keep = self.data[columns].notna().all(axis=1)
        return self.subset_rows(keep)

    def split_by(self, column: str) -> Dict[Hashable, 'ExtendedDataFrame']:
        """
        Partition the rows into one ExtendedDataFrame per distinct value of `column`.

        Groups are returned in order of first appearance. For a categorical
        column every category is part of the partition, so a category without
        rows is reported as an empty group. Rows with a missing group value
        are dropped with a warning.

        Raises:
            InvalidGroupKey: If `column` is not in the data
            EmptyGroup: If any group of the partition has zero rows
        """
        if column not in self.data.columns:
            raise InvalidGroupKey(column, self.data.columns)

        values = self.data[column]

        if isinstance(values.dtype, pd.CategoricalDtype):
            counts = values.value_counts()
            empty = [level for level in values.cat.categories if counts.get(level, 0) == 0]
            if empty:
                raise EmptyGroup(empty)

        missing = values.isna()
        if missing.any():
            warnings.warn(
                f"Dropping {int(missing.sum())} rows with a missing '{column}' value"
            )

        groups = {}
        for key in pd.unique(values[~missing]):
            mask = (values == key).to_numpy()
            if isinstance(key, np.generic):
                key = key.item()
            groups[key] = self.subset_rows(mask)

        return groups

    def __repr__(self) -> str:
        """String representation of ExtendedDataFrame."""
        n_rows, n_cols = self.data.shape
        cols_with_units = [
            f"{col} [{self.units.get(col, '?')}]"
            for col in self.data.columns[:5]
        ]
        if n_cols > 5:
            cols_with_units.append("...")

        return (
            f"ExtendedDataFrame with {n_rows} rows and {n_cols} columns:\n"
            f"Columns: {', '.join(cols_with_units)}"
        )

    def __len__(self) -> int:
        """Return number of rows."""
        return len(self.data)

    def __getitem__(self, key: str) -> pd.Series:
        """Allow direct column access like a DataFrame."""
        return self.column(key)


def as_extended(data: Union[pd.DataFrame, ExtendedDataFrame, Dict]) -> ExtendedDataFrame:
    """Wrap a DataFrame (or dict of columns) in an ExtendedDataFrame if needed."""
    if isinstance(data, ExtendedDataFrame):
        return data
    return ExtendedDataFrame(data)
