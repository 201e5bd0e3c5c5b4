"""
Whole-result extractors for pandas and pyarrow return types.

A method declared `-> pd.DataFrame` or `-> pa.Table` receives every row of
the result. Column metadata is kept in `DataFrame.attrs['column_types']`.
"""
from typing import Any

import pandas as pd
import pyarrow as pa
from sqlapi.context import ExtractionContext
from sqlapi.extractors import Extractor, is_class
from sqlapi.result import Column, ResultSet

__all__ = [
    'DataFrameExtractor',
    'ArrowTableExtractor',
]


def _empty_dataframe(columns: list[Column]) -> pd.DataFrame:
    """Create empty DataFrame with column metadata."""
    df = pd.DataFrame(columns=Column.get_names(columns))
    df.attrs['column_types'] = Column.get_column_types_dict(columns)
    return df


class DataFrameExtractor(Extractor):
    """Loads all remaining rows into a pandas DataFrame.

    Always returns a DataFrame, never None, with columns preserved for empty results.
    """

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        return is_class(tp) and issubclass(tp, pd.DataFrame)

    def read(self, result: ResultSet, context: ExtractionContext) -> pd.DataFrame:
        rows = result.fetch_remaining()
        if not rows:
            return _empty_dataframe(result.columns)

        df = pd.DataFrame.from_records(rows, columns=result.column_names)
        df.attrs['column_types'] = Column.get_column_types_dict(result.columns)
        return df


class ArrowTableExtractor(Extractor):
    """Loads all remaining rows into a pyarrow Table.
    """

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        return is_class(tp) and issubclass(tp, pa.Table)

    def read(self, result: ResultSet, context: ExtractionContext) -> pa.Table:
        rows = result.fetch_remaining()
        names = result.column_names
        columns_data = [[row[col] for row in rows] for col in names]
        return pa.table(columns_data, names=names)
