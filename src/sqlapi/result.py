"""
Forward-only result wrapper over a DB-API cursor.

This module provides:
- Column: column metadata from cursor descriptions
- ResultSet: row cursor with typed column accessors
- Typed accessors: convert raw driver values to declared Python types
"""
import datetime
import logging
from collections.abc import Callable, Iterator
from decimal import Decimal, InvalidOperation
from typing import Any, Self

import dateutil.parser
from sqlapi.exceptions import ExtractionError

__all__ = [
    'Column',
    'ResultSet',
    'ACCESSORS',
    'convert_column_value',
]

logger = logging.getLogger(__name__)

TRUE_STRINGS: set[str] = {'1', 't', 'true', 'y', 'yes', 'on'}


# Typed accessors - raw driver value -> declared Python type

def _text(val: Any) -> str:
    if isinstance(val, bytes | bytearray | memoryview):
        return bytes(val).decode()
    return str(val)


def _to_bool(val: Any) -> bool:
    if isinstance(val, str | bytes):
        return _text(val).strip().lower() in TRUE_STRINGS
    return bool(val)


def _to_bytes(val: Any) -> bytes:
    if isinstance(val, str):
        return val.encode()
    return bytes(val)


def _to_decimal(val: Any) -> Decimal:
    if isinstance(val, Decimal):
        return val
    try:
        return Decimal(_text(val))
    except InvalidOperation as e:
        raise ValueError(f'invalid decimal {val!r}') from e


def _to_date(val: Any) -> datetime.date:
    """Convert ISO 8601 date values to date objects."""
    if isinstance(val, datetime.datetime):
        return val.date()
    if isinstance(val, datetime.date):
        return val
    return dateutil.parser.isoparse(_text(val)).date()


def _to_datetime(val: Any) -> datetime.datetime:
    """Convert ISO 8601 datetime values to datetime objects."""
    if isinstance(val, datetime.datetime):
        return val
    if isinstance(val, datetime.date):
        return datetime.datetime.combine(val, datetime.time())
    return dateutil.parser.isoparse(_text(val))


def _to_time(val: Any) -> datetime.time:
    if isinstance(val, datetime.time):
        return val
    if isinstance(val, datetime.datetime):
        return val.time()
    return datetime.time.fromisoformat(_text(val))


ACCESSORS: dict[type, Callable[[Any], Any]] = {
    int: int,
    float: float,
    str: _text,
    bool: _to_bool,
    bytes: _to_bytes,
    Decimal: _to_decimal,
    datetime.date: _to_date,
    datetime.datetime: _to_datetime,
    datetime.time: _to_time,
}


def convert_column_value(value: Any, python_type: Any, column: str = '') -> Any:
    """Convert a raw column value to `python_type`.

    NULL stays None; types without an accessor are returned unchanged.
    """
    if value is None:
        return None
    accessor = ACCESSORS.get(python_type)
    if accessor is None or type(value) is python_type:
        return value
    try:
        return accessor(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ExtractionError(
            f'Cannot read column {column!r} value {value!r} as {python_type.__name__}') from e


# Column - Metadata from cursor descriptions

class Column:
    """Result column metadata."""

    def __init__(self, name: str, type_code: Any = None,
                 display_size: int | None = None,
                 internal_size: int | None = None,
                 precision: int | None = None,
                 scale: int | None = None,
                 nullable: bool | None = None):
        self.name = name
        self.type_code = type_code
        self.display_size = display_size
        self.internal_size = internal_size
        self.precision = precision
        self.scale = scale
        self.nullable = nullable

    @classmethod
    def from_description(cls, item: Any) -> Self:
        """Create a Column from one cursor description item."""
        if hasattr(item, 'name') and hasattr(item, 'type_code'):
            return cls(item.name, item.type_code,
                       getattr(item, 'display_size', None),
                       getattr(item, 'internal_size', None),
                       getattr(item, 'precision', None),
                       getattr(item, 'scale', None))
        values = list(item) + [None] * (7 - len(item))
        nullable = values[6]
        return cls(values[0], values[1], values[2], values[3], values[4], values[5],
                   None if nullable is None else bool(nullable))

    def __repr__(self) -> str:
        return f'Column(name={self.name!r}, type_code={self.type_code!r})'

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'type_code': self.type_code,
            'display_size': self.display_size,
            'internal_size': self.internal_size,
            'precision': self.precision,
            'scale': self.scale,
            'nullable': self.nullable,
        }

    @staticmethod
    def get_names(columns: list[Self]) -> list[str]:
        return [col.name for col in columns]

    @staticmethod
    def get_column_types_dict(columns: list[Self]) -> dict[str, dict]:
        return {col.name: col.to_dict() for col in columns}


def columns_from_cursor_description(cursor: Any) -> list[Column]:
    """Create Column objects from cursor description."""
    if cursor.description is None:
        return []
    return [Column.from_description(desc) for desc in cursor.description]


# ResultSet

class ResultSet:
    """Forward-only view of a cursor's rows.

    The set starts before the first row; `next()` advances and reports
    whether a row is available.
    """

    def __init__(self, cursor: Any) -> None:
        self.cursor = cursor
        self.columns = columns_from_cursor_description(cursor)
        self.column_names = Column.get_names(self.columns)
        self.row: dict[str, Any] | None = None
        self.rownumber = 0
        self.closed = False

    def __repr__(self) -> str:
        state = 'closed' if self.closed else f'row {self.rownumber}'
        return f'ResultSet(columns={self.column_names!r}, {state})'

    def __iter__(self) -> Iterator[dict[str, Any]]:
        while self.next():
            yield self.row

    def _check_open(self) -> None:
        if self.closed:
            raise ExtractionError('ResultSet was closed')

    def _as_dict(self, row: Any) -> dict[str, Any]:
        if isinstance(row, dict):
            return row
        if hasattr(row, 'keys') and callable(row.keys):
            return {key: row[key] for key in row.keys()}  # noqa: SIM118
        return dict(zip(self.column_names, row))

    def next(self) -> bool:
        """Advance to the next row."""
        self._check_open()
        raw = self.cursor.fetchone() if self.columns else None
        if raw is None:
            self.row = None
            return False
        self.row = self._as_dict(raw)
        self.rownumber += 1
        return True

    def get(self, column: str, python_type: Any = None) -> Any:
        """Read `column` of the current row, converted to `python_type`."""
        self._check_open()
        if self.row is None:
            raise ExtractionError(f'No current row to read column {column!r} from')
        if column not in self.row:
            raise ExtractionError(f'Column {column!r} not in result {self.column_names!r}')
        return convert_column_value(self.row[column], python_type, column)

    def fetch_remaining(self) -> list[dict[str, Any]]:
        """Return the rows after the current one as dictionaries."""
        self._check_open()
        if not self.columns:
            return []
        rows = [self._as_dict(r) for r in self.cursor.fetchall()]
        self.rownumber += len(rows)
        self.row = rows[-1] if rows else None
        return rows

    def close(self) -> None:
        if self.closed:
            return
        try:
            self.cursor.close()
        except Exception as e:
            logger.debug(f'Error closing cursor: {e}')
        self.closed = True
