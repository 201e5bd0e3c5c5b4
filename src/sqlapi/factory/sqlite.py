"""
SQLite backend.

Connections run in autocommit mode with foreign keys enforced. Declared
`date` and `datetime` columns are parsed into Python values.
"""
import datetime
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import dateutil.parser
import sqlalchemy as sa
from sqlapi.factory.base import register_factory
from sqlapi.factory.engine import EngineFactory

if TYPE_CHECKING:
    from sqlapi.options import DatabaseOptions

logger = logging.getLogger(__name__)


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


@register_factory('sqlite')
class SQLiteFactory(EngineFactory):
    """SQLite through the standard library driver.
    """

    version = f'{sqlite3.sqlite_version_info[0]}.{sqlite3.sqlite_version_info[1]}'

    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            }
        }

    def configure_connection(self, raw_conn: Any) -> None:
        """Enable foreign keys and autocommit, register date converters.
        """
        raw_conn.execute('PRAGMA foreign_keys = ON')
        raw_conn.isolation_level = None
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)
        logger.debug('Configured SQLite connection')

    @classmethod
    def get_required_options(cls) -> list[str]:
        return ['database']
