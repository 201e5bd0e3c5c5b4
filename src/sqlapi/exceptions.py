"""
Exception classes for API binding, statement rendering and result extraction.
"""
import sqlite3

import psycopg
import sqlalchemy as sa


class SqlApiError(Exception):
    """Base class for all sqlapi errors.
    """


class ConfigurationError(SqlApiError):
    """Malformed or incomplete method, parameter, entity or backend metadata.
    """


class ArityError(SqlApiError):
    """Call-time argument count does not match the declared parameters.
    """


class TemplateError(SqlApiError):
    """Statement template cannot be materialized from the call arguments.
    """


class ValidationRejected(SqlApiError):
    """The bound validator refused the materialized statement.
    """

    def __init__(self, statement: str) -> None:
        super().__init__(f'Could not verify SQL statement: {statement}')
        self.statement = statement


class ExtractionError(SqlApiError):
    """Error converting a raw result into the declared type.
    """


BackendError = (
    sqlite3.Error,
    psycopg.Error,
    sa.exc.SQLAlchemyError,
    )

DbConnectionError = (
    psycopg.OperationalError,
    psycopg.InterfaceError,
    sqlite3.OperationalError,
    sqlite3.InterfaceError,
    sa.exc.OperationalError,
    )
