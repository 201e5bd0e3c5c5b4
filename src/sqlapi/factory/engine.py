"""
SQLAlchemy-backed factory, source and service.

This module provides:
1. A thread-safe engine registry keyed by connection options
2. The `check_connection` retry decorator for establishing connections
3. `EngineSource`, a lazily connected holder of one DB-API connection
4. `EngineService`, which runs materialized statements per verb

Statements arrive fully rendered, so they are executed on the raw DB-API
cursor without parameters.
"""
import atexit
import logging
import threading
import time
from abc import abstractmethod
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlapi.context import ExtractionContext
from sqlapi.exceptions import DbConnectionError
from sqlapi.factory.base import Factory, Service, Source
from sqlapi.result import ResultSet

from libb import attrdict

if TYPE_CHECKING:
    from sqlapi.extractors import Extractor
    from sqlapi.options import DatabaseOptions

__all__ = [
    'EngineFactory',
    'EngineSource',
    'EngineService',
    'check_connection',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DbConnectionError

            tries = 0
            delay = retry_delay
            while tries < max_retries:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    tries += 1
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def get_engine_for_options(options: 'DatabaseOptions', url: sa.URL,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.
    """
    key = f'{url.render_as_string(hide_password=False)}_{options.use_pool}_' \
          f'{options.pool_max_connections}_{options.pool_max_idle_time}_{options.pool_wait_timeout}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        engine_kwargs: dict[str, Any] = {'echo': False}
        if not options.use_pool:
            engine_kwargs['poolclass'] = NullPool
        else:
            engine_kwargs['pool_size'] = options.pool_max_connections
            engine_kwargs['pool_recycle'] = options.pool_max_idle_time
            engine_kwargs['pool_timeout'] = options.pool_wait_timeout
            engine_kwargs['max_overflow'] = 10
            engine_kwargs['pool_pre_ping'] = True
            engine_kwargs['pool_reset_on_return'] = 'rollback'
        engine_kwargs.update(kwargs)

        engine = engine_factory(url, **engine_kwargs)
        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')
        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in list(_engine_registry.values()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def get_raw_connection(connection: Any) -> Any:
    """Extract the driver connection from a SQLAlchemy pool proxy."""
    raw_conn = getattr(connection, 'driver_connection', None)
    if raw_conn is None:
        raw_conn = getattr(connection, 'dbapi_connection', connection)
    return raw_conn


def dumpsql(func):
    """Decorator for logging and timing executed statements."""
    @wraps(func)
    def wrapper(self, sql: str, *args: Any, **kwargs: Any):
        start = time.time()
        logger.debug(f'SQL:\n{sql}')
        try:
            return func(self, sql, *args, **kwargs)
        except Exception:
            logger.error(f'Error with query:\nSQL:\n{sql}')
            raise
        finally:
            elapsed = time.time() - start
            self.addcall(elapsed)
            logger.debug(f'Query time: {elapsed:.4f}s')
    return wrapper


class EngineFactory(Factory):
    """Base factory for drivers reached through a SQLAlchemy engine.

    Subclasses describe the URL and per-connection setup of their driver.
    """

    @abstractmethod
    def build_connection_url(self, options: 'DatabaseOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL."""

    def get_engine_kwargs(self, options: 'DatabaseOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs."""
        return {}

    @abstractmethod
    def configure_connection(self, raw_conn: Any) -> None:
        """Apply driver settings to a new DB-API connection."""

    def get_engine(self, options: 'DatabaseOptions') -> Engine:
        url = self.build_connection_url(options)
        return get_engine_for_options(options, url, **self.get_engine_kwargs(options))

    def get_source(self, options: 'DatabaseOptions') -> 'EngineSource':
        self.validate_options(options)
        return EngineSource(self, options)

    def get_service(self, source: Source) -> 'EngineService':
        return EngineService(source)


class EngineSource(Source):
    """Holds one SQLAlchemy connection, opened on first use.
    """

    def __init__(self, factory: EngineFactory, options: 'DatabaseOptions') -> None:
        super().__init__(options)
        self.factory = factory
        self.sa_connection: sa.engine.Connection | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f'EngineSource(driver={self.factory.driver_type!r}, connected={self.is_connected})'

    @property
    def driver_type(self) -> str:
        return self.factory.driver_type

    @property
    def is_connected(self) -> bool:
        return self.sa_connection is not None and not self.sa_connection.closed

    def _connect(self) -> sa.engine.Connection:
        engine = self.factory.get_engine(self.options)
        sa_connection = engine.connect()
        try:
            self.factory.configure_connection(get_raw_connection(sa_connection.connection))
        except Exception:
            sa_connection.close()
            raise
        logger.debug(f'Opened {self.driver_type} connection')
        return sa_connection

    @property
    def connection(self) -> Any:
        with self._lock:
            if not self.is_connected:
                if self.options.check_connection:
                    connect = check_connection(self._connect, max_retries=self.options.max_retries)
                else:
                    connect = self._connect
                self.sa_connection = connect()
            return get_raw_connection(self.sa_connection.connection)

    @dumpsql
    def execute(self, sql: str) -> Any:
        """Execute a materialized statement and return the DB-API cursor.
        """
        cursor = self.connection.cursor()
        try:
            cursor.execute(sql)
        except Exception:
            cursor.close()
            raise
        return cursor

    def close(self) -> None:
        with self._lock:
            if self.is_connected:
                self.sa_connection.close()
                logger.debug(f'Connection closed: {self.calls} queries in {self.time:.2f}s '
                             f'(avg: {self.time/max(1, self.calls):.3f}s per query)')
            self.sa_connection = None


class EngineService(Service):
    """Runs statements per verb through a Source's DB-API cursor.

    Non-select verbs report success as True; backend failures propagate.
    """

    def _run(self, sql: str) -> bool:
        cursor = self.source.execute(sql)
        logger.debug(f'{cursor.rowcount} row(s) affected')
        cursor.close()
        return True

    def select(self, sql: str, extractor: 'Extractor') -> Any:
        result = ResultSet(self.source.execute(sql))
        context = ExtractionContext(source=self.source, api=self.api)
        value = None
        try:
            value = extractor.read(result, context)
            return value
        finally:
            if value is not result:
                result.close()

    def insert(self, sql: str) -> bool:
        return self._run(sql)

    def update(self, sql: str) -> bool:
        return self._run(sql)

    def delete(self, sql: str) -> bool:
        return self._run(sql)

    def create(self, sql: str) -> bool:
        return self._run(sql)

    def drop(self, sql: str) -> bool:
        return self._run(sql)

    def raw(self, sql: str) -> list[attrdict] | int:
        """Execute any statement.

        Returns
            List of attrdict rows when the statement produces rows,
            otherwise the affected row count
        """
        cursor = self.source.execute(sql)
        try:
            if cursor.description is None:
                return cursor.rowcount
            names = [d[0] for d in cursor.description]
            return [attrdict(zip(names, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()
