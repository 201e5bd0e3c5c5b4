"""
Backend boundary: factories, sources and services.

A `Factory` is registered under a driver-type name and creates the
`Source` (connection holder) and `Service` (verb executor) an API is bound
to. Concrete factories register themselves with the decorator:

    @register_factory('sqlite')
    class SQLiteFactory(EngineFactory):
        ...

Factories shipped by other distributions are discovered through the
`sqlapi.factories` entry-point group the first time a factory is looked up.
"""
import logging
import threading
from abc import ABC, abstractmethod
from functools import lru_cache
from importlib.metadata import entry_points
from typing import TYPE_CHECKING, Any, Self

from sqlapi.exceptions import ConfigurationError

if TYPE_CHECKING:
    from sqlapi.extractors import Extractor
    from sqlapi.options import DatabaseOptions

__all__ = [
    'Factory',
    'Source',
    'Service',
    'register_factory',
    'deregister_factory',
    'get_factory',
    'get_factory_class',
    'get_available_factories',
    'is_supported_driver',
    'ENTRY_POINT_GROUP',
]

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = 'sqlapi.factories'

# Registry of driver type -> factory class
_FACTORY_REGISTRY: dict[str, type['Factory']] = {}
_FACTORY_LOCK = threading.RLock()
_factories_loaded = False


def register_factory(driver_type: str):
    """Decorator to register a factory class for a driver type.

    Usage:
        @register_factory('postgresql')
        class PostgresFactory(EngineFactory):
            ...
    """
    def decorator(cls: type['Factory']) -> type['Factory']:
        with _FACTORY_LOCK:
            _FACTORY_REGISTRY[driver_type.lower()] = cls
            _get_factory.cache_clear()
        cls.driver_type = driver_type.lower()
        return cls
    return decorator


def deregister_factory(driver_type: str) -> None:
    """Remove a factory from the registry. Unknown names are ignored.
    """
    if driver_type is None:
        return
    with _FACTORY_LOCK:
        _FACTORY_REGISTRY.pop(driver_type.lower(), None)
        _get_factory.cache_clear()


def _ensure_factories_loaded() -> None:
    """Import factories advertised through entry points, once.
    """
    global _factories_loaded
    if _factories_loaded:
        return
    with _FACTORY_LOCK:
        if _factories_loaded:
            return
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                loaded = ep.load()
            except Exception as e:
                logger.warning(f'Could not load factory entry point {ep.name}: {e}')
                continue
            if isinstance(loaded, type) and issubclass(loaded, Factory) \
                    and ep.name.lower() not in _FACTORY_REGISTRY:
                register_factory(ep.name)(loaded)
            logger.debug(f'Loaded factory entry point {ep.name}')
        _factories_loaded = True


def _validate_driver(driver_type: str) -> str:
    """Raise ConfigurationError if driver type is not registered."""
    if driver_type is None:
        raise ValueError('driver_type cannot be None')
    _ensure_factories_loaded()
    key = driver_type.lower()
    if key not in _FACTORY_REGISTRY:
        available = list(_FACTORY_REGISTRY.keys())
        raise ConfigurationError(f'No suitable factory found for {driver_type}. Available: {available}')
    return key


@lru_cache(maxsize=8)
def _get_factory(driver_type: str) -> 'Factory':
    """Get cached factory instance for a driver type."""
    return _FACTORY_REGISTRY[driver_type]()


def get_factory(driver_type: str) -> 'Factory':
    """Get the factory registered for a driver type (case-insensitive).
    """
    return _get_factory(_validate_driver(driver_type))


def get_factory_class(driver_type: str) -> type['Factory']:
    """Get the factory class for a driver type without instantiating."""
    return _FACTORY_REGISTRY[_validate_driver(driver_type)]


def get_available_factories() -> list[str]:
    """Return list of registered driver types."""
    _ensure_factories_loaded()
    return list(_FACTORY_REGISTRY.keys())


def is_supported_driver(driver_type: str) -> bool:
    """Check if a driver type is registered."""
    if not driver_type:
        return False
    _ensure_factories_loaded()
    return driver_type.lower() in _FACTORY_REGISTRY


class Factory(ABC):
    """Creates Sources and Services for one driver type.
    """

    driver_type: str = ''
    version: str = '1.0'

    @abstractmethod
    def get_source(self, options: 'DatabaseOptions') -> 'Source':
        """Create a Source for the given options."""

    @abstractmethod
    def get_service(self, source: 'Source') -> 'Service':
        """Create a Service executing statements through `source`."""

    @property
    def major_version(self) -> int:
        parts = self.version.split('.')
        return int(parts[0]) if parts[0].isdigit() else 1

    @property
    def minor_version(self) -> int:
        parts = self.version.split('.')
        return int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return option fields that must be set for this driver."""
        return []

    @classmethod
    def validate_options(cls, options: 'DatabaseOptions') -> None:
        """Validate options for this driver.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}(driver_type={self.driver_type!r}, version={self.version!r})'


class Source(ABC):
    """Single-owner connection holder.

    The connection is established lazily on first use. Call counts and
    elapsed statement time are tracked like a connection wrapper would.
    """

    def __init__(self, options: 'DatabaseOptions | None' = None) -> None:
        self.options = options
        self.calls = 0
        self.time = 0.0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        try:
            self.close()
        except Exception as e:
            logger.debug(f'Error closing source in __exit__: {e}')

    @property
    @abstractmethod
    def connection(self) -> Any:
        """Return the DB-API connection, connecting if needed."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether a connection has been established."""

    @abstractmethod
    def execute(self, sql: str) -> Any:
        """Execute a statement and return its DB-API cursor."""

    @abstractmethod
    def close(self) -> None:
        """Release the connection."""

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1


class Service(ABC):
    """Executes one statement per verb against a Source.
    """

    def __init__(self, source: Source) -> None:
        if source is None:
            raise ValueError('source cannot be None')
        self.source = source
        self.api: type | None = None

    @abstractmethod
    def select(self, sql: str, extractor: 'Extractor') -> Any:
        """Run a query and convert its result with `extractor`."""

    @abstractmethod
    def insert(self, sql: str) -> bool:
        ...

    @abstractmethod
    def update(self, sql: str) -> bool:
        ...

    @abstractmethod
    def delete(self, sql: str) -> bool:
        ...

    @abstractmethod
    def create(self, sql: str) -> bool:
        ...

    @abstractmethod
    def drop(self, sql: str) -> bool:
        ...

    @abstractmethod
    def raw(self, sql: str) -> Any:
        """Run any statement and return its rows or affected row count."""
