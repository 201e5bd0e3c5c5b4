from dataclasses import dataclass

from sqlapi.factory import get_available_factories, get_factory_class
from sqlapi.factory import is_supported_driver

from libb import ConfigOptions, scriptname

__all__ = ['DatabaseOptions']


@dataclass
class DatabaseOptions(ConfigOptions):
    """Options

    supported driver names: `sqlite`, `postgresql` and any factory
    registered through the `sqlapi.factories` entry-point group.

    Connection options:
    - check_connection: Retry connecting on transient connection errors (default: True)
    - max_retries: Connect attempts before giving up (default: 3)

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)
    """
    drivername: str = 'sqlite'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    check_connection: bool = True
    max_retries: int = 3
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_driver(self.drivername):
            available = get_available_factories()
            raise ValueError(f'drivername must be one of: {available}')
        self.drivername = self.drivername.lower()
        self.appname = self.appname or scriptname() or 'python_console'
        factory_cls = get_factory_class(self.drivername)
        factory_cls.validate_options(self)
