"""
Process-wide named-template table.

A verb decorator whose statement is the `ENV` sentinel does not carry its
own SQL; the statement is looked up here under the decorator's `property`
when the method is first bound:

    setup_environment({'users.all': 'select * from {table}'})

    @select(ENV, property='users.all')
    def fetch_all(self, table: str) -> list[User]: ...
"""
import logging
import threading
from collections.abc import Mapping

from sqlapi.exceptions import ConfigurationError

__all__ = [
    'ENV',
    'is_defined',
    'setup_environment',
    'get_property',
    'clear',
]

logger = logging.getLogger(__name__)

ENV = '$sql:env'

_properties: dict[str, str] | None = None
_lock = threading.RLock()


def is_defined(value: str | None) -> bool:
    """Check if a statement value is the environment sentinel."""
    return value is not None and value == ENV


def setup_environment(properties: Mapping[str, str]) -> None:
    """Install the named-template table, replacing any previous one.
    """
    global _properties
    if properties is None:
        raise ValueError('properties cannot be None')
    with _lock:
        _properties = {str(k): str(v) for k, v in properties.items()}
        logger.debug(f'Installed {len(_properties)} named templates')


def get_property(name: str) -> str:
    """Return the template registered under `name`.

    Raises ConfigurationError if no table is installed or the name is unknown.
    """
    if name is None:
        raise ValueError('name cannot be None')
    properties = _properties
    if properties is None:
        raise ConfigurationError(f'No template environment defined (looking up {name!r})')
    if name not in properties:
        raise ConfigurationError(f'Template {name!r} not found in environment')
    return properties[name]


def clear() -> None:
    """Remove the named-template table.
    """
    global _properties
    with _lock:
        _properties = None
