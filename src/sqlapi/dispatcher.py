"""
Per-instance dispatch from declared API methods to built Bindings.

`implement(api, dispatcher)` generates a concrete subclass of the API class
once per API type. Every declared SQL method on it forwards to
`Dispatcher.invoke`, which builds the method's Binding on first use and
reuses it afterwards.
"""
import inspect
import logging
from collections.abc import Callable
from functools import lru_cache, wraps
from typing import Any

from sqlapi.annotations import get_declaration
from sqlapi.binding import Binding
from sqlapi.builder import BindingBuilder
from sqlapi.exceptions import ArityError, ConfigurationError
from sqlapi.extractors import ExtractorRegistry

__all__ = [
    'Dispatcher',
    'declared_methods',
    'implement',
    'get_dispatcher',
]

logger = logging.getLogger(__name__)

_DISPATCHER_ATTR = '_sqlapi_dispatcher'

# Answered by the dispatcher itself, never routed to a Binding
OBJECT_METHODS = frozenset({'__repr__', '__str__', '__eq__', '__ne__', '__hash__'})


def declared_methods(api: type) -> dict[str, Callable]:
    """Collect the functions of `api` (and its bases) carrying a verb declaration.
    """
    methods: dict[str, Callable] = {}
    for name in dir(api):
        attr = inspect.getattr_static(api, name)
        if isinstance(attr, staticmethod | classmethod):
            continue
        if callable(attr) and get_declaration(attr) is not None:
            methods[name] = attr
    return methods


class Dispatcher:
    """Routes calls on one API instance to cached Bindings.

    A cache miss builds the Binding and stores it with `setdefault`, so
    threads racing on the same method converge on one stored Binding.
    """

    def __init__(self, api: type, service: Any, validator: Any = None,
                 registry: ExtractorRegistry | None = None) -> None:
        self.api = api
        self.service = service
        self.validator = validator
        self.builder = BindingBuilder(service, validator, registry)
        self.methods = declared_methods(api)
        self._bindings: dict[str, Binding] = {}

    def __repr__(self) -> str:
        return f'Dispatcher({self.api.__name__}, bound={sorted(self._bindings)})'

    @property
    def bindings(self) -> dict[str, Binding]:
        """Snapshot of the Bindings built so far."""
        return dict(self._bindings)

    def binding(self, name: str) -> Binding:
        """Return the Binding for method `name`, building it on first use.
        """
        binding = self._bindings.get(name)
        if binding is not None:
            return binding
        func = self.methods.get(name)
        if func is None:
            raise ConfigurationError(f'{self.api.__name__} declares no SQL method {name!r}')
        binding = self.builder.build(func, f'{self.api.__name__}.{name}')
        return self._bindings.setdefault(name, binding)

    def _bind_arguments(self, name: str, args: tuple, kwargs: dict) -> tuple:
        """Order keyword arguments by the declared signature."""
        func = self.methods[name]
        try:
            bound = inspect.signature(func).bind(None, *args, **kwargs)
        except TypeError as e:
            raise ArityError(f'{self.api.__name__}.{name}(): {e}') from e
        return tuple(bound.args[1:])

    def _invoke_local(self, instance: Any, name: str, args: tuple) -> Any:
        match name:
            case '__repr__' | '__str__':
                driver = getattr(getattr(self.service, 'source', None), 'driver_type', None)
                return f'<{self.api.__name__} driver={driver!r} bound={len(self._bindings)}>'
            case '__eq__':
                return instance is args[0]
            case '__ne__':
                return instance is not args[0]
            case '__hash__':
                return id(instance) >> 4

    def invoke(self, instance: Any, name: str, args: tuple = (), kwargs: dict | None = None) -> Any:
        """Execute method `name` with the call arguments.

        Errors from building, rendering, validating, executing or extracting
        propagate unchanged.
        """
        if name in OBJECT_METHODS:
            return self._invoke_local(instance, name, args)
        binding = self.binding(name)
        if kwargs:
            args = self._bind_arguments(name, args, kwargs)
        return binding.execute(tuple(args))

    def close(self) -> None:
        """Release the backend connection."""
        source = getattr(self.service, 'source', None)
        if source is not None:
            source.close()


def _forwarder(name: str, func: Callable) -> Callable:
    @wraps(func)
    def method(self, *args: Any, **kwargs: Any) -> Any:
        return getattr(self, _DISPATCHER_ATTR).invoke(self, name, args, kwargs)
    return method


def _local(name: str) -> Callable:
    def method(self, *args: Any) -> Any:
        return getattr(self, _DISPATCHER_ATTR).invoke(self, name, args)
    method.__name__ = name
    return method


@lru_cache(maxsize=None)
def implementation_class(api: type) -> type:
    """Generate the concrete subclass of `api` whose SQL methods dispatch.
    """
    namespace: dict[str, Any] = {
        '__module__': api.__module__,
        '__qualname__': f'{api.__qualname__}Impl',
        '__doc__': api.__doc__,
    }
    for name, func in declared_methods(api).items():
        namespace[name] = _forwarder(name, func)
    for name in OBJECT_METHODS:
        namespace[name] = _local(name)
    cls = type(api)(f'{api.__name__}Impl', (api,), namespace)
    logger.debug(f'Generated implementation {cls.__name__} with {len(namespace) - 3} methods')
    return cls


def implement(api: type, dispatcher: Dispatcher) -> Any:
    """Create an instance of the generated implementation bound to `dispatcher`.
    """
    cls = implementation_class(api)
    instance = object.__new__(cls)
    object.__setattr__(instance, _DISPATCHER_ATTR, dispatcher)
    return instance


def get_dispatcher(instance: Any) -> Dispatcher:
    """Return the Dispatcher behind an instance returned by `sqlapi.connect`."""
    try:
        return object.__getattribute__(instance, _DISPATCHER_ATTR)
    except AttributeError as e:
        raise TypeError(f'{instance!r} is not a sqlapi implementation') from e
