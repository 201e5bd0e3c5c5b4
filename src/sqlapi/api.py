"""
Entry point binding a declared API class to a backend.
"""
import logging
from dataclasses import fields
from typing import Any, TypeVar

from sqlapi.annotations import get_driver_type
from sqlapi.builder import build_validator
from sqlapi.dispatcher import Dispatcher, get_dispatcher, implement
from sqlapi.exceptions import ConfigurationError
from sqlapi.extractors import ExtractorRegistry
from sqlapi.factory import Source, get_factory
from sqlapi.options import DatabaseOptions

from libb import load_options

__all__ = ['connect', 'close']

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _load_options(driver_type: str, options: Any, config: Any, **kw: Any) -> DatabaseOptions:
    if isinstance(options, DatabaseOptions):
        for field in fields(options):
            kw.pop(field.name, None)
        return options
    if options is None or isinstance(options, dict):
        options = {'drivername': driver_type, **(options or {})}
    options_func = load_options(cls=DatabaseOptions)(lambda o, c: o)
    return options_func(options, config, **kw)


def connect(api: type[T], options: DatabaseOptions | Source | dict[str, Any] | str | None = None,
            config: Any | None = None, registry: ExtractorRegistry | None = None,
            **kw: Any) -> T:
    """Bind an `@sql` API class to its backend and return an instance.

    Args:
        api: Class decorated with `@sql(driver_type)`
        options: Can be:
                - DatabaseOptions object
                - an already constructed Source for the same driver
                - String path to configuration
                - Dictionary of options
                - None, with options specified as keyword arguments
        config: Configuration object (for loading from config files)
        registry: Extractor registry, defaults to the process-wide one
        **kw: Additional keyword arguments to override options

    Returns
        Instance of a generated subclass of `api` whose declared methods
        execute their statements

    Raises
        ConfigurationError: If `api` is not a declared API class, no
        factory is registered for its driver type, or its validator
        cannot be constructed
    """
    if not isinstance(api, type):
        raise ConfigurationError(f'{api!r} is not a class')
    driver_type = get_driver_type(api)
    if not driver_type:
        raise ConfigurationError(f'{api.__name__} is missing its @sql driver declaration')

    factory = get_factory(driver_type)

    if isinstance(options, Source):
        source = options
        source_driver = getattr(source, 'driver_type', None)
        if source_driver and source_driver.lower() != factory.driver_type:
            raise ConfigurationError(
                f'{api.__name__} expects driver {factory.driver_type!r}, source is {source_driver!r}')
    else:
        options = _load_options(driver_type, options, config, **kw)
        if options.drivername != factory.driver_type:
            raise ConfigurationError(
                f'{api.__name__} expects driver {factory.driver_type!r}, options name {options.drivername!r}')
        source = factory.get_source(options)

    service = factory.get_service(source)
    service.api = api
    validator = build_validator(api)

    dispatcher = Dispatcher(api, service, validator, registry)
    logger.debug(f'Created {api.__name__} on {factory!r} with {len(dispatcher.methods)} SQL methods')
    return implement(api, dispatcher)


def close(instance: Any) -> None:
    """Close the backend connection behind an instance returned by `connect`.
    """
    get_dispatcher(instance).close()
