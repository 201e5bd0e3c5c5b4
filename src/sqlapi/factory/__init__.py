"""
Backend factories.

Importing this package registers the built-in `sqlite` and `postgresql`
factories.
"""
from sqlapi.factory.base import ENTRY_POINT_GROUP, Factory, Service, Source
from sqlapi.factory.base import deregister_factory, get_available_factories
from sqlapi.factory.base import get_factory, get_factory_class
from sqlapi.factory.base import is_supported_driver, register_factory
from sqlapi.factory.engine import EngineFactory, EngineService, EngineSource
from sqlapi.factory.engine import check_connection, dispose_all_engines
from sqlapi.factory.engine import get_engine_for_options
from sqlapi.factory.postgres import PostgresFactory
from sqlapi.factory.sqlite import SQLiteFactory

__all__ = [
    'ENTRY_POINT_GROUP',
    'Factory',
    'Source',
    'Service',
    'EngineFactory',
    'EngineSource',
    'EngineService',
    'SQLiteFactory',
    'PostgresFactory',
    'register_factory',
    'deregister_factory',
    'get_factory',
    'get_factory_class',
    'get_available_factories',
    'is_supported_driver',
    'check_connection',
    'get_engine_for_options',
    'dispose_all_engines',
]
