"""
Declarative SQL access objects.

Declare an API class with templated statements and bind it to a backend:

    @sql('sqlite')
    class UserStorage:

        @select('select id, name from users where id = {id}')
        def fetch(self, id: int) -> User: ...

    users = sqlapi.connect(UserStorage, {'database': 'app.db'})
    users.fetch(7)

Each method is parsed into a Binding on its first call and reused after.
"""
__version__ = '0.1.0'

from sqlapi.annotations import ARRAY, MAP, Column, Param, Verb, create
from sqlapi.annotations import delete, drop, entity, insert, raw, select, sql
from sqlapi.annotations import update, validator
from sqlapi.api import close, connect
from sqlapi.binding import Binding, MethodDescriptor, ParamKind, ParamSpec
from sqlapi.builder import BindingBuilder
from sqlapi.context import ExtractionContext
from sqlapi.dispatcher import Dispatcher, get_dispatcher
from sqlapi.environment import ENV, setup_environment
from sqlapi.exceptions import ArityError, BackendError, ConfigurationError
from sqlapi.exceptions import DbConnectionError, ExtractionError, SqlApiError
from sqlapi.exceptions import TemplateError, ValidationRejected
from sqlapi.extractors import Extractor, ExtractorRegistration
from sqlapi.extractors import ExtractorRegistry, get_default_registry
from sqlapi.extractors import register_extractor
from sqlapi.factory import Factory, Service, Source, get_factory
from sqlapi.factory import register_factory
from sqlapi.options import DatabaseOptions
from sqlapi.result import ResultSet

__all__ = [
    'ARRAY',
    'MAP',
    'ENV',
    'Verb',
    'Param',
    'Column',
    'sql',
    'validator',
    'entity',
    'select',
    'insert',
    'update',
    'delete',
    'create',
    'drop',
    'raw',
    'connect',
    'close',
    'setup_environment',
    'DatabaseOptions',
    'Binding',
    'BindingBuilder',
    'MethodDescriptor',
    'ParamKind',
    'ParamSpec',
    'Dispatcher',
    'get_dispatcher',
    'ExtractionContext',
    'ResultSet',
    'Extractor',
    'ExtractorRegistration',
    'ExtractorRegistry',
    'get_default_registry',
    'register_extractor',
    'Factory',
    'Source',
    'Service',
    'get_factory',
    'register_factory',
    'SqlApiError',
    'ConfigurationError',
    'ArityError',
    'TemplateError',
    'ValidationRejected',
    'ExtractionError',
    'BackendError',
    'DbConnectionError',
]
