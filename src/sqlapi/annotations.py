"""
Declarative metadata for SQL API classes and entity types.

An API class names its backend with `@sql`, may name a validator with
`@validator`, and declares one verb decorator per method:

    @sql('sqlite')
    class UserStorage:

        @select('select * from {table}')
        def fetch_all(self, table: Annotated[str, Param('table')]) -> list[User]:
            ...

Entity types are marked with `@entity`; their fields bind to result
columns through `Column` markers:

    @entity
    class User:
        id: Annotated[int, Column()] = 0
        name: Annotated[str, Column('user_name')] = ''

The decorators only attach metadata. Nothing is parsed until the method is
first called through an instance returned by `sqlapi.connect`.
"""
import enum
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

__all__ = [
    'ARRAY',
    'MAP',
    'Verb',
    'MethodDeclaration',
    'Param',
    'Column',
    'sql',
    'validator',
    'entity',
    'is_entity',
    'select',
    'insert',
    'update',
    'delete',
    'create',
    'drop',
    'raw',
    'get_declaration',
    'get_driver_type',
    'get_validator_class',
]

T = TypeVar('T')

ARRAY = '$sql:type.array'
MAP = '$sql:type.map'

_DRIVER_ATTR = '__sql_driver__'
_VALIDATOR_ATTR = '__sql_validator__'
_ENTITY_ATTR = '__sql_entity__'
_METHOD_ATTR = '__sql_method__'


class Verb(enum.Enum):
    """Backend operation performed by an API method."""
    SELECT = 'select'
    INSERT = 'insert'
    UPDATE = 'update'
    DELETE = 'delete'
    CREATE = 'create'
    DROP = 'drop'
    RAW = 'raw'


@dataclass(frozen=True, slots=True)
class MethodDeclaration:
    """Verb tag attached to an API method."""
    verb: Verb
    statement: str
    property: str = ''


@dataclass(frozen=True, slots=True)
class Param:
    """Parameter binding marker, used through `typing.Annotated`.

    `name` is the placeholder name; empty means the declared parameter
    name. Passing `ARRAY` or `MAP` as the name forces array or map
    expansion for that parameter.
    """
    name: str = ''


@dataclass(frozen=True, slots=True)
class Column:
    """Entity field marker, used through `typing.Annotated`.

    `name` is the result column; empty means the field name.
    """
    name: str = ''


def sql(driver_type: str) -> Callable[[type[T]], type[T]]:
    """Name the backend factory an API class is bound to."""
    if not driver_type:
        raise ValueError('driver_type cannot be empty')

    def decorator(cls: type[T]) -> type[T]:
        setattr(cls, _DRIVER_ATTR, driver_type)
        return cls
    return decorator


def validator(validator_cls: type) -> Callable[[type[T]], type[T]]:
    """Attach a statement validator class to an API class.

    The class is instantiated once, with no arguments, when the API is
    created, and its `verify(sql)` is called before every execution.
    """
    def decorator(cls: type[T]) -> type[T]:
        setattr(cls, _VALIDATOR_ATTR, validator_cls)
        return cls
    return decorator


def entity(cls: type[T]) -> type[T]:
    """Mark a class for field-by-column reconstruction from result rows."""
    setattr(cls, _ENTITY_ATTR, True)
    return cls


def is_entity(tp: Any) -> bool:
    """Check if a type carries the entity marker."""
    return isinstance(tp, type) and _ENTITY_ATTR in vars(tp)


def _verb(verb: Verb):
    def factory(statement: str, property: str = '') -> Callable[[Callable], Callable]:
        if statement is None:
            raise ValueError('statement cannot be None')

        def decorator(func: Callable) -> Callable:
            setattr(func, _METHOD_ATTR, MethodDeclaration(verb, statement, property))
            return func
        return decorator

    factory.__name__ = verb.value
    factory.__qualname__ = verb.value
    factory.__doc__ = f'Declare a {verb.value.upper()} statement template for an API method.'
    return factory


select = _verb(Verb.SELECT)
insert = _verb(Verb.INSERT)
update = _verb(Verb.UPDATE)
delete = _verb(Verb.DELETE)
create = _verb(Verb.CREATE)
drop = _verb(Verb.DROP)
raw = _verb(Verb.RAW)


def get_declaration(func: Any) -> MethodDeclaration | None:
    """Return the verb tag of a function, or None if it has none."""
    return getattr(func, _METHOD_ATTR, None)


def get_driver_type(cls: type) -> str | None:
    return getattr(cls, _DRIVER_ATTR, None)


def get_validator_class(cls: type) -> type | None:
    return getattr(cls, _VALIDATOR_ATTR, None)
