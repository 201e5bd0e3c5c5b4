"""
Extractor registry: converters from a raw `ResultSet` to typed values.

Registrations are tried in order and the first one accepting a type wins.
The built-ins are seeded first, in this order:

1. ScalarExtractor  - int, float, str, bool, bytes, Decimal, date, datetime, time
2. RawExtractor     - the ResultSet itself
3. ListExtractor    - list[T], tuple[T, ...], Sequence[T]
4. EntityExtractor  - classes marked with @entity
5. DataFrameExtractor, ArrowTableExtractor

User registrations are appended after them, so they only win for types
the built-ins reject.
"""
import collections.abc
import logging
import threading
import types
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union, get_args, get_origin

from sqlapi.context import ExtractionContext
from sqlapi.exceptions import ConfigurationError, ExtractionError
from sqlapi.result import ACCESSORS, ResultSet

if TYPE_CHECKING:
    from sqlapi.entity import EntityDescriptor

__all__ = [
    'Extractor',
    'ExtractorRegistration',
    'ExtractorRegistry',
    'ScalarExtractor',
    'RawExtractor',
    'ListExtractor',
    'SingleRowExtractor',
    'get_default_registry',
    'register_extractor',
    'unwrap_optional',
]

logger = logging.getLogger(__name__)

SEQUENCE_ORIGINS = (
    list,
    tuple,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Collection,
    collections.abc.Iterable,
    )


def unwrap_optional(tp: Any) -> Any:
    """Return `X` for `X | None` / `Optional[X]`, otherwise `tp` unchanged."""
    if get_origin(tp) in {Union, types.UnionType}:
        args = [a for a in get_args(tp) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return tp


def is_class(tp: Any) -> bool:
    """Check if `tp` is a plain class rather than a parameterized alias."""
    return get_origin(tp) is None and isinstance(tp, type)


def require_single_row(extractor: 'Extractor', position: str) -> None:
    """Reject an extractor that advances the cursor in a nested position.

    Nested extractors read the row the outer extractor is positioned on.

    Raises:
        ConfigurationError: If `extractor` reads more than the current row
    """
    if not extractor.single_row:
        raise ConfigurationError(
            f'{type(extractor).__name__} reads many rows and cannot be used for {position}')


class Extractor(ABC):
    """Base class for result converters.

    Subclasses implement `read` and, to be registrable as a class, the
    `accepts` and `create` classmethods.
    """

    # Reads the current row only; a top-level result must be advanced first.
    single_row: bool = False

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        """Check whether this extractor can produce values of type `tp`."""
        return False

    @classmethod
    def create(cls, tp: Any, element_type: Any = None,
               registry: 'ExtractorRegistry | None' = None) -> 'Extractor':
        """Return an extractor configured for `tp`."""
        return cls()

    @classmethod
    def registration(cls) -> 'ExtractorRegistration':
        return ExtractorRegistration(cls.accepts, cls.create, cls.__name__)

    @abstractmethod
    def read(self, result: ResultSet, context: ExtractionContext) -> Any:
        """Convert `result` into a typed value.

        Args:
            result: Raw result positioned by the caller
            context: Frame carrying the source, API type and column reference
        """


@dataclass(frozen=True, slots=True)
class ExtractorRegistration:
    """Type predicate plus factory for a configured extractor."""
    accepts: Callable[[Any], bool]
    factory: Callable[..., Extractor]
    name: str = ''


# Built-in extractors

class ScalarExtractor(Extractor):
    """Reads the referenced column of the current row as a scalar.
    """

    single_row = True

    def __init__(self, python_type: Any = None) -> None:
        self.python_type = python_type

    def __repr__(self) -> str:
        name = getattr(self.python_type, '__name__', self.python_type)
        return f'ScalarExtractor({name})'

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        return is_class(tp) and tp in ACCESSORS

    @classmethod
    def create(cls, tp: Any, element_type: Any = None,
               registry: 'ExtractorRegistry | None' = None) -> 'ScalarExtractor':
        return cls(tp)

    def read(self, result: ResultSet, context: ExtractionContext) -> Any:
        if not context.has_reference:
            raise ExtractionError('No column reference set for scalar extraction')
        return result.get(context.column, context.field_type or self.python_type)


class RawExtractor(Extractor):
    """Returns the ResultSet unmodified.
    """

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        return is_class(tp) and issubclass(tp, ResultSet)

    def read(self, result: ResultSet, context: ExtractionContext) -> ResultSet:
        return result


class ListExtractor(Extractor):
    """Advances through all rows and collects one element per row.

    Scalar elements read the first result column unless the frame already
    carries a reference.
    """

    def __init__(self, container: type = list, element: Extractor | None = None,
                 element_type: Any = None) -> None:
        self.container = container
        self.element = element
        self.element_type = element_type

    def __repr__(self) -> str:
        return f'ListExtractor({self.container.__name__}, {self.element!r})'

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        origin = get_origin(tp) or tp
        return origin in SEQUENCE_ORIGINS

    @classmethod
    def create(cls, tp: Any, element_type: Any = None,
               registry: 'ExtractorRegistry | None' = None) -> 'ListExtractor':
        origin = get_origin(tp) or tp
        container = tuple if origin is tuple else list
        if element_type is None:
            args = [a for a in get_args(tp) if a is not Ellipsis]
            element_type = args[0] if args else None
        if element_type is None or element_type is Any:
            logger.warning(f'No element type declared for {tp!r}; results will be empty')
            return cls(container)
        element_type = unwrap_optional(element_type)
        registry = registry or get_default_registry()
        element = registry.resolve(element_type)
        if element is None:
            raise ConfigurationError(f'No extractor for element type {element_type!r} defined')
        require_single_row(element, f'element type {element_type!r} of {tp!r}')
        return cls(container, element, element_type)

    def read(self, result: ResultSet, context: ExtractionContext) -> list | tuple:
        if self.element is None:
            return self.container()
        items = []
        while result.next():
            frame = context
            if isinstance(self.element, ScalarExtractor) and not frame.has_reference:
                frame = context.with_reference(result.column_names[0], self.element_type)
            items.append(self.element.read(result, frame))
        return self.container(items)


class SingleRowExtractor(Extractor):
    """Positions a top-level result on its first row before delegating.

    Returns None when the result has no rows. Scalars read the first
    result column.
    """

    def __init__(self, inner: Extractor, python_type: Any = None) -> None:
        self.inner = inner
        self.python_type = python_type

    def __repr__(self) -> str:
        return f'SingleRowExtractor({self.inner!r})'

    def read(self, result: ResultSet, context: ExtractionContext) -> Any:
        if not result.next():
            return None
        if isinstance(self.inner, ScalarExtractor) and not context.has_reference:
            context = context.with_reference(result.column_names[0], self.python_type)
        return self.inner.read(result, context)


# Registry

def builtin_registrations() -> list[ExtractorRegistration]:
    from sqlapi.entity import EntityExtractor
    from sqlapi.loaders import ArrowTableExtractor, DataFrameExtractor

    return [
        ScalarExtractor.registration(),
        RawExtractor.registration(),
        ListExtractor.registration(),
        EntityExtractor.registration(),
        DataFrameExtractor.registration(),
        ArrowTableExtractor.registration(),
    ]


class ExtractorRegistry:
    """Ordered, growable collection of extractor registrations.

    Registration is copy-on-write under a lock, so a concurrent `resolve`
    iterates either the old or the new tuple, never a partial one.
    """

    def __init__(self, builtins: bool = True) -> None:
        self._lock = threading.RLock()
        self._registrations: tuple[ExtractorRegistration, ...] = ()
        self._entities: dict[type, 'EntityDescriptor'] = {}
        if builtins:
            for registration in builtin_registrations():
                self.register(registration)

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def registrations(self) -> tuple[ExtractorRegistration, ...]:
        return self._registrations

    def register(self, registration: ExtractorRegistration | type[Extractor]) -> ExtractorRegistration:
        """Append a registration; extractor classes are converted first."""
        if registration is None:
            raise ValueError('registration cannot be None')
        if isinstance(registration, type) and issubclass(registration, Extractor):
            registration = registration.registration()
        if not isinstance(registration, ExtractorRegistration):
            raise TypeError(f'Cannot register {registration!r} as an extractor')
        with self._lock:
            self._registrations = (*self._registrations, registration)
        logger.debug(f'Registered extractor {registration.name or registration.factory!r}')
        return registration

    def resolve(self, tp: Any, element_type: Any = None) -> Extractor | None:
        """Return an extractor for `tp`, or None if no registration accepts it.
        """
        if tp is None:
            raise ValueError('type cannot be None')
        tp = unwrap_optional(tp)
        for registration in self._registrations:
            if registration.accepts(tp):
                return registration.factory(tp, element_type, self)
        return None

    def resolve_result(self, tp: Any, element_type: Any = None) -> Extractor | None:
        """Resolve an extractor for a top-level select result.

        Single-row extractors are wrapped so they advance to the first row.
        """
        extractor = self.resolve(tp, element_type)
        if extractor is not None and extractor.single_row:
            return SingleRowExtractor(extractor, unwrap_optional(tp))
        return extractor

    def entity_descriptor(self, tp: type) -> 'EntityDescriptor':
        """Return the cached descriptor for an entity type, building it once.
        """
        from sqlapi.entity import EntityDescriptor

        descriptor = self._entities.get(tp)
        if descriptor is None:
            descriptor = EntityDescriptor.from_type(tp)
            descriptor = self._entities.setdefault(tp, descriptor)
        return descriptor


_default_registry: ExtractorRegistry | None = None
_default_lock = threading.Lock()


def get_default_registry() -> ExtractorRegistry:
    """Get the process-wide registry seeded with the built-ins."""
    global _default_registry
    if _default_registry is None:
        with _default_lock:
            if _default_registry is None:
                _default_registry = ExtractorRegistry()
    return _default_registry


def register_extractor(cls: type[Extractor]) -> type[Extractor]:
    """Decorator to append an extractor class to the default registry.

    Usage:
        @register_extractor
        class PointExtractor(Extractor):
            ...
    """
    get_default_registry().register(cls)
    return cls
