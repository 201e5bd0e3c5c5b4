"""
Entity instantiation from result rows.

An `EntityDescriptor` is the column-to-field table of an `@entity` class,
built once per type and cached by the extractor registry. The
`EntityExtractor` constructs a fresh instance for the current row and
assigns every field whose column is present in the result. Result columns
with no matching field are ignored and fields with no matching column keep
their defaults, so partial projections work.
"""
import inspect
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Annotated, Any, get_args, get_origin, get_type_hints

from sqlapi.annotations import Column, is_entity
from sqlapi.context import ExtractionContext
from sqlapi.exceptions import ConfigurationError, ExtractionError
from sqlapi.extractors import Extractor, require_single_row, unwrap_optional
from sqlapi.result import ResultSet

if TYPE_CHECKING:
    from sqlapi.extractors import ExtractorRegistry

__all__ = [
    'FieldBinding',
    'EntityDescriptor',
    'EntityExtractor',
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FieldBinding:
    """One column-bound field of an entity."""
    column: str
    attribute: str
    python_type: Any


def _column_marker(hint: Any) -> Column | None:
    if get_origin(hint) is not Annotated:
        return None
    for meta in hint.__metadata__:
        if isinstance(meta, Column):
            return meta
        if meta is Column:
            return Column()
    return None


@dataclass(frozen=True)
class EntityDescriptor:
    """Immutable column-to-field table of an entity type."""
    type: type
    fields: MappingProxyType

    @classmethod
    def from_type(cls, tp: type) -> 'EntityDescriptor':
        """Scan `tp` for Column-marked fields.

        Raises ConfigurationError if `tp` is not an entity, its annotations
        cannot be resolved or it has no zero-argument constructor.
        """
        if not is_entity(tp):
            raise ConfigurationError(f'Type {tp!r} is not an entity')

        try:
            hints = get_type_hints(tp, include_extras=True)
        except (NameError, TypeError) as e:
            raise ConfigurationError(f'Cannot resolve annotations of {tp.__name__}: {e}') from e

        columns: dict[str, FieldBinding] = {}
        for attribute, hint in hints.items():
            marker = _column_marker(hint)
            if marker is None:
                continue
            name = marker.name or attribute
            python_type = unwrap_optional(get_args(hint)[0])
            columns.setdefault(name, FieldBinding(name, attribute, python_type))

        try:
            inspect.signature(tp).bind()
        except TypeError as e:
            raise ConfigurationError(f'{tp.__name__}() needs a zero-argument constructor: {e}') from e
        except ValueError:
            logger.debug(f'No signature available for {tp.__name__}, assuming zero-argument constructor')

        logger.debug(f'Built entity descriptor for {tp.__name__}: {sorted(columns)}')
        return cls(tp, MappingProxyType(columns))

    def new_instance(self) -> Any:
        try:
            return self.type()
        except Exception as e:
            raise ExtractionError(f'Could not create {self.type.__name__} instance') from e


class EntityExtractor(Extractor):
    """Reads the current row into a new entity instance.
    """

    single_row = True

    def __init__(self, descriptor: EntityDescriptor, registry: 'ExtractorRegistry') -> None:
        self.descriptor = descriptor
        self.registry = registry
        self._field_extractors: dict[str, Extractor] = {}

    def __repr__(self) -> str:
        return f'EntityExtractor({self.descriptor.type.__name__})'

    @classmethod
    def accepts(cls, tp: Any) -> bool:
        return is_entity(tp)

    @classmethod
    def create(cls, tp: Any, element_type: Any = None,
               registry: 'ExtractorRegistry | None' = None) -> 'EntityExtractor':
        if registry is None:
            from sqlapi.extractors import get_default_registry
            registry = get_default_registry()
        extractor = cls(registry.entity_descriptor(tp), registry)
        for binding in extractor.descriptor.fields.values():
            if not is_entity(binding.python_type):
                extractor._extractor_for(binding)
        return extractor

    def _extractor_for(self, binding: FieldBinding) -> Extractor:
        extractor = self._field_extractors.get(binding.column)
        if extractor is None:
            extractor = self.registry.resolve(binding.python_type)
            if extractor is None:
                raise ExtractionError(
                    f'No extractor for field {self.descriptor.type.__name__}.{binding.attribute} '
                    f'of type {binding.python_type!r}')
            require_single_row(
                extractor, f'field {self.descriptor.type.__name__}.{binding.attribute}')
            self._field_extractors[binding.column] = extractor
        return extractor

    def read(self, result: ResultSet, context: ExtractionContext) -> Any:
        if result.closed:
            raise ExtractionError('ResultSet was closed')
        if result.row is None:
            raise ExtractionError(f'No current row to read {self.descriptor.type.__name__} from')

        instance = self.descriptor.new_instance()
        fields = self.descriptor.fields
        for column in result.column_names:
            binding = fields.get(column)
            if binding is None:
                continue
            extractor = self._extractor_for(binding)
            value = extractor.read(result, context.with_reference(column, binding.python_type))
            try:
                setattr(instance, binding.attribute, value)
            except (AttributeError, TypeError) as e:
                raise ExtractionError(
                    f'Could not assign {self.descriptor.type.__name__}.{binding.attribute}') from e
        return instance
