"""
Statement templates and their invocation plans.

A `Binding` pairs a parsed `MethodDescriptor` with the backend verb it
runs and the extractor for its result. `Binding.execute(args)`
materializes the statement from the call arguments, runs the optional
validator and hands the statement to the backend.

Rendering rules:
- str values are single-quoted, embedded quotes doubled
- date, datetime and time values render as quoted ISO 8601 text
- None, NaN/inf floats and NaT render as `null`
- bools render as `TRUE`/`FALSE`; numpy scalars render as their Python value
- array values are rendered element-wise and joined with ', ';
  an empty array renders `null`
- map values substitute every `{key}` present in the template

Substitution is a single pass over the template, so a rendered value that
itself contains `{name}` is never substituted again.
"""
import datetime
import enum
import logging
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
from sqlapi.annotations import Verb
from sqlapi.exceptions import ArityError, TemplateError, ValidationRejected

from libb import issequence

__all__ = [
    'ParamKind',
    'ParamSpec',
    'MethodDescriptor',
    'Binding',
    'find_placeholders',
    'render_value',
    'render_array',
    'quote_string',
]

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r'\{([^{}\s]+)\}')


class ParamKind(enum.Enum):
    """How a call argument is substituted into a template."""
    SCALAR = 'scalar'
    ARRAY = 'array'
    MAP = 'map'
    ENTITY = 'entity'


@dataclass(frozen=True, slots=True)
class ParamSpec:
    """One bound parameter of an API method."""
    name: str
    kind: ParamKind
    index: int


@dataclass(frozen=True)
class MethodDescriptor:
    """Parsed metadata of one API method."""
    name: str
    statement: str
    verb: Verb
    params: tuple[ParamSpec, ...] = ()
    return_type: Any = None
    element_type: Any = None

    @property
    def placeholders(self) -> frozenset[str]:
        return frozenset(find_placeholders(self.statement))

    @property
    def has_map_param(self) -> bool:
        return any(p.kind is ParamKind.MAP for p in self.params)


def find_placeholders(statement: str) -> list[str]:
    """Return placeholder names in order of appearance.
    """
    return _PLACEHOLDER.findall(statement)


def quote_string(value: str) -> str:
    """Quote a string literal, doubling embedded single quotes."""
    return "'" + value.replace("'", "''") + "'"


def _normalize(value: Any) -> Any:
    """Convert NumPy and Pandas scalars to plain Python values.
    """
    if value is None:
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


def render_value(value: Any) -> str:
    """Render a single value as SQL text.
    """
    value = _normalize(value)
    if value is None:
        return 'null'
    if isinstance(value, str):
        return quote_string(value)
    if isinstance(value, bytes | bytearray | memoryview):
        try:
            return quote_string(bytes(value).decode('utf-8'))
        except UnicodeDecodeError as e:
            raise TemplateError(f'Binary value is not UTF-8 text: {e}') from e
    if isinstance(value, bool):
        return 'TRUE' if value else 'FALSE'
    if isinstance(value, datetime.date | datetime.time):
        return quote_string(value.isoformat())
    return str(value)


def render_array(values: Any) -> str:
    """Render a sequence as a comma-separated list of SQL values.

    An empty sequence renders `null`, keeping `in ({ids})` valid SQL.
    """
    if isinstance(values, np.ndarray):
        values = values.tolist()
    items = [render_value(v) for v in values]
    if not items:
        return 'null'
    return ', '.join(items)


@dataclass(frozen=True)
class Binding:
    """Immutable invocation plan for one API method.

    `worker` receives the materialized statement and returns the backend
    result unchanged.
    """
    descriptor: MethodDescriptor
    worker: Callable[[str], Any]
    validator: Any = None
    extractor: Any = None
    _names: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, '_names', self.descriptor.placeholders)

    @property
    def params(self) -> tuple[ParamSpec, ...]:
        return self.descriptor.params

    def render(self, args: tuple | list) -> str:
        """Materialize the statement from ordered call arguments.
        """
        params = self.descriptor.params
        if len(args) != len(params):
            raise ArityError(
                f'{self.descriptor.name}() takes {len(params)} parameter(s), got {len(args)}')

        mapped: dict[str, str] = {}
        explicit: dict[str, str] = {}
        for spec in params:
            value = args[spec.index]
            if spec.kind is ParamKind.MAP:
                mapped.update(self._render_map(spec, value))
                continue
            if spec.name not in self._names:
                raise TemplateError(f'Parameter pattern not found: {{{spec.name}}}')
            if spec.kind is ParamKind.ENTITY:
                raise TemplateError(f'Typed parameters are not allowed: {spec.name}')
            if spec.kind is ParamKind.ARRAY:
                explicit[spec.name] = self._render_array(spec, value)
            else:
                explicit[spec.name] = render_value(value)

        replacements = mapped | explicit
        return _PLACEHOLDER.sub(lambda m: replacements.get(m.group(1), m.group(0)),
                                self.descriptor.statement)

    def _render_array(self, spec: ParamSpec, value: Any) -> str:
        if value is None:
            return 'null'
        if isinstance(value, str) or not (issequence(value) or isinstance(value, set | frozenset | np.ndarray)):
            raise TemplateError(f'Parameter {spec.name} expects a sequence, got {type(value).__name__}')
        if isinstance(value, set | frozenset):
            value = sorted(value, key=repr)
        return render_array(value)

    def _render_map(self, spec: ParamSpec, value: Any) -> dict[str, str]:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            raise TemplateError(f'Parameter {spec.name} expects a mapping, got {type(value).__name__}')
        return {str(k): render_value(v) for k, v in value.items() if str(k) in self._names}

    def execute(self, args: tuple | list) -> Any:
        """Materialize, validate and run the statement.
        """
        statement = self.render(args)
        if self.validator is not None and not self.validator.verify(statement):
            logger.debug(f'Validator rejected statement for {self.descriptor.name}: {statement}')
            raise ValidationRejected(statement)
        logger.debug(f'{self.descriptor.verb.value} via {self.descriptor.name}:\n{statement}')
        return self.worker(statement)
