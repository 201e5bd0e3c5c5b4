"""
Builds invocation plans from declared API methods.

`BindingBuilder.build` reads a method's verb tag, parameters and return
annotation once, checks them against the statement template and wires the
result to the backend verb and, for selects, to a result extractor. Every
metadata problem is raised here as a ConfigurationError, before any
statement is executed.
"""
import collections.abc
import inspect
import logging
from collections.abc import Callable
from typing import Annotated, Any, get_args, get_origin, get_type_hints

import numpy as np
from sqlapi import environment
from sqlapi.annotations import ARRAY, MAP, Param, Verb, get_declaration
from sqlapi.annotations import get_validator_class, is_entity
from sqlapi.binding import Binding, MethodDescriptor, ParamKind, ParamSpec
from sqlapi.exceptions import ConfigurationError
from sqlapi.extractors import ExtractorRegistry, get_default_registry
from sqlapi.extractors import unwrap_optional

__all__ = [
    'BindingBuilder',
    'read_method',
    'build_validator',
]

logger = logging.getLogger(__name__)

_ARRAY_ORIGINS = (
    list, tuple, set, frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
    collections.abc.Collection,
    collections.abc.Iterable,
    )

_MAP_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)


def _split_annotated(hint: Any) -> tuple[Any, Param | None]:
    """Return the base type of a hint and its Param marker, if any."""
    if get_origin(hint) is not Annotated:
        return hint, None
    base = get_args(hint)[0]
    for meta in hint.__metadata__:
        if isinstance(meta, Param):
            return base, meta
        if meta is Param:
            return base, Param()
    return base, None


def infer_kind(base: Any, marker: Param | None = None) -> ParamKind:
    """Derive how an argument of type `base` is substituted.
    """
    if marker is not None and marker.name == ARRAY:
        return ParamKind.ARRAY
    if marker is not None and marker.name == MAP:
        return ParamKind.MAP

    base = unwrap_optional(base)
    origin = get_origin(base) or base
    if origin in (str, bytes):
        return ParamKind.SCALAR
    if origin in _ARRAY_ORIGINS or (isinstance(origin, type) and issubclass(origin, np.ndarray)):
        return ParamKind.ARRAY
    if origin in _MAP_ORIGINS:
        return ParamKind.MAP
    if is_entity(base):
        return ParamKind.ENTITY
    return ParamKind.SCALAR


def _element_type(return_type: Any) -> Any:
    args = [a for a in get_args(return_type) if a is not Ellipsis]
    if get_origin(return_type) in _ARRAY_ORIGINS and args:
        return unwrap_optional(args[0])
    return None


def read_method(func: Callable, name: str | None = None, bound: bool = True) -> MethodDescriptor:
    """Parse a declared API method into a MethodDescriptor.

    Args:
        func: The decorated function
        name: Method name used in messages, defaults to the function name
        bound: Whether the first parameter is the instance and must be skipped

    Returns
        MethodDescriptor with ordered ParamSpecs and the return type
    """
    name = name or getattr(func, '__name__', repr(func))
    declaration = get_declaration(func)
    if declaration is None:
        raise ConfigurationError(f'{name}() has no SQL verb declaration')

    statement = declaration.statement
    if environment.is_defined(statement):
        if not declaration.property:
            raise ConfigurationError(f'{name}() uses the template environment without a property name')
        statement = environment.get_property(declaration.property)
    if not statement or not statement.strip():
        raise ConfigurationError(f'{name}() has no statement template')

    try:
        hints = get_type_hints(func, include_extras=True)
    except (NameError, TypeError) as e:
        raise ConfigurationError(f'Cannot resolve annotations of {name}(): {e}') from e

    parameters = list(inspect.signature(func).parameters.values())
    if bound and parameters:
        parameters = parameters[1:]

    specs: list[ParamSpec] = []
    for index, parameter in enumerate(parameters):
        if parameter.kind in {inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD}:
            raise ConfigurationError(f'{name}() cannot bind variadic parameter {parameter.name!r}')
        base, marker = _split_annotated(hints.get(parameter.name, Any))
        kind = infer_kind(base, marker)
        param_name = parameter.name
        if marker is not None and marker.name not in {'', ARRAY, MAP}:
            param_name = marker.name
        specs.append(ParamSpec(param_name, kind, index))

    seen = [s.name for s in specs]
    duplicates = {n for n in seen if seen.count(n) > 1}
    if duplicates:
        raise ConfigurationError(f'{name}() declares duplicate parameter names: {sorted(duplicates)}')

    return_type = hints.get('return')
    if return_type is not None:
        return_type = unwrap_optional(return_type)

    descriptor = MethodDescriptor(
        name=name,
        statement=statement,
        verb=declaration.verb,
        params=tuple(specs),
        return_type=return_type,
        element_type=_element_type(return_type),
    )
    _check_placeholders(descriptor)
    return descriptor


def _check_placeholders(descriptor: MethodDescriptor) -> None:
    placeholders = descriptor.placeholders
    names = set()
    for spec in descriptor.params:
        if spec.kind is ParamKind.MAP:
            continue
        names.add(spec.name)
        if spec.name not in placeholders:
            raise ConfigurationError(
                f'{descriptor.name}(): parameter pattern not found: {{{spec.name}}}')

    unresolved = placeholders - names
    if unresolved and not descriptor.has_map_param:
        raise ConfigurationError(
            f'{descriptor.name}(): no parameter for placeholder(s) {sorted(unresolved)}')


def build_validator(api: type) -> Any:
    """Instantiate the validator declared on an API class, or return None.
    """
    validator_cls = get_validator_class(api)
    if validator_cls is None:
        return None
    try:
        instance = validator_cls()
    except TypeError as e:
        raise ConfigurationError(f'{validator_cls.__name__}.__init__() must take no arguments') from e
    except Exception as e:
        raise ConfigurationError(f'Could not create {validator_cls.__name__} instance') from e
    if not callable(getattr(instance, 'verify', None)):
        raise ConfigurationError(f'{validator_cls.__name__} does not define verify(sql)')
    return instance


class BindingBuilder:
    """Builds Bindings for the methods of one API against one Service.
    """

    def __init__(self, service: Any, validator: Any = None,
                 registry: ExtractorRegistry | None = None) -> None:
        self.service = service
        self.validator = validator
        self.registry = registry or get_default_registry()

    def build(self, func: Callable, name: str | None = None, bound: bool = True) -> Binding:
        """Read `func` and wire it to its backend verb.
        """
        descriptor = read_method(func, name, bound)
        verb = descriptor.verb

        operation = getattr(self.service, verb.value, None)
        if not callable(operation):
            raise ConfigurationError(f'Could not find service method: {verb.value}')

        extractor = None
        if verb is Verb.SELECT:
            if descriptor.return_type is None:
                raise ConfigurationError(f'{descriptor.name}(): return type not defined')
            extractor = self.registry.resolve_result(descriptor.return_type, descriptor.element_type)
            if extractor is None:
                raise ConfigurationError(
                    f'{descriptor.name}(): no extractor accepts return type {descriptor.return_type!r}')

            def worker(statement: str) -> Any:
                return operation(statement, extractor)
        else:
            worker = operation

        logger.debug(f'Built binding for {descriptor.name}() [{verb.value}] '
                     f'with {len(descriptor.params)} parameter(s)')
        return Binding(descriptor, worker, self.validator, extractor)
