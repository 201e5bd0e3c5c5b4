"""
Unit tests for statement rendering and Binding execution.
"""
import datetime
from decimal import Decimal
from typing import Annotated, Any

import numpy as np
import pandas as pd
import pytest
from sqlapi import ARRAY, MAP, ArityError, Param, TemplateError
from sqlapi import ValidationRejected, Verb, insert, raw, select, update
from sqlapi.binding import Binding, MethodDescriptor, ParamKind, ParamSpec
from sqlapi.binding import find_placeholders, render_array, render_value
from sqlapi.builder import BindingBuilder


class Queries:

    @select('select * from {table}')
    def fetch_all(self, table: Annotated[str, Param('table')]) -> list[str]: ...

    @insert('insert into t values ({id}, {name})')
    def add(self, id: int, name: str) -> bool: ...

    @select('select * from t where id in ({ids})')
    def by_ids(self, ids: Annotated[list, Param('ids')]) -> list[int]: ...

    @update('update t set {column} = {value} where id = {id}')
    def set_column(self, id: int, values: Annotated[dict, Param(MAP)]) -> bool: ...

    @raw('select {a}, {b}')
    def pair(self, a: Any, b: Annotated[Any, Param(ARRAY)]) -> list: ...


@pytest.fixture
def build(recording_service):
    builder = BindingBuilder(recording_service)

    def _build(name):
        return builder.build(getattr(Queries, name), name)

    return _build


def test_scalar_text_is_quoted(build):
    """Test textual scalars render single-quoted"""
    assert build('fetch_all').render(('users',)) == "select * from 'users'"


def test_insert_mixes_textual_and_numeric(build):
    """Test numeric scalars are unquoted, textual scalars quoted"""
    assert build('add').render((7, 'Bob')) == 'insert into t values (7, \'Bob\')'


def test_embedded_quote_is_doubled(build):
    assert build('add').render((1, "O'Brien")) == "insert into t values (1, 'O''Brien')"


def test_placeholder_in_value_not_resubstituted(build):
    """Test substitution is a single pass"""
    statement = build('add').render((1, '{id}'))

    assert statement == "insert into t values (1, '{id}')"


@pytest.mark.parametrize('args', [(), (1,), (1, 'a', 'b')])
def test_arity_mismatch(build, args):
    with pytest.raises(ArityError):
        build('add').render(args)


def test_array_joined_without_leading_separator(build):
    assert build('by_ids').render(([1, 2, 3],)) == 'select * from t where id in (1, 2, 3)'


def test_empty_array_renders_null(build):
    """Test an empty sequence keeps the statement valid"""
    assert build('by_ids').render(([],)) == 'select * from t where id in (null)'


def test_array_of_text_and_numpy(build):
    assert build('by_ids').render((np.array([4, 5]),)) == 'select * from t where id in (4, 5)'
    assert build('by_ids').render((('a', 'b'),)) == "select * from t where id in ('a', 'b')"


def test_array_rejects_scalar(build):
    with pytest.raises(TemplateError):
        build('by_ids').render((5,))


def test_array_sentinel_forces_array(build):
    assert build('pair').render((1, [2, 3])) == 'select 1, 2, 3'


def test_map_substitutes_matching_keys_only(build):
    """Test map keys fill matching placeholders and extra keys are ignored"""
    statement = build('set_column').render((3, {'column': 'name', 'value': 'x', 'extra': 1}))

    assert statement == "update t set 'name' = 'x' where id = 3"


def test_explicit_param_wins_over_map_key(build):
    statement = build('set_column').render((3, {'column': 'c', 'value': 1, 'id': 99}))

    assert statement.endswith('where id = 3')


def test_unresolved_placeholder_kept_with_map(build):
    statement = build('set_column').render((3, {'column': 'c'}))

    assert statement == "update t set 'c' = {value} where id = 3"


def test_missing_placeholder_on_direct_binding(recording_service):
    """Test a directly built Binding reports its missing placeholder per call"""
    descriptor = MethodDescriptor('q', 'select {a}', Verb.SELECT,
                                  (ParamSpec('a', ParamKind.SCALAR, 0),
                                   ParamSpec('b', ParamKind.SCALAR, 1)))
    binding = Binding(descriptor, recording_service.raw)

    with pytest.raises(TemplateError, match='{b}'):
        binding.render((1, 2))


def test_entity_parameter_rejected(recording_service):
    descriptor = MethodDescriptor('q', 'select {a}', Verb.SELECT,
                                  (ParamSpec('a', ParamKind.ENTITY, 0),))
    binding = Binding(descriptor, recording_service.raw)

    with pytest.raises(TemplateError):
        binding.render((object(),))


@pytest.mark.parametrize(('value', 'expected'), [
    (None, 'null'),
    (float('nan'), 'null'),
    (float('inf'), 'null'),
    (pd.NaT, 'null'),
    (True, 'TRUE'),
    (False, 'FALSE'),
    (np.int64(5), '5'),
    (np.float64(1.5), '1.5'),
    (Decimal('1.10'), '1.10'),
    (datetime.date(2024, 1, 15), "'2024-01-15'"),
    (datetime.datetime(2024, 1, 15, 9, 30), "'2024-01-15T09:30:00'"),
    ('', "''"),
])
def test_render_value(value, expected):
    assert render_value(value) == expected


def test_render_array_direct():
    assert render_array([1, None, 'x']) == "1, null, 'x'"
    assert render_array([]) == 'null'


def test_find_placeholders_in_order():
    assert find_placeholders('select {b}, {a}, {b}') == ['b', 'a', 'b']


def test_execute_hands_statement_to_backend(build, recording_service):
    assert build('add').execute((7, 'Bob')) is True
    assert recording_service.statements == [('insert', "insert into t values (7, 'Bob')")]


def test_validator_rejection_skips_backend(recording_service, mocker):
    """Test a rejecting validator prevents any backend call"""
    validator = mocker.Mock()
    validator.verify.return_value = False
    builder = BindingBuilder(recording_service, validator)
    binding = builder.build(Queries.add, 'add')

    with pytest.raises(ValidationRejected) as exc_info:
        binding.execute((7, 'Bob'))

    assert exc_info.value.statement == "insert into t values (7, 'Bob')"
    validator.verify.assert_called_once_with("insert into t values (7, 'Bob')")
    assert recording_service.statements == []


def test_validator_acceptance_runs_backend(recording_service, mocker):
    validator = mocker.Mock()
    validator.verify.return_value = True
    binding = BindingBuilder(recording_service, validator).build(Queries.add, 'add')

    binding.execute((1, 'a'))

    assert len(recording_service.statements) == 1


@pytest.mark.parametrize('value', [b'abc', bytearray(b'abc'), memoryview(b'abc')])
def test_binary_text_rendered_as_string(value):
    assert render_value(value) == "'abc'"


def test_binary_non_text_rejected():
    with pytest.raises(TemplateError):
        render_value(b'\xff\xfe')


class Dashed:

    @select('select * from t where id = {user-id}')
    def fetch(self, user_id: Annotated[int, Param('user-id')]) -> list[int]: ...


def test_placeholder_names_with_punctuation(recording_service):
    """Test placeholders are any brace-enclosed name without spaces"""
    builder = BindingBuilder(recording_service)

    assert builder.build(Dashed.fetch, 'fetch').render((5,)) == 'select * from t where id = 5'
    assert find_placeholders('select {a-b}, {x.y}, {c d}') == ['a-b', 'x.y']


def test_map_key_with_dash(recording_service):
    descriptor = MethodDescriptor('q', 'select {my-col}', Verb.SELECT,
                                  (ParamSpec('values', ParamKind.MAP, 0),))
    binding = Binding(descriptor, recording_service.raw)

    assert binding.render(({'my-col': 'x'},)) == "select 'x'"
