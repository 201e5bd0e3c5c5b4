import datetime

import pandas as pd
import pytest
import sqlapi
from sqlapi import ExtractionError, ValidationRejected, select, sql
from sqlapi import validator
from sqlapi.dispatcher import get_dispatcher
from tests import config
from tests.fixtures.sqlite import User, UserStorage

from libb import attrdict


def test_fetch_entity(user_storage):
    """Test selecting one row into an entity"""
    user = user_storage.fetch(1)

    assert isinstance(user, User)
    assert user.id == 1
    assert user.name == 'Ada'
    assert user.joined == datetime.date(2024, 1, 15)
    assert user.nickname == ''


def test_fetch_missing_row_returns_none(user_storage):
    """Test that a single-entity select with no rows returns None"""
    assert user_storage.fetch(99) is None


def test_fetch_all_preserves_order(user_storage):
    """Test selecting all rows into a list of entities"""
    users = user_storage.fetch_all()

    assert [u.id for u in users] == [1, 2, 3]
    assert users[1].joined is None
    assert users[2].name == "O'Brien"


def test_scalar_and_scalar_list(user_storage):
    """Test first-column scalars at top level and as list elements"""
    assert user_storage.count() == 3
    assert user_storage.names([1, 3]) == ['Ada', "O'Brien"]


def test_empty_array_matches_nothing(user_storage):
    """Test that an empty array renders null and selects no rows"""
    assert user_storage.names([]) == []


def test_map_parameter(user_storage):
    """Test that map keys substitute matching placeholders"""
    users = user_storage.find({'name': 'Grace', 'unused': 1})

    assert [u.id for u in users] == [2]


def test_keyword_arguments(user_storage):
    """Test calling a declared method with keyword arguments"""
    assert user_storage.rename(name='Augusta', id=1) is True
    assert user_storage.fetch(id=1).name == 'Augusta'


def test_update_and_delete(user_storage):
    """Test write verbs report success and change the table"""
    assert user_storage.rename(2, 'Hopper') is True
    assert user_storage.remove(3) is True

    assert [u.name for u in user_storage.fetch_all()] == ['Ada', 'Hopper']


def test_raw_returns_attrdict_rows(user_storage):
    """Test the raw verb returns rows as attrdicts"""
    rows = user_storage.dump()

    assert len(rows) == 3
    assert isinstance(rows[0], attrdict)
    assert rows[0].name == 'Ada'


def test_dataframe_result(user_storage):
    """Test selecting into a pandas DataFrame"""
    df = user_storage.frame()

    assert isinstance(df, pd.DataFrame)
    assert list(df.columns) == ['id', 'name', 'joined_on']
    assert df['name'].tolist() == ['Ada', 'Grace', "O'Brien"]
    assert 'joined_on' in df.attrs['column_types']


def test_drop_table_then_select_fails(user_storage):
    """Test backend errors propagate unchanged"""
    assert user_storage.drop_table() is True

    with pytest.raises(sqlapi.BackendError):
        user_storage.count()


def test_bindings_cached_per_method(user_storage):
    """Test that repeated calls reuse the same binding"""
    dispatcher = get_dispatcher(user_storage)
    user_storage.count()
    first = dispatcher.binding('count')
    user_storage.count()

    assert dispatcher.binding('count') is first
    assert 'count' in dispatcher.bindings


def test_source_tracks_calls(user_storage):
    """Test that the source counts executed statements"""
    source = get_dispatcher(user_storage).service.source
    calls = source.calls

    user_storage.count()

    assert source.calls == calls + 1
    assert source.is_connected


def test_close_releases_connection(user_storage):
    """Test closing the storage disconnects the source"""
    source = get_dispatcher(user_storage).service.source
    sqlapi.close(user_storage)

    assert not source.is_connected


def test_file_database_persists(sqlite_file_storage):
    """Test that a second storage on the same file sees committed rows"""
    storage, db_file = sqlite_file_storage

    other = sqlapi.connect(UserStorage, {'database': db_file})
    try:
        assert other.count() == 1
        assert other.fetch(1).name == 'Ada'
    finally:
        sqlapi.close(other)


def test_connect_from_config():
    """Test loading options from a config object"""
    storage = sqlapi.connect(UserStorage, 'sqlite', config=config)
    try:
        storage.create_table('users')
        assert storage.count() == 0
    finally:
        sqlapi.close(storage)


class RejectDrops:

    def verify(self, sql):
        return not sql.lower().startswith('drop')


@validator(RejectDrops)
@sql('sqlite')
class GuardedStorage(UserStorage):
    pass


def test_validator_blocks_statement():
    """Test that a rejecting validator stops execution before the backend"""
    storage = sqlapi.connect(GuardedStorage, {'database': ':memory:'})
    try:
        storage.create_table('users')
        with pytest.raises(ValidationRejected):
            storage.drop_table()
        assert storage.count() == 0
    finally:
        sqlapi.close(storage)


@sql('sqlite')
class BadValues:

    @select("select 'not a number' as n")
    def number(self) -> int: ...


def test_unconvertible_value_raises_extraction_error():
    """Test that a value that cannot be read as the declared type fails"""
    storage = sqlapi.connect(BadValues, {'database': ':memory:'})
    try:
        with pytest.raises(ExtractionError):
            storage.number()
    finally:
        sqlapi.close(storage)
