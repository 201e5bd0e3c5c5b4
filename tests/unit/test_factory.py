"""
Unit tests for the backend factory registry and the SQLAlchemy backends.
"""
import sqlite3

import pytest
import sqlalchemy as sa
from sqlapi import ConfigurationError, sql
from sqlapi.api import connect
from sqlapi.factory import EngineService, EngineSource, Factory, PostgresFactory
from sqlapi.factory import SQLiteFactory, check_connection, deregister_factory
from sqlapi.factory import get_available_factories, get_factory, is_supported_driver
from sqlapi.factory import register_factory
from sqlapi.factory.engine import get_raw_connection
from sqlapi.options import DatabaseOptions
from tests.fixtures.mocks import NullSource, RecordingService


class MockFactory(Factory):
    version = '2.7'

    def get_source(self, options):
        return NullSource(options)

    def get_service(self, source):
        return RecordingService(source)


@pytest.fixture
def mock_factory():
    register_factory('Mock')(MockFactory)
    yield MockFactory
    deregister_factory('mock')


def test_builtin_factories_registered():
    assert {'sqlite', 'postgresql'} <= set(get_available_factories())
    assert isinstance(get_factory('sqlite'), SQLiteFactory)
    assert isinstance(get_factory('postgresql'), PostgresFactory)


def test_lookup_is_case_insensitive():
    assert get_factory('SQLite') is get_factory('sqlite')
    assert is_supported_driver('POSTGRESQL')
    assert not is_supported_driver('')


def test_unknown_driver():
    with pytest.raises(ConfigurationError, match='No suitable factory'):
        get_factory('oracle')


def test_register_and_deregister(mock_factory):
    factory = get_factory('mock')

    assert factory.driver_type == 'mock'
    assert factory.major_version == 2
    assert factory.minor_version == 7

    deregister_factory('MOCK')
    assert not is_supported_driver('mock')
    with pytest.raises(ConfigurationError):
        get_factory('mock')


def test_connect_with_custom_factory(mock_factory):
    """Test an API bound to a registered factory and a given source"""
    @sql('mock')
    class Api:
        pass

    api = connect(Api, NullSource())

    assert isinstance(api, Api)


def test_connect_rejects_undeclared_api():
    class Api:
        pass

    with pytest.raises(ConfigurationError):
        connect(Api, {'database': ':memory:'})
    with pytest.raises(ConfigurationError):
        connect(Api(), {'database': ':memory:'})


def test_connect_rejects_mismatched_options():
    @sql('sqlite')
    class Api:
        pass

    options = DatabaseOptions(drivername='postgresql', hostname='h', username='u',
                              password='p', database='d', port=5432, timeout=5)
    with pytest.raises(ConfigurationError):
        connect(Api, options)


def test_sqlite_url():
    url = get_factory('sqlite').build_connection_url(DatabaseOptions(database='app.db'))

    assert url.drivername == 'sqlite'
    assert url.database == 'app.db'


def test_postgres_url():
    options = DatabaseOptions(drivername='postgresql', hostname='h', username='u',
                              password='p', database='d', port=5432, timeout=5)

    url = get_factory('postgresql').build_connection_url(options)

    assert url.drivername == 'postgresql+psycopg'
    assert url.host == 'h'
    assert url.port == 5432
    assert url.query['connect_timeout'] == '5'


def test_postgres_configure_enables_autocommit(mocker):
    raw_conn = mocker.Mock()
    raw_conn.autocommit = False

    get_factory('postgresql').configure_connection(raw_conn)

    assert raw_conn.autocommit is True


def test_sqlite_source_lazily_connects():
    source = get_factory('sqlite').get_source(DatabaseOptions(database=':memory:'))

    assert isinstance(source, EngineSource)
    assert not source.is_connected
    cursor = source.execute('select 1')
    assert cursor.fetchone() == (1,)
    assert source.is_connected
    assert source.calls == 1

    source.close()
    assert not source.is_connected


def test_sqlite_connection_configured():
    with get_factory('sqlite').get_source(DatabaseOptions(database=':memory:')) as source:
        conn = source.connection
        assert isinstance(conn, sqlite3.Connection)
        assert conn.isolation_level is None
        assert source.execute('pragma foreign_keys').fetchone() == (1,)
    assert not source.is_connected


def test_get_raw_connection(mocker):
    proxy = mocker.Mock(spec=['driver_connection'])
    proxy.driver_connection = 'raw'

    assert get_raw_connection(proxy) == 'raw'
    assert get_raw_connection('plain') == 'plain'


def test_engine_service_verbs():
    factory = get_factory('sqlite')
    source = factory.get_source(DatabaseOptions(database=':memory:'))
    service = factory.get_service(source)

    assert isinstance(service, EngineService)
    assert service.create('create table t (id int, name text)') is True
    assert service.insert("insert into t values (1, 'a'), (2, 'b')") is True
    assert service.raw('update t set name = name') == 2
    assert [r.name for r in service.raw('select name from t order by id')] == ['a', 'b']
    assert service.delete('delete from t') is True
    assert service.drop('drop table t') is True
    source.close()


def test_backend_errors_propagate():
    source = get_factory('sqlite').get_source(DatabaseOptions(database=':memory:'))
    service = get_factory('sqlite').get_service(source)

    with pytest.raises(sqlite3.OperationalError):
        service.insert('insert into missing values (1)')
    source.close()


def test_service_requires_source():
    with pytest.raises(ValueError):
        EngineService(None)


def test_check_connection_retries(mocker):
    """Test connection retry with backoff"""
    sleep = mocker.Mock()
    attempts = mocker.Mock(side_effect=[sqlite3.OperationalError('locked'), 'ok'])

    wrapped = check_connection(attempts, max_retries=3, retry_delay=0.5, sleep_func=sleep)

    assert wrapped() == 'ok'
    assert attempts.call_count == 2
    sleep.assert_called_once_with(0.5)


def test_check_connection_gives_up(mocker):
    attempts = mocker.Mock(side_effect=sa.exc.OperationalError('select', {}, Exception('down')))

    wrapped = check_connection(attempts, max_retries=2, sleep_func=mocker.Mock())

    with pytest.raises(sa.exc.OperationalError):
        wrapped()
    assert attempts.call_count == 2
