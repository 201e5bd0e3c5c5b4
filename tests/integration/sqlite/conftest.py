"""
Fixtures for SQLite-specific integration tests.
"""
import pathlib
import time

import pytest
import sqlapi
from tests.fixtures.sqlite import UserStorage


@pytest.fixture
def sqlite_file_storage():
    """File-based storage for testing persistence across connections."""
    db_file = f'./test_sqlapi_{int(time.time() * 1000)}.db'

    storage = sqlapi.connect(UserStorage, {'database': db_file})
    storage.create_table('users')
    storage.add(1, 'Ada', None)

    yield storage, db_file

    sqlapi.close(storage)
    if pathlib.Path(db_file).exists():
        pathlib.Path(db_file).unlink()
