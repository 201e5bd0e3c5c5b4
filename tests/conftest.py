import pathlib
import site

import pytest
from sqlapi import environment

HERE = pathlib.Path(pathlib.Path(__file__).resolve()).parent
site.addsitedir(HERE)


@pytest.fixture(autouse=True)
def clear_environment():
    """Remove any named-template table before and after each test."""
    environment.clear()
    yield
    environment.clear()


pytest_plugins = [
    'tests.fixtures.mocks',
    'tests.fixtures.sqlite',
]
