import pytest
from fastapi.testclient import TestClient

from api import create_app
from database import MemoryStore, SQLiteStore
from library import Library


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    # Every test runs against both backends; SQLite gets a fresh file per test
    if request.param == "memory":
        s = MemoryStore()
    else:
        s = SQLiteStore(str(tmp_path / f"test_{request.node.name}.db"))
    yield s
    s.close()


@pytest.fixture
def lib(store):
    return Library(store)


@pytest.fixture
def client(store):
    return TestClient(create_app(store))


@pytest.fixture
def category(lib):
    return lib.create_category("Novel")


@pytest.fixture
def person(lib):
    return lib.create_person("Ada", "Lovelace", "ada", "ada@example.com")
