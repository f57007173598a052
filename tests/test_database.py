import os

import pytest

from config import Settings
from database import (
    DuplicateRecordError,
    Entity,
    MemoryStore,
    SQLiteStore,
    StoreError,
    create_store,
)


def _category(store, name="Novel"):
    return store.insert(Entity.CATEGORIES, {"name": name})


def _book(store, category_id, person_id=0):
    return store.insert(Entity.BOOKS, {
        "title": "Ficciones",
        "description": "Stories",
        "category_id": category_id,
        "person_id": person_id,
    })


def test_insert_and_get(store):
    category_id = _category(store)
    row = store.get(Entity.CATEGORIES, category_id)
    assert row == {"id": category_id, "name": "Novel"}
    assert store.get(Entity.CATEGORIES, category_id + 1) is None


def test_list_with_filters_is_ordered(store):
    first = _category(store, "A")
    second = _category(store, "B")
    _book(store, second)
    _book(store, first)
    _book(store, second, person_id=3)

    assert [r["id"] for r in store.list(Entity.CATEGORIES)] == [first, second]
    rows = store.list(Entity.BOOKS, category_id=second)
    assert len(rows) == 2
    assert rows[0]["id"] < rows[1]["id"]
    assert [r["person_id"] for r in store.list(Entity.BOOKS, category_id=second, person_id=3)] == [3]


def test_unknown_column_is_rejected(store):
    with pytest.raises(ValueError):
        store.list(Entity.BOOKS, author="Borges")
    with pytest.raises(ValueError):
        store.insert(Entity.CATEGORIES, {"name": "x", "colour": "red"})


def test_unique_column(store):
    store.insert(Entity.PERSONS, {"first_name": "A", "last_name": "B", "alias": "ab", "email": "a@b.c"})
    with pytest.raises(DuplicateRecordError):
        store.insert(Entity.PERSONS, {"first_name": "C", "last_name": "D", "alias": "cd", "email": "a@b.c"})
    assert len(store.list(Entity.PERSONS)) == 1


def test_conditional_update(store):
    book_id = _book(store, _category(store))

    assert store.update_fields(Entity.BOOKS, book_id, {"person_id": 7}, expected={"person_id": 0}) is True
    assert store.update_fields(Entity.BOOKS, book_id, {"person_id": 8}, expected={"person_id": 0}) is False
    assert store.get(Entity.BOOKS, book_id)["person_id"] == 7

    assert store.update_fields(Entity.BOOKS, book_id, {"description": "More stories"}) is True
    assert store.get(Entity.BOOKS, book_id)["description"] == "More stories"


def test_update_missing_row(store):
    assert store.update_fields(Entity.BOOKS, 404, {"person_id": 1}) is False


def test_update_requires_fields(store):
    with pytest.raises(ValueError):
        store.update_fields(Entity.BOOKS, 1, {})


def test_conditional_delete(store):
    book_id = _book(store, _category(store), person_id=2)
    assert store.delete(Entity.BOOKS, book_id, expected={"person_id": 0}) is False
    assert store.get(Entity.BOOKS, book_id) is not None
    assert store.delete(Entity.BOOKS, book_id) is True
    assert store.delete(Entity.BOOKS, book_id) is False


def _person(store):
    return store.insert(Entity.PERSONS, {"first_name": "A", "last_name": "B", "alias": "ab", "email": "a@b.c"})


def test_update_requires_other_row(store):
    book_id = _book(store, _category(store))
    person_id = _person(store)

    assert store.update_fields(
        Entity.BOOKS, book_id, {"person_id": person_id + 1},
        expected={"person_id": 0}, requires=(Entity.PERSONS, person_id + 1),
    ) is False
    assert store.get(Entity.BOOKS, book_id)["person_id"] == 0

    assert store.update_fields(
        Entity.BOOKS, book_id, {"person_id": person_id},
        expected={"person_id": 0}, requires=(Entity.PERSONS, person_id),
    ) is True
    assert store.get(Entity.BOOKS, book_id)["person_id"] == person_id


def test_delete_unreferenced_by(store):
    category_id = _category(store)
    person_id = _person(store)
    book_id = _book(store, category_id, person_id=person_id)

    assert store.delete(Entity.PERSONS, person_id, unreferenced_by=(Entity.BOOKS, "person_id")) is False
    assert store.delete(Entity.CATEGORIES, category_id, unreferenced_by=(Entity.BOOKS, "category_id")) is False
    assert store.get(Entity.PERSONS, person_id) is not None

    store.update_fields(Entity.BOOKS, book_id, {"person_id": 0})
    assert store.delete(Entity.PERSONS, person_id, unreferenced_by=(Entity.BOOKS, "person_id")) is True
    assert store.get(Entity.PERSONS, person_id) is None


def test_unreferenced_by_unknown_column(store):
    with pytest.raises(ValueError):
        store.delete(Entity.PERSONS, 1, unreferenced_by=(Entity.BOOKS, "holder"))


def test_sqlite_persists_between_instances(tmp_path):
    db_file = str(tmp_path / "library.db")
    first = SQLiteStore(db_file)
    category_id = _category(first, "Essays")

    second = SQLiteStore(db_file)
    assert second.get(Entity.CATEGORIES, category_id)["name"] == "Essays"


def test_sqlite_foreign_key_failure_is_store_error(tmp_path):
    store = SQLiteStore(str(tmp_path / "library.db"))
    with pytest.raises(StoreError) as exc:
        _book(store, category_id=99)
    assert not isinstance(exc.value, DuplicateRecordError)


def test_sqlite_unusable_path_is_store_error(tmp_path):
    with pytest.raises(StoreError):
        SQLiteStore(str(tmp_path / "missing" / "dir" / "library.db"))


def test_create_store_backends(tmp_path):
    db_file = str(tmp_path / "library.db")
    assert isinstance(create_store(Settings(store_backend="memory")), MemoryStore)
    assert isinstance(create_store(Settings(store_backend="sqlite", database_file=db_file)), SQLiteStore)
    assert os.path.exists(db_file)
    with pytest.raises(ValueError):
        create_store(Settings(store_backend="postgres"))
