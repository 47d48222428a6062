"""Storage backends: versioned compare-and-swap semantics."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from config import Settings
from database import JsonFileStorage, MemoryStorage, MongoStorage, Storage, build_storage
from errors import PersistenceFailure, StaleWrite
from tests.conftest import run


def _exercise_cas(storage) -> None:
    async def scenario():
        assert await storage.get_item("@things") == (None, 0)
        version = await storage.set_item("@things", [1], 0)
        assert version == 1
        assert await storage.get_item("@things") == ([1], 1)
        with pytest.raises(StaleWrite):
            await storage.set_item("@things", [2], 0)
        assert await storage.set_item("@things", [1, 2], 1) == 2
        assert await storage.get_item("@things") == ([1, 2], 2)
        await storage.remove_item("@things")
        assert await storage.get_item("@things") == (None, 0)

    run(scenario())


def test_memory_storage_cas() -> None:
    _exercise_cas(MemoryStorage())


def test_storage_contract_is_abstract() -> None:
    with pytest.raises(TypeError):
        Storage()


def test_memory_storage_returns_copies() -> None:
    storage = MemoryStorage()

    async def scenario():
        await storage.set_item("k", [{"a": 1}], 0)
        value, _ = await storage.get_item("k")
        value[0]["a"] = 99
        return await storage.get_item("k")

    assert run(scenario()) == ([{"a": 1}], 1)


def test_json_file_storage_cas(tmp_path) -> None:
    _exercise_cas(JsonFileStorage(str(tmp_path)))


def test_json_file_storage_persists_across_instances(tmp_path) -> None:
    run(JsonFileStorage(str(tmp_path)).set_item("@ambulance_bookings", [{"id": "1"}], 0))

    assert run(JsonFileStorage(str(tmp_path)).get_item("@ambulance_bookings")) == ([{"id": "1"}], 1)
    on_disk = json.loads((tmp_path / "ambulance_bookings.json").read_text())
    assert on_disk == {"version": 1, "value": [{"id": "1"}]}


def test_json_file_storage_reports_corrupt_file(tmp_path) -> None:
    (tmp_path / "broken.json").write_text("{not json")

    with pytest.raises(PersistenceFailure):
        run(JsonFileStorage(str(tmp_path)).get_item("broken"))


class _FakeCollection:
    def __init__(self):
        self.docs = {}

    def find_one(self, query):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    def insert_one(self, doc):
        if doc["_id"] in self.docs:
            raise DuplicateKeyError("duplicate key")
        self.docs[doc["_id"]] = dict(doc)

    def update_one(self, query, update):
        doc = self.docs.get(query["_id"])
        if doc is None or doc["version"] != query["version"]:
            return SimpleNamespace(matched_count=0)
        doc.update(update["$set"])
        return SimpleNamespace(matched_count=1)

    def delete_one(self, query):
        self.docs.pop(query["_id"], None)


class _FakeDatabase:
    name = "ambulance"

    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, _FakeCollection())

    def list_collection_names(self):
        return list(self.collections)


def test_mongo_storage_cas() -> None:
    _exercise_cas(MongoStorage(_FakeDatabase()))


def test_mongo_storage_wraps_driver_errors() -> None:
    database = _FakeDatabase()
    storage = MongoStorage(database)

    def unreachable(query):
        raise ServerSelectionTimeoutError("no servers")

    storage.collection.find_one = unreachable

    with pytest.raises(PersistenceFailure):
        run(storage.get_item("@ambulance_bookings"))


def test_mongo_storage_ping() -> None:
    storage = MongoStorage(_FakeDatabase())

    info = run(storage.ping())

    assert info["backend"] == "mongo"
    assert info["collections"] == ["kv"]


def test_build_storage_selects_backend(tmp_path) -> None:
    assert isinstance(build_storage(Settings(storage="memory")), MemoryStorage)
    assert isinstance(build_storage(Settings(storage="file", storage_dir=str(tmp_path))), JsonFileStorage)
    with pytest.raises(PersistenceFailure):
        build_storage(Settings(storage="mongo", database_url=None))
