"""
Durable storage for the booking service.

Each key holds one whole JSON collection (all bookings, all users, the
current session) together with a version number. Writes are compare-and-swap
on that version, so a writer that read a stale copy is told so instead of
silently overwriting someone else's change.
"""
import asyncio
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from pymongo import MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import PersistenceFailure, StaleWrite

logger = logging.getLogger(__name__)


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Optional[Database]:
    url = url or os.getenv("DATABASE_URL")
    name = name or os.getenv("DATABASE_NAME", "ambulance")
    if not url:
        return None
    return MongoClient(url)[name]


class Storage(ABC):
    """Keyed JSON storage. ``get_item`` returns ``(value, version)``; an
    absent key reads as ``(None, 0)``."""

    name = "storage"

    @abstractmethod
    async def get_item(self, key: str) -> Tuple[Any, int]:
        raise NotImplementedError

    @abstractmethod
    async def set_item(self, key: str, value: Any, expected_version: int) -> int:
        raise NotImplementedError

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        raise NotImplementedError

    async def ping(self) -> Dict[str, Any]:
        return {"backend": self.name}


class MemoryStorage(Storage):
    name = "memory"

    def __init__(self):
        # values kept as serialized text so no caller can hold a live reference
        self._items: Dict[str, Tuple[int, str]] = {}
        self._lock = threading.Lock()

    async def get_item(self, key):
        with self._lock:
            version, text = self._items.get(key, (0, None))
        return (json.loads(text) if text is not None else None), version

    async def set_item(self, key, value, expected_version):
        text = json.dumps(value)
        with self._lock:
            current, _ = self._items.get(key, (0, None))
            if current != expected_version:
                raise StaleWrite(key)
            self._items[key] = (current + 1, text)
            return current + 1

    async def remove_item(self, key):
        with self._lock:
            self._items.pop(key, None)

    async def ping(self):
        return {"backend": self.name, "keys": sorted(self._items)}


class JsonFileStorage(Storage):
    """One JSON file per key under ``directory``.

    The version check is atomic within this process only; several processes
    sharing a directory can still race, use :class:`MongoStorage` for that.
    """
    name = "file"

    def __init__(self, directory: str):
        self.directory = directory
        self._lock = threading.Lock()
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key.lstrip("@"))
        return os.path.join(self.directory, f"{safe}.json")

    def _read(self, key: str) -> Tuple[Any, int]:
        path = self._path(key)
        if not os.path.exists(path):
            return None, 0
        with open(path, "r", encoding="utf-8") as fh:
            doc = json.load(fh)
        return doc.get("value"), int(doc.get("version", 0))

    def _write(self, key: str, value: Any, expected_version: int) -> int:
        with self._lock:
            _, current = self._read(key)
            if current != expected_version:
                raise StaleWrite(key)
            path = self._path(key)
            tmp = f"{path}.tmp"
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump({"version": current + 1, "value": value}, fh)
            os.replace(tmp, path)
            return current + 1

    def _remove(self, key: str) -> None:
        with self._lock:
            path = self._path(key)
            if os.path.exists(path):
                os.remove(path)

    async def get_item(self, key):
        try:
            return await asyncio.to_thread(self._read, key)
        except (OSError, ValueError) as e:
            raise PersistenceFailure(f"Reading {key} failed: {e}") from e

    async def set_item(self, key, value, expected_version):
        try:
            return await asyncio.to_thread(self._write, key, value, expected_version)
        except (OSError, TypeError) as e:
            raise PersistenceFailure(f"Writing {key} failed: {e}") from e

    async def remove_item(self, key):
        try:
            await asyncio.to_thread(self._remove, key)
        except OSError as e:
            raise PersistenceFailure(f"Removing {key} failed: {e}") from e

    async def ping(self):
        return {"backend": self.name, "directory": self.directory}


class MongoStorage(Storage):
    """Keys stored as documents ``{_id: key, version, value}``.

    The version filter on ``update_one`` makes the compare-and-swap atomic on
    the server, which closes the lost-update race between processes.
    """
    name = "mongo"

    def __init__(self, database: Database, collection: str = "kv"):
        self.database = database
        self.collection = database[collection]

    def _read(self, key):
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None, 0
        return doc.get("value"), int(doc.get("version", 0))

    def _write(self, key, value, expected_version):
        if expected_version == 0:
            try:
                self.collection.insert_one({"_id": key, "version": 1, "value": value})
            except DuplicateKeyError:
                raise StaleWrite(key) from None
            return 1
        result = self.collection.update_one(
            {"_id": key, "version": expected_version},
            {"$set": {"value": value, "version": expected_version + 1}},
        )
        if result.matched_count == 0:
            raise StaleWrite(key)
        return expected_version + 1

    async def get_item(self, key):
        try:
            return await asyncio.to_thread(self._read, key)
        except PyMongoError as e:
            raise PersistenceFailure(f"Reading {key} failed: {str(e)[:80]}") from e

    async def set_item(self, key, value, expected_version):
        try:
            return await asyncio.to_thread(self._write, key, value, expected_version)
        except PyMongoError as e:
            raise PersistenceFailure(f"Writing {key} failed: {str(e)[:80]}") from e

    async def remove_item(self, key):
        try:
            await asyncio.to_thread(self.collection.delete_one, {"_id": key})
        except PyMongoError as e:
            raise PersistenceFailure(f"Removing {key} failed: {str(e)[:80]}") from e

    async def ping(self):
        try:
            names = await asyncio.to_thread(self.database.list_collection_names)
        except PyMongoError as e:
            raise PersistenceFailure(f"Connected but Error: {str(e)[:80]}") from e
        return {"backend": self.name, "database_name": self.database.name, "collections": names[:10]}


def build_storage(settings) -> Storage:
    backend = settings.backend()
    logger.info("Using %s storage backend", backend)
    if backend == "memory":
        return MemoryStorage()
    if backend == "mongo":
        database = connect(settings.database_url, settings.database_name)
        if database is None:
            raise PersistenceFailure("DATABASE_URL not set")
        return MongoStorage(database)
    return JsonFileStorage(settings.storage_dir or "./data")
