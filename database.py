"""
Document store access for the CivicLens API.

Two implementations share the ``DocumentStore`` interface: ``MongoDocumentStore``
talks to MongoDB through pymongo, ``InMemoryDocumentStore`` keeps documents in
process for development and tests. Both raise ``pymongo.errors.DuplicateKeyError``
when a unique index is violated and ``PersistenceError`` for anything else.
"""

from __future__ import annotations

import copy
import logging
import re
import threading
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import PersistenceError
from settings import Settings

logger = logging.getLogger(__name__)

SortSpec = Sequence[Tuple[str, int]]


class DocumentStore(Protocol):
    """Operations the services need from the document database."""

    def ping(self) -> bool:
        ...

    def ensure_index(self, collection_name: str, field: str, unique: bool = False) -> None:
        ...

    def create_document(self, collection_name: str, data: dict) -> ObjectId:
        ...

    def get_document(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        ...

    def get_documents(
        self, collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[SortSpec] = None
    ) -> List[dict]:
        ...

    def close(self) -> None:
        ...


def _mask_uri(uri: str) -> str:
    return re.sub(r"//([^:/@]+):([^@]+)@", r"//\1:****@", uri)


class MongoDocumentStore:
    def __init__(self, uri: str, db_name: str, client: Optional[MongoClient] = None):
        self.client = client or MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)
        self.db = self.client[db_name]
        logger.info(f"Using MongoDB at {_mask_uri(uri)} (database: {db_name})")

    def ping(self) -> bool:
        try:
            self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    def ensure_index(self, collection_name: str, field: str, unique: bool = False) -> None:
        try:
            self.db[collection_name].create_index([(field, ASCENDING)], unique=unique)
        except PyMongoError as e:
            logger.error(f"Failed to create index {collection_name}.{field}: {e}")
            raise PersistenceError(str(e)) from e

    def create_document(self, collection_name: str, data: dict) -> ObjectId:
        try:
            result = self.db[collection_name].insert_one(dict(data))
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error(f"Insert into {collection_name} failed: {e}")
            raise PersistenceError(str(e)) from e
        return result.inserted_id

    def get_document(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        try:
            return self.db[collection_name].find_one(filter_dict)
        except PyMongoError as e:
            logger.error(f"Lookup in {collection_name} failed: {e}")
            raise PersistenceError(str(e)) from e

    def get_documents(
        self, collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[SortSpec] = None
    ) -> List[dict]:
        try:
            cursor = self.db[collection_name].find(filter_dict or {})
            if sort:
                cursor = cursor.sort(list(sort))
            return list(cursor)
        except PyMongoError as e:
            logger.error(f"Query on {collection_name} failed: {e}")
            raise PersistenceError(str(e)) from e

    def close(self) -> None:
        self.client.close()


def _matches(document: dict, filter_dict: dict) -> bool:
    for field, expected in filter_dict.items():
        value = document.get(field)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


class InMemoryDocumentStore:
    """Simple in-memory document store for development and tests.

    Supports equality and ``$in`` filters, multi-key sorting and unique
    single-field indexes, which is all the services use.
    """

    def __init__(self):
        self.collections: Dict[str, List[dict]] = {}
        self.unique_fields: Dict[str, set] = {}
        self._lock = threading.Lock()

    def reset(self) -> None:
        with self._lock:
            self.collections.clear()

    def ping(self) -> bool:
        return True

    def ensure_index(self, collection_name: str, field: str, unique: bool = False) -> None:
        if unique:
            with self._lock:
                self.unique_fields.setdefault(collection_name, set()).add(field)

    def create_document(self, collection_name: str, data: dict) -> ObjectId:
        document = copy.deepcopy(data)
        document.setdefault("_id", ObjectId())
        with self._lock:
            collection = self.collections.setdefault(collection_name, [])
            for field in self.unique_fields.get(collection_name, ()):
                if any(existing.get(field) == document.get(field) for existing in collection):
                    raise DuplicateKeyError(
                        f"E11000 duplicate key error collection: {collection_name} index: {field}_1"
                    )
            collection.append(document)
        return document["_id"]

    def get_document(self, collection_name: str, filter_dict: dict) -> Optional[dict]:
        with self._lock:
            for document in self.collections.get(collection_name, []):
                if _matches(document, filter_dict):
                    return copy.deepcopy(document)
        return None

    def get_documents(
        self, collection_name: str, filter_dict: Optional[dict] = None, sort: Optional[SortSpec] = None
    ) -> List[dict]:
        with self._lock:
            documents = [
                copy.deepcopy(d)
                for d in self.collections.get(collection_name, [])
                if _matches(d, filter_dict or {})
            ]
        # Stable sorts applied from the last key to the first
        for field, direction in reversed(list(sort or [])):
            documents.sort(key=lambda d: d.get(field), reverse=direction == DESCENDING)
        return documents

    def close(self) -> None:
        pass


def create_store(settings: Settings) -> DocumentStore:
    if settings.USE_IN_MEMORY_DB:
        logger.info("Using in-memory document store")
        return InMemoryDocumentStore()
    return MongoDocumentStore(settings.MONGO_URI, settings.MONGO_DB_NAME)


def ensure_indexes(store: DocumentStore) -> None:
    store.ensure_index("user", "email", unique=True)
    store.ensure_index("report", "user")
    store.ensure_index("report", "createdAt")
