"""
MongoDB access for the shop backend.

Each record kind lives in its own collection and is reached through a
``MongoStore`` keyed by its business identity (``id``, ``qrId``, ``orderId``).
pymongo errors are translated into the service error taxonomy here so that
nothing above this module needs to know about pymongo.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    PyMongoError,
)

import config
from errors import ConflictError, ServiceError, StoreUnavailableError

logger = logging.getLogger(__name__)

SortSpec = Sequence[Tuple[str, int]]


def get_database(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    """Build a client from config. MongoClient connects lazily on first use."""
    client = MongoClient(
        url or config.DATABASE_URL,
        serverSelectionTimeoutMS=config.DATABASE_TIMEOUT_MS,
        socketTimeoutMS=config.DATABASE_TIMEOUT_MS,
    )
    return client[name or config.DATABASE_NAME]


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {k: v for k, v in doc.items() if k != "_id"}
    # convert datetime to iso
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = v.isoformat()
    return d


@contextmanager
def translate_errors(collection: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as e:
        raise ConflictError(f"Duplicate {collection} record") from e
    except (ConnectionFailure, NetworkTimeout, ExecutionTimeout) as e:
        logger.error("Database unavailable while accessing %s: %s", collection, e)
        raise StoreUnavailableError("Database unavailable, try again later") from e
    except PyMongoError as e:
        logger.error("Database error while accessing %s: %s", collection, e)
        raise ServiceError(f"Database error: {str(e)[:80]}") from e


class MongoStore:
    """CRUD over one collection, addressed by a unique business key."""

    def __init__(self, collection: Collection, key: str):
        self.collection = collection
        self.key = key

    @property
    def name(self) -> str:
        return self.collection.name

    def ensure_indexes(self) -> None:
        with translate_errors(self.name):
            self.collection.create_index([(self.key, ASCENDING)], unique=True)

    def find(self, filter: Optional[Dict[str, Any]] = None, sort: Optional[SortSpec] = None) -> List[Dict[str, Any]]:
        with translate_errors(self.name):
            cursor = self.collection.find(filter or {})
            if sort:
                cursor = cursor.sort(list(sort))
            return [to_public(d) for d in cursor]

    def find_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with translate_errors(self.name):
            return to_public(self.collection.find_one(filter))

    def insert(self, record: Dict[str, Any]) -> Dict[str, Any]:
        with translate_errors(self.name):
            inserted_id = self.collection.insert_one(dict(record)).inserted_id
            created = self.collection.find_one({"_id": inserted_id})
        return to_public(created)

    def update_one(self, filter: Dict[str, Any], fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with translate_errors(self.name):
            doc = self.collection.find_one_and_update(
                filter, {"$set": fields}, return_document=ReturnDocument.AFTER
            )
        return to_public(doc)

    def delete_one(self, filter: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with translate_errors(self.name):
            return to_public(self.collection.find_one_and_delete(filter))

    def max_value(self, field: str) -> int:
        """Largest integer stored under ``field``, 0 for an empty collection."""
        with translate_errors(self.name):
            docs = list(self.collection.find({field: {"$exists": True}}).sort(field, -1).limit(1))
        return int(docs[0][field]) if docs else 0


class Counter:
    """Atomic integer sequence kept in a ``counters`` collection."""

    def __init__(self, collection: Collection, name: str):
        self.collection = collection
        self.name = name

    def next(self) -> int:
        with translate_errors(self.collection.name):
            doc = self.collection.find_one_and_update(
                {"_id": self.name},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        return int(doc["seq"])

    def bump(self, value: int) -> None:
        """Make sure later ``next()`` calls never hand out ``value`` again."""
        with translate_errors(self.collection.name):
            self.collection.update_one({"_id": self.name}, {"$max": {"seq": value}}, upsert=True)
