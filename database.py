"""
Record store for CivicGuard

Thin layer over a pymongo database. Documents are keyed by UUID strings in
`_id`; reads hand them back with the key renamed to `id`. Collections:
credentials, users, reports, badges, user_badges, revoked_tokens.
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)

Sort = Sequence[Tuple[str, int]]


class RecordStoreError(Exception):
    """A read or write against the record store failed."""


class DuplicateRecordError(RecordStoreError):
    """A write collided with a unique index."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


@contextmanager
def _wrap(action: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as e:
        raise DuplicateRecordError(f"{action}: {e}") from e
    except PyMongoError as e:
        logger.error("Record store %s failed: %s", action, e)
        raise RecordStoreError(f"{action}: {e}") from e


class RecordStore:
    def __init__(self, db: Database, client: Optional[MongoClient] = None):
        self.db = db
        self._client = client

    def ensure_indexes(self) -> None:
        with _wrap("create indexes"):
            self.db["reports"].create_index("ticket_id", unique=True)
            self.db["reports"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
            self.db["reports"].create_index([("created_at", DESCENDING)])
            self.db["users"].create_index("email", unique=True)
            self.db["credentials"].create_index("email", unique=True)
            self.db["users"].create_index([("reputation_points", DESCENDING)])
            # TTL: revoked entries are dropped at the token's own expiry
            self.db["revoked_tokens"].create_index("expires_at", expireAfterSeconds=0)

    def collection_names(self) -> List[str]:
        with _wrap("list collections"):
            return self.db.list_collection_names()

    def create_document(self, collection: str, data: Dict[str, Any]) -> str:
        """Insert one document, stamping timestamps. Returns its id."""
        doc = dict(data)
        doc["_id"] = str(doc.pop("id", None) or uuid.uuid4())
        now = _now()
        doc.setdefault("created_at", now)
        doc["updated_at"] = now
        with _wrap(f"insert into {collection}"):
            self.db[collection].insert_one(doc)
        return doc["_id"]

    def get_documents(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        sort: Optional[Sort] = None,
        projection: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        with _wrap(f"select from {collection}"):
            cursor = self.db[collection].find(filter_dict or {}, projection)
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            return [_public(d) for d in cursor]

    def find_one(
        self,
        collection: str,
        filter_dict: Dict[str, Any],
        projection: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        with _wrap(f"select from {collection}"):
            return _public(self.db[collection].find_one(filter_dict, projection))

    def update_document(self, collection: str, filter_dict: Dict[str, Any], values: Dict[str, Any]) -> int:
        """Set fields on the first matching document. Returns the match count."""
        with _wrap(f"update {collection}"):
            res = self.db[collection].update_one(filter_dict, {"$set": {**values, "updated_at": _now()}})
        return res.matched_count

    def upsert_document(
        self,
        collection: str,
        filter_dict: Dict[str, Any],
        values: Dict[str, Any],
        defaults: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Set `values`; `defaults` only apply when the upsert inserts."""
        now = _now()
        on_insert = {k: v for k, v in (defaults or {}).items() if k not in values and k != "_id"}
        on_insert["created_at"] = now
        with _wrap(f"upsert {collection}"):
            self.db[collection].update_one(
                filter_dict,
                {"$set": {**values, "updated_at": now}, "$setOnInsert": on_insert},
                upsert=True,
            )

    def delete_document(self, collection: str, filter_dict: Dict[str, Any]) -> int:
        with _wrap(f"delete from {collection}"):
            res = self.db[collection].delete_one(filter_dict)
        return res.deleted_count

    def count_documents(self, collection: str, filter_dict: Optional[Dict[str, Any]] = None) -> int:
        with _wrap(f"count {collection}"):
            return self.db[collection].count_documents(filter_dict or {})

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


def connect(database_url: str, database_name: str) -> RecordStore:
    """Open a client against `database_url` and prepare indexes."""
    client = MongoClient(database_url)
    store = RecordStore(client[database_name], client)
    store.ensure_indexes()
    logger.info("Record store ready: %s", database_name)
    return store
