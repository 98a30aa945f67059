"""MongoDB backend for the contact repository."""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, TEXT, MongoClient, UpdateOne
from pymongo.collection import Collection
from pymongo.errors import BulkWriteError, DuplicateKeyError, PyMongoError

from .errors import BulkInsertError, ConflictError, UpstreamStorageError
from .models import Contact, is_stale_document
from .query import ContactQuery

logger = logging.getLogger(__name__)

DUPLICATE_KEY = 11000
SORT_SPEC = [("nameNormalized", ASCENDING), ("name", ASCENDING), ("_id", ASCENDING)]
INDEX_FIELDS = {"emailNormalized": "email", "phone": "phone"}


def build_filter(query: ContactQuery) -> Dict[str, Any]:
    if query.search is None:
        return {}
    pattern = re.escape(query.search)
    return {
        "$or": [
            {"nameNormalized": {"$regex": pattern}},
            {"emailNormalized": {"$regex": pattern}},
            {"phone": {"$regex": pattern, "$options": "i"}},
        ]
    }


def _conflict_field(details: Optional[Dict[str, Any]]) -> str:
    details = details or {}
    keys = list((details.get("keyPattern") or details.get("keyValue") or {}).keys())
    for key in keys:
        if key in INDEX_FIELDS:
            return INDEX_FIELDS[key]
    message = str(details.get("errmsg", ""))
    for key, field in INDEX_FIELDS.items():
        if key in message:
            return field
    return "email"


def _object_id(contact_id: Optional[str]) -> Optional[ObjectId]:
    try:
        return ObjectId(contact_id)
    except (InvalidId, TypeError):
        return None


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except DuplicateKeyError as exc:
        raise ConflictError(_conflict_field(exc.details)) from exc
    except BulkWriteError:
        raise
    except PyMongoError as exc:
        logger.error("MongoDB %s failed: %s", operation, exc)
        raise UpstreamStorageError(f"storage failure during {operation}") from exc


class MongoContactRepository:
    def __init__(self, collection: Collection):
        self.collection = collection

    @classmethod
    def connect(cls, uri: str, database: str, collection: str) -> "MongoContactRepository":
        client: MongoClient = MongoClient(uri)
        return cls(client[database][collection])

    def ensure_indexes(self) -> None:
        with _storage_errors("create_index"):
            self.collection.create_index(
                [("name", TEXT), ("email", TEXT), ("phone", TEXT)], name="contact_text"
            )
            self.collection.create_index([("nameNormalized", ASCENDING)], name="name_normalized")
            self.collection.create_index(
                [("emailNormalized", ASCENDING)],
                name="email_normalized_unique",
                unique=True,
                partialFilterExpression={"emailNormalized": {"$type": "string"}},
            )
            self.collection.create_index(
                [("phone", ASCENDING)],
                name="phone_unique",
                unique=True,
                partialFilterExpression={"phone": {"$type": "string"}},
            )

    def insert(self, contact: Contact) -> Contact:
        doc = contact.to_document()
        with _storage_errors("insert"):
            result = self.collection.insert_one(doc)
        return contact.with_changes(id=str(result.inserted_id))

    def insert_many(self, contacts: List[Contact]) -> int:
        if not contacts:
            return 0
        docs = [contact.to_document() for contact in contacts]
        try:
            with _storage_errors("insert_many"):
                result = self.collection.insert_many(docs, ordered=False)
        except BulkWriteError as exc:
            details = exc.details or {}
            errors = details.get("writeErrors", [])
            if errors and all(err.get("code") == DUPLICATE_KEY for err in errors):
                raise BulkInsertError(
                    int(details.get("nInserted", 0)), _conflict_field(errors[0])
                ) from exc
            logger.error("MongoDB insert_many failed: %s", exc)
            raise UpstreamStorageError("storage failure during insert_many") from exc
        return len(result.inserted_ids)

    def get(self, contact_id: str) -> Optional[Contact]:
        oid = _object_id(contact_id)
        if oid is None:
            return None
        with _storage_errors("find_one"):
            doc = self.collection.find_one({"_id": oid})
        return Contact.from_document(doc) if doc else None

    def replace(self, contact: Contact) -> Optional[Contact]:
        oid = _object_id(contact.id)
        if oid is None:
            return None
        with _storage_errors("replace_one"):
            result = self.collection.replace_one({"_id": oid}, contact.to_document())
        if result.matched_count == 0:
            return None
        return contact

    def delete(self, contact_id: str) -> bool:
        oid = _object_id(contact_id)
        if oid is None:
            return False
        with _storage_errors("delete_one"):
            result = self.collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    def delete_all(self) -> int:
        with _storage_errors("delete_many"):
            result = self.collection.delete_many({})
        return result.deleted_count

    def find_by_keys(
        self,
        emails_normalized: Iterable[str],
        phones: Iterable[str],
        exclude_id: Optional[str] = None,
    ) -> List[Contact]:
        spec: Dict[str, Any] = {
            "$or": [
                {"emailNormalized": {"$in": sorted(set(emails_normalized))}},
                {"phone": {"$in": sorted(set(phones))}},
            ]
        }
        oid = _object_id(exclude_id) if exclude_id else None
        if oid is not None:
            spec["_id"] = {"$ne": oid}
        with _storage_errors("find"):
            return [Contact.from_document(doc) for doc in self.collection.find(spec)]

    def find_page(self, query: ContactQuery) -> Tuple[List[Contact], int]:
        spec = build_filter(query)
        with _storage_errors("find"):
            cursor = self.collection.find(spec).sort(SORT_SPEC).skip(query.skip)
            if query.limit is not None:
                cursor = cursor.limit(query.limit)
            items = [Contact.from_document(doc) for doc in cursor]
            total = self.collection.count_documents(spec)
        return items, total

    def list_all(self) -> List[Contact]:
        with _storage_errors("find"):
            return [Contact.from_document(doc) for doc in self.collection.find().sort(SORT_SPEC)]

    def backfill_normalized(self) -> int:
        projection = {"name": 1, "email": 1, "nameNormalized": 1, "emailNormalized": 1}
        operations = []
        with _storage_errors("find"):
            for doc in self.collection.find({}, projection):
                if not is_stale_document(doc):
                    continue
                fresh = Contact.from_document(doc)
                operations.append(
                    UpdateOne(
                        {"_id": doc["_id"]},
                        {
                            "$set": {
                                "nameNormalized": fresh.name_normalized,
                                "emailNormalized": fresh.email_normalized,
                            }
                        },
                    )
                )
        if not operations:
            return 0
        try:
            with _storage_errors("bulk_write"):
                result = self.collection.bulk_write(operations, ordered=False)
        except BulkWriteError as exc:
            details = exc.details or {}
            logger.warning(
                "Backfill skipped %d record(s) that collide on a unique index",
                len(details.get("writeErrors", [])),
            )
            return int(details.get("nModified", 0))
        return result.modified_count
