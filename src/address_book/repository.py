"""Persistence port for contacts and an in-memory backend."""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from .errors import BulkInsertError, ConflictError
from .models import Contact, is_stale_document
from .query import ContactQuery, sort_key

logger = logging.getLogger(__name__)


class ContactRepository(Protocol):
    """Stores contacts and enforces unique ``email_normalized`` and ``phone``."""

    def insert(self, contact: Contact) -> Contact:
        """Store a new contact and return it with its identifier.

        Raises ConflictError when a unique index rejects the write.
        """
        ...

    def insert_many(self, contacts: List[Contact]) -> int:
        """Store contacts in one bulk operation and return how many were written.

        Raises BulkInsertError when a unique index rejects some of them.
        """
        ...

    def get(self, contact_id: str) -> Optional[Contact]:
        ...

    def replace(self, contact: Contact) -> Optional[Contact]:
        """Overwrite the stored contact with ``contact.id``; None if unknown."""
        ...

    def delete(self, contact_id: str) -> bool:
        ...

    def delete_all(self) -> int:
        ...

    def find_by_keys(
        self,
        emails_normalized: Iterable[str],
        phones: Iterable[str],
        exclude_id: Optional[str] = None,
    ) -> List[Contact]:
        """Contacts whose email_normalized or phone is in the given sets."""
        ...

    def find_page(self, query: ContactQuery) -> Tuple[List[Contact], int]:
        """Matching contacts for one page, plus the full matching count."""
        ...

    def list_all(self) -> List[Contact]:
        ...

    def backfill_normalized(self) -> int:
        """Recompute stale derived fields in storage; return how many changed."""
        ...


class InMemoryContactRepository:
    """Dict-backed store mirroring the document layout and unique indexes.

    Documents are kept in their storage shape so that records written
    without derived fields can be seeded and backfilled.
    """

    def __init__(self, documents: Optional[Iterable[dict]] = None) -> None:
        self._docs: Dict[str, dict] = {}
        self._lock = threading.Lock()
        for doc in documents or []:
            payload = dict(doc)
            doc_id = str(payload.pop("_id", None) or uuid.uuid4().hex)
            self._docs[doc_id] = payload

    @staticmethod
    def _to_contact(doc_id: str, doc: dict) -> Contact:
        return Contact.from_document({"_id": doc_id, **doc})

    def _conflicting_field(self, doc: dict, exclude_id: Optional[str] = None) -> str:
        for doc_id, other in self._docs.items():
            if doc_id == exclude_id:
                continue
            if other.get("emailNormalized") and other.get("emailNormalized") == doc["emailNormalized"]:
                return "email"
            if other.get("phone") == doc["phone"]:
                return "phone"
        return ""

    def insert(self, contact: Contact) -> Contact:
        doc = contact.to_document()
        with self._lock:
            field = self._conflicting_field(doc)
            if field:
                raise ConflictError(field)
            doc_id = uuid.uuid4().hex
            self._docs[doc_id] = doc
        return self._to_contact(doc_id, doc)

    def insert_many(self, contacts: List[Contact]) -> int:
        inserted = 0
        rejected_field = ""
        with self._lock:
            for contact in contacts:
                doc = contact.to_document()
                field = self._conflicting_field(doc)
                if field:
                    rejected_field = rejected_field or field
                    continue
                self._docs[uuid.uuid4().hex] = doc
                inserted += 1
        if rejected_field:
            raise BulkInsertError(inserted, rejected_field)
        return inserted

    def get(self, contact_id: str) -> Optional[Contact]:
        with self._lock:
            doc = self._docs.get(contact_id)
            return self._to_contact(contact_id, doc) if doc is not None else None

    def replace(self, contact: Contact) -> Optional[Contact]:
        if contact.id is None:
            return None
        doc = contact.to_document()
        with self._lock:
            if contact.id not in self._docs:
                return None
            field = self._conflicting_field(doc, exclude_id=contact.id)
            if field:
                raise ConflictError(field)
            self._docs[contact.id] = doc
        return self._to_contact(contact.id, doc)

    def delete(self, contact_id: str) -> bool:
        with self._lock:
            return self._docs.pop(contact_id, None) is not None

    def delete_all(self) -> int:
        with self._lock:
            count = len(self._docs)
            self._docs.clear()
        return count

    def _snapshot(self) -> List[Contact]:
        with self._lock:
            return [self._to_contact(doc_id, doc) for doc_id, doc in self._docs.items()]

    def find_by_keys(
        self,
        emails_normalized: Iterable[str],
        phones: Iterable[str],
        exclude_id: Optional[str] = None,
    ) -> List[Contact]:
        email_set = set(emails_normalized)
        phone_set = set(phones)
        return [
            contact
            for contact in self._snapshot()
            if contact.id != exclude_id
            and (contact.email_normalized in email_set or contact.phone in phone_set)
        ]

    def find_page(self, query: ContactQuery) -> Tuple[List[Contact], int]:
        return query.apply(self._snapshot())

    def list_all(self) -> List[Contact]:
        return sorted(self._snapshot(), key=sort_key)

    def _email_taken(self, email_normalized: str, exclude_id: str) -> bool:
        return any(
            doc_id != exclude_id and doc.get("emailNormalized") == email_normalized
            for doc_id, doc in self._docs.items()
        )

    def backfill_normalized(self) -> int:
        updated = 0
        collisions = 0
        with self._lock:
            for doc_id, doc in self._docs.items():
                if not is_stale_document(doc):
                    continue
                fresh = Contact.from_document(doc)
                if self._email_taken(fresh.email_normalized, doc_id):
                    collisions += 1
                    continue
                doc["nameNormalized"] = fresh.name_normalized
                doc["emailNormalized"] = fresh.email_normalized
                updated += 1
        if collisions:
            logger.warning(
                "Backfill skipped %d record(s) that collide on a unique index", collisions
            )
        return updated
