"""Exception hierarchy for the address book core and its storage adapters."""
from __future__ import annotations

from typing import Iterable, List, Optional


class AddressBookError(Exception):
    """Base exception for address book errors."""


class ValidationError(AddressBookError):
    """Input is malformed: missing required field, bad email, bad phone."""

    def __init__(self, message: str, fields: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.fields: List[str] = list(fields or [])


class CsvFormatError(ValidationError):
    """An uploaded CSV could not be decoded or tokenized."""


class ConflictError(AddressBookError):
    """Another contact already owns this email or phone."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        self.message = message or f"A contact with this {field} already exists."
        super().__init__(self.message)


class NotFoundError(AddressBookError):
    """No contact exists with the given identifier."""

    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Contact not found: {contact_id}")


class UpstreamStorageError(AddressBookError):
    """The persistence backend failed."""


class BulkInsertError(AddressBookError):
    """A bulk insert was partly rejected by a unique index."""

    def __init__(self, inserted_count: int, field: str = ""):
        self.inserted_count = inserted_count
        self.field = field
        super().__init__(
            f"bulk insert rejected by unique index on {field or 'unknown'}; "
            f"{inserted_count} inserted"
        )


__all__ = [
    "AddressBookError",
    "BulkInsertError",
    "ConflictError",
    "CsvFormatError",
    "NotFoundError",
    "UpstreamStorageError",
    "ValidationError",
]
