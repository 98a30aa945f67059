from __future__ import annotations

from typing import Any

from .config_loader import AppConfig, load_app_config
from .errors import (
    AddressBookError,
    ConflictError,
    CsvFormatError,
    NotFoundError,
    UpstreamStorageError,
    ValidationError,
)
from .models import Contact, ImportRow
from .normalization import (
    ValidationSettings,
    email_domain,
    fold,
    is_valid_avatar,
    is_valid_email,
    is_valid_phone,
    safe_get,
)
from .query import ContactQuery, Page, list_contacts, parse_pagination, sort_key
from .repository import ContactRepository, InMemoryContactRepository
from .uniqueness import Conflict, find_conflict

__all__ = [
    "AddressBookError",
    "AppConfig",
    "Conflict",
    "ConflictError",
    "Contact",
    "ContactQuery",
    "ContactRepository",
    "CsvFormatError",
    "ImportRow",
    "InMemoryContactRepository",
    "NotFoundError",
    "Page",
    "UpstreamStorageError",
    "ValidationError",
    "ValidationSettings",
    "email_domain",
    "find_conflict",
    "fold",
    "is_valid_avatar",
    "is_valid_email",
    "is_valid_phone",
    "list_contacts",
    "load_config",
    "parse_pagination",
    "safe_get",
    "sort_key",
]


def load_config(args: Any) -> AppConfig:
    return load_app_config(args)
