from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config_loader import AppConfig
from .csv_export import export_csv
from .csv_import import ImportSummary, import_csv
from .errors import ConflictError, NotFoundError, ValidationError
from .models import Contact
from .normalization import ValidationSettings, email_domain
from .query import Page, list_contacts
from .repository import ContactRepository
from .uniqueness import find_conflict

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "email", "phone", "avatar")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ContactStats:
    total: int = 0
    with_avatar: int = 0
    without_avatar: int = 0
    by_domain: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "withAvatar": self.with_avatar,
            "withoutAvatar": self.without_avatar,
            "byDomain": dict(self.by_domain),
        }


def invalid_fields(contact: Contact, settings: ValidationSettings) -> List[str]:
    fields: List[str] = []
    if not contact.name.strip():
        fields.append("name")
    if not settings.email_ok(contact.email):
        fields.append("email")
    if not settings.phone_ok(contact.phone):
        fields.append("phone")
    if contact.avatar and not settings.avatar_ok(contact.avatar):
        fields.append("avatar")
    return fields


def ensure_valid(contact: Contact, settings: ValidationSettings) -> None:
    fields = invalid_fields(contact, settings)
    if fields:
        raise ValidationError(f"Invalid or missing field(s): {', '.join(fields)}", fields=fields)


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


class ContactService:
    """The operations behind each HTTP endpoint."""

    def __init__(self, repository: ContactRepository, config: Optional[AppConfig] = None):
        self.repository = repository
        self.config = config or AppConfig()
        self.settings = self.config.validation.to_settings()

    def list(self, page: Any = None, limit: Any = None) -> Page:
        return list_contacts(
            self.repository,
            page=page,
            limit=limit,
            default_limit=self.config.pagination.default_limit,
        )

    def search(self, q: Optional[str], page: Any = None, limit: Any = None) -> Page:
        # An absent query searches for nothing, unlike list().
        return list_contacts(
            self.repository,
            search_term=q or "",
            page=page,
            limit=limit,
            default_limit=self.config.pagination.default_limit,
        )

    def get(self, contact_id: str) -> Contact:
        contact = self.repository.get(contact_id)
        if contact is None:
            raise NotFoundError(contact_id)
        return contact

    def _check_unique(self, contact: Contact, exclude_id: Optional[str] = None) -> None:
        conflict = find_conflict(contact, self.repository, exclude_id=exclude_id)
        if conflict is not None:
            raise ConflictError(conflict.field)

    def create(
        self, name: str, email: str, phone: str, avatar: Optional[str] = None
    ) -> Contact:
        stamp = now_iso()
        contact = Contact.create(
            _clean(name),
            _clean(email),
            _clean(phone),
            _clean(avatar),
            created_at=stamp,
            updated_at=stamp,
        )
        ensure_valid(contact, self.settings)
        self._check_unique(contact)
        created = self.repository.insert(contact)
        logger.info("Created contact %s", created.id)
        return created

    def update(self, contact_id: str, changes: Dict[str, Any]) -> Contact:
        current = self.get(contact_id)
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}", fields=unknown)
        cleaned = {key: _clean(value) for key, value in changes.items()}
        updated = current.with_changes(updated_at=now_iso(), **cleaned)
        ensure_valid(updated, self.settings)
        self._check_unique(updated, exclude_id=contact_id)
        stored = self.repository.replace(updated)
        if stored is None:
            raise NotFoundError(contact_id)
        logger.info("Updated contact %s", contact_id)
        return stored

    def delete(self, contact_id: str) -> None:
        if not self.repository.delete(contact_id):
            raise NotFoundError(contact_id)
        logger.info("Deleted contact %s", contact_id)

    def delete_all(self) -> int:
        count = self.repository.delete_all()
        logger.info("Deleted all contacts (%d)", count)
        return count

    def import_csv(self, data: Optional[bytes]) -> ImportSummary:
        return import_csv(
            data,
            self.repository,
            settings=self.settings,
            delimiter=self.config.export.delimiter,
            timestamp=now_iso(),
        )

    def export_csv(self) -> bytes:
        return export_csv(
            self.repository.list_all(),
            delimiter=self.config.export.delimiter,
            include_bom=self.config.export.include_bom,
        )

    def stats(self) -> ContactStats:
        contacts = self.repository.list_all()
        with_avatar = sum(1 for contact in contacts if contact.avatar)
        domains = Counter(email_domain(contact.email) for contact in contacts)
        domains.pop("", None)
        return ContactStats(
            total=len(contacts),
            with_avatar=with_avatar,
            without_avatar=len(contacts) - with_avatar,
            by_domain=dict(sorted(domains.items())),
        )

    def initialize_normalized(self) -> int:
        updated = self.repository.backfill_normalized()
        logger.info("Recomputed normalized fields for %d contact(s)", updated)
        return updated
