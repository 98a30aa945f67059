from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

from .normalization import fold, safe_get

# Source attribute -> derived attribute; the derived value is always fold(source).
DERIVED_FIELDS = {"name": "name_normalized", "email": "email_normalized"}


@dataclass(frozen=True)
class ImportRow:
    name: str = ""
    email: str = ""
    phone: str = ""
    avatar: str = ""

    @staticmethod
    def from_mapping(payload: Any) -> "ImportRow":
        return ImportRow(
            name=safe_get(payload, "name"),
            email=safe_get(payload, "email"),
            phone=safe_get(payload, "phone"),
            avatar=safe_get(payload, "avatar"),
        )


@dataclass(frozen=True)
class Contact:
    """A persisted address-book entry.

    Build instances with :meth:`create` and change them with
    :meth:`with_changes`; both recompute ``name_normalized`` and
    ``email_normalized`` so they never drift from ``name`` and ``email``.
    """

    name: str
    email: str
    phone: str
    avatar: str = ""
    name_normalized: str = ""
    email_normalized: str = ""
    id: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def create(
        cls,
        name: str,
        email: str,
        phone: str,
        avatar: Optional[str] = None,
        id: Optional[str] = None,
        created_at: str = "",
        updated_at: str = "",
    ) -> "Contact":
        return cls(
            name=name,
            email=email,
            phone=phone,
            avatar=avatar or "",
            name_normalized=fold(name),
            email_normalized=fold(email),
            id=id,
            created_at=created_at,
            updated_at=updated_at,
        )

    def with_changes(self, **changes: Any) -> "Contact":
        unknown = set(changes) - {"name", "email", "phone", "avatar", "id", "created_at", "updated_at"}
        if unknown:
            raise TypeError(f"cannot set field(s) directly: {', '.join(sorted(unknown))}")
        if "avatar" in changes:
            changes["avatar"] = changes["avatar"] or ""
        for source, derived in DERIVED_FIELDS.items():
            if source in changes:
                changes[derived] = fold(changes[source])
        return replace(self, **changes)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Contact":
        raw_id = doc.get("_id", doc.get("id"))
        return cls.create(
            name=safe_get(doc, "name"),
            email=safe_get(doc, "email"),
            phone=safe_get(doc, "phone"),
            avatar=safe_get(doc, "avatar"),
            id=str(raw_id) if raw_id is not None else None,
            created_at=safe_get(doc, "createdAt"),
            updated_at=safe_get(doc, "updatedAt"),
        )

    def to_document(self) -> Dict[str, Any]:
        """Storage shape; the identifier is owned by the backend and left out."""
        return {
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "avatar": self.avatar,
            "nameNormalized": self.name_normalized,
            "emailNormalized": self.email_normalized,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"_id": self.id}
        payload.update(self.to_document())
        return payload

    def to_export_row(self) -> Dict[str, str]:
        return {"name": self.name, "email": self.email, "phone": self.phone, "avatar": self.avatar}


def is_stale_document(doc: Dict[str, Any]) -> bool:
    """True when a stored document's derived fields are missing or out of date."""
    return doc.get("nameNormalized") != fold(safe_get(doc, "name")) or doc.get(
        "emailNormalized"
    ) != fold(safe_get(doc, "email"))
