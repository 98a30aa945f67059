from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .models import Contact
from .normalization import fold
from .repository import ContactRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conflict:
    field: str
    contact: Contact


def find_conflict(
    candidate: Contact,
    repository: ContactRepository,
    exclude_id: Optional[str] = None,
) -> Optional[Conflict]:
    """Return the stored contact that already owns the candidate's email or phone.

    This is a pre-check for a friendly error; the repository's unique
    indexes still reject a racing write on their own.
    """
    email_key = fold(candidate.email)
    matches = repository.find_by_keys([email_key], [candidate.phone], exclude_id=exclude_id)
    by_email = next((c for c in matches if c.email_normalized == email_key), None)
    if by_email is not None:
        logger.debug("email conflict with %s", by_email.id)
        return Conflict(field="email", contact=by_email)
    by_phone = next((c for c in matches if c.phone == candidate.phone), None)
    if by_phone is not None:
        logger.debug("phone conflict with %s", by_phone.id)
        return Conflict(field="phone", contact=by_phone)
    return None
