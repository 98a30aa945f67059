from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple

from .models import Contact
from .normalization import fold

if TYPE_CHECKING:
    from .repository import ContactRepository

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 5


@dataclass
class Page:
    items: List[Contact] = field(default_factory=list)
    total: int = 0
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_LIMIT

    def to_dict(self) -> dict:
        return {
            "data": [contact.to_dict() for contact in self.items],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
        }


@dataclass(frozen=True)
class ContactQuery:
    """Backend-independent description of one listing request.

    ``search`` is the already-folded search key, or ``None`` for "all
    contacts". Every repository must return the same rows, in
    :func:`sort_key` order, that :meth:`apply` returns for a plain list.
    """

    search: Optional[str] = None
    skip: int = 0
    limit: Optional[int] = None

    def matches(self, contact: Contact) -> bool:
        if self.search is None:
            return True
        q = self.search
        return (
            q in contact.name_normalized
            or q in contact.email_normalized
            or q in (contact.phone or "").lower()
        )

    def apply(self, contacts: Sequence[Contact]) -> Tuple[List[Contact], int]:
        matching = sorted((c for c in contacts if self.matches(c)), key=sort_key)
        end = None if self.limit is None else self.skip + self.limit
        return matching[self.skip : end], len(matching)


def sort_key(contact: Contact) -> Tuple[str, str, str]:
    return (contact.name_normalized, contact.name, contact.id or "")


def _positive_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def parse_pagination(
    page: Any = None, limit: Any = None, default_limit: int = DEFAULT_LIMIT
) -> Tuple[int, int]:
    return (_positive_int(page) or DEFAULT_PAGE, _positive_int(limit) or default_limit)


def list_contacts(
    repository: "ContactRepository",
    search_term: Optional[str] = None,
    page: Any = None,
    limit: Any = None,
    default_limit: int = DEFAULT_LIMIT,
) -> Page:
    """Return one page of contacts in normalized-name order.

    ``search_term=None`` lists everything; an empty term is an explicit
    search for nothing and returns an empty page with ``total=0``. Any other
    term, whitespace included, is folded and matched as a substring.
    """
    page_no, page_size = parse_pagination(page, limit, default_limit)
    search: Optional[str] = None
    if search_term is not None:
        if search_term == "":
            return Page(items=[], total=0, page=page_no, limit=page_size)
        search = fold(search_term)
    query = ContactQuery(search=search, skip=(page_no - 1) * page_size, limit=page_size)
    items, total = repository.find_page(query)
    return Page(items=items, total=total, page=page_no, limit=page_size)
