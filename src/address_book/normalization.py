from __future__ import annotations

import base64
import binascii
import logging
import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Optional

import pandas as pd
import phonenumbers
from email_validator import EmailNotValidError, validate_email

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
GENERIC_PHONE_RE = re.compile(r"^\+?\d{7,15}$")
FR_PHONE_RE = re.compile(r"^(?:\+33|0)[1-9]\d{8}$")

EMAIL_POLICIES = ("shape", "rfc")
PHONE_POLICIES = ("generic", "fr", "phonenumbers")


@dataclass
class ValidationSettings:
    email_policy: str = "shape"
    email_check_deliverability: bool = False
    phone_policy: str = "generic"
    phone_region: str = "FR"
    max_avatar_bytes: int = 2 * 1024 * 1024

    def __post_init__(self) -> None:
        if self.email_policy not in EMAIL_POLICIES:
            raise ValueError(f"unknown email policy: {self.email_policy!r}")
        if self.phone_policy not in PHONE_POLICIES:
            raise ValueError(f"unknown phone policy: {self.phone_policy!r}")

    def email_ok(self, value: str) -> bool:
        return is_valid_email(
            value,
            policy=self.email_policy,
            check_deliverability=self.email_check_deliverability,
        )

    def phone_ok(self, value: str) -> bool:
        return is_valid_phone(value, policy=self.phone_policy, region=self.phone_region)

    def avatar_ok(self, value: str) -> bool:
        return is_valid_avatar(value, self.max_avatar_bytes)


def fold(text: Optional[str]) -> str:
    """Strip diacritics and lowercase; the comparison key for names and emails."""
    s = text or ""
    if not s:
        return ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return s.lower()


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value or "")


def is_valid_email(
    raw: Optional[str], policy: str = "shape", check_deliverability: bool = False
) -> bool:
    candidate = (raw or "").strip()
    if not candidate:
        return False
    if policy == "rfc":
        try:
            validate_email(candidate, check_deliverability=check_deliverability)
        except EmailNotValidError:
            return False
        return True
    return bool(EMAIL_RE.match(candidate))


def is_valid_phone(raw: Optional[str], policy: str = "generic", region: str = "FR") -> bool:
    s = _compact(raw or "")
    if not s:
        return False
    if policy == "fr":
        return bool(FR_PHONE_RE.match(s))
    if policy == "phonenumbers":
        try:
            parsed = phonenumbers.parse(s, None if s.startswith("+") else region)
        except phonenumbers.NumberParseException:
            logger.debug("phonenumbers.parse failed for %s", s)
            return False
        return phonenumbers.is_possible_number(parsed) and phonenumbers.is_valid_number(parsed)
    return bool(GENERIC_PHONE_RE.match(s))


def email_domain(email: Optional[str]) -> str:
    value = (email or "").strip().lower()
    if "@" not in value:
        return ""
    return value.rsplit("@", 1)[1]


def _coerce_to_string(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, (list, dict, tuple)) and pd.isna(value):
        return ""
    return str(value).strip()


def safe_get(row: Any, key: str) -> str:
    try:
        return _coerce_to_string(row.get(key, ""))
    except (AttributeError, KeyError, TypeError):
        try:
            if hasattr(row, "__contains__") and key in row:
                return _coerce_to_string(row[key])
            return ""
        except (KeyError, TypeError, AttributeError):
            return ""


_DATA_URI_RE = re.compile(r"^data:(?P<media>[^;,]*)(?P<params>(?:;[^;,]*)*),(?P<payload>.*)$", re.DOTALL)


def is_valid_avatar(avatar: Optional[str], max_bytes: int) -> bool:
    """Data-URI avatars must be images within ``max_bytes``; other strings are opaque."""
    value = avatar or ""
    if not value.startswith("data:"):
        return True
    match = _DATA_URI_RE.match(value)
    if not match:
        return False
    if not match.group("media").lower().startswith("image/"):
        return False
    payload = match.group("payload")
    if ";base64" in match.group("params").lower():
        try:
            size = len(base64.b64decode(payload, validate=True))
        except (binascii.Error, ValueError):
            return False
    else:
        size = len(payload.encode("utf-8"))
    return size <= max_bytes
