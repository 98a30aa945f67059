from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, List, Optional, Sequence, Set

import pandas as pd

from .errors import BulkInsertError, CsvFormatError, ValidationError
from .models import Contact, ImportRow
from .normalization import ValidationSettings, fold
from .repository import ContactRepository

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("name", "email", "phone")


@dataclass
class ReconcileResult:
    to_insert: List[Contact] = field(default_factory=list)
    inserted_count: int = 0
    ignored_count: int = 0


@dataclass
class ImportSummary:
    inserted: int
    ignored: int

    @property
    def message(self) -> str:
        return (
            f"{self.inserted} contacts imported, {self.ignored} ignored "
            "(duplicates or invalid)."
        )

    def to_dict(self) -> dict:
        return {"message": self.message, "imported": self.inserted, "ignored": self.ignored}


@dataclass
class ParsedImport:
    rows: List[ImportRow] = field(default_factory=list)
    malformed: int = 0


def _read_frame(data: bytes, delimiter: str, **options: Any) -> pd.DataFrame:
    # header=None keeps the header line as row 0 so that a delimiter at the
    # end of every data line is never mistaken for an index column.
    return pd.read_csv(
        BytesIO(data),
        sep=delimiter,
        header=None,
        dtype=str,
        keep_default_na=False,
        encoding="utf-8-sig",
        engine="python",
        **options,
    )


def read_import_csv(data: Optional[bytes], delimiter: str = ";") -> ParsedImport:
    """Read an uploaded CSV into import rows.

    Empty trailing fields beyond the header width are dropped. Lines that
    still carry more values than the header are skipped and counted in
    ``malformed``; they never abort the upload.
    """
    if data is None:
        raise ValidationError("No file uploaded.", fields=["file"])
    if not data.strip():
        return ParsedImport()

    skipped: List[List[str]] = []
    try:
        width = _read_frame(data, delimiter, nrows=1).shape[1]

        def _fit_to_header(fields: List[str]) -> Optional[List[str]]:
            trimmed = list(fields)
            while len(trimmed) > width and not str(trimmed[-1]).strip():
                trimmed.pop()
            if len(trimmed) > width:
                skipped.append(fields)
                return None
            return trimmed

        frame = _read_frame(data, delimiter, on_bad_lines=_fit_to_header)
    except pd.errors.EmptyDataError:
        return ParsedImport()
    except (UnicodeDecodeError, csv.Error, pd.errors.ParserError, ValueError) as exc:
        raise CsvFormatError(f"Unreadable CSV file: {exc}", fields=["file"]) from exc

    header = [str(col).strip().lower() for col in frame.iloc[0]]
    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        raise CsvFormatError(
            f"CSV header is missing column(s): {', '.join(missing)}", fields=["file"]
        )
    if skipped:
        logger.warning("Skipped %d CSV line(s) with more fields than the header", len(skipped))
    rows = [
        ImportRow.from_mapping(dict(zip(header, values)))
        for values in frame.iloc[1:].itertuples(index=False, name=None)
    ]
    return ParsedImport(rows=rows, malformed=len(skipped))


def parse_import_csv(data: Optional[bytes], delimiter: str = ";") -> List[ImportRow]:
    return read_import_csv(data, delimiter=delimiter).rows


def _row_is_valid(row: ImportRow, settings: ValidationSettings) -> bool:
    return bool(row.name) and settings.email_ok(row.email) and settings.phone_ok(row.phone)


def reconcile(
    rows: Sequence[ImportRow],
    repository: ContactRepository,
    settings: Optional[ValidationSettings] = None,
) -> ReconcileResult:
    """Select the rows of one upload that are valid and new.

    Rows are rejected when invalid, when their folded email or exact phone
    is already stored, or when an earlier row of the same batch already
    claimed either key.
    """
    settings = settings or ValidationSettings()
    valid = [row for row in rows if _row_is_valid(row, settings)]
    logger.debug("%d of %d row(s) passed validation", len(valid), len(rows))

    keyed = [(fold(row.email), row) for row in valid]
    existing: List[Contact] = []
    if keyed:
        existing = repository.find_by_keys(
            {email_key for email_key, _ in keyed}, {row.phone for _, row in keyed}
        )
    taken_emails: Set[str] = {contact.email_normalized for contact in existing}
    taken_phones: Set[str] = {contact.phone for contact in existing}

    to_insert: List[Contact] = []
    for email_key, row in keyed:
        if email_key in taken_emails or row.phone in taken_phones:
            logger.debug("skipping duplicate row for %s", row.email)
            continue
        taken_emails.add(email_key)
        taken_phones.add(row.phone)
        to_insert.append(Contact.create(row.name, row.email, row.phone, row.avatar))

    return ReconcileResult(
        to_insert=to_insert,
        inserted_count=len(to_insert),
        ignored_count=len(rows) - len(to_insert),
    )


def import_csv(
    data: Optional[bytes],
    repository: ContactRepository,
    settings: Optional[ValidationSettings] = None,
    delimiter: str = ";",
    timestamp: str = "",
) -> ImportSummary:
    parsed = read_import_csv(data, delimiter=delimiter)
    result = reconcile(parsed.rows, repository, settings)
    to_insert = result.to_insert
    if timestamp:
        to_insert = [c.with_changes(created_at=timestamp, updated_at=timestamp) for c in to_insert]

    inserted = 0
    if to_insert:
        try:
            inserted = repository.insert_many(to_insert)
        except BulkInsertError as exc:
            logger.warning(
                "Storage rejected %d of %d imported row(s) on %s",
                len(to_insert) - exc.inserted_count,
                len(to_insert),
                exc.field or "a unique index",
            )
            inserted = exc.inserted_count

    total = len(parsed.rows) + parsed.malformed
    summary = ImportSummary(inserted=inserted, ignored=total - inserted)
    logger.info("CSV import: %d inserted, %d ignored", summary.inserted, summary.ignored)
    return summary
