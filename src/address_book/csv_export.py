from __future__ import annotations

import csv
from typing import Iterable

import pandas as pd

from .models import Contact
from .query import sort_key

EXPORT_COLUMNS = ["name", "email", "phone", "avatar"]
BOM = "\ufeff"


def export_csv(
    contacts: Iterable[Contact], delimiter: str = ";", include_bom: bool = False
) -> bytes:
    """Serialize contacts as delimiter-separated UTF-8 text with a header row.

    Only the user-facing columns are written; derived keys and identifiers
    stay internal.
    """
    rows = [contact.to_export_row() for contact in sorted(contacts, key=sort_key)]
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    text = df.to_csv(
        index=False, sep=delimiter, lineterminator="\n", quoting=csv.QUOTE_MINIMAL
    )
    if include_bom:
        text = BOM + text
    return text.encode("utf-8")
