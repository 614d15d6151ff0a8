"""
File naming for extracted PDFs.

Names are derived from invoice metadata when it is available, otherwise
from the row identifier or the row's position in the result set.
"""

from typing import Optional, Union

from .config import DEFAULT_FILENAME_PREFIX, ILLEGAL_FILENAME_CHARS

_ILLEGAL_CHARS_TABLE = str.maketrans({ch: "_" for ch in ILLEGAL_FILENAME_CHARS})


def sanitize_filename_part(value: str) -> str:
    """Replace characters that are not allowed in file names with underscores."""
    return value.translate(_ILLEGAL_CHARS_TABLE)


def build_pdf_filename(
    supplier_code: Optional[str] = None,
    month: Optional[int] = None,
    invoice_number: Optional[str] = None,
    row_id: Optional[Union[str, int]] = None,
    position: Optional[int] = None,
    prefix: Optional[str] = None,
) -> str:
    """
    Build the base file name (without extension) for an extracted PDF.

    Rules, first match wins:
    1. supplier code, month and invoice number present:
       ``<supplier_code>-<month>-<invoice_number>`` with the invoice number sanitized
    2. row id present: ``<prefix>_<row_id>``
    3. position present: ``<prefix>_<position>`` (1-based)

    ``prefix`` defaults to ``"pdf"``.

    Raises:
        ValueError: If none of the rules can be applied
    """
    if supplier_code and month is not None and invoice_number:
        return f"{supplier_code}-{month}-{sanitize_filename_part(invoice_number)}"

    prefix = prefix or DEFAULT_FILENAME_PREFIX
    if row_id is not None and str(row_id) != "":
        return f"{prefix}_{sanitize_filename_part(str(row_id))}"
    if position is not None:
        if position < 1:
            raise ValueError(f"position is 1-based, got {position}")
        return f"{prefix}_{position}"

    raise ValueError("Cannot build a file name without metadata, row id or position")


def dedupe_filename(filename: str, used_names: set[str]) -> str:
    """
    Return ``filename`` or, if it was already used in this batch, the first
    free ``<filename>-2``, ``<filename>-3``, ... The result is added to
    ``used_names``. Names are compared case-insensitively.
    """
    candidate = filename
    counter = 2
    while candidate.lower() in used_names:
        candidate = f"{filename}-{counter}"
        counter += 1
    used_names.add(candidate.lower())
    return candidate
