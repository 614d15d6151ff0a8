"""
Pydantic models for extracted attachments and retrieval options.

This module defines the data structures passed between the database layer,
the file naming helpers and the retriever:
- InvoiceAttachmentRecord and BlobRecord for rows read from the database
- RetrievalOptions for invoice-code based retrieval
- GenericExtractionOptions for extracting BLOBs from an arbitrary table
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# Plain or schema-qualified identifier, e.g. INVOICE_ATTACHMENTS or APP.INVOICE_ATTACHMENTS
SQL_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]*(\.[A-Za-z][A-Za-z0-9_$#]*)?$")


class InvoiceAttachmentRecord(BaseModel):
    """
    A PDF attachment together with the invoice metadata used to name it.

    Attributes:
        supplier_code: Code of the supplier that issued the invoice
        year: Calendar year of the invoice date
        month: Calendar month of the invoice date (1-12)
        supplier_invoice_number: Invoice number assigned by the supplier
        description: Attachment description tag, when the query projects it
        blob_content: Fully materialized attachment bytes
    """
    supplier_code: str = Field(..., min_length=1, description="Supplier code")
    year: Optional[int] = Field(None, description="Invoice year")
    month: int = Field(..., ge=1, le=12, description="Invoice month")
    supplier_invoice_number: str = Field(..., min_length=1, description="Supplier invoice number")
    description: Optional[str] = Field(None, description="Attachment description tag")
    blob_content: bytes = Field(..., repr=False, description="Raw attachment bytes")


class BlobRecord(BaseModel):
    """A BLOB read in generic extraction mode. Metadata is present only when joined."""
    row_id: Optional[str] = Field(None, description="Value of the identifier column")
    position: int = Field(..., ge=1, description="1-based position of the row in the result set")
    supplier_code: Optional[str] = None
    year: Optional[int] = None
    month: Optional[int] = Field(None, ge=1, le=12)
    supplier_invoice_number: Optional[str] = None
    blob_content: bytes = Field(..., repr=False)


class RetrievalOptions(BaseModel):
    """Caller input for invoice-code based retrieval."""
    invoice_codes: list[str] = Field(
        ...,
        min_length=1,
        description="Supplier invoice numbers to match",
    )
    attachment_description_filter: Optional[str] = Field(
        None,
        description="Only return attachments whose description equals this value",
    )

    @field_validator("invoice_codes")
    @classmethod
    def dedupe_codes(cls, v: list[str]) -> list[str]:
        """Reject blank codes and drop duplicates, keeping first-seen order."""
        if any(not code.strip() for code in v):
            raise ValueError("invoice codes must not be blank")
        return list(dict.fromkeys(v))

    @field_validator("attachment_description_filter")
    @classmethod
    def blank_filter_to_none(cls, v: Optional[str]) -> Optional[str]:
        # Oracle stores '' as NULL, so an empty filter could never match
        if v is not None and not v.strip():
            return None
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "invoice_codes": ["INV-001", "INV-002"],
                    "attachment_description_filter": "Original",
                }
            ]
        }
    }


class GenericExtractionOptions(BaseModel):
    """
    Caller input for extracting every BLOB of an arbitrary table/column pair.

    Table and column names are interpolated into the SQL text and must be
    plain identifiers. ``where_clause`` is trusted SQL supplied by the
    operator; when invoice metadata is joined the invoice and supplier
    tables are aliased ``i`` and ``s`` and the source table ``t``.
    """
    table_name: str = Field(..., description="Table holding the BLOB column")
    blob_column_name: str = Field(..., description="BLOB column to extract")
    id_column_name: Optional[str] = Field(None, description="Column used to name files")
    where_clause: Optional[str] = Field(None, description="Extra SQL predicate")
    output_filename_prefix: Optional[str] = Field(None, description="Prefix for fallback file names")
    include_invoice_metadata: bool = Field(
        False,
        description="Join invoices and suppliers through the table's INVOICE_ID column",
    )
    latest_per_supplier: bool = Field(
        False,
        description="Keep only the most recent invoice attachment per supplier",
    )

    @field_validator("table_name", "blob_column_name", "id_column_name")
    @classmethod
    def check_identifier(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not SQL_IDENTIFIER_PATTERN.match(v):
            raise ValueError(f"not a valid SQL identifier: {v!r}")
        return v.upper()

    @field_validator("where_clause", "output_filename_prefix")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def latest_implies_metadata(self) -> "GenericExtractionOptions":
        if self.latest_per_supplier:
            self.include_invoice_metadata = True
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "table_name": "INVOICE_ATTACHMENTS",
                    "blob_column_name": "BLOB_CONTENT",
                    "id_column_name": "ID",
                    "where_clause": "EXTRACT(YEAR FROM i.INVOICE_DATE) = 2025",
                    "output_filename_prefix": "extracted_pdf",
                    "include_invoice_metadata": True,
                    "latest_per_supplier": False,
                }
            ]
        }
    }
