"""
Invoice PDF Export

Extracts invoice PDF attachments stored as BLOBs in an Oracle database
and writes them to disk with names derived from the invoice metadata.
"""

__version__ = "0.1.0"
__author__ = "Invoice PDF Export Team"

from .schemas import InvoiceAttachmentRecord, BlobRecord, RetrievalOptions, GenericExtractionOptions
from .naming import build_pdf_filename
from .pdf_writer import PdfWriter, is_valid_pdf
from .database import DatabaseService
from .retriever import PdfRetriever

__all__ = [
    "InvoiceAttachmentRecord",
    "BlobRecord",
    "RetrievalOptions",
    "GenericExtractionOptions",
    "build_pdf_filename",
    "PdfWriter",
    "is_valid_pdf",
    "DatabaseService",
    "PdfRetriever",
]
