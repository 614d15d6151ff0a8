"""
End-to-end retrieval: query attachments, name them, validate them and write
the valid ones to disk.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from .config import AppSettings, logger
from .database import DatabaseService
from .errors import DatabaseNotInitializedError, PdfExportError
from .naming import build_pdf_filename, dedupe_filename
from .pdf_writer import PdfWriter, is_valid_pdf
from .schemas import GenericExtractionOptions, RetrievalOptions


class RetrieverState(str, Enum):
    """Lifecycle of a PdfRetriever."""
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class PdfRetriever:
    """
    Extracts invoice PDFs from the database into the output directory.

    Usage:
        with PdfRetriever(load_settings()) as retriever:
            paths = retriever.retrieve_pdfs(RetrievalOptions(invoice_codes=["INV-001"]))
    """

    def __init__(
        self,
        settings: AppSettings,
        database: Optional[DatabaseService] = None,
        writer: Optional[PdfWriter] = None,
    ):
        self.settings = settings
        self.database = database or DatabaseService()
        self.writer = writer or PdfWriter(settings.pdf_output_dir)
        self.state = RetrieverState.UNINITIALIZED

    def __enter__(self) -> "PdfRetriever":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def initialize(self) -> None:
        """Create the database connection pool."""
        if self.state is RetrieverState.INITIALIZED:
            return
        if self.state is RetrieverState.CLOSED:
            raise PdfExportError("Retriever has been closed; create a new one")

        self.database.initialize(self.settings.database)
        self.state = RetrieverState.INITIALIZED

    def close(self) -> None:
        """Release the connection pool. Safe to call more than once."""
        if self.state is RetrieverState.CLOSED:
            return
        self.state = RetrieverState.CLOSED
        self.database.close()

    def _require_initialized(self) -> None:
        if self.state is not RetrieverState.INITIALIZED:
            raise DatabaseNotInitializedError(
                f"Retriever is {self.state.value}. Call initialize() first."
            )

    def retrieve_pdfs(self, options: RetrievalOptions) -> list[Path]:
        """
        Write the PDF attachments of the requested invoices to disk.

        Attachments that are not PDFs, or that cannot be written, are logged
        and skipped.

        Args:
            options: Invoice codes and optional attachment description filter

        Returns:
            Paths of the written files, in query order

        Raises:
            DatabaseNotInitializedError: If called before ``initialize``
            QueryError: If the database query fails
        """
        self._require_initialized()
        logger.info(f"Starting PDF retrieval for {len(options.invoice_codes)} invoice code(s)")

        records = self.database.fetch_invoice_attachments(
            options.invoice_codes,
            options.attachment_description_filter,
        )
        if not records:
            logger.info("No PDF data found")
            return []

        logger.info(f"Found {len(records)} PDF(s) to save")

        saved_files: list[Path] = []
        used_names: set[str] = set()
        for record in records:
            filename = build_pdf_filename(
                supplier_code=record.supplier_code,
                month=record.month,
                invoice_number=record.supplier_invoice_number,
            )

            if not is_valid_pdf(record.blob_content):
                logger.warning(f"Skipping invalid PDF data for invoice: {record.supplier_invoice_number}")
                continue

            unique_name = dedupe_filename(filename, used_names)
            if unique_name != filename:
                logger.warning(
                    f"File name {filename} already used in this batch; saving invoice "
                    f"{record.supplier_invoice_number} as {unique_name}"
                )

            try:
                saved_files.append(self.writer.save_pdf_buffer(record.blob_content, unique_name))
            except OSError as e:
                logger.error(f"Failed to save PDF for invoice {record.supplier_invoice_number}: {e}")

        logger.info(f"Saved {len(saved_files)} of {len(records)} PDF(s)")
        return saved_files

    def extract_blobs(self, options: GenericExtractionOptions) -> list[Path]:
        """
        Write every PDF found in an arbitrary table/column to disk.

        Files are named from invoice metadata when it was joined, otherwise
        from the id column, otherwise from the 1-based row position.

        Returns:
            Paths of the written files, in query order
        """
        self._require_initialized()
        logger.info(
            f"Starting PDF retrieval from {options.table_name}.{options.blob_column_name}"
        )

        records = self.database.fetch_blobs(options)
        if not records:
            logger.info("No PDF data found")
            return []

        logger.info(f"Found {len(records)} BLOB(s) to check")

        saved_files: list[Path] = []
        used_names: set[str] = set()
        for record in records:
            label = record.supplier_invoice_number or record.row_id or f"#{record.position}"
            filename = build_pdf_filename(
                supplier_code=record.supplier_code,
                month=record.month,
                invoice_number=record.supplier_invoice_number,
                row_id=record.row_id,
                position=record.position,
                prefix=options.output_filename_prefix,
            )

            if not is_valid_pdf(record.blob_content):
                logger.warning(f"Skipping invalid PDF data for row: {label}")
                continue

            unique_name = dedupe_filename(filename, used_names)
            if unique_name != filename:
                logger.warning(f"File name {filename} already used in this batch; saving row {label} as {unique_name}")

            try:
                saved_files.append(self.writer.save_pdf_buffer(record.blob_content, unique_name))
            except OSError as e:
                logger.error(f"Failed to save PDF for row {label}: {e}")

        logger.info(f"Saved {len(saved_files)} of {len(records)} PDF(s)")
        return saved_files

    def check_connection(self) -> None:
        """Verify that the database answers a trivial query."""
        self._require_initialized()
        self.database.ping()
