"""
Command-line interface for the Invoice PDF Export tool.

Provides the following commands:
- retrieve: Export the PDF attachments of the invoices listed in a JSON file
- extract: Export every PDF stored in an arbitrary table/column
- check-connection: Verify the database settings
- version: Show version information
"""

import json
from pathlib import Path
from typing import Callable, Optional, TypeVar

import typer
from pydantic import ValidationError

from .config import load_settings, logger
from .errors import ConfigurationError, DatabaseError, PdfExportError
from .retriever import PdfRetriever
from .schemas import GenericExtractionOptions, RetrievalOptions

T = TypeVar("T")


# Create Typer app
app = typer.Typer(
    name="invoice-pdf-export",
    help="Export invoice PDF attachments from an Oracle database",
    add_completion=False,
)


# ============================================================================
# Helpers
# ============================================================================

def load_invoice_codes(codes_file: Path) -> list[str]:
    """
    Read a JSON array of invoice code strings.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the content is not a JSON array of strings
    """
    with open(codes_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, list) or not all(isinstance(code, str) for code in data):
        raise ValueError("Invoice codes file must contain a JSON array of strings")

    return data


def report_error(error: Exception) -> None:
    """Print an error and, for database failures, what to check."""
    typer.echo(f"Error: {error}", err=True)

    if isinstance(error, ConfigurationError):
        typer.echo("\nPlease ensure you have:", err=True)
        typer.echo("  1. Created a .env file or exported the DB_* variables", err=True)
        typer.echo("  2. Set the correct database connection details", err=True)
    elif isinstance(error, DatabaseError) and error.hints:
        typer.echo("\nPlease check:", err=True)
        for i, hint in enumerate(error.hints, start=1):
            typer.echo(f"  {i}. {hint}", err=True)


def run_with_retriever(action: Callable[[PdfRetriever], T]) -> T:
    """
    Load settings, open a retriever, run ``action`` and always close the pool.

    Exits with code 1 on any failure.
    """
    try:
        settings = load_settings()
    except ConfigurationError as e:
        report_error(e)
        raise typer.Exit(code=1)

    retriever = PdfRetriever(settings)
    failed = False
    try:
        retriever.initialize()
        logger.info("Database connection established")
        result = action(retriever)
    except PdfExportError as e:
        failed = True
        report_error(e)
    except Exception as e:
        failed = True
        typer.echo(f"Error: {e}", err=True)
        logger.exception("Unexpected failure")
    finally:
        try:
            retriever.close()
        except PdfExportError as e:
            logger.error(f"Error while closing the database connection: {e}")

    if failed:
        raise typer.Exit(code=1)
    return result


def print_saved_files(saved_files: list[Path]) -> None:
    if not saved_files:
        typer.echo("No PDF files were found or saved")
        return

    typer.echo(f"\n[OK] Saved {len(saved_files)} PDF file(s):")
    for i, file_path in enumerate(saved_files, start=1):
        typer.echo(f"  {i}. {file_path}")


# ============================================================================
# Commands
# ============================================================================

@app.command()
def retrieve(
    codes_file: Optional[Path] = typer.Argument(
        None,
        help="JSON file containing an array of supplier invoice numbers",
        show_default=False,
    ),
    description: Optional[str] = typer.Argument(
        None,
        help="Only export attachments with exactly this description",
        show_default=False,
    ),
) -> None:
    """
    Export the PDF attachments of the invoices listed in CODES_FILE.

    Files are written to PDF_OUTPUT_DIR and named
    <supplier code>-<month>-<supplier invoice number>.pdf.
    """
    if codes_file is None:
        typer.echo("Error: missing invoice codes file argument", err=True)
        typer.echo("Usage: retrieve CODES_FILE [DESCRIPTION]", err=True)
        raise typer.Exit(code=1)

    try:
        invoice_codes = load_invoice_codes(codes_file)
    except OSError as e:
        typer.echo(f"Error: cannot read {codes_file}: {e}", err=True)
        raise typer.Exit(code=1)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: Invalid JSON in {codes_file}: {e}", err=True)
        raise typer.Exit(code=1)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if not invoice_codes:
        typer.echo("No invoice codes to retrieve.")
        return

    try:
        options = RetrievalOptions(
            invoice_codes=invoice_codes,
            attachment_description_filter=description,
        )
    except ValidationError as e:
        typer.echo(f"Error: Invalid invoice codes: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Retrieving PDFs for {len(options.invoice_codes)} invoice code(s)")
    if options.attachment_description_filter:
        typer.echo(f"Attachment description: {options.attachment_description_filter}")

    saved_files = run_with_retriever(lambda retriever: retriever.retrieve_pdfs(options))
    print_saved_files(saved_files)


@app.command()
def extract(
    table: str = typer.Argument(..., help="Table holding the BLOB column"),
    blob_column: str = typer.Argument(..., help="BLOB column to export"),
    id_column: Optional[str] = typer.Option(
        None,
        "--id-column",
        "-i",
        help="Column used to name files when no invoice metadata is available",
    ),
    where: Optional[str] = typer.Option(
        None,
        "--where",
        "-w",
        help="Extra SQL predicate (source table is aliased t, invoices i, suppliers s)",
    ),
    prefix: Optional[str] = typer.Option(
        None,
        "--prefix",
        "-p",
        help="File name prefix used when no invoice metadata is available",
    ),
    with_metadata: bool = typer.Option(
        False,
        "--with-metadata",
        help="Join invoices and suppliers through the table's INVOICE_ID column",
    ),
    latest_per_supplier: bool = typer.Option(
        False,
        "--latest-per-supplier",
        help="Only export the attachment of each supplier's most recent invoice",
    ),
) -> None:
    """
    Export every PDF stored in TABLE.BLOB_COLUMN.
    """
    try:
        options = GenericExtractionOptions(
            table_name=table,
            blob_column_name=blob_column,
            id_column_name=id_column,
            where_clause=where,
            output_filename_prefix=prefix,
            include_invoice_metadata=with_metadata,
            latest_per_supplier=latest_per_supplier,
        )
    except ValidationError as e:
        typer.echo(f"Error: Invalid extraction options: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Extracting PDFs from {options.table_name}.{options.blob_column_name}")

    saved_files = run_with_retriever(lambda retriever: retriever.extract_blobs(options))
    print_saved_files(saved_files)


@app.command("check-connection")
def check_connection() -> None:
    """Connect to the database and run a trivial query."""
    run_with_retriever(lambda retriever: retriever.check_connection())
    typer.echo("[OK] Database connection successful")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Invoice PDF Export v{__version__}")


# Single-command app so the codes file is the first positional argument
retrieve_app = typer.Typer(
    name="retrieve-invoice-pdfs",
    add_completion=False,
)
retrieve_app.command()(retrieve)


def main() -> None:
    """Entry point for the CLI."""
    app()


def retrieve_main() -> None:
    """Entry point for the retrieve-invoice-pdfs script."""
    retrieve_app()


if __name__ == "__main__":
    main()
