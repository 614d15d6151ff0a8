"""
PDF validation and file output.

Buffers are checked for the ``%PDF`` signature and written to the output
directory with a ``.pdf`` extension.
"""

from pathlib import Path
from typing import Iterable, Optional, Union

from .config import PDF_EXTENSION, PDF_SIGNATURE, logger

Buffer = Union[bytes, bytearray, memoryview]


def is_valid_pdf(buffer: Buffer) -> bool:
    """
    Check whether a buffer starts with the PDF magic number.

    Only the first four bytes are inspected; a truncated or corrupt body
    is not detected.
    """
    if len(buffer) < len(PDF_SIGNATURE):
        return False
    return bytes(buffer[:len(PDF_SIGNATURE)]) == PDF_SIGNATURE


def ensure_pdf_extension(filename: str) -> str:
    """Append ``.pdf`` unless the name already ends with it (any case)."""
    if filename.lower().endswith(PDF_EXTENSION):
        return filename
    return filename + PDF_EXTENSION


class PdfWriter:
    """Writes PDF buffers into a single output directory."""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)

    def ensure_output_directory(self) -> None:
        """Create the output directory (and parents) if it does not exist yet."""
        if self.output_dir.is_dir():
            return
        self.output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created output directory: {self.output_dir}")

    def save_pdf_buffer(self, buffer: Buffer, filename: str) -> Path:
        """
        Write a buffer to ``<output_dir>/<filename>.pdf``.

        An existing file at the same path is overwritten.

        Args:
            buffer: PDF bytes to write
            filename: Base file name, with or without the ``.pdf`` extension

        Returns:
            Path of the written file

        Raises:
            OSError: If the directory cannot be created or the file cannot be written
        """
        self.ensure_output_directory()

        file_path = self.output_dir / ensure_pdf_extension(filename)
        try:
            file_path.write_bytes(bytes(buffer))
        except OSError as e:
            logger.error(f"Error saving PDF file {file_path.name}: {e}")
            raise

        logger.info(f"PDF saved successfully: {file_path}")
        return file_path

    def save_pdf_buffers(self, items: Iterable[tuple[Union[str, int], Buffer]]) -> list[Path]:
        """
        Save several buffers named ``pdf_<id>.pdf``.

        Failures are logged and skipped so one bad file does not stop the batch.

        Args:
            items: Pairs of (row id, PDF bytes)

        Returns:
            Paths of the files that were written
        """
        self.ensure_output_directory()

        saved_files: list[Path] = []
        for row_id, buffer in items:
            try:
                saved_files.append(self.save_pdf_buffer(buffer, f"pdf_{row_id}"))
            except OSError as e:
                logger.error(f"Failed to save PDF with ID {row_id}: {e}")

        return saved_files

    def validate_and_save_pdf(self, buffer: Buffer, filename: str) -> Optional[Path]:
        """Save the buffer if it looks like a PDF, otherwise return None."""
        if not is_valid_pdf(buffer):
            logger.warning(f"Invalid PDF data for file: {filename}")
            return None
        return self.save_pdf_buffer(buffer, filename)
