"""
Shared fixtures and database doubles.

The fakes mimic the small part of the python-oracledb API the package uses:
``pool.acquire()/release()/close()``, ``connection.cursor()`` as a context
manager, ``cursor.execute()``, ``cursor.description`` and row iteration.
"""

from pathlib import Path
from typing import Optional

import pytest

from invoice_pdf_export.config import AppSettings, DatabaseSettings


PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n%%EOF\n"

INVOICE_COLUMNS = [
    "SUPPLIER_CODE",
    "INVOICE_YEAR",
    "INVOICE_MONTH",
    "SUPPLIER_INVOICE_NUMBER",
    "ATTACHMENT_DESCRIPTION",
    "BLOB_CONTENT",
]


class FakeOracleErrorObj:
    """Stands in for the error object python-oracledb puts in ``exc.args[0]``."""

    def __init__(self, full_code: str, message: str = "driver failure"):
        self.full_code = full_code
        self.message = f"{full_code}: {message}"

    def __str__(self) -> str:
        return self.message


class FakeLob:
    """LOB handle that must be read explicitly."""

    def __init__(self, data):
        self.data = data
        self.read_calls = 0

    def read(self):
        self.read_calls += 1
        return self.data


class FakeCursor:
    def __init__(self, columns: list[str], rows: list[tuple], error: Optional[Exception] = None):
        self.columns = columns
        self.rows = rows
        self.error = error
        self.description = None
        self.executed: list[tuple[str, Optional[dict]]] = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.closed = True
        return False

    def execute(self, sql, binds=None):
        self.executed.append((sql, binds))
        if self.error is not None:
            raise self.error
        self.description = [(name, None, None, None, None, None, True) for name in self.columns]

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def __iter__(self):
        return iter(self.rows)


class FakeConnection:
    """Hands out one cursor per result set, reusing the last one when they run out."""

    def __init__(self, result_sets: list[tuple[list[str], list[tuple]]], error: Optional[Exception] = None):
        self.result_sets = list(result_sets)
        self.error = error
        self.cursors: list[FakeCursor] = []

    def cursor(self):
        index = min(len(self.cursors), len(self.result_sets) - 1)
        columns, rows = self.result_sets[index] if self.result_sets else ([], [])
        cursor = FakeCursor(columns, rows, self.error)
        self.cursors.append(cursor)
        return cursor

    @property
    def executed(self) -> list[tuple[str, Optional[dict]]]:
        return [call for cursor in self.cursors for call in cursor.executed]


class FakePool:
    def __init__(self, connection: FakeConnection, acquire_error: Optional[Exception] = None):
        self.connection = connection
        self.acquire_error = acquire_error
        self.acquired = 0
        self.released = 0
        self.closed = False

    def acquire(self):
        if self.acquire_error is not None:
            raise self.acquire_error
        self.acquired += 1
        return self.connection

    def release(self, connection):
        assert connection is self.connection
        self.released += 1

    def close(self):
        self.closed = True


def invoice_row(
    supplier_code="SUP7",
    year=2025,
    month=6,
    invoice_number="INV-001",
    description="Original",
    blob=PDF_BYTES,
) -> tuple:
    return (supplier_code, year, month, invoice_number, description, blob)


@pytest.fixture
def settings(tmp_path: Path) -> AppSettings:
    return AppSettings(
        database=DatabaseSettings(
            user="scott",
            password="tiger",
            connect_string="localhost:1521/XEPDB1",
        ),
        pdf_output_dir=tmp_path / "output",
    )


@pytest.fixture
def make_pool(monkeypatch):
    """Patch oracledb.create_pool to hand out a FakePool over the given result sets."""
    from invoice_pdf_export import database

    def _make(result_sets=None, execute_error=None, acquire_error=None, create_error=None):
        connection = FakeConnection(result_sets or [(INVOICE_COLUMNS, [])], execute_error)
        pool = FakePool(connection, acquire_error)
        calls = []

        def fake_create_pool(**kwargs):
            calls.append(kwargs)
            if create_error is not None:
                raise create_error
            return pool

        monkeypatch.setattr(database.oracledb, "create_pool", fake_create_pool)
        pool.create_calls = calls
        return pool

    return _make
