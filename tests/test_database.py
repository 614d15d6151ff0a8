"""
Tests for query construction, row decoding and the database service.

A fake connection pool stands in for Oracle; see conftest.py.
"""

import oracledb
import pytest

from invoice_pdf_export.database import (
    DatabaseService,
    build_generic_blob_query,
    build_invoice_attachment_query,
    decode_blob_row,
    decode_invoice_row,
    read_blob,
)
from invoice_pdf_export.errors import (
    DatabaseErrorKind,
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    MalformedRowError,
    QueryError,
)
from invoice_pdf_export.schemas import GenericExtractionOptions

from conftest import INVOICE_COLUMNS, PDF_BYTES, FakeLob, FakeOracleErrorObj, invoice_row


# ============================================================================
# Query Construction
# ============================================================================

class TestBuildInvoiceAttachmentQuery:

    def test_three_way_join(self):
        sql, _ = build_invoice_attachment_query(1)
        assert "FROM INVOICE_ATTACHMENTS ia" in sql
        assert "JOIN INVOICES i ON ia.INVOICE_ID = i.ID" in sql
        assert "JOIN SUPPLIERS s ON i.SUPPLIER_ID = s.ID" in sql
        assert "EXTRACT(MONTH FROM i.INVOICE_DATE) AS INVOICE_MONTH" in sql
        assert "EXTRACT(YEAR FROM i.INVOICE_DATE) AS INVOICE_YEAR" in sql

    def test_bind_names_per_code(self):
        sql, bind_names = build_invoice_attachment_query(3)
        assert bind_names == ["code_0", "code_1", "code_2"]
        assert "i.SUPPLIER_IV_NUM IN (:code_0, :code_1, :code_2)" in sql

    def test_no_description_predicate_by_default(self):
        sql, _ = build_invoice_attachment_query(1)
        assert ":attachment_description" not in sql

    def test_description_predicate(self):
        sql, _ = build_invoice_attachment_query(1, with_description=True)
        assert "AND ia.DESCRIPTION = :attachment_description" in sql

    def test_requires_codes(self):
        with pytest.raises(ValueError):
            build_invoice_attachment_query(0)


class TestBuildGenericBlobQuery:

    def test_plain_table(self):
        options = GenericExtractionOptions(table_name="documents", blob_column_name="content")
        sql = build_generic_blob_query(options)
        assert sql == "SELECT t.CONTENT AS BLOB_CONTENT\n  FROM DOCUMENTS t"

    def test_id_column_and_where(self):
        options = GenericExtractionOptions(
            table_name="DOCUMENTS",
            blob_column_name="CONTENT",
            id_column_name="ID",
            where_clause="t.KIND = 'INVOICE'",
        )
        sql = build_generic_blob_query(options)
        assert "t.ID AS ROW_ID" in sql
        assert "WHERE t.KIND = 'INVOICE'" in sql
        assert "JOIN" not in sql

    def test_with_metadata(self):
        options = GenericExtractionOptions(
            table_name="INVOICE_ATTACHMENTS",
            blob_column_name="BLOB_CONTENT",
            include_invoice_metadata=True,
            where_clause="EXTRACT(YEAR FROM i.INVOICE_DATE) = 2025",
        )
        sql = build_generic_blob_query(options)
        assert "s.CODE AS SUPPLIER_CODE" in sql
        assert "JOIN INVOICES i ON t.INVOICE_ID = i.ID" in sql
        assert "ROW_NUMBER()" not in sql

    def test_latest_per_supplier(self):
        options = GenericExtractionOptions(
            table_name="INVOICE_ATTACHMENTS",
            blob_column_name="BLOB_CONTENT",
            latest_per_supplier=True,
        )
        assert options.include_invoice_metadata is True
        sql = build_generic_blob_query(options)
        assert "ROW_NUMBER() OVER (PARTITION BY s.CODE ORDER BY i.INVOICE_DATE DESC)" in sql
        assert sql.startswith("SELECT * FROM (")
        assert sql.endswith("WHERE RECENCY_RANK = 1")

    def test_rejects_unsafe_identifier(self):
        with pytest.raises(ValueError):
            GenericExtractionOptions(table_name="DOCS; DROP TABLE X", blob_column_name="C")


# ============================================================================
# Row Decoding
# ============================================================================

class TestReadBlob:

    def test_materialized_bytes(self):
        assert read_blob(PDF_BYTES) == PDF_BYTES

    def test_bytearray_and_memoryview(self):
        assert read_blob(bytearray(b"abc")) == b"abc"
        assert read_blob(memoryview(b"abc")) == b"abc"

    def test_lob_handle(self):
        lob = FakeLob(PDF_BYTES)
        assert read_blob(lob) == PDF_BYTES
        assert lob.read_calls == 1

    def test_lob_returning_text(self):
        with pytest.raises(MalformedRowError):
            read_blob(FakeLob("text"))

    @pytest.mark.parametrize("value", [None, "text", 42])
    def test_unexpected_type(self, value):
        with pytest.raises(MalformedRowError):
            read_blob(value)


class TestDecodeRows:

    def test_decode_invoice_row(self):
        record = decode_invoice_row(dict(zip(INVOICE_COLUMNS, invoice_row(blob=FakeLob(PDF_BYTES)))))
        assert record.supplier_code == "SUP7"
        assert record.year == 2025
        assert record.month == 6
        assert record.supplier_invoice_number == "INV-001"
        assert record.description == "Original"
        assert record.blob_content == PDF_BYTES

    def test_decode_invoice_row_bad_month(self):
        with pytest.raises(MalformedRowError):
            decode_invoice_row(dict(zip(INVOICE_COLUMNS, invoice_row(month=13))))

    def test_decode_invoice_row_missing_supplier(self):
        with pytest.raises(MalformedRowError):
            decode_invoice_row(dict(zip(INVOICE_COLUMNS, invoice_row(supplier_code=None))))

    def test_decode_blob_row_stringifies_id(self):
        record = decode_blob_row({"ROW_ID": 17, "BLOB_CONTENT": PDF_BYTES}, 3)
        assert record.row_id == "17"
        assert record.position == 3
        assert record.supplier_code is None


# ============================================================================
# Database Service
# ============================================================================

class TestDatabaseServiceLifecycle:

    def test_initialize_passes_pool_settings(self, settings, make_pool):
        pool = make_pool()
        service = DatabaseService()
        service.initialize(settings.database)
        assert service.is_initialized
        assert pool.create_calls == [{
            "user": "scott",
            "password": "tiger",
            "dsn": "localhost:1521/XEPDB1",
            "min": 1,
            "max": 10,
            "increment": 1,
        }]

    def test_initialize_failure_is_classified(self, settings, make_pool):
        make_pool(create_error=oracledb.DatabaseError(FakeOracleErrorObj("ORA-12154")))
        service = DatabaseService()
        with pytest.raises(DatabaseInitializationError) as exc_info:
            service.initialize(settings.database)
        assert exc_info.value.kind is DatabaseErrorKind.CONNECTION
        assert not service.is_initialized

    def test_close_is_idempotent(self, settings, make_pool):
        pool = make_pool()
        service = DatabaseService()
        service.close()
        service.initialize(settings.database)
        service.close()
        service.close()
        assert pool.closed
        assert not service.is_initialized

    def test_fetch_before_initialize(self):
        with pytest.raises(DatabaseNotInitializedError):
            DatabaseService().fetch_invoice_attachments(["INV-001"])

    def test_fetch_blobs_before_initialize(self):
        options = GenericExtractionOptions(table_name="T", blob_column_name="B")
        with pytest.raises(DatabaseNotInitializedError):
            DatabaseService().fetch_blobs(options)

    def test_ping(self, settings, make_pool):
        pool = make_pool([(["1"], [(1,)])])
        service = DatabaseService()
        service.initialize(settings.database)
        service.ping()
        assert pool.connection.executed[0][0] == "SELECT 1 FROM DUAL"
        assert pool.released == 1


class TestFetchInvoiceAttachments:

    @pytest.fixture
    def service(self, settings):
        def _service():
            service = DatabaseService()
            service.initialize(settings.database)
            return service
        return _service

    def test_binds_codes(self, make_pool, service):
        pool = make_pool([(INVOICE_COLUMNS, [invoice_row()])])
        records = service().fetch_invoice_attachments(["INV-001", "INV-002"])

        assert len(records) == 1
        sql, binds = pool.connection.executed[0]
        assert binds == {"code_0": "INV-001", "code_1": "INV-002"}
        assert "INV-001" not in sql

    def test_quote_in_code_is_bound_not_inlined(self, make_pool, service):
        pool = make_pool()
        service().fetch_invoice_attachments(["O'REILLY-1"])
        sql, binds = pool.connection.executed[0]
        assert "O'REILLY" not in sql
        assert binds["code_0"] == "O'REILLY-1"

    def test_duplicate_codes_bound_once(self, make_pool, service):
        pool = make_pool()
        service().fetch_invoice_attachments(["A", "B", "A"])
        _, binds = pool.connection.executed[0]
        assert binds == {"code_0": "A", "code_1": "B"}

    def test_empty_codes_skip_query(self, make_pool, service):
        pool = make_pool()
        assert service().fetch_invoice_attachments([]) == []
        assert pool.acquired == 0

    def test_zero_rows(self, make_pool, service):
        pool = make_pool([(INVOICE_COLUMNS, [])])
        assert service().fetch_invoice_attachments(["INV-404"]) == []
        assert pool.acquired == pool.released == 1

    def test_lob_and_bytes_rows(self, make_pool, service):
        make_pool([(INVOICE_COLUMNS, [
            invoice_row(invoice_number="A", blob=FakeLob(PDF_BYTES)),
            invoice_row(invoice_number="B", blob=PDF_BYTES),
        ])])
        records = service().fetch_invoice_attachments(["A", "B"])
        assert [r.supplier_invoice_number for r in records] == ["A", "B"]
        assert all(r.blob_content == PDF_BYTES for r in records)

    def test_malformed_row_skipped(self, make_pool, service, caplog):
        make_pool([(INVOICE_COLUMNS, [
            invoice_row(invoice_number="A", blob=12345),
            invoice_row(invoice_number="B"),
        ])])
        records = service().fetch_invoice_attachments(["A", "B"])
        assert [r.supplier_invoice_number for r in records] == ["B"]
        assert "Skipping row for invoice A" in caplog.text

    def test_description_filter(self, make_pool, service):
        pool = make_pool([(INVOICE_COLUMNS, [
            invoice_row(invoice_number="A", description="Original"),
            invoice_row(invoice_number="A", description="Copy"),
            invoice_row(invoice_number="B", description="Original"),
        ])])
        records = service().fetch_invoice_attachments(["A", "B"], description="Original")

        sql, binds = pool.connection.executed[0]
        assert "ia.DESCRIPTION = :attachment_description" in sql
        assert binds["attachment_description"] == "Original"
        assert [(r.supplier_invoice_number, r.description) for r in records] == [
            ("A", "Original"),
            ("B", "Original"),
        ]

    def test_large_code_list_is_chunked(self, make_pool, service):
        pool = make_pool([(INVOICE_COLUMNS, [])])
        codes = [f"INV-{i}" for i in range(2500)]
        service().fetch_invoice_attachments(codes)

        executed = pool.connection.executed
        assert [len(binds) for _, binds in executed] == [1000, 1000, 500]
        assert pool.acquired == pool.released == 1

    def test_query_error_is_classified_and_connection_released(self, make_pool, service):
        pool = make_pool(execute_error=oracledb.DatabaseError(FakeOracleErrorObj("ORA-00942")))
        with pytest.raises(QueryError) as exc_info:
            service().fetch_invoice_attachments(["INV-001"])
        assert exc_info.value.kind is DatabaseErrorKind.OBJECT_NOT_FOUND
        assert pool.acquired == pool.released == 1

    def test_acquire_error(self, make_pool, service):
        make_pool(acquire_error=oracledb.DatabaseError(FakeOracleErrorObj("DPY-6005")))
        with pytest.raises(QueryError) as exc_info:
            service().fetch_invoice_attachments(["INV-001"])
        assert exc_info.value.kind is DatabaseErrorKind.CONNECTION

    def test_missing_column_fails_fast(self, make_pool, service):
        make_pool([(["SUPPLIER_CODE", "BLOB_CONTENT"], [("SUP7", PDF_BYTES)])])
        with pytest.raises(QueryError) as exc_info:
            service().fetch_invoice_attachments(["INV-001"])
        assert exc_info.value.kind is DatabaseErrorKind.SQL


class TestFetchBlobs:

    def test_rows_with_ids(self, settings, make_pool):
        make_pool([(["ROW_ID", "BLOB_CONTENT"], [(1, PDF_BYTES), (2, FakeLob(b"data"))])])
        service = DatabaseService()
        service.initialize(settings.database)

        options = GenericExtractionOptions(table_name="DOCS", blob_column_name="CONTENT", id_column_name="ID")
        records = service.fetch_blobs(options)
        assert [(r.row_id, r.blob_content) for r in records] == [("1", PDF_BYTES), ("2", b"data")]

    def test_malformed_row_skipped(self, settings, make_pool, caplog):
        make_pool([(["BLOB_CONTENT"], [(None,), (PDF_BYTES,)])])
        service = DatabaseService()
        service.initialize(settings.database)

        options = GenericExtractionOptions(table_name="DOCS", blob_column_name="CONTENT")
        records = service.fetch_blobs(options)
        assert [r.position for r in records] == [2]
        assert "Skipping row #1" in caplog.text
        assert "Skipping row None" not in caplog.text

    def test_malformed_row_labelled_by_id(self, settings, make_pool, caplog):
        make_pool([(["ROW_ID", "BLOB_CONTENT"], [(41, 12345), (42, PDF_BYTES)])])
        service = DatabaseService()
        service.initialize(settings.database)

        options = GenericExtractionOptions(table_name="DOCS", blob_column_name="CONTENT", id_column_name="ID")
        records = service.fetch_blobs(options)
        assert [(r.row_id, r.position) for r in records] == [("42", 2)]
        assert "Skipping row 41" in caplog.text

    def test_runs_without_binds(self, settings, make_pool):
        pool = make_pool([(["BLOB_CONTENT"], [])])
        service = DatabaseService()
        service.initialize(settings.database)

        options = GenericExtractionOptions(table_name="DOCS", blob_column_name="CONTENT")
        assert service.fetch_blobs(options) == []
        sql, binds = pool.connection.executed[0]
        assert binds is None
        assert "FROM DOCS t" in sql
