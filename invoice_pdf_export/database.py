"""
Oracle access layer: connection pool lifecycle, query construction and
row decoding.

Queries are built with bound parameters; only table and column names that
were validated as plain identifiers are interpolated into the SQL text.
BLOB columns are read completely into memory while the connection that
produced them is still open.
"""

from contextlib import contextmanager
from typing import Any, Iterator, Optional, Sequence

import oracledb
from pydantic import ValidationError

from .config import (
    ATTACHMENT_BLOB_COLUMN,
    ATTACHMENT_DESCRIPTION_COLUMN,
    ATTACHMENTS_TABLE,
    INVOICES_TABLE,
    MAX_IN_LIST_SIZE,
    SUPPLIERS_TABLE,
    DatabaseSettings,
    logger,
)
from .errors import (
    DatabaseErrorKind,
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    MalformedRowError,
    QueryError,
    classify_database_error,
)
from .schemas import BlobRecord, GenericExtractionOptions, InvoiceAttachmentRecord


# ============================================================================
# Result Columns
# ============================================================================

COL_SUPPLIER_CODE = "SUPPLIER_CODE"
COL_INVOICE_YEAR = "INVOICE_YEAR"
COL_INVOICE_MONTH = "INVOICE_MONTH"
COL_SUPPLIER_INVOICE_NUMBER = "SUPPLIER_INVOICE_NUMBER"
COL_ATTACHMENT_DESCRIPTION = "ATTACHMENT_DESCRIPTION"
COL_BLOB_CONTENT = "BLOB_CONTENT"
COL_ROW_ID = "ROW_ID"

METADATA_COLUMNS = (
    COL_SUPPLIER_CODE,
    COL_INVOICE_YEAR,
    COL_INVOICE_MONTH,
    COL_SUPPLIER_INVOICE_NUMBER,
)

INVOICE_ATTACHMENT_COLUMNS = METADATA_COLUMNS + (COL_ATTACHMENT_DESCRIPTION, COL_BLOB_CONTENT)

DESCRIPTION_BIND = "attachment_description"

# Projection of invoice/supplier metadata shared by both query shapes
_METADATA_PROJECTION = (
    f"s.CODE AS {COL_SUPPLIER_CODE}",
    f"EXTRACT(YEAR FROM i.INVOICE_DATE) AS {COL_INVOICE_YEAR}",
    f"EXTRACT(MONTH FROM i.INVOICE_DATE) AS {COL_INVOICE_MONTH}",
    f"i.SUPPLIER_IV_NUM AS {COL_SUPPLIER_INVOICE_NUMBER}",
)


# ============================================================================
# Query Construction
# ============================================================================

def build_invoice_attachment_query(
    code_count: int,
    with_description: bool = False,
) -> tuple[str, list[str]]:
    """
    Build the attachment/invoice/supplier join filtered by invoice number.

    Args:
        code_count: Number of invoice codes in the IN list
        with_description: Add an equality filter on the attachment description

    Returns:
        Tuple of (SQL text, names of the invoice code bind variables in order)
    """
    if code_count < 1:
        raise ValueError("At least one invoice code is required")

    bind_names = [f"code_{i}" for i in range(code_count)]
    placeholders = ", ".join(f":{name}" for name in bind_names)

    projection = _METADATA_PROJECTION + (
        f"ia.{ATTACHMENT_DESCRIPTION_COLUMN} AS {COL_ATTACHMENT_DESCRIPTION}",
        f"ia.{ATTACHMENT_BLOB_COLUMN} AS {COL_BLOB_CONTENT}",
    )
    lines = [
        "SELECT " + ",\n       ".join(projection),
        f"  FROM {ATTACHMENTS_TABLE} ia",
        f"  JOIN {INVOICES_TABLE} i ON ia.INVOICE_ID = i.ID",
        f"  JOIN {SUPPLIERS_TABLE} s ON i.SUPPLIER_ID = s.ID",
        f" WHERE i.SUPPLIER_IV_NUM IN ({placeholders})",
    ]
    if with_description:
        lines.append(f"   AND ia.{ATTACHMENT_DESCRIPTION_COLUMN} = :{DESCRIPTION_BIND}")

    return "\n".join(lines), bind_names


def build_generic_blob_query(options: GenericExtractionOptions) -> str:
    """
    Build a query returning every BLOB of ``options.table_name``.

    The source table is aliased ``t``. With invoice metadata, invoices (``i``)
    and suppliers (``s``) are joined through ``t.INVOICE_ID``. With
    ``latest_per_supplier`` only the attachment of the most recent invoice
    of each supplier is kept.
    """
    projection: list[str] = []
    if options.id_column_name:
        projection.append(f"t.{options.id_column_name} AS {COL_ROW_ID}")
    if options.include_invoice_metadata:
        projection.extend(_METADATA_PROJECTION)
    projection.append(f"t.{options.blob_column_name} AS {COL_BLOB_CONTENT}")

    if options.latest_per_supplier:
        projection.append(
            "ROW_NUMBER() OVER (PARTITION BY s.CODE ORDER BY i.INVOICE_DATE DESC) AS RECENCY_RANK"
        )

    lines = [
        "SELECT " + ",\n       ".join(projection),
        f"  FROM {options.table_name} t",
    ]
    if options.include_invoice_metadata:
        lines.append(f"  JOIN {INVOICES_TABLE} i ON t.INVOICE_ID = i.ID")
        lines.append(f"  JOIN {SUPPLIERS_TABLE} s ON i.SUPPLIER_ID = s.ID")
    if options.where_clause:
        lines.append(f" WHERE {options.where_clause}")

    sql = "\n".join(lines)
    if options.latest_per_supplier:
        sql = f"SELECT * FROM (\n{sql}\n) WHERE RECENCY_RANK = 1"
    return sql


def _chunked(values: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(values), size):
        yield values[start:start + size]


# ============================================================================
# Row Decoding
# ============================================================================

def read_blob(value: Any) -> bytes:
    """
    Materialize a BLOB column value.

    Accepts a LOB handle (anything with a ``read()`` method) or bytes that
    the driver already fetched.

    Raises:
        MalformedRowError: If the value is neither
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)

    read = getattr(value, "read", None)
    if callable(read):
        data = read()
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
        raise MalformedRowError(f"LOB read returned {type(data).__name__}, expected bytes")

    raise MalformedRowError(f"Unexpected data type for BLOB column: {type(value).__name__}")


def column_names(cursor: Any) -> list[str]:
    return [column[0].upper() for column in cursor.description]


def require_columns(columns: Sequence[str], required: Sequence[str]) -> None:
    """Fail if the result set lacks a column the decoder depends on."""
    missing = [name for name in required if name not in columns]
    if missing:
        raise QueryError(
            f"Query result is missing expected column(s): {', '.join(missing)}",
            DatabaseErrorKind.SQL,
        )


def decode_invoice_row(values: dict[str, Any]) -> InvoiceAttachmentRecord:
    """
    Convert a named result row into an InvoiceAttachmentRecord.

    Raises:
        MalformedRowError: If the BLOB or metadata cannot be interpreted
    """
    blob_content = read_blob(values[COL_BLOB_CONTENT])
    try:
        return InvoiceAttachmentRecord(
            supplier_code=values[COL_SUPPLIER_CODE],
            year=values.get(COL_INVOICE_YEAR),
            month=values[COL_INVOICE_MONTH],
            supplier_invoice_number=values[COL_SUPPLIER_INVOICE_NUMBER],
            description=values.get(COL_ATTACHMENT_DESCRIPTION),
            blob_content=blob_content,
        )
    except ValidationError as e:
        raise MalformedRowError(f"Invalid invoice metadata: {e.error_count()} error(s)") from e


def decode_blob_row(values: dict[str, Any], position: int) -> BlobRecord:
    """Convert a named result row from a generic extraction into a BlobRecord."""
    blob_content = read_blob(values[COL_BLOB_CONTENT])
    row_id = values.get(COL_ROW_ID)
    try:
        return BlobRecord(
            row_id=None if row_id is None else str(row_id),
            position=position,
            supplier_code=values.get(COL_SUPPLIER_CODE),
            year=values.get(COL_INVOICE_YEAR),
            month=values.get(COL_INVOICE_MONTH),
            supplier_invoice_number=values.get(COL_SUPPLIER_INVOICE_NUMBER),
            blob_content=blob_content,
        )
    except ValidationError as e:
        raise MalformedRowError(f"Invalid row metadata: {e.error_count()} error(s)") from e


# ============================================================================
# Database Service
# ============================================================================

class DatabaseService:
    """
    Owns the Oracle connection pool.

    ``initialize`` must be called before any query; ``close`` releases the
    pool and may be called any number of times.
    """

    def __init__(self) -> None:
        self._pool: Optional[oracledb.ConnectionPool] = None

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    def initialize(self, settings: DatabaseSettings) -> None:
        """
        Create the connection pool.

        Raises:
            DatabaseInitializationError: If the pool cannot be created
        """
        if self._pool is not None:
            logger.warning("Database connection pool already initialized")
            return

        try:
            self._pool = oracledb.create_pool(
                user=settings.user,
                password=settings.password.get_secret_value(),
                dsn=settings.connect_string,
                min=settings.pool_min,
                max=settings.pool_max,
                increment=settings.pool_increment,
            )
        except oracledb.Error as e:
            logger.error(f"Error creating database connection pool: {e}")
            raise DatabaseInitializationError(
                f"Could not create database connection pool: {e}",
                classify_database_error(e),
            ) from e

        logger.info("Database connection pool created successfully")

    def close(self) -> None:
        """Close the pool if it is open."""
        if self._pool is None:
            return

        pool, self._pool = self._pool, None
        try:
            pool.close()
        except oracledb.Error as e:
            logger.error(f"Error closing database connection pool: {e}")
            raise QueryError(
                f"Could not close database connection pool: {e}",
                classify_database_error(e),
            ) from e

        logger.info("Database connection pool closed")

    @contextmanager
    def connection(self) -> Iterator[oracledb.Connection]:
        """Borrow a connection from the pool, returning it when the block exits."""
        pool = self._pool
        if pool is None:
            raise DatabaseNotInitializedError()

        connection = pool.acquire()
        try:
            yield connection
        finally:
            pool.release(connection)

    def ping(self) -> None:
        """Run a trivial query to prove the pool can serve connections."""
        try:
            with self.connection() as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1 FROM DUAL")
                    cursor.fetchone()
        except oracledb.Error as e:
            logger.error(f"Connection check failed: {e}")
            raise QueryError(f"Connection check failed: {e}", classify_database_error(e)) from e

    def fetch_invoice_attachments(
        self,
        invoice_codes: Sequence[str],
        description: Optional[str] = None,
    ) -> list[InvoiceAttachmentRecord]:
        """
        Fetch the attachments of the given supplier invoice numbers.

        Args:
            invoice_codes: Supplier invoice numbers to match
            description: Optional exact-match filter on the attachment description

        Returns:
            Records in the order the database returned them; rows that cannot
            be decoded are skipped

        Raises:
            DatabaseNotInitializedError: If ``initialize`` has not been called
            QueryError: If the query cannot be executed
        """
        if self._pool is None:
            raise DatabaseNotInitializedError()

        codes = list(dict.fromkeys(invoice_codes))
        if not codes:
            logger.info("No invoice codes supplied")
            return []

        records: list[InvoiceAttachmentRecord] = []
        try:
            with self.connection() as connection:
                for chunk in _chunked(codes, MAX_IN_LIST_SIZE):
                    sql, bind_names = build_invoice_attachment_query(
                        len(chunk), with_description=description is not None
                    )
                    binds: dict[str, Any] = dict(zip(bind_names, chunk))
                    if description is not None:
                        binds[DESCRIPTION_BIND] = description

                    logger.info(f"Executing query:\n{sql}")
                    logger.debug(f"Bind values: {binds}")

                    with connection.cursor() as cursor:
                        cursor.execute(sql, binds)
                        columns = column_names(cursor)
                        require_columns(columns, INVOICE_ATTACHMENT_COLUMNS)

                        for row in cursor:
                            values = dict(zip(columns, row))
                            try:
                                record = decode_invoice_row(values)
                            except MalformedRowError as e:
                                logger.warning(
                                    f"Skipping row for invoice "
                                    f"{values.get(COL_SUPPLIER_INVOICE_NUMBER)}: {e}"
                                )
                                continue

                            if description is not None and record.description != description:
                                logger.debug(
                                    f"Skipping attachment of {record.supplier_invoice_number} "
                                    f"with description {record.description!r}"
                                )
                                continue

                            records.append(record)
        except oracledb.Error as e:
            logger.error(f"Error retrieving PDF BLOB data with metadata: {e}")
            raise QueryError(f"Error retrieving PDF BLOB data: {e}", classify_database_error(e)) from e

        if not records:
            logger.info("No rows found")
        return records

    def fetch_blobs(self, options: GenericExtractionOptions) -> list[BlobRecord]:
        """
        Fetch every BLOB described by ``options``.

        Raises:
            DatabaseNotInitializedError: If ``initialize`` has not been called
            QueryError: If the query cannot be executed
        """
        if self._pool is None:
            raise DatabaseNotInitializedError()

        sql = build_generic_blob_query(options)
        required = [COL_BLOB_CONTENT]
        if options.id_column_name:
            required.append(COL_ROW_ID)
        if options.include_invoice_metadata:
            required.extend(METADATA_COLUMNS)

        records: list[BlobRecord] = []
        try:
            with self.connection() as connection:
                logger.info(f"Executing query:\n{sql}")
                with connection.cursor() as cursor:
                    cursor.execute(sql)
                    columns = column_names(cursor)
                    require_columns(columns, required)

                    for index, row in enumerate(cursor, start=1):
                        values = dict(zip(columns, row))
                        try:
                            records.append(decode_blob_row(values, index))
                        except MalformedRowError as e:
                            row_id = values.get(COL_ROW_ID)
                            label = f"#{index}" if row_id is None else row_id
                            logger.warning(f"Skipping row {label}: {e}")
        except oracledb.Error as e:
            logger.error(f"Error retrieving PDF BLOB data: {e}")
            raise QueryError(f"Error retrieving PDF BLOB data: {e}", classify_database_error(e)) from e

        if not records:
            logger.info("No rows found")
        return records
