"""
Exception types for the Invoice PDF Export tool.

Database failures are classified into a DatabaseErrorKind when the driver
raises them, so callers can pick a remedy without parsing error messages.
"""

from enum import Enum
from typing import Final, Optional


class DatabaseErrorKind(str, Enum):
    """Categories of database failures."""
    CONNECTION = "connection"
    AUTHENTICATION = "authentication"
    CLIENT_LIBRARY = "client_library"
    OBJECT_NOT_FOUND = "object_not_found"
    SQL = "sql"
    UNKNOWN = "unknown"


# Driver error codes (python-oracledb ``full_code``) grouped by kind
_ERROR_CODE_KINDS: Final[dict[str, DatabaseErrorKind]] = {
    # TNS / network
    "ORA-12154": DatabaseErrorKind.CONNECTION,
    "ORA-12170": DatabaseErrorKind.CONNECTION,
    "ORA-12514": DatabaseErrorKind.CONNECTION,
    "ORA-12541": DatabaseErrorKind.CONNECTION,
    "ORA-12545": DatabaseErrorKind.CONNECTION,
    "ORA-03113": DatabaseErrorKind.CONNECTION,
    "ORA-03114": DatabaseErrorKind.CONNECTION,
    "DPY-4011": DatabaseErrorKind.CONNECTION,
    "DPY-6000": DatabaseErrorKind.CONNECTION,
    "DPY-6001": DatabaseErrorKind.CONNECTION,
    "DPY-6005": DatabaseErrorKind.CONNECTION,
    # Credentials
    "ORA-01017": DatabaseErrorKind.AUTHENTICATION,
    "ORA-28000": DatabaseErrorKind.AUTHENTICATION,
    "ORA-28001": DatabaseErrorKind.AUTHENTICATION,
    # Oracle Client libraries (thick mode)
    "DPI-1047": DatabaseErrorKind.CLIENT_LIBRARY,
    "DPI-1072": DatabaseErrorKind.CLIENT_LIBRARY,
    "DPY-3010": DatabaseErrorKind.CLIENT_LIBRARY,
    # Schema objects
    "ORA-00904": DatabaseErrorKind.OBJECT_NOT_FOUND,
    "ORA-00942": DatabaseErrorKind.OBJECT_NOT_FOUND,
    "ORA-01031": DatabaseErrorKind.OBJECT_NOT_FOUND,
}

ERROR_HINTS: Final[dict[DatabaseErrorKind, list[str]]] = {
    DatabaseErrorKind.CONNECTION: [
        "Check DB_CONNECT_STRING (host, port and service name)",
        "Make sure the database is reachable from this machine",
    ],
    DatabaseErrorKind.AUTHENTICATION: [
        "Check DB_USER and DB_PASSWORD",
        "Make sure the account is not locked or expired",
    ],
    DatabaseErrorKind.CLIENT_LIBRARY: [
        "Check that Oracle Instant Client is installed and on the library path",
        "Restart the terminal after changing PATH",
    ],
    DatabaseErrorKind.OBJECT_NOT_FOUND: [
        "Check that the table and column names exist",
        "Make sure the user has SELECT permission on them",
    ],
    DatabaseErrorKind.SQL: [
        "Check the table, column and WHERE clause arguments",
    ],
}


def classify_database_error(error: BaseException) -> DatabaseErrorKind:
    """
    Map a driver exception to a DatabaseErrorKind.

    python-oracledb exceptions carry an error object as their first argument
    whose ``full_code`` holds the vendor code (e.g. ``ORA-01017``).
    """
    error_obj = error.args[0] if error.args else None
    full_code: Optional[str] = getattr(error_obj, "full_code", None)
    if not full_code:
        return DatabaseErrorKind.UNKNOWN
    if full_code in _ERROR_CODE_KINDS:
        return _ERROR_CODE_KINDS[full_code]
    if full_code.startswith("ORA-0"):
        return DatabaseErrorKind.SQL
    return DatabaseErrorKind.UNKNOWN


class PdfExportError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(PdfExportError):
    """Required configuration is missing or invalid."""


class DatabaseNotInitializedError(PdfExportError):
    """A query was attempted before the connection pool was created."""

    def __init__(self, message: str = "Database not initialized. Call initialize() first."):
        super().__init__(message)


class DatabaseError(PdfExportError):
    """A database operation failed."""

    def __init__(self, message: str, kind: DatabaseErrorKind = DatabaseErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind

    @property
    def hints(self) -> list[str]:
        return ERROR_HINTS.get(self.kind, [])


class DatabaseInitializationError(DatabaseError):
    """The connection pool could not be created."""

    @property
    def hints(self) -> list[str]:
        return ERROR_HINTS.get(self.kind) or ERROR_HINTS[DatabaseErrorKind.CONNECTION]


class QueryError(DatabaseError):
    """Acquiring a connection, executing a query or reading its rows failed."""


class MalformedRowError(PdfExportError):
    """A result row could not be decoded into a record."""
