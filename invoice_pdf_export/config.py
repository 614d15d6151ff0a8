"""
Configuration constants and settings loading for the Invoice PDF Export tool.
"""

import logging
import os
from pathlib import Path
from typing import Final, Mapping, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator

from .errors import ConfigurationError

# Read .env from the working directory before any module-level os.getenv below (LOG_LEVEL in particular)
load_dotenv(find_dotenv(usecwd=True))

# ============================================================================
# Database Schema
# ============================================================================

ATTACHMENTS_TABLE: Final[str] = "INVOICE_ATTACHMENTS"
INVOICES_TABLE: Final[str] = "INVOICES"
SUPPLIERS_TABLE: Final[str] = "SUPPLIERS"

ATTACHMENT_BLOB_COLUMN: Final[str] = "BLOB_CONTENT"
ATTACHMENT_DESCRIPTION_COLUMN: Final[str] = "DESCRIPTION"

# Oracle rejects IN lists longer than this (ORA-01795)
MAX_IN_LIST_SIZE: Final[int] = 1000

# ============================================================================
# PDF Output
# ============================================================================

PDF_SIGNATURE: Final[bytes] = b"%PDF"
PDF_EXTENSION: Final[str] = ".pdf"

# Characters that are not allowed in file names on common filesystems
ILLEGAL_FILENAME_CHARS: Final[str] = '<>:"/\\|?*'

DEFAULT_FILENAME_PREFIX: Final[str] = "pdf"
DEFAULT_OUTPUT_DIR: Final[str] = "./output"
DEFAULT_LOG_LEVEL: Final[str] = "INFO"

# ============================================================================
# Connection Pool Defaults
# ============================================================================

DEFAULT_POOL_MIN: Final[int] = 1
DEFAULT_POOL_MAX: Final[int] = 10
DEFAULT_POOL_INCREMENT: Final[int] = 1

# ============================================================================
# Settings Models
# ============================================================================

class DatabaseSettings(BaseModel):
    """Oracle connection and pool sizing settings."""
    user: str = Field(..., min_length=1, description="Database user name")
    password: SecretStr = Field(..., description="Database password")
    connect_string: str = Field(..., min_length=1, description="Oracle connect string or DSN")
    pool_min: int = Field(DEFAULT_POOL_MIN, ge=0, description="Minimum pooled connections")
    pool_max: int = Field(DEFAULT_POOL_MAX, ge=1, description="Maximum pooled connections")
    pool_increment: int = Field(DEFAULT_POOL_INCREMENT, ge=1, description="Connections opened per pool growth step")

    @field_validator("user", "connect_string")
    @classmethod
    def strip_value(cls, v: str) -> str:
        """Reject whitespace-only values."""
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("password")
    @classmethod
    def password_not_blank(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value():
            raise ValueError("must not be blank")
        return v

    @model_validator(mode="after")
    def check_pool_bounds(self) -> "DatabaseSettings":
        if self.pool_max < self.pool_min:
            raise ValueError("pool_max must be greater than or equal to pool_min")
        return self


class AppSettings(BaseModel):
    """Top-level application settings."""
    database: DatabaseSettings
    pdf_output_dir: Path = Field(
        Path(DEFAULT_OUTPUT_DIR),
        description="Directory where extracted PDF files are written",
    )
    log_level: str = Field(DEFAULT_LOG_LEVEL, description="Level of the invoice_pdf_export logger")


# Environment variable names
ENV_DB_USER: Final[str] = "DB_USER"
ENV_DB_PASSWORD: Final[str] = "DB_PASSWORD"
ENV_DB_CONNECT_STRING: Final[str] = "DB_CONNECT_STRING"
ENV_DB_POOL_MIN: Final[str] = "DB_POOL_MIN"
ENV_DB_POOL_MAX: Final[str] = "DB_POOL_MAX"
ENV_DB_POOL_INCREMENT: Final[str] = "DB_POOL_INCREMENT"
ENV_PDF_OUTPUT_DIR: Final[str] = "PDF_OUTPUT_DIR"
ENV_LOG_LEVEL: Final[str] = "LOG_LEVEL"

REQUIRED_ENV_VARS: Final[tuple[str, ...]] = (ENV_DB_USER, ENV_DB_PASSWORD, ENV_DB_CONNECT_STRING)


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """
    Build application settings from environment variables.

    A ``.env`` file in the working directory is loaded first when reading
    from the process environment. Values already set in the environment
    take precedence over the file.

    Args:
        env: Optional mapping to read instead of ``os.environ``

    Returns:
        Validated AppSettings

    Raises:
        ConfigurationError: If required database settings are missing or invalid
    """
    if env is None:
        load_dotenv(find_dotenv(usecwd=True))
        env = os.environ

    missing = [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]
    if missing:
        raise ConfigurationError(
            f"Missing required database configuration: {', '.join(missing)}. "
            "Set them in the environment or in a .env file."
        )

    try:
        settings = AppSettings(
            database=DatabaseSettings(
                user=env[ENV_DB_USER],
                password=env[ENV_DB_PASSWORD],
                connect_string=env[ENV_DB_CONNECT_STRING],
                pool_min=_parse_int(env, ENV_DB_POOL_MIN, DEFAULT_POOL_MIN),
                pool_max=_parse_int(env, ENV_DB_POOL_MAX, DEFAULT_POOL_MAX),
                pool_increment=_parse_int(env, ENV_DB_POOL_INCREMENT, DEFAULT_POOL_INCREMENT),
            ),
            pdf_output_dir=Path(env.get(ENV_PDF_OUTPUT_DIR) or DEFAULT_OUTPUT_DIR),
            log_level=(env.get(ENV_LOG_LEVEL) or "").strip() or DEFAULT_LOG_LEVEL,
        )
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid database configuration: {problems}") from e

    apply_log_level(settings.log_level)
    return settings


# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL)


def parse_log_level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=parse_log_level(LOG_LEVEL),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("invoice_pdf_export")


logger = setup_logging()


def apply_log_level(name: str) -> None:
    """Set the package logger level, e.g. after LOG_LEVEL was read from a .env file."""
    logger.setLevel(parse_log_level(name))
