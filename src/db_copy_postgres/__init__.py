"""
PostgreSQL Database Copy Tool - Copy a database between servers by piping pg_dump into pg_restore

This package provides a CLI tool to copy PostgreSQL databases using the system's PostgreSQL
client tools (psql, pg_dump, pg_restore). The custom-format archive is streamed from one
process to the other, so the dump is never written to local disk.

Main features:
- Connection settings from environment variables or a .env file
- Connectivity check (SELECT 1) on both servers before any data moves
- Full, schema-only, data-only or schema-then-data transfer
- pg_dump / pg_restore diagnostics relayed to the log
- Passwords passed through PGPASSWORD, never on the command line

Usage:
    db-copy-postgres
    db-copy-postgres --env-file staging.env --mode schema-then-data
"""

__version__ = "1.0.0"
__author__ = "Harish Karumuthil"
__email__ = "harish2704@gmail.com"
__license__ = "MIT"

from .config import EndpointConfig, TransferMode, load_config
from .db_copy import DatabaseTransferTool, PgDumpTool, StderrForwarder
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    PipelineSetupError,
    ProcessExecutionError,
    ProcessStartError,
    TransferError,
)

__all__ = [
    "DatabaseTransferTool",
    "PgDumpTool",
    "StderrForwarder",
    "EndpointConfig",
    "TransferMode",
    "load_config",
    "TransferError",
    "ConfigurationError",
    "DatabaseConnectionError",
    "PipelineSetupError",
    "ProcessStartError",
    "ProcessExecutionError",
]
