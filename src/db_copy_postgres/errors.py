"""
Exceptions raised by the PostgreSQL copy tool.
None of these are retried; each one ends the current operation.
"""

from typing import Optional


class TransferError(Exception):
    """Base class for every failure reported by db-copy-postgres"""


class ConfigurationError(TransferError):
    """Required connection settings are missing or invalid"""


class DatabaseConnectionError(TransferError, ConnectionError):
    """An endpoint did not answer the connectivity probe"""

    def __init__(self, endpoint: str, cause: str):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"failed to connect to {endpoint} database: {cause}")


class PipelineSetupError(TransferError):
    """The pipe between pg_dump and pg_restore could not be created"""


class ProcessStartError(TransferError):
    """An external tool could not be spawned"""

    def __init__(self, tool: str, endpoint: str, cause: Exception):
        self.tool = tool
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"error starting {tool} for {endpoint} database: {cause}")


class ProcessExecutionError(TransferError):
    """An external tool exited with a non-zero status"""

    def __init__(self, tool: str, endpoint: str, returncode: int,
                 detail: Optional[str] = None):
        self.tool = tool
        self.endpoint = endpoint
        self.returncode = returncode
        message = f"{tool} ({endpoint} database) exited with status {returncode}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
