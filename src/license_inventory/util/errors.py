from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    SOURCE_ERROR = 3
    EXPORT_ERROR = 4
    RUNTIME_ERROR = 5


class InventoryError(Exception):
    """Base error for the license inventory pipeline."""


class ConfigError(InventoryError):
    """Raised for configuration or argument issues."""


class QueryError(InventoryError):
    """Raised when a single remote query protocol attempt fails."""


class RetrievalError(InventoryError):
    """Raised when every query protocol failed for one (class, host) pair."""

    def __init__(self, class_name: str, host: str, message: str) -> None:
        super().__init__(f"{class_name} on {host}: {message}")
        self.class_name = class_name
        self.host = host


class ProjectionError(InventoryError):
    """Raised when a remote instance lacks attributes required for the report."""


class SourceEnumerationError(InventoryError):
    """Raised when the host source cannot produce any hosts."""


class ExportError(InventoryError):
    """Raised when writing the report fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, SourceEnumerationError):
        return int(ExitCode.SOURCE_ERROR)
    if isinstance(exc, ExportError):
        return int(ExitCode.EXPORT_ERROR)
    if isinstance(exc, InventoryError):
        return int(ExitCode.RUNTIME_ERROR)
    return 1
