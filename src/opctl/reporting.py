"""Task result documents and the structured error taxonomy."""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import Enum
from typing import cast

ERROR_KEY = "_error"
KIND_PREFIX = "openproject"


class ErrorKind(str, Enum):
    """Stable, machine-readable error kinds reported to task callers."""

    NOT_ROOT = "not-root"
    COMMAND_NOT_FOUND = "command-not-found"
    PG_RESTORE_NOT_FOUND = "pg-restore-not-found"
    MISSING_BACKUP_FILES = "missing-backup-files"
    BACKUP_FAILED = "backup-failed"
    SERVICE_STOP_FAILED = "service-stop-failed"
    SERVICE_RESTART_FAILED = "service-restart-failed"
    RESTORE_FAILED = "restore-failed"
    DATABASE_URL_FAILED = "database-url-failed"
    PG_RESTORE_FAILED = "pg-restore-failed"
    INVALID_PARAMETERS = "invalid-parameters"
    CONFIG_ERROR = "config-error"
    TIMEOUT = "timeout"

    @property
    def qualified(self) -> str:
        """Return the namespaced kind string, e.g. ``openproject/not-root``."""
        return f"{KIND_PREFIX}/{self.value}"


class TaskError(RuntimeError):
    """Raised when a task procedure fails; carries the structured error."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        details: Mapping[str, object] | None = None,
    ) -> None:
        """Store the error kind, message and detail payload."""
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = dict(details or {})

    def to_document(self) -> dict[str, object]:
        """Return the ``{"_error": {...}}`` document for this error."""
        return error_document(self.message, self.kind, self.details)


def sanitize_payload(value: object) -> object:
    """Convert *value* into JSON-safe primitives."""
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): sanitize_payload(item) for key, item in value.items()}
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [sanitize_payload(item) for item in value]
    return str(value)


def error_document(
    message: str,
    kind: ErrorKind,
    details: Mapping[str, object] | None = None,
) -> dict[str, object]:
    """Build the structured error document emitted on failure."""
    return {
        ERROR_KEY: {
            "msg": message,
            "kind": kind.qualified,
            "details": sanitize_payload(dict(details or {})),
        }
    }


def success_document(payload: Mapping[str, object]) -> dict[str, object]:
    """Build the success document for *payload*."""
    document = cast(dict[str, object], sanitize_payload(dict(payload)))
    if ERROR_KEY in document:
        raise ValueError(f"Success payloads must not contain the '{ERROR_KEY}' key.")
    return document


__all__ = [
    "ERROR_KEY",
    "ErrorKind",
    "TaskError",
    "error_document",
    "sanitize_payload",
    "success_document",
]
