"""Invocation parameters for the backup and restore tasks.

Parameters arrive as one JSON object on standard input and are parsed once
into frozen dataclasses.
"""
from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass

from .reporting import ErrorKind, TaskError

BACKUP_KEYS = frozenset({"backup_dir"})
RESTORE_KEYS = frozenset({"timestamp", "backup_dir", "pg_no_owner"})


def parse_document(raw: str | bytes) -> dict[str, object]:
    """Parse the stdin document; blank input is treated as ``{}``.

    Raw bytes are decoded as UTF-8.
    """
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TaskError(
                ErrorKind.INVALID_PARAMETERS,
                f"Task parameters are not valid UTF-8: {exc}.",
            ) from exc
    else:
        text = raw
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TaskError(
            ErrorKind.INVALID_PARAMETERS,
            f"Task parameters are not valid JSON: {exc}.",
        ) from exc
    if not isinstance(data, Mapping):
        raise TaskError(
            ErrorKind.INVALID_PARAMETERS,
            "Task parameters must be a JSON object.",
            {"received": type(data).__name__},
        )
    return {str(key): value for key, value in data.items()}


@dataclass(frozen=True, slots=True)
class BackupParams:
    """Parameters accepted by the backup task."""

    backup_dir: str

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object], *, default_backup_dir: str) -> BackupParams:
        """Validate *raw* and return the parameters."""
        _reject_unknown(raw, BACKUP_KEYS)
        return cls(backup_dir=_backup_dir(raw, default_backup_dir))


@dataclass(frozen=True, slots=True)
class RestoreParams:
    """Parameters accepted by the restore task."""

    timestamp: str
    backup_dir: str
    pg_no_owner: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, object], *, default_backup_dir: str) -> RestoreParams:
        """Validate *raw* and return the parameters."""
        _reject_unknown(raw, RESTORE_KEYS)
        timestamp = raw.get("timestamp")
        if not isinstance(timestamp, str) or not timestamp.strip():
            raise TaskError(
                ErrorKind.INVALID_PARAMETERS,
                "The 'timestamp' parameter is required and must be a non-empty string.",
                {"parameter": "timestamp"},
            )
        pg_no_owner = raw.get("pg_no_owner", False)
        if pg_no_owner is None:
            pg_no_owner = False
        if not isinstance(pg_no_owner, bool):
            raise TaskError(
                ErrorKind.INVALID_PARAMETERS,
                "The 'pg_no_owner' parameter must be a boolean.",
                {"parameter": "pg_no_owner"},
            )
        return cls(
            timestamp=timestamp,
            backup_dir=_backup_dir(raw, default_backup_dir),
            pg_no_owner=pg_no_owner,
        )


def _backup_dir(raw: Mapping[str, object], default: str) -> str:
    value = raw.get("backup_dir")
    if value is None:
        return default
    if not isinstance(value, str) or not value.strip():
        raise TaskError(
            ErrorKind.INVALID_PARAMETERS,
            "The 'backup_dir' parameter must be a non-empty string.",
            {"parameter": "backup_dir"},
        )
    return value


def _reject_unknown(raw: Mapping[str, object], allowed: frozenset[str]) -> None:
    # Task runners inject metadata such as ``_task`` alongside user parameters.
    unknown = sorted(key for key in set(raw.keys()) - allowed if not key.startswith("_"))
    if unknown:
        raise TaskError(
            ErrorKind.INVALID_PARAMETERS,
            f"Unknown task parameters: {', '.join(unknown)}.",
            {"unknown": unknown},
        )


__all__ = ["BackupParams", "RestoreParams", "parse_document"]
