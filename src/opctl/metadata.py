"""Task metadata documents for registering the procedures as remote tasks."""
from __future__ import annotations

from typing import cast

from .config import DEFAULT_BACKUP_DIR

TASK_NAMES = ("backup", "restore")

_BACKUP_DIR_PARAMETER: dict[str, object] = {
    "description": "Directory the backup set is written to and read from.",
    "type": "Optional[String[1]]",
    "default": DEFAULT_BACKUP_DIR,
}

TASK_METADATA: dict[str, dict[str, object]] = {
    "backup": {
        "description": (
            "Create a full OpenProject backup (database, attachments, configuration, "
            "repositories) with 'openproject run backup'."
        ),
        "input_method": "stdin",
        "supports_noop": False,
        "parameters": {
            "backup_dir": dict(_BACKUP_DIR_PARAMETER),
        },
    },
    "restore": {
        "description": (
            "Restore an OpenProject backup set identified by its timestamp. "
            "Stops the service, restores archives and the database, then restarts it."
        ),
        "input_method": "stdin",
        "supports_noop": False,
        "parameters": {
            "timestamp": {
                "description": "Timestamp shared by the backup files, e.g. 20240101120000.",
                "type": "String[1]",
            },
            "backup_dir": dict(_BACKUP_DIR_PARAMETER),
            "pg_no_owner": {
                "description": "Pass --no-owner to pg_restore.",
                "type": "Optional[Boolean]",
                "default": False,
            },
        },
    },
}


def task_metadata(task: str) -> dict[str, object]:
    """Return a copy of the metadata document for *task*."""
    try:
        document = TASK_METADATA[task]
    except KeyError as exc:
        allowed = ", ".join(TASK_NAMES)
        raise ValueError(f"Unknown task '{task}'. Expected one of: {allowed}.") from exc
    parameters = cast(dict[str, dict[str, object]], document["parameters"])
    return {
        **document,
        "parameters": {name: dict(spec) for name, spec in parameters.items()},
    }


__all__ = ["TASK_METADATA", "TASK_NAMES", "task_metadata"]
