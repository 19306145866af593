"""Preflight checks performed before any mutating action."""
from __future__ import annotations

import os
import shutil
from pathlib import Path

from .reporting import ErrorKind, TaskError


def is_root() -> bool:
    """Return ``True`` when the process runs with an effective uid of 0."""
    return os.geteuid() == 0


def resolve_command(command: str) -> str | None:
    """Return the executable path for *command* or ``None`` when unavailable.

    Explicit paths are checked directly; bare names are looked up on ``PATH``.
    """
    path = Path(command)
    if path.is_absolute() or (path.parent and str(path.parent) not in {"", "."}):
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
        return None
    return shutil.which(command)


def require_root(message: str) -> None:
    """Raise a ``not-root`` error unless running as root."""
    if not is_root():
        raise TaskError(ErrorKind.NOT_ROOT, message)


def require_command(command: str, kind: ErrorKind, message: str) -> str:
    """Return the resolved path of *command* or raise *kind*."""
    resolved = resolve_command(command)
    if resolved is None:
        raise TaskError(kind, message, {"command": command})
    return resolved


__all__ = ["is_root", "require_command", "require_root", "resolve_command"]
