"""Structured operation logging for opctl.

Every CLI command runs inside an :class:`OperationScope`. When the scope
closes, one JSON record is appended to ``operations.jsonl`` and a short
summary line is written to the human-readable ``opctl.log`` (rotated by the
standard library ``logging`` machinery). Standard output is never touched;
it is reserved for the task result document.

Logging must never break a task: if the log directory cannot be created or
a write fails, the logger disables itself and later operations are no-ops.
"""
from __future__ import annotations

import json
import logging
import os
import pwd
import re
import secrets
import time
from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Literal

from . import __version__

OPERATIONS_LOG_NAME = "operations.jsonl"
HUMAN_LOG_NAME = "opctl.log"

StepStatus = Literal["success", "info", "warning", "error", "skipped"]
ResultStatus = Literal["success", "warning", "error"]

_URL_CREDENTIALS = re.compile(
    r"(?P<prefix>[a-z][a-z0-9+.-]*://[^:/@\s]+:)[^@\s]+@",
    re.IGNORECASE,
)


def redact_credentials(text: str) -> str:
    """Mask passwords embedded in connection URLs within *text*."""
    return _URL_CREDENTIALS.sub(r"\g<prefix>***@", text)


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _sanitize(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _actor() -> dict[str, object]:
    uid = os.geteuid()
    try:
        user = pwd.getpwuid(uid).pw_name
    except KeyError:
        user = str(uid)
    return {"uid": uid, "user": user, "pid": os.getpid()}


@dataclass(slots=True)
class OperationScope:
    """Collect steps and the final result of a single command invocation."""

    logger: StructuredLogger
    command: str
    args: Mapping[str, object]
    target: Mapping[str, object]
    op_id: str
    started_at: str
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None
    _start: float = field(default_factory=time.perf_counter)

    def add_step(self, name: str, *, status: StepStatus, detail: str | None = None) -> None:
        """Record an intermediate step."""
        step: dict[str, object] = {"name": name, "status": status, "at": _now_iso()}
        if detail:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Iterable[str] = (),
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            errors=(),
            rc=0,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[str] = (),
        errors: Iterable[str] = (),
        changed: int = 0,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            rc=0,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            changed=0,
            warnings=(),
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: ResultStatus,
        message: str,
        *,
        changed: int,
        warnings: Iterable[str],
        errors: Iterable[str],
        rc: int,
        context: Mapping[str, object] | None,
    ) -> None:
        self.result = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings),
            "errors": list(errors),
            "rc": rc,
            "context": _sanitize(dict(context or {})),
        }

    def to_record(self) -> dict[str, object]:
        """Return the JSON-serialisable operations log record."""
        return {
            "id": self.op_id,
            "started_at": self.started_at,
            "finished_at": _now_iso(),
            "duration_ms": int((time.perf_counter() - self._start) * 1000),
            "command": self.command,
            "args": _sanitize(dict(self.args)),
            "target": _sanitize(dict(self.target)),
            "actor": _actor(),
            "steps": list(self.steps),
            "result": self.result,
            "context": {"opctl_version": __version__},
        }


class StructuredLogger:
    """Write operation records to JSONL and a rotating human-readable log."""

    def __init__(
        self,
        logs_dir: Path,
        *,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 5,
    ) -> None:
        """Prepare the log directory; disable logging when it is unusable."""
        self.logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG_NAME
        self._human_log_path = self.logs_dir / HUMAN_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            self._enabled = False

        self._logger = logging.getLogger(f"opctl.operations.{self.logs_dir}")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False
        if self._enabled and not self._logger.handlers:
            handler = RotatingFileHandler(
                self._human_log_path,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
                delay=True,
            )
            handler.setFormatter(
                logging.Formatter("%(asctime)s %(levelname)s %(message)s")
            )
            self._logger.addHandler(handler)

    @property
    def enabled(self) -> bool:
        """Return ``True`` while log writes are still being attempted."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(
            logger=self,
            command=command,
            args=dict(args or {}),
            target=dict(target or {}),
            op_id=secrets.token_hex(8),
            started_at=_now_iso(),
        )
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(f"Unhandled error: {exc}", rc=1)
            raise
        finally:
            if scope.result is None:
                scope.warning("Operation ended without an explicit result.")
            self._write(scope)

    def _write(self, scope: OperationScope) -> None:
        if not self._enabled:
            return
        record = scope.to_record()
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=False))
                handle.write("\n")
        except OSError:
            self._enabled = False
            return

        result = record["result"] or {}
        status = str(result.get("status", "unknown"))
        level = logging.ERROR if status == "error" else logging.INFO
        self._logger.log(
            level,
            "%s [%s] %s: %s",
            scope.command,
            scope.op_id,
            status,
            result.get("message", ""),
        )


__all__ = ["OperationScope", "StructuredLogger", "redact_credentials"]
