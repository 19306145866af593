"""Full backup task: run ``openproject run backup`` and report new artefacts."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Set
from dataclasses import dataclass
from pathlib import Path

from .config import AppConfig
from .logging import OperationScope, StepStatus
from .params import BackupParams, parse_document
from .preflight import require_command, require_root
from .providers import OpenProjectCli
from .reporting import ErrorKind, TaskError
from .runner import CommandRunner

SIZE_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def human_size(size_bytes: int) -> str:
    """Format *size_bytes* with binary units and one decimal place."""
    if size_bytes == 0:
        return "0 B"
    exponent = 0
    while exponent < len(SIZE_UNITS) - 1 and size_bytes >= 1024 ** (exponent + 1):
        exponent += 1
    return f"{size_bytes / 1024**exponent:.1f} {SIZE_UNITS[exponent]}"


def snapshot_entries(directory: Path) -> frozenset[str]:
    """Return the names of entries directly under *directory*.

    A missing directory yields an empty snapshot. Hidden entries are ignored.
    An unreadable directory raises ``TaskError`` (``backup-failed``).
    """
    try:
        if not directory.is_dir():
            return frozenset()
        return frozenset(
            entry.name for entry in directory.iterdir() if not entry.name.startswith(".")
        )
    except OSError as exc:
        raise _unreadable(directory, exc) from exc


def _unreadable(path: Path, exc: OSError) -> TaskError:
    return TaskError(
        ErrorKind.BACKUP_FAILED,
        f"Cannot read {path}: {exc.strerror or exc}.",
        {"path": str(path), "error": str(exc)},
    )


def new_entries(before: Set[str], after: Set[str]) -> list[str]:
    """Return the entries present in *after* but not in *before*, sorted."""
    return sorted(set(after) - set(before))


@dataclass(frozen=True, slots=True)
class ArtifactRecord:
    """A file produced by a backup run."""

    path: str
    name: str
    size_bytes: int

    @property
    def size_human(self) -> str:
        """Return the human-readable size."""
        return human_size(self.size_bytes)

    def to_dict(self) -> dict[str, object]:
        """Return the wire representation."""
        return {
            "path": self.path,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "size_human": self.size_human,
        }


def describe_artifacts(directory: Path, names: Iterable[str]) -> list[ArtifactRecord]:
    """Stat each entry in *names* and return records ordered by path."""
    records: list[ArtifactRecord] = []
    for name in names:
        path = directory / name
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise _unreadable(path, exc) from exc
        records.append(ArtifactRecord(path=str(path), name=name, size_bytes=size))
    return sorted(records, key=lambda record: record.path)


@dataclass(frozen=True, slots=True)
class BackupResult:
    """Success payload of the backup task."""

    backup_dir: str
    files: tuple[ArtifactRecord, ...]
    stdout: str

    @property
    def file_count(self) -> int:
        """Return the number of new artefacts."""
        return len(self.files)

    @property
    def total_bytes(self) -> int:
        """Return the combined size of the new artefacts."""
        return sum(record.size_bytes for record in self.files)

    def to_dict(self) -> dict[str, object]:
        """Return the wire representation."""
        return {
            "backup_dir": self.backup_dir,
            "files": [record.to_dict() for record in self.files],
            "file_count": self.file_count,
            "total_bytes": self.total_bytes,
            "total_human": human_size(self.total_bytes),
            "stdout": self.stdout,
        }


@dataclass(slots=True)
class BackupTask:
    """Run a full OpenProject backup and enumerate the artefacts it created."""

    config: AppConfig
    runner: CommandRunner
    scope: OperationScope | None = None

    def run(self, raw: str | bytes | Mapping[str, object]) -> BackupResult:
        """Execute the backup task for the stdin document *raw*."""
        require_root(
            "This task must run as root (openproject run backup requires root privileges)."
        )
        document = parse_document(raw) if isinstance(raw, (str, bytes)) else dict(raw)
        params = BackupParams.from_mapping(document, default_backup_dir=self.config.backup_dir)

        openproject = OpenProjectCli.from_config(self.config.openproject)
        require_command(
            openproject.bin,
            ErrorKind.COMMAND_NOT_FOUND,
            "The openproject command was not found in PATH. Is OpenProject installed?",
        )

        backup_dir = Path(params.backup_dir)
        before = snapshot_entries(backup_dir)
        self._step("backup.snapshot", "info", f"{len(before)} existing entries")

        result = self.runner.run(openproject.backup_command())
        details: dict[str, object] = {
            "exitcode": result.exit_code,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
        if result.timed_out:
            self._step("backup.run", "error", "timed out")
            raise TaskError(
                ErrorKind.TIMEOUT,
                "openproject run backup did not finish within "
                f"{self.config.command_timeout} seconds.",
                {**details, "step": "backup", "timeout": self.config.command_timeout},
            )
        if not result.success:
            self._step("backup.run", "error", f"exit {result.exit_code}")
            raise TaskError(
                ErrorKind.BACKUP_FAILED,
                f"openproject run backup exited with status {result.exit_code}.",
                details,
            )
        self._step("backup.run", "success", "exit 0")

        after = snapshot_entries(backup_dir)
        files = describe_artifacts(backup_dir, new_entries(before, after))
        self._step("backup.enumerate", "info", f"{len(files)} new files")
        return BackupResult(
            backup_dir=params.backup_dir,
            files=tuple(files),
            stdout=result.stdout,
        )

    def _step(self, name: str, status: StepStatus, detail: str) -> None:
        if self.scope is not None:
            self.scope.add_step(name, status=status, detail=detail)


__all__ = [
    "ArtifactRecord",
    "BackupResult",
    "BackupTask",
    "describe_artifacts",
    "human_size",
    "new_entries",
    "snapshot_entries",
]
