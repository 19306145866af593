"""Point-in-time restore of an OpenProject package installation.

The restore follows the documented package procedure:

1. Stop the openproject service.
2. Extract attachments, configuration and (when present) git and svn
   repository archives into their target directories.
3. Restore the PostgreSQL dump with ``pg_restore``.
4. Restart the service.

A failure after the service was stopped triggers a single best-effort
restart before the error is reported, so the service is never left down
silently. Every executed step is returned to the caller in the ledger.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn, cast

from .archive import GZIP_TAR_EXTENSION, extract_command
from .config import AppConfig, RestoreTargetsConfig
from .ledger import StepLedger, StepRecord
from .logging import OperationScope
from .params import RestoreParams, parse_document
from .preflight import require_command, require_root
from .providers import OpenProjectCli, PgRestore, ServiceProvider
from .reporting import ErrorKind, TaskError
from .runner import CommandRunner

STOP_STEP = "stop_service"
RESTART_STEP = "restart_service"
RECOVERY_STEP = "restart_service_after_failure"
DATABASE_STEP = "restore_database"

# Archive components are restored in this order, before the database.
ARCHIVE_COMPONENTS = (
    "attachments",
    "configuration",
    "git_repositories",
    "svn_repositories",
)

_ARTIFACT_PREFIXES: dict[str, tuple[str, str]] = {
    "database": ("postgresql-dump", "pgdump"),
    "attachments": ("attachments", GZIP_TAR_EXTENSION),
    "configuration": ("conf", GZIP_TAR_EXTENSION),
    "git_repositories": ("git-repositories", GZIP_TAR_EXTENSION),
    "svn_repositories": ("svn-repositories", GZIP_TAR_EXTENSION),
}
REQUIRED_COMPONENTS = frozenset({"database", "attachments", "configuration"})


@dataclass(frozen=True, slots=True)
class ComponentDescriptor:
    """Expected backup artefact for one restorable component."""

    name: str
    artifact_path: Path
    restore_target: Path | None
    required: bool

    def exists(self) -> bool:
        """Return ``True`` when the artefact is present on disk."""
        return self.artifact_path.exists()


def artifact_name(component: str, timestamp: str) -> str:
    """Return the file name of *component*'s artefact for *timestamp*."""
    prefix, extension = _ARTIFACT_PREFIXES[component]
    return f"{prefix}-{timestamp}.{extension}"


def build_components(
    backup_dir: Path,
    timestamp: str,
    targets: RestoreTargetsConfig | None = None,
) -> tuple[ComponentDescriptor, ...]:
    """Derive the component descriptors for a backup set."""
    targets = targets or RestoreTargetsConfig()
    descriptors: list[ComponentDescriptor] = []
    for name in _ARTIFACT_PREFIXES:
        descriptors.append(
            ComponentDescriptor(
                name=name,
                artifact_path=backup_dir / artifact_name(name, timestamp),
                restore_target=None if name == "database" else targets.for_component(name),
                required=name in REQUIRED_COMPONENTS,
            )
        )
    return tuple(descriptors)


@dataclass(frozen=True, slots=True)
class RestorePlan:
    """Components to restore and skip for one backup set."""

    timestamp: str
    backup_dir: str
    components: tuple[ComponentDescriptor, ...]
    present: frozenset[str]

    @property
    def restored(self) -> list[str]:
        """Return the names of components that will be restored."""
        return [item.name for item in self.components if item.name in self.present]

    @property
    def skipped(self) -> list[str]:
        """Return the names of optional components that are absent."""
        return [item.name for item in self.components if item.name not in self.present]

    @property
    def database(self) -> ComponentDescriptor:
        """Return the database component."""
        return self.component("database")

    def component(self, name: str) -> ComponentDescriptor:
        """Return the descriptor for *name*."""
        for item in self.components:
            if item.name == name:
                return item
        raise KeyError(name)

    def archive_steps(self) -> list[ComponentDescriptor]:
        """Return present archive components in restore order."""
        return [
            self.component(name) for name in ARCHIVE_COMPONENTS if name in self.present
        ]


def plan_restore(
    timestamp: str,
    backup_dir: str,
    targets: RestoreTargetsConfig | None = None,
) -> RestorePlan:
    """Build the restore plan, failing when any required artefact is missing."""
    components = build_components(Path(backup_dir), timestamp, targets)
    present = frozenset(item.name for item in components if item.exists())
    missing = [item for item in components if item.required and item.name not in present]
    if missing:
        names = ", ".join(item.name for item in missing)
        raise TaskError(
            ErrorKind.MISSING_BACKUP_FILES,
            f"Required backup files not found for timestamp {timestamp}: {names}.",
            {
                "missing": [
                    {"component": item.name, "path": str(item.artifact_path)}
                    for item in missing
                ]
            },
        )
    return RestorePlan(
        timestamp=timestamp,
        backup_dir=backup_dir,
        components=components,
        present=present,
    )


@dataclass(slots=True)
class RecoveryCoordinator:
    """Attempt to bring the service back after a failed restore step."""

    ledger: StepLedger
    service: ServiceProvider

    def recover(self) -> StepRecord:
        """Restart the service once and record the attempt."""
        return self.ledger.run_recovery(RECOVERY_STEP, self.service.restart_command())


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Success payload of the restore task."""

    plan: RestorePlan
    steps: tuple[StepRecord, ...]

    def to_dict(self) -> dict[str, object]:
        """Return the wire representation."""
        return {
            "timestamp": self.plan.timestamp,
            "backup_dir": self.plan.backup_dir,
            "restored": self.plan.restored,
            "skipped": self.plan.skipped,
            "steps": [record.to_dict() for record in self.steps],
        }


@dataclass(slots=True)
class RestoreTask:
    """Restore a timestamped backup set onto the local installation."""

    config: AppConfig
    runner: CommandRunner
    scope: OperationScope | None = None

    def run(self, raw: str | bytes | Mapping[str, object]) -> RestoreResult:
        """Execute the restore task for the stdin document *raw*."""
        require_root("This task must run as root (restore requires root privileges).")
        document = parse_document(raw) if isinstance(raw, (str, bytes)) else dict(raw)
        params = RestoreParams.from_mapping(document, default_backup_dir=self.config.backup_dir)

        openproject = OpenProjectCli.from_config(self.config.openproject)
        pg_restore = PgRestore.from_config(self.config.postgres)
        service = ServiceProvider.from_config(self.config.service)
        require_command(
            openproject.bin,
            ErrorKind.COMMAND_NOT_FOUND,
            "The openproject command was not found in PATH. Is OpenProject installed?",
        )
        require_command(
            pg_restore.bin,
            ErrorKind.PG_RESTORE_NOT_FOUND,
            "pg_restore was not found in PATH. Is PostgreSQL client installed?",
        )

        plan = plan_restore(params.timestamp, params.backup_dir, self.config.restore_targets)
        if self.scope is not None:
            self.scope.add_step(
                "restore.plan",
                status="info",
                detail=f"restore={','.join(plan.restored)} skip={','.join(plan.skipped)}",
            )

        ledger = StepLedger(self.runner, scope=self.scope)
        recovery = RecoveryCoordinator(ledger=ledger, service=service)

        stop = ledger.run(STOP_STEP, service.stop_command())
        if not stop.success:
            self._fail(
                stop,
                ledger,
                None,
                ErrorKind.SERVICE_STOP_FAILED,
                f"Failed to stop the {service.name} service (exit {stop.exit_code}).",
            )

        for component in plan.archive_steps():
            record = ledger.run(
                f"restore_{component.name}",
                extract_command(
                    self.config.archive.tar_bin,
                    component.artifact_path,
                    cast(Path, component.restore_target),
                ),
            )
            if not record.success:
                self._fail(
                    record,
                    ledger,
                    recovery,
                    ErrorKind.RESTORE_FAILED,
                    f"Failed to restore {component.name} (exit {record.exit_code}).",
                    {"component": component.name},
                )

        database_url = self._database_url(openproject, ledger, recovery)

        record = ledger.run(
            DATABASE_STEP,
            pg_restore.restore_command(
                database_url,
                plan.database.artifact_path,
                no_owner=params.pg_no_owner,
            ),
        )
        if not record.success:
            self._fail(
                record,
                ledger,
                recovery,
                ErrorKind.PG_RESTORE_FAILED,
                f"pg_restore exited with status {record.exit_code}. "
                "The database may be in an inconsistent state.",
            )

        restart = ledger.run(RESTART_STEP, service.restart_command())
        if not restart.success:
            self._fail(
                restart,
                ledger,
                None,
                ErrorKind.SERVICE_RESTART_FAILED,
                "Restore completed but failed to restart the "
                f"{service.name} service (exit {restart.exit_code}).",
            )

        return RestoreResult(plan=plan, steps=tuple(ledger.records()))

    def _database_url(
        self,
        openproject: OpenProjectCli,
        ledger: StepLedger,
        recovery: RecoveryCoordinator,
    ) -> str:
        # A read-only lookup: not a ledger step, but its failure aborts the restore.
        result = self.runner.run(openproject.database_url_command())
        database_url = result.stdout.strip()
        if result.success and database_url:
            return database_url

        restart = recovery.recover()
        details: dict[str, object] = {
            "exitcode": result.exit_code,
            "stderr": result.stderr,
            "steps": ledger.to_list(),
            "service_restarted": restart.success,
        }
        if result.timed_out:
            raise TaskError(
                ErrorKind.TIMEOUT,
                f"Retrieving {openproject.database_url_key} timed out after "
                f"{self.config.command_timeout} seconds.",
                {**details, "step": "database_url", "timeout": self.config.command_timeout},
            )
        if result.success:
            message = f"openproject config returned an empty {openproject.database_url_key}."
        else:
            message = f"Failed to retrieve {openproject.database_url_key} from openproject config."
        raise TaskError(ErrorKind.DATABASE_URL_FAILED, message, details)

    def _fail(
        self,
        record: StepRecord,
        ledger: StepLedger,
        recovery: RecoveryCoordinator | None,
        kind: ErrorKind,
        message: str,
        extra: Mapping[str, object] | None = None,
    ) -> NoReturn:
        details: dict[str, object] = dict(extra or {})
        if recovery is not None:
            details["service_restarted"] = recovery.recover().success
        details["steps"] = ledger.to_list()
        if record.timed_out:
            raise TaskError(
                ErrorKind.TIMEOUT,
                f"Step {record.step} did not finish within "
                f"{self.config.command_timeout} seconds.",
                {**details, "step": record.step, "timeout": self.config.command_timeout},
            )
        raise TaskError(kind, message, details)


__all__ = [
    "ARCHIVE_COMPONENTS",
    "REQUIRED_COMPONENTS",
    "ComponentDescriptor",
    "RecoveryCoordinator",
    "RestorePlan",
    "RestoreResult",
    "RestoreTask",
    "artifact_name",
    "build_components",
    "plan_restore",
]
