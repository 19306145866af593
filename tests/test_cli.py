"""End-to-end tests for the opctl CLI using shell stubs for external tools."""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from fakes import DATABASE_URL, write_stub
from opctl import __version__, get_version
from opctl.cli import app

runner = CliRunner()

TIMESTAMP = "20240315020000"

_OPENPROJECT_STUB = """#!/bin/sh
echo "openproject $*" >> "{calls}"
case "$1" in
  run)
    printf '%1024s' '' > "{backup}/postgresql-dump-{ts}.pgdump"
    printf '%2048s' '' > "{backup}/attachments-{ts}.tar.gz"
    printf '%512s' '' > "{backup}/conf-{ts}.tar.gz"
    echo "Backup complete."
    exit "${{BACKUP_EXIT:-0}}"
    ;;
  config:get)
    echo "{url}"
    ;;
esac
"""

_RECORDING_STUB = """#!/bin/sh
echo "{name} $*" >> "{calls}"
exit "${{{exit_var}:-0}}"
"""


def _prepare_environment(tmp_path: Path) -> tuple[dict[str, str], Path, Path]:
    """Create stub binaries and return (env, backup_dir, calls_log)."""
    bin_dir = tmp_path / "bin"
    backup_dir = tmp_path / "backup"
    backup_dir.mkdir()
    calls = tmp_path / "calls.log"
    targets = tmp_path / "targets"

    openproject = write_stub(
        bin_dir,
        "openproject",
        _OPENPROJECT_STUB.format(calls=calls, backup=backup_dir, ts=TIMESTAMP, url=DATABASE_URL),
    )
    stubs = {}
    for name, exit_var in (
        ("service", "SERVICE_EXIT"),
        ("tar", "TAR_EXIT"),
        ("pg_restore", "PG_RESTORE_EXIT"),
    ):
        stubs[name] = write_stub(
            bin_dir,
            name,
            _RECORDING_STUB.format(name=name, calls=calls, exit_var=exit_var),
        )

    env = {
        "OPCTL_CONFIG_FILE": str(tmp_path / "opctl.yml"),
        "OPCTL_LOGS_DIR": str(tmp_path / "logs"),
        "OPCTL_BACKUP_DIR": str(backup_dir),
        "OPCTL_OPENPROJECT__BIN": str(openproject),
        "OPCTL_SERVICE__SERVICE_BIN": str(stubs["service"]),
        "OPCTL_ARCHIVE__TAR_BIN": str(stubs["tar"]),
        "OPCTL_POSTGRES__PG_RESTORE_BIN": str(stubs["pg_restore"]),
        "OPCTL_RESTORE_TARGETS__ATTACHMENTS": str(targets / "files"),
        "OPCTL_RESTORE_TARGETS__CONFIGURATION": str(targets / "conf"),
        "OPCTL_RESTORE_TARGETS__GIT_REPOSITORIES": str(targets / "git"),
        "OPCTL_RESTORE_TARGETS__SVN_REPOSITORIES": str(targets / "svn"),
    }
    return env, backup_dir, calls


def _write_backup_set(backup_dir: Path) -> None:
    for name in (
        f"postgresql-dump-{TIMESTAMP}.pgdump",
        f"attachments-{TIMESTAMP}.tar.gz",
        f"conf-{TIMESTAMP}.tar.gz",
    ):
        (backup_dir / name).write_bytes(b"data")


def _recorded_calls(calls: Path) -> list[str]:
    if not calls.exists():
        return []
    return calls.read_text(encoding="utf-8").splitlines()


def _last_operation(tmp_path: Path) -> dict[str, object]:
    lines = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8").splitlines()
    return json.loads(lines[-1])  # type: ignore[no-any-return]


def test_version_option_outputs_package_version(tmp_path: Path) -> None:
    """CLI ``--version`` flag emits the package version."""
    env, _, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, ["--version"], env=env)

    assert result.exit_code == 0
    assert __version__ in result.stdout
    assert get_version() == __version__


def test_invocation_without_subcommand_shows_help(tmp_path: Path) -> None:
    """Calling the CLI without a subcommand shows help output."""
    env, _, _ = _prepare_environment(tmp_path)
    result = runner.invoke(app, env=env)

    assert result.exit_code == 0
    assert "OpenProject backup and restore task runner" in result.stdout


def test_config_show_renders_table(tmp_path: Path) -> None:
    """`config show` prints the merged configuration in a table."""
    env, _, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["config", "show"], env=env)

    assert result.exit_code == 0
    assert "backup_dir" in result.stdout
    assert "command_timeout" in result.stdout


def test_config_show_json(tmp_path: Path) -> None:
    """`config show --json` emits JSON with the resolved configuration."""
    env, backup_dir, _ = _prepare_environment(tmp_path)
    env["OPCTL_SERVICE__MANAGER"] = "systemd"

    result = runner.invoke(app, ["config", "show", "--json"], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["backup_dir"] == str(backup_dir)
    assert payload["service"]["manager"] == "systemd"


def test_invalid_config_emits_config_error(tmp_path: Path) -> None:
    """Configuration problems are reported as a task error document."""
    env, _, _ = _prepare_environment(tmp_path)
    Path(env["OPCTL_CONFIG_FILE"]).write_text("service:\n  manager: upstart\n")

    result = runner.invoke(app, ["backup"], input="{}", env=env)

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["_error"]["kind"] == "openproject/config-error"
    assert "upstart" in payload["_error"]["msg"]


def test_metadata_command_prints_task_document(tmp_path: Path) -> None:
    """`metadata restore` prints the restore task metadata."""
    env, _, _ = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["metadata", "restore"], env=env)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["input_method"] == "stdin"
    assert set(payload["parameters"]) == {"timestamp", "backup_dir", "pg_no_owner"}


def test_backup_requires_root(tmp_path: Path, as_user: None) -> None:
    """Non-root invocations fail with ``not-root`` and run nothing."""
    env, _, calls = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["backup"], input="{}", env=env)

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload == {
        "_error": {
            "msg": "This task must run as root (openproject run backup requires root privileges).",
            "kind": "openproject/not-root",
            "details": {},
        }
    }
    assert _recorded_calls(calls) == []


def test_backup_success_lists_new_files(tmp_path: Path, as_root: None) -> None:
    """A successful backup reports the files it created."""
    env, backup_dir, calls = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["backup"], input="", env=env)

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["backup_dir"] == str(backup_dir)
    assert payload["file_count"] == 3
    assert payload["total_bytes"] == 3584
    assert payload["stdout"] == "Backup complete.\n"
    assert _recorded_calls(calls) == ["openproject run backup"]

    operation = _last_operation(tmp_path)
    assert operation["command"] == "backup"
    result_record = operation["result"]
    assert isinstance(result_record, dict)
    assert result_record["status"] == "success"
    assert result_record["changed"] == 3


def test_backup_failure_reports_exit_code(tmp_path: Path, as_root: None) -> None:
    """A failing backup command yields ``backup-failed``."""
    env, _, _ = _prepare_environment(tmp_path)
    env["BACKUP_EXIT"] = "4"

    result = runner.invoke(app, ["backup"], input="{}", env=env)

    assert result.exit_code == 1
    error = json.loads(result.stdout)["_error"]
    assert error["kind"] == "openproject/backup-failed"
    assert error["details"]["exitcode"] == 4
    assert error["details"]["stdout"] == "Backup complete.\n"


def test_invalid_stdin_is_rejected(tmp_path: Path, as_root: None) -> None:
    """Malformed JSON on stdin yields ``invalid-parameters``."""
    env, _, calls = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["restore"], input="{not json", env=env)

    assert result.exit_code == 1
    assert json.loads(result.stdout)["_error"]["kind"] == "openproject/invalid-parameters"
    assert _recorded_calls(calls) == []


def test_undecodable_stdin_is_rejected(tmp_path: Path, as_root: None) -> None:
    """Non-UTF-8 bytes on stdin yield ``invalid-parameters``, not a crash."""
    env, _, calls = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["backup"], input=b'{"backup_dir": "\xff\xfe"}', env=env)

    assert result.exit_code == 1
    error = json.loads(result.stdout)["_error"]
    assert error["kind"] == "openproject/invalid-parameters"
    assert "UTF-8" in error["msg"]
    assert _recorded_calls(calls) == []


def test_restore_success_runs_steps_in_order(tmp_path: Path, as_root: None) -> None:
    """A complete restore stops, extracts, restores and restarts."""
    env, backup_dir, calls = _prepare_environment(tmp_path)
    _write_backup_set(backup_dir)

    result = runner.invoke(
        app,
        ["restore"],
        input=json.dumps({"timestamp": TIMESTAMP, "pg_no_owner": True}),
        env=env,
    )

    assert result.exit_code == 0, result.stdout
    payload = json.loads(result.stdout)
    assert payload["restored"] == ["database", "attachments", "configuration"]
    assert payload["skipped"] == ["git_repositories", "svn_repositories"]
    assert [step["step"] for step in payload["steps"]] == [
        "stop_service",
        "restore_attachments",
        "restore_configuration",
        "restore_database",
        "restart_service",
    ]
    recorded = _recorded_calls(calls)
    assert recorded[0] == "service openproject stop"
    assert recorded[3] == "openproject config:get DATABASE_URL"
    assert recorded[4].startswith("pg_restore --clean --if-exists --no-owner --dbname")
    assert recorded[-1] == "service openproject restart"

    log_text = (tmp_path / "logs" / "operations.jsonl").read_text(encoding="utf-8")
    assert "s3cret" not in log_text


def test_restore_database_failure_restarts_service(tmp_path: Path, as_root: None) -> None:
    """pg_restore failure is reported after a recovery restart."""
    env, backup_dir, calls = _prepare_environment(tmp_path)
    _write_backup_set(backup_dir)
    env["PG_RESTORE_EXIT"] = "1"

    result = runner.invoke(app, ["restore"], input=json.dumps({"timestamp": TIMESTAMP}), env=env)

    assert result.exit_code == 1
    error = json.loads(result.stdout)["_error"]
    assert error["kind"] == "openproject/pg-restore-failed"
    assert [step["step"] for step in error["details"]["steps"]] == [
        "stop_service",
        "restore_attachments",
        "restore_configuration",
        "restore_database",
        "restart_service_after_failure",
    ]
    assert error["details"]["service_restarted"] is True
    assert _recorded_calls(calls)[-1] == "service openproject restart"

    operation = _last_operation(tmp_path)
    result_record = operation["result"]
    assert isinstance(result_record, dict)
    assert result_record["status"] == "error"
    assert result_record["errors"] == ["openproject/pg-restore-failed"]


@pytest.mark.parametrize("document", [{}, {"timestamp": "19990101000000"}])
def test_restore_without_backup_set_fails_before_stopping(
    tmp_path: Path,
    as_root: None,
    document: dict[str, object],
) -> None:
    """Missing timestamp or artefacts never touch the service."""
    env, _, calls = _prepare_environment(tmp_path)

    result = runner.invoke(app, ["restore"], input=json.dumps(document), env=env)

    assert result.exit_code == 1
    kind = json.loads(result.stdout)["_error"]["kind"]
    assert kind in {"openproject/invalid-parameters", "openproject/missing-backup-files"}
    assert _recorded_calls(calls) == []
