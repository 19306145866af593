"""Configuration loader for opctl.

This module centralises the logic for reading configuration values from
multiple sources:

1. Built-in defaults.
2. ``/etc/opctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``OPCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export OPCTL_SERVICE__MANAGER=systemd
    export OPCTL_COMMAND_TIMEOUT=3600

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses`` for convenient access and type safety.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

ENV_PREFIX = "OPCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

DEFAULT_BACKUP_DIR = "/var/db/openproject/backup"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class OpenProjectConfig:
    """Location of the ``openproject`` management CLI."""

    bin: str = "openproject"
    database_url_key: str = "DATABASE_URL"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"bin": self.bin, "database_url_key": self.database_url_key}


@dataclass(frozen=True)
class ServiceConfig:
    """Service control settings for the OpenProject service."""

    name: str = "openproject"
    manager: str = "service"
    service_bin: str = "service"
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "name": self.name,
            "manager": self.manager,
            "service_bin": self.service_bin,
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class ArchiveConfig:
    """Archive extraction tooling."""

    tar_bin: str = "tar"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"tar_bin": self.tar_bin}


@dataclass(frozen=True)
class PostgresConfig:
    """PostgreSQL client tooling used for database restores."""

    pg_restore_bin: str = "pg_restore"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"pg_restore_bin": self.pg_restore_bin}


@dataclass(frozen=True)
class RestoreTargetsConfig:
    """Directories that archive components are extracted into."""

    attachments: Path = Path("/var/db/openproject/files")
    configuration: Path = Path("/etc/openproject")
    git_repositories: Path = Path("/var/db/openproject/git")
    svn_repositories: Path = Path("/var/db/openproject/svn")

    def for_component(self, component: str) -> Path:
        """Return the restore target for *component*."""
        try:
            return cast(Path, getattr(self, component))
        except AttributeError as exc:
            raise ConfigError(f"No restore target configured for '{component}'.") from exc

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "attachments": str(self.attachments),
            "configuration": str(self.configuration),
            "git_repositories": str(self.git_repositories),
            "svn_repositories": str(self.svn_repositories),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for opctl."""

    config_file: Path
    logs_dir: Path
    backup_dir: str
    command_timeout: float | None
    openproject: OpenProjectConfig
    service: ServiceConfig
    archive: ArchiveConfig
    postgres: PostgresConfig
    restore_targets: RestoreTargetsConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "backup_dir": self.backup_dir,
            "command_timeout": self.command_timeout,
            "openproject": self.openproject.to_dict(),
            "service": self.service.to_dict(),
            "archive": self.archive.to_dict(),
            "postgres": self.postgres.to_dict(),
            "restore_targets": self.restore_targets.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/opctl/config.yml",
    "logs_dir": "/var/log/opctl",
    "backup_dir": DEFAULT_BACKUP_DIR,
    "command_timeout": None,
    "openproject": {
        "bin": "openproject",
        "database_url_key": "DATABASE_URL",
    },
    "service": {
        "name": "openproject",
        "manager": "service",
        "service_bin": "service",
        "systemctl_bin": "systemctl",
    },
    "archive": {
        "tar_bin": "tar",
    },
    "postgres": {
        "pg_restore_bin": "pg_restore",
    },
    "restore_targets": {
        "attachments": "/var/db/openproject/files",
        "configuration": "/etc/openproject",
        "git_repositories": "/var/db/openproject/git",
        "svn_repositories": "/var/db/openproject/svn",
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SERVICE_MANAGERS = {"service", "systemd"}
_SECTION_KEYS: dict[str, set[str]] = {
    "openproject": {"bin", "database_url_key"},
    "service": {"name", "manager", "service_bin", "systemctl_bin"},
    "archive": {"tar_bin"},
    "postgres": {"pg_restore_bin"},
    "restore_targets": {"attachments", "configuration", "git_repositories", "svn_repositories"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Failed to read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    service_map = _as_dict(raw.get("service"), "service")
    manager = service_map.get("manager")
    if manager is not None and str(manager) not in ALLOWED_SERVICE_MANAGERS:
        allowed_managers = ", ".join(sorted(ALLOWED_SERVICE_MANAGERS))
        raise ConfigError(
            f"Unsupported service manager '{manager}'. Allowed: {allowed_managers}."
        )

    backup_dir = raw.get("backup_dir")
    if not isinstance(backup_dir, str) or not backup_dir.strip():
        raise ConfigError("backup_dir must be a non-empty string.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    logs_dir = _to_path(raw.get("logs_dir"))
    backup_dir = _expect_str(raw.get("backup_dir"), "backup_dir").strip()
    command_timeout = _expect_optional_positive_float(
        raw.get("command_timeout"),
        "command_timeout",
    )

    openproject_mapping = _as_dict(raw.get("openproject"), "openproject")
    openproject = OpenProjectConfig(
        bin=_expect_binary(openproject_mapping.get("bin", "openproject"), "openproject.bin"),
        database_url_key=_expect_binary(
            openproject_mapping.get("database_url_key", "DATABASE_URL"),
            "openproject.database_url_key",
        ),
    )

    service_mapping = _as_dict(raw.get("service"), "service")
    service = ServiceConfig(
        name=_expect_binary(service_mapping.get("name", "openproject"), "service.name"),
        manager=str(service_mapping.get("manager", "service")),
        service_bin=_expect_binary(
            service_mapping.get("service_bin", "service"),
            "service.service_bin",
        ),
        systemctl_bin=_expect_binary(
            service_mapping.get("systemctl_bin", "systemctl"),
            "service.systemctl_bin",
        ),
    )

    archive_mapping = _as_dict(raw.get("archive"), "archive")
    archive = ArchiveConfig(
        tar_bin=_expect_binary(archive_mapping.get("tar_bin", "tar"), "archive.tar_bin"),
    )

    postgres_mapping = _as_dict(raw.get("postgres"), "postgres")
    postgres = PostgresConfig(
        pg_restore_bin=_expect_binary(
            postgres_mapping.get("pg_restore_bin", "pg_restore"),
            "postgres.pg_restore_bin",
        ),
    )

    targets_mapping = _as_dict(raw.get("restore_targets"), "restore_targets")
    default_targets = RestoreTargetsConfig()
    restore_targets = RestoreTargetsConfig(
        attachments=_to_path(targets_mapping.get("attachments", default_targets.attachments)),
        configuration=_to_path(
            targets_mapping.get("configuration", default_targets.configuration)
        ),
        git_repositories=_to_path(
            targets_mapping.get("git_repositories", default_targets.git_repositories)
        ),
        svn_repositories=_to_path(
            targets_mapping.get("svn_repositories", default_targets.svn_repositories)
        ),
    )

    return AppConfig(
        config_file=config_file,
        logs_dir=logs_dir,
        backup_dir=backup_dir,
        command_timeout=command_timeout,
        openproject=openproject,
        service=service,
        archive=archive,
        postgres=postgres,
        restore_targets=restore_targets,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_binary(value: object, key: str) -> str:
    text = _expect_str(value, key).strip()
    if not text:
        raise ConfigError(f"{key} must be a non-empty string.")
    return text


def _expect_optional_positive_float(value: object | None, label: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ArchiveConfig",
    "ConfigError",
    "DEFAULT_BACKUP_DIR",
    "OpenProjectConfig",
    "PostgresConfig",
    "RestoreTargetsConfig",
    "ServiceConfig",
    "load_config",
]
