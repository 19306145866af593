"""Tests for task parameter parsing."""
from __future__ import annotations

import pytest

from opctl.params import BackupParams, RestoreParams, parse_document
from opctl.reporting import ErrorKind, TaskError

DEFAULT_DIR = "/var/db/openproject/backup"


@pytest.mark.parametrize("text", ["", "   \n"])
def test_blank_input_is_empty_object(text: str) -> None:
    """An empty stdin is treated as no parameters."""
    assert parse_document(text) == {}


@pytest.mark.parametrize("text", ["{not json", "[1, 2]", '"timestamp"'])
def test_invalid_documents_are_rejected(text: str) -> None:
    """Only a JSON object is accepted."""
    with pytest.raises(TaskError) as excinfo:
        parse_document(text)

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMETERS


def test_backup_params_default_directory() -> None:
    """Omitted or null backup_dir falls back to the configured default."""
    assert BackupParams.from_mapping({}, default_backup_dir=DEFAULT_DIR).backup_dir == DEFAULT_DIR
    assert (
        BackupParams.from_mapping({"backup_dir": None}, default_backup_dir=DEFAULT_DIR).backup_dir
        == DEFAULT_DIR
    )


def test_restore_params_parse_all_fields() -> None:
    """All documented restore parameters are honoured."""
    params = RestoreParams.from_mapping(
        {"timestamp": "20240315020000", "backup_dir": "/srv/bk", "pg_no_owner": True},
        default_backup_dir=DEFAULT_DIR,
    )

    assert params == RestoreParams(
        timestamp="20240315020000",
        backup_dir="/srv/bk",
        pg_no_owner=True,
    )


def test_runner_metadata_keys_are_ignored() -> None:
    """Keys starting with an underscore are injected by task runners."""
    params = RestoreParams.from_mapping(
        {"timestamp": "1", "_task": "openproject::restore", "_noop": False},
        default_backup_dir=DEFAULT_DIR,
    )

    assert params.pg_no_owner is False


@pytest.mark.parametrize(
    "raw",
    [
        {},
        {"timestamp": ""},
        {"timestamp": "   "},
        {"timestamp": 20240315},
        {"timestamp": "1", "pg_no_owner": "yes"},
        {"timestamp": "1", "backup_dir": ""},
        {"timestamp": "1", "unexpected": True},
    ],
)
def test_restore_params_rejects_bad_input(raw: dict[str, object]) -> None:
    """Malformed parameters raise ``invalid-parameters``."""
    with pytest.raises(TaskError) as excinfo:
        RestoreParams.from_mapping(raw, default_backup_dir=DEFAULT_DIR)

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMETERS


def test_timestamp_is_passed_through_unchanged() -> None:
    """The timestamp is opaque and reaches artefact names as given."""
    params = RestoreParams.from_mapping({"timestamp": " 2024 "}, default_backup_dir=DEFAULT_DIR)

    assert params.timestamp == " 2024 "


def test_bytes_input_is_decoded_as_utf8() -> None:
    """Raw stdin bytes are accepted when they are valid UTF-8."""
    assert parse_document('{"backup_dir": "/srv/sauvegardé"}'.encode()) == {
        "backup_dir": "/srv/sauvegardé"
    }


def test_invalid_utf8_is_rejected() -> None:
    """Undecodable stdin is reported as ``invalid-parameters``."""
    with pytest.raises(TaskError) as excinfo:
        parse_document(b'{"backup_dir": "\xff\xfe"}')

    assert excinfo.value.kind is ErrorKind.INVALID_PARAMETERS
    assert "UTF-8" in excinfo.value.message
