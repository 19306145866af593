"""PostgreSQL client commands used by the restore procedure."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..config import PostgresConfig


@dataclass(slots=True)
class PgRestore:
    """Build ``pg_restore`` invocations."""

    bin: str = "pg_restore"

    @classmethod
    def from_config(cls, config: PostgresConfig) -> PgRestore:
        """Return a builder configured from *config*."""
        return cls(bin=config.pg_restore_bin)

    def restore_command(
        self,
        database_url: str,
        dump_path: Path,
        *,
        no_owner: bool = False,
    ) -> list[str]:
        """Return the argv restoring *dump_path* into *database_url*.

        Existing objects are dropped first (``--clean --if-exists``);
        ``no_owner`` skips restoring object ownership.
        """
        command = [self.bin, "--clean", "--if-exists"]
        if no_owner:
            command.append("--no-owner")
        command.extend(["--dbname", database_url, str(dump_path)])
        return command


__all__ = ["PgRestore"]
