"""Wrapper around the ``openproject`` management CLI."""
from __future__ import annotations

from dataclasses import dataclass

from ..config import OpenProjectConfig


@dataclass(slots=True)
class OpenProjectCli:
    """Build invocations of the packaged ``openproject`` command."""

    bin: str = "openproject"
    database_url_key: str = "DATABASE_URL"

    @classmethod
    def from_config(cls, config: OpenProjectConfig) -> OpenProjectCli:
        """Return a wrapper configured from *config*."""
        return cls(bin=config.bin, database_url_key=config.database_url_key)

    def backup_command(self) -> list[str]:
        """Return the argv that produces a full backup set."""
        return [self.bin, "run", "backup"]

    def database_url_command(self) -> list[str]:
        """Return the argv that prints the database connection string."""
        return [self.bin, "config:get", self.database_url_key]


__all__ = ["OpenProjectCli"]
