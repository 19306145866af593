"""External command execution seam.

All external programs are invoked through a :class:`CommandRunner`. The
procedures only observe exit status and the two output streams, so tests
substitute a fake runner without spawning processes.
"""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

# Shell conventions for unrunnable commands and commands killed by timeout.
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127
EXIT_TIMED_OUT = 124


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Captured outcome of one external command."""

    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def success(self) -> bool:
        """Return ``True`` only for exit code 0."""
        return self.exit_code == 0 and not self.timed_out


class CommandRunner(Protocol):
    """Narrow interface for running an external command to completion."""

    def run(self, argv: Sequence[str]) -> CommandResult:
        """Run *argv*, block until it exits and return the captured result."""
        ...


@dataclass(slots=True)
class SubprocessRunner:
    """Run commands with :mod:`subprocess`, capturing text output.

    ``timeout`` is ``None`` by default, in which case a command that never
    exits blocks the caller indefinitely.
    """

    timeout: float | None = None
    env: Mapping[str, str] | None = None

    def run(self, argv: Sequence[str]) -> CommandResult:
        """Run *argv* and capture its streams and exit code."""
        args = [str(part) for part in argv]
        try:
            completed = subprocess.run(  # noqa: S603 - argv is built by providers
                args,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
                env=dict(self.env) if self.env is not None else None,
            )
        except FileNotFoundError as exc:
            return CommandResult(
                argv=tuple(args),
                exit_code=EXIT_NOT_FOUND,
                stderr=f"{args[0]} not found: {exc}",
            )
        except PermissionError as exc:
            return CommandResult(
                argv=tuple(args),
                exit_code=EXIT_NOT_EXECUTABLE,
                stderr=f"{args[0]} is not executable: {exc}",
            )
        except subprocess.TimeoutExpired as exc:
            return CommandResult(
                argv=tuple(args),
                exit_code=EXIT_TIMED_OUT,
                stdout=_decode(exc.stdout),
                stderr=_decode(exc.stderr)
                + f"\n{args[0]} timed out after {self.timeout} seconds.",
                timed_out=True,
            )
        except OSError as exc:
            return CommandResult(
                argv=tuple(args),
                exit_code=EXIT_NOT_EXECUTABLE,
                stderr=f"{args[0]} could not be executed: {exc}",
            )
        return CommandResult(
            argv=tuple(args),
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "EXIT_TIMED_OUT",
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
]
