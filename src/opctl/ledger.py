"""Step execution and the append-only step ledger.

The ledger is the audit trail returned to task callers on both the success
and failure paths. Records are appended in execution order and are never
reordered or removed.
"""
from __future__ import annotations

import shlex
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import Enum

from .logging import OperationScope, redact_credentials
from .runner import CommandResult, CommandRunner


class LedgerState(str, Enum):
    """Execution state of a ledger."""

    IDLE = "idle"
    RUNNING = "running"
    HALTED = "halted"


class LedgerHaltedError(RuntimeError):
    """Raised when a planned step is started after a failure halted the plan."""


@dataclass(frozen=True, slots=True)
class StepRecord:
    """Outcome of one executed step."""

    step: str
    command: str
    stdout: str
    stderr: str
    exit_code: int
    success: bool
    timed_out: bool = False

    @classmethod
    def from_result(cls, step: str, result: CommandResult) -> StepRecord:
        """Build a record for *step* from a captured command result."""
        return cls(
            step=step,
            command=shlex.join(result.argv),
            stdout=result.stdout,
            stderr=result.stderr,
            exit_code=result.exit_code,
            success=result.success,
            timed_out=result.timed_out,
        )

    def to_dict(self) -> dict[str, object]:
        """Return the wire representation of the record."""
        payload: dict[str, object] = {
            "step": self.step,
            "command": self.command,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitcode": self.exit_code,
            "success": self.success,
        }
        if self.timed_out:
            payload["timed_out"] = True
        return payload


class StepLedger:
    """Run planned steps through a runner and record each one in order.

    The first failing step halts the ledger: further planned steps are
    refused, and only recovery steps (:meth:`run_recovery`) may still be
    appended.
    """

    def __init__(self, runner: CommandRunner, *, scope: OperationScope | None = None) -> None:
        """Bind the ledger to *runner* and an optional operation scope."""
        self._runner = runner
        self._scope = scope
        self._records: list[StepRecord] = []
        self._state = LedgerState.IDLE

    @property
    def state(self) -> LedgerState:
        """Return the current execution state."""
        return self._state

    @property
    def halted(self) -> bool:
        """Return ``True`` once a step has failed."""
        return self._state is LedgerState.HALTED

    def run(self, step: str, argv: Sequence[str]) -> StepRecord:
        """Execute a planned step and append its record."""
        if self.halted:
            raise LedgerHaltedError(
                f"Cannot run step '{step}': the plan halted after a failed step."
            )
        self._state = LedgerState.RUNNING
        record = self._execute(step, argv)
        if not record.success:
            self._state = LedgerState.HALTED
        return record

    def run_recovery(self, step: str, argv: Sequence[str]) -> StepRecord:
        """Execute a recovery step after a failure; the ledger stays halted."""
        return self._execute(step, argv)

    def records(self) -> list[StepRecord]:
        """Return a copy of the recorded steps."""
        return list(self._records)

    def names(self) -> list[str]:
        """Return the recorded step names in execution order."""
        return [record.step for record in self._records]

    def to_list(self) -> list[dict[str, object]]:
        """Return the wire representation of every recorded step."""
        return [record.to_dict() for record in self._records]

    def __len__(self) -> int:
        """Return the number of recorded steps."""
        return len(self._records)

    def __iter__(self) -> Iterator[StepRecord]:
        """Iterate over a snapshot of the recorded steps."""
        return iter(list(self._records))

    def _execute(self, step: str, argv: Sequence[str]) -> StepRecord:
        result = self._runner.run(list(argv))
        record = StepRecord.from_result(step, result)
        self._records.append(record)
        if self._scope is not None:
            detail = redact_credentials(f"{record.command} (exit {record.exit_code})")
            self._scope.add_step(
                step,
                status="success" if record.success else "error",
                detail=detail,
            )
        return record


__all__ = [
    "LedgerHaltedError",
    "LedgerState",
    "StepLedger",
    "StepRecord",
]
