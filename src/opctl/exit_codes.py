"""Enumerations for task exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit codes reported by task commands.

    Remote task runners only distinguish success from failure, so every
    reported error maps to ``FAILURE``.
    """

    OK = 0
    FAILURE = 1
