"""Provider interfaces for opctl."""
from __future__ import annotations

from .openproject import OpenProjectCli
from .postgres import PgRestore
from .service import ServiceError, ServiceProvider

__all__ = [
    "OpenProjectCli",
    "PgRestore",
    "ServiceError",
    "ServiceProvider",
]
