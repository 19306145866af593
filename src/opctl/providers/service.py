"""Service control provider for the OpenProject service."""
from __future__ import annotations

from dataclasses import dataclass

from ..config import ServiceConfig


class ServiceError(RuntimeError):
    """Raised when a service command cannot be built."""


@dataclass(slots=True)
class ServiceProvider:
    """Build service control commands for the managed service.

    ``manager`` selects between SysV-style ``service <name> <action>`` and
    ``systemctl <action> <name>``.
    """

    name: str = "openproject"
    manager: str = "service"
    service_bin: str = "service"
    systemctl_bin: str = "systemctl"

    @classmethod
    def from_config(cls, config: ServiceConfig) -> ServiceProvider:
        """Return a provider configured from *config*."""
        return cls(
            name=config.name,
            manager=config.manager,
            service_bin=config.service_bin,
            systemctl_bin=config.systemctl_bin,
        )

    def stop_command(self) -> list[str]:
        """Return the argv that stops the service."""
        return self._command("stop")

    def restart_command(self) -> list[str]:
        """Return the argv that restarts the service."""
        return self._command("restart")

    def _command(self, action: str) -> list[str]:
        if self.manager == "service":
            return [self.service_bin, self.name, action]
        if self.manager == "systemd":
            return [self.systemctl_bin, action, self.name]
        raise ServiceError(f"Unsupported service manager '{self.manager}'.")


__all__ = ["ServiceError", "ServiceProvider"]
