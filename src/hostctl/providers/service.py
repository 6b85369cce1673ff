"""systemd-backed control of the daemons hostctl reconfigures."""
from __future__ import annotations

import subprocess
from dataclasses import dataclass

from ..commands import CommandRunner, ExternalToolFailure


class ServiceError(ExternalToolFailure):
    """Raised when a service cannot be controlled."""


@dataclass(slots=True)
class ServiceManager:
    """Enable, start, stop, restart and reload units through ``systemctl``.

    One manager is built at startup and injected into every provider.
    """

    runner: CommandRunner
    systemctl_bin: str = "systemctl"

    def enable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Enable *service* at boot."""
        return self._systemctl("enable", service)

    def disable(self, service: str) -> subprocess.CompletedProcess[str]:
        """Disable *service* at boot."""
        return self._systemctl("disable", service)

    def start(self, service: str) -> subprocess.CompletedProcess[str]:
        """Start *service*."""
        return self._systemctl("start", service)

    def stop(self, service: str) -> subprocess.CompletedProcess[str]:
        """Stop *service*."""
        return self._systemctl("stop", service)

    def restart(self, service: str) -> subprocess.CompletedProcess[str]:
        """Restart *service*."""
        return self._systemctl("restart", service)

    def reload(self, service: str) -> subprocess.CompletedProcess[str]:
        """Reload the configuration of *service*."""
        return self._systemctl("reload", service)

    def is_running(self, service: str) -> bool:
        """Return True when systemd reports *service* as active."""
        result = self.runner.run([self.systemctl_bin, "is-active", "--quiet", service], check=False)
        return result.returncode == 0

    def _systemctl(self, command: str, service: str) -> subprocess.CompletedProcess[str]:
        args = [self.systemctl_bin, command, service]
        try:
            return self.runner.run(args)
        except ExternalToolFailure as exc:
            raise ServiceError(args, exc.returncode, exc.output) from exc


__all__ = ["ServiceError", "ServiceManager"]
