"""Custom exceptions for cowvm."""

from __future__ import annotations

from typing import List, Optional


class ManagerError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class CommandError(ManagerError):
    """An external tool exited with a nonzero status."""

    def __init__(self, cmd: List[str], returncode: int, stderr: Optional[str] = None) -> None:
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"{self.cmd[0]} failed: {detail}")


class DomainNotFoundError(ManagerError):
    """The named VM is not known to libvirt."""


class PollTimeoutError(ManagerError):
    """A state transition or address wait did not finish in time."""


class RemoteAccessError(ManagerError):
    """No IP address or SSH user is available for a remote operation."""


class ConfigStringError(ManagerError):
    """A config-string key or value cannot be serialized."""
