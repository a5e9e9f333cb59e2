"""SSH, file transfer and console viewer access to guests."""

from __future__ import annotations

import shlex
from typing import List, Optional

from cowvm.exceptions import ManagerError
from cowvm.models import Settings
from cowvm.utils import log, run


class RemoteSession:
    """Builds and runs ssh/ssh-copy-id/rsync/scp command lines for one guest."""

    def __init__(self, settings: Settings, user: str, address: str) -> None:
        if not user:
            raise ManagerError("An SSH user is required")
        self.settings = settings
        self.user = user
        self.address = address

    @property
    def target(self) -> str:
        return f"{self.user}@{self.address}"

    def _ssh_args(self) -> List[str]:
        return ["-p", str(self.settings.ssh_port), *self.settings.ssh_options]

    def shell(self, command: Optional[List[str]] = None) -> int:
        cmd = ["ssh", *self._ssh_args()]
        if not command:
            cmd.append("-t")
        cmd.append(self.target)
        cmd.extend(command or [])
        log("INFO", f"Connecting to {self.target}")
        return run(cmd, check=False, capture=False).returncode

    def copy_id(self, identity: Optional[str] = None) -> int:
        cmd = ["ssh-copy-id"]
        if identity:
            cmd.extend(["-i", identity])
        cmd.extend(self._ssh_args())
        cmd.append(self.target)
        log("INFO", f"Installing SSH keys for {self.target}")
        return run(cmd, check=False, capture=False).returncode

    def _transfer_cmd(self, sources: List[str], destination: str) -> List[str]:
        if self.settings.transfer == "scp":
            return [
                "scp",
                "-r",
                "-P",
                str(self.settings.ssh_port),
                *self.settings.ssh_options,
                *sources,
                destination,
            ]
        ssh = shlex.join(["ssh", *self._ssh_args()])
        return ["rsync", "-av", "--progress", "-e", ssh, *sources, destination]

    def push(self, sources: List[str], destination: str) -> int:
        if not sources:
            raise ManagerError("Nothing to push")
        cmd = self._transfer_cmd(list(sources), f"{self.target}:{destination}")
        log("INFO", f"Copying {len(sources)} item(s) to {self.target}:{destination}")
        return run(cmd, check=False, capture=False).returncode

    def pull(self, sources: List[str], destination: str) -> int:
        if not sources:
            raise ManagerError("Nothing to pull")
        remote = [f"{self.target}:{src}" for src in sources]
        cmd = self._transfer_cmd(remote, destination)
        log("INFO", f"Copying {len(sources)} item(s) from {self.target} to {destination}")
        return run(cmd, check=False, capture=False).returncode


def open_viewer(settings: Settings, vm: str) -> int:
    """Attach virt-viewer to the guest's graphical console."""
    log("INFO", f"Opening viewer for {vm}")
    return run(["virt-viewer", "--connect", settings.connect, vm], check=False, capture=False).returncode
