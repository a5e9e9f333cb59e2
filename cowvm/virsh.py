"""Thin typed wrapper over virsh, qemu-img and virt-install."""

from __future__ import annotations

import json
from pathlib import Path
from typing import List

from cowvm.constants import OVERLAY_FORMAT, STATE_RUNNING, STATE_SHUTOFF
from cowvm.exceptions import CommandError, DomainNotFoundError, ManagerError
from cowvm.models import BlockDevice, Interface, Settings
from cowvm.utils import log, run

_NO_DESCRIPTION = "No description for domain"
_NOT_FOUND_MARKERS = ("failed to get domain", "Domain not found")


def _table_rows(output: str) -> List[str]:
    """Return the data rows of a virsh table, skipping the header and ruler."""
    rows = []
    past_ruler = False
    for line in output.splitlines():
        if not past_ruler:
            if line.strip().startswith("---"):
                past_ruler = True
            continue
        if line.strip():
            rows.append(line.strip())
    return rows


def parse_domifaddr(output: str) -> List[Interface]:
    interfaces: List[Interface] = []
    name, mac = "", ""
    for row in _table_rows(output):
        parts = row.split()
        if len(parts) < 4:
            continue
        # Further addresses on the same interface repeat "-" for name and MAC.
        if parts[0] != "-":
            name = parts[0]
        if parts[1] != "-":
            mac = parts[1]
        address = parts[3].split("/", 1)[0]
        interfaces.append(Interface(name=name, mac=mac, protocol=parts[2], address=address))
    return interfaces


def parse_domblklist(output: str) -> List[BlockDevice]:
    devices: List[BlockDevice] = []
    for row in _table_rows(output):
        parts = row.split(None, 3)
        if len(parts) < 4:
            continue
        devices.append(BlockDevice(type=parts[0], device=parts[1], target=parts[2], source=parts[3]))
    return devices


def parse_name_list(output: str) -> List[str]:
    return [line.strip() for line in output.splitlines() if line.strip()]


class Virsh:
    """Runs hypervisor tools against the configured libvirt connection."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.uri = settings.connect

    def _cmd(self, *args: str) -> List[str]:
        return ["virsh", "-c", self.uri, *args]

    def _run(self, *args: str, check: bool = True):
        return run(self._cmd(*args), check=check)

    def _domain_cmd(self, name: str, *args: str):
        """Run a per-domain command, mapping an unknown domain to DomainNotFoundError."""
        try:
            return self._run(*args)
        except CommandError as exc:
            if any(marker in exc.stderr for marker in _NOT_FOUND_MARKERS):
                raise DomainNotFoundError(f"No such VM: {name}") from exc
            raise

    # Domain registry

    def list_domains(self, include_inactive: bool = True) -> List[str]:
        args = ["list", "--name"]
        if include_inactive:
            args.append("--all")
        return parse_name_list(self._run(*args).stdout)

    def domain_exists(self, name: str) -> bool:
        return self._run("domstate", name, check=False).returncode == 0

    def domain_state(self, name: str) -> str:
        return self._domain_cmd(name, "domstate", name).stdout.strip()

    def is_running(self, name: str) -> bool:
        return self.domain_state(name) == STATE_RUNNING

    # Lifecycle requests

    def start(self, name: str) -> None:
        self._domain_cmd(name, "start", name)

    def resume(self, name: str) -> None:
        self._domain_cmd(name, "resume", name)

    def shutdown(self, name: str) -> None:
        self._domain_cmd(name, "shutdown", name)

    def destroy(self, name: str) -> None:
        self._domain_cmd(name, "destroy", name)

    def undefine(self, name: str, remove_storage: bool = True) -> None:
        args = ["undefine", name, "--nvram"]
        if remove_storage:
            args.append("--remove-all-storage")
        self._domain_cmd(name, *args)

    # Introspection

    def interface_addresses(self, name: str, source: str = "lease") -> List[Interface]:
        result = self._run("domifaddr", name, "--source", source, check=False)
        if result.returncode != 0:
            log("DEBUG", f"domifaddr --source {source} failed for {name}: {result.stderr.strip()}")
            return []
        return parse_domifaddr(result.stdout)

    def block_devices(self, name: str) -> List[BlockDevice]:
        return parse_domblklist(self._domain_cmd(name, "domblklist", name, "--details").stdout)

    def primary_disk(self, name: str) -> Path:
        for dev in self.block_devices(name):
            if dev.type == "file" and dev.device == "disk" and dev.source not in {"", "-"}:
                return Path(dev.source)
        raise ManagerError(f"VM {name} has no file-backed disk")

    def get_description(self, name: str) -> str:
        output = self._domain_cmd(name, "desc", name).stdout
        if output.startswith(_NO_DESCRIPTION):
            return ""
        return output.rstrip("\n")

    def set_description(self, name: str, text: str) -> None:
        args = ["desc", name, "--config"]
        # Any active domain (paused, in shutdown) has a live description too.
        if self.domain_state(name) != STATE_SHUTOFF:
            args.append("--live")
        args.extend(["--new-desc", text])
        self._domain_cmd(name, *args)

    def passthrough(self, args: List[str]) -> int:
        return run(self._cmd(*args), check=False, capture=False).returncode

    # Storage and provisioning

    def image_format(self, path: Path) -> str:
        result = run(["qemu-img", "info", "-U", "--output=json", str(path)])
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ManagerError(f"Unreadable qemu-img output for {path}: {exc}")
        return info.get("format") or OVERLAY_FORMAT

    def create_overlay(self, backing: Path, backing_format: str, destination: Path) -> None:
        run(
            [
                "qemu-img",
                "create",
                "-f",
                OVERLAY_FORMAT,
                "-F",
                backing_format,
                "-b",
                str(backing),
                str(destination),
            ]
        )

    def import_domain(
        self,
        name: str,
        disk: Path,
        memory_mb: int,
        cpus: int,
        os_variant: str,
        network: str,
    ) -> None:
        run(
            [
                "virt-install",
                "--connect",
                self.uri,
                "--name",
                name,
                "--memory",
                str(memory_mb),
                "--vcpus",
                str(cpus),
                "--import",
                "--disk",
                f"path={disk},format={OVERLAY_FORMAT}",
                "--os-variant",
                os_variant,
                "--network",
                network,
                "--noautoconsole",
            ]
        )
