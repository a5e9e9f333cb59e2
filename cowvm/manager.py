"""VM operations behind the cowvm subcommands."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from cowvm.constants import (
    KEY_BASE,
    KEY_IS_BASE,
    KEY_USER,
    OVERLAY_FORMAT,
    STATE_RUNNING,
    STATE_SHUTOFF,
)
from cowvm.exceptions import ManagerError, PollTimeoutError, RemoteAccessError
from cowvm.lifecycle import LifecyclePoller
from cowvm.metadata import ConfigString, MetadataStore, open_store
from cowvm.models import DomainInfo, Settings
from cowvm.remote import RemoteSession, open_viewer
from cowvm.utils import log
from cowvm.virsh import Virsh


def overlay_path(base_disk: Path, name: str) -> Path:
    """Disk path for a clone: next to the base disk, named after the clone."""
    return base_disk.parent / f"{name}.{OVERLAY_FORMAT}"


class VMManager:
    def __init__(
        self,
        settings: Settings,
        virsh: Optional[Virsh] = None,
        store: Optional[MetadataStore] = None,
        poller: Optional[LifecyclePoller] = None,
    ) -> None:
        self.settings = settings
        self.virsh = virsh or Virsh(settings)
        self.store = store or open_store(settings, self.virsh)
        self.poller = poller or LifecyclePoller(self.virsh, settings)

    # Clone

    def clone(
        self,
        base: str,
        name: str,
        user: Optional[str] = None,
        memory_mb: Optional[int] = None,
        cpus: Optional[int] = None,
        os_variant: Optional[str] = None,
        network: Optional[str] = None,
    ) -> Path:
        if base == name:
            raise ManagerError("Clone name must differ from the base VM name")
        if self.virsh.domain_exists(name):
            raise ManagerError(f"VM {name} already exists")

        # Built before touching any disk so a bad user or name fails early.
        clone_cfg = ConfigString()
        inherited = user or self.store.get(base, KEY_USER) or self.settings.default_user
        if inherited:
            clone_cfg.set(KEY_USER, inherited)
        clone_cfg.set(KEY_BASE, base)

        # Overlaying a disk that is still being written would corrupt the clone.
        if not self.poller.ensure_stopped(base, force_on_timeout=True):
            raise PollTimeoutError(f"Timed out waiting for base VM {base} to stop")

        base_disk = self.virsh.primary_disk(base)
        disk = overlay_path(base_disk, name)
        if disk.exists():
            raise ManagerError(f"Disk {disk} already exists; remove it or pick another name")

        backing_format = self.virsh.image_format(base_disk)
        log("INFO", f"Creating overlay {disk} backed by {base_disk} ({backing_format})")
        self.virsh.create_overlay(base_disk, backing_format, disk)

        log("INFO", f"Importing {name}")
        try:
            self.virsh.import_domain(
                name,
                disk,
                memory_mb=memory_mb or self.settings.memory_mb,
                cpus=cpus or self.settings.cpus,
                os_variant=os_variant or self.settings.os_variant,
                network=network or self.settings.network,
            )
        except ManagerError:
            log("WARN", f"virt-install failed; removing {disk}")
            disk.unlink(missing_ok=True)
            raise

        try:
            self.store.save(name, clone_cfg)
        except (ManagerError, OSError):
            self._discard_clone(name, disk)
            raise

        self.store.set(base, KEY_IS_BASE, "1")
        log("SUCCESS", f"Cloned {base} -> {name}")
        return disk

    def _discard_clone(self, name: str, disk: Path) -> None:
        """Remove a freshly imported clone whose metadata could not be recorded."""
        log("WARN", f"Could not record metadata for {name}; removing it")
        try:
            if self.virsh.domain_state(name) != STATE_SHUTOFF:
                self.virsh.destroy(name)
            self.virsh.undefine(name)
        except ManagerError as exc:
            log("WARN", f"Cleanup of {name} failed: {exc}")
        disk.unlink(missing_ok=True)

    # Inventory

    def describe(self, vm: str) -> DomainInfo:
        cfg = self.store.load(vm)
        return DomainInfo(
            name=vm,
            state=self.virsh.domain_state(vm),
            user=cfg.get(KEY_USER),
            base=cfg.get(KEY_BASE),
            is_base=cfg.get(KEY_IS_BASE) == "1",
        )

    def list_vms(self, include_inactive: bool = True) -> List[DomainInfo]:
        return [self.describe(vm) for vm in self.virsh.list_domains(include_inactive)]

    def clones_of(self, base: str) -> List[str]:
        return [vm for vm in self.virsh.list_domains() if vm != base and self.store.get(vm, KEY_BASE) == base]

    # Lifecycle

    def start(self, vm: str, timeout: Optional[int] = None, force: bool = False) -> None:
        if not force and self.store.get(vm, KEY_IS_BASE) == "1":
            raise ManagerError(f"{vm} is a base VM; starting it would invalidate its clones (use --force)")
        if not self.poller.ensure_running(vm, timeout):
            raise PollTimeoutError(f"Timed out waiting for {vm} to start")

    def stop(self, vm: str, timeout: Optional[int] = None, force: bool = False) -> None:
        if not self.poller.ensure_stopped(vm, timeout, force=force):
            raise PollTimeoutError(f"Timed out waiting for {vm} to stop")

    def stop_all(self, timeout: Optional[int] = None, force: bool = False) -> List[str]:
        """Stop every running VM; return the names that failed to stop."""
        failed = []
        for vm in self.virsh.list_domains(include_inactive=False):
            try:
                self.stop(vm, timeout, force=force)
            except ManagerError as exc:
                log("ERROR", str(exc))
                failed.append(vm)
        return failed

    def trash(self, vm: str) -> None:
        clones = self.clones_of(vm)
        if clones:
            raise ManagerError(f"{vm} still backs {', '.join(sorted(clones))}; trash those first")
        base = self.store.get(vm, KEY_BASE)

        if not self.poller.ensure_stopped(vm, force=True):
            raise PollTimeoutError(f"Timed out waiting for {vm} to power off")
        log("INFO", f"Removing {vm} and its storage")
        self.virsh.undefine(vm, remove_storage=True)
        self.store.remove(vm)

        if base and self.virsh.domain_exists(base) and not self.clones_of(base):
            self.store.unset(base, KEY_IS_BASE)
        log("SUCCESS", f"Trashed {vm}")

    # Remote access

    def ipaddr(self, vm: str, wait: int = 0) -> str:
        if wait:
            address = self.poller.wait_for_address(vm, wait)
        else:
            address = self.poller.find_address(vm)
        if address is None:
            raise RemoteAccessError(f"No IP address found for {vm}")
        return address

    def user_for(self, vm: str, override: Optional[str] = None) -> str:
        user = override or self.store.get(vm, KEY_USER) or self.settings.default_user
        if not user:
            raise RemoteAccessError(f"No SSH user recorded for {vm}; run 'cowvm setuser {vm} USER'")
        return user

    def session(self, vm: str, user: Optional[str] = None) -> RemoteSession:
        login = self.user_for(vm, user)
        if self.virsh.domain_state(vm) != STATE_RUNNING:
            self.start(vm)
        address = self.poller.ensure_reachable(vm)
        return RemoteSession(self.settings, login, address)

    def set_user(self, vm: str, user: str) -> None:
        self.virsh.domain_state(vm)
        self.store.set(vm, KEY_USER, user)
        log("SUCCESS", f"SSH user for {vm} set to {user}")

    def view(self, vm: str) -> int:
        if self.virsh.domain_state(vm) != STATE_RUNNING:
            self.start(vm)
        return open_viewer(self.settings, vm)
