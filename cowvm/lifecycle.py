"""Start/stop polling and address discovery for cowvm."""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from cowvm.constants import POLL_INTERVAL, STATE_RUNNING, STATE_SHUTOFF
from cowvm.exceptions import PollTimeoutError, RemoteAccessError
from cowvm.models import Settings
from cowvm.utils import log, tcp_port_open
from cowvm.virsh import Virsh


class LifecyclePoller:
    """Drives a VM into a state and samples it once a second until it gets there."""

    def __init__(self, virsh: Virsh, settings: Settings) -> None:
        self.virsh = virsh
        self.settings = settings

    @staticmethod
    def poll(predicate: Callable[[], bool], timeout: float) -> bool:
        """Sample ``predicate`` at most ``timeout + 1`` times, one second apart."""
        samples = max(int(timeout), 0) + 1
        for attempt in range(samples):
            started = time.monotonic()
            if predicate():
                return True
            if attempt < samples - 1:
                # A slow sample (TCP probe) eats into the wait before the next one.
                remaining = POLL_INTERVAL - (time.monotonic() - started)
                if remaining > 0:
                    time.sleep(remaining)
        return False

    def _state_is(self, vm: str, wanted: str) -> Callable[[], bool]:
        return lambda: self.virsh.domain_state(vm) == wanted

    def ensure_running(self, vm: str, timeout: Optional[float] = None) -> bool:
        if timeout is None:
            timeout = self.settings.start_timeout
        state = self.virsh.domain_state(vm)
        if state == STATE_RUNNING:
            log("DEBUG", f"{vm} is already running")
            return True
        if state == "paused":
            log("INFO", f"Resuming {vm}")
            self.virsh.resume(vm)
        else:
            log("INFO", f"Starting {vm}")
            self.virsh.start(vm)
        if self.poll(self._state_is(vm, STATE_RUNNING), timeout):
            log("SUCCESS", f"{vm} is running")
            return True
        log("WARN", f"{vm} did not reach the running state within {int(timeout)}s")
        return False

    def ensure_stopped(
        self,
        vm: str,
        timeout: Optional[float] = None,
        force: bool = False,
        force_on_timeout: bool = False,
    ) -> bool:
        if timeout is None:
            timeout = self.settings.stop_timeout
        if self.virsh.domain_state(vm) == STATE_SHUTOFF:
            log("DEBUG", f"{vm} is already stopped")
            return True
        if force:
            log("INFO", f"Forcing {vm} off")
            self.virsh.destroy(vm)
        else:
            log("INFO", f"Shutting down {vm}")
            self.virsh.shutdown(vm)
        if self.poll(self._state_is(vm, STATE_SHUTOFF), timeout):
            log("SUCCESS", f"{vm} is stopped")
            return True
        if force_on_timeout and not force:
            log("WARN", f"Graceful shutdown of {vm} timed out, forcing...")
            self.virsh.destroy(vm)
            if self.poll(self._state_is(vm, STATE_SHUTOFF), 0):
                log("SUCCESS", f"{vm} is stopped")
                return True
        log("WARN", f"{vm} did not stop within {int(timeout)}s")
        return False

    def find_address(self, vm: str) -> Optional[str]:
        """Return the first non-loopback IPv4 address any configured source reports."""
        for source in self.settings.address_sources:
            for iface in self.virsh.interface_addresses(vm, source):
                if iface.protocol == "ipv4" and not iface.address.startswith("127."):
                    log("DEBUG", f"{vm} has address {iface.address} ({source})")
                    return iface.address
        return None

    def wait_for_address(self, vm: str, timeout: Optional[float] = None) -> Optional[str]:
        if timeout is None:
            timeout = self.settings.address_timeout
        found: Dict[str, str] = {}

        def _has_address() -> bool:
            address = self.find_address(vm)
            if address is None:
                return False
            found["address"] = address
            return True

        self.poll(_has_address, timeout)
        return found.get("address")

    def ensure_reachable(self, vm: str, timeout: Optional[float] = None) -> str:
        """Make sure ``vm`` runs, has an address and accepts SSH; return the address."""
        if timeout is None:
            timeout = self.settings.address_timeout
        if not self.ensure_running(vm):
            raise PollTimeoutError(f"Timed out waiting for {vm} to start")

        port = self.settings.ssh_port
        found: Dict[str, str] = {}

        def _reachable() -> bool:
            address = self.find_address(vm)
            if address is None:
                return False
            found["address"] = address
            return tcp_port_open(address, port)

        log("INFO", f"Waiting for {vm} to accept SSH connections")
        if self.poll(_reachable, timeout):
            return found["address"]
        if "address" not in found:
            raise RemoteAccessError(f"No IP address found for {vm} within {int(timeout)}s")
        raise PollTimeoutError(f"{vm} ({found['address']}) did not open port {port} within {int(timeout)}s")
