"""Data models for cowvm."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, NamedTuple, Optional

from cowvm.constants import (
    ADDRESS_SOURCES,
    DEFAULT_SSH_OPTIONS,
    DEFAULT_STATE_DIR,
    DEFAULT_URI,
)


class Interface(NamedTuple):
    name: str
    mac: str
    protocol: str  # "ipv4" / "ipv6"
    address: str  # without prefix length


class BlockDevice(NamedTuple):
    type: str  # "file", "block", ...
    device: str  # "disk", "cdrom", ...
    target: str
    source: str


@dataclass
class DomainInfo:
    name: str
    state: str
    user: Optional[str] = None
    base: Optional[str] = None
    is_base: bool = False


@dataclass
class Settings:
    connect: str = DEFAULT_URI
    metadata_store: str = "auto"
    state_dir: Path = DEFAULT_STATE_DIR
    default_user: Optional[str] = None
    # virt-install defaults used by clone
    memory_mb: int = 2048
    cpus: int = 2
    os_variant: str = "detect=on,require=off"
    network: str = "network=default"
    # Polling windows (seconds)
    start_timeout: int = 60
    stop_timeout: int = 60
    address_timeout: int = 120
    # Remote access
    ssh_port: int = 22
    ssh_options: List[str] = field(default_factory=lambda: list(DEFAULT_SSH_OPTIONS))
    transfer: str = "rsync"
    address_sources: List[str] = field(default_factory=lambda: list(ADDRESS_SOURCES))
