"""Global constants and path configuration for cowvm."""

from __future__ import annotations

import os
import re
from pathlib import Path

_XDG_CONFIG_HOME = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
_XDG_DATA_HOME = Path(os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share")

DEFAULT_SETTINGS_PATH = _XDG_CONFIG_HOME / "cowvm" / "settings.yaml"
DEFAULT_STATE_DIR = _XDG_DATA_HOME / "cowvm"

SYSTEM_URI = "qemu:///system"
DEFAULT_URI = SYSTEM_URI

TRUTHY = {"1", "true", "yes", "on"}

# Config-string keys kept per VM
KEY_USER = "user"
KEY_BASE = "base"
KEY_IS_BASE = "is-base"

# Tag that marks the config line inside a libvirt <description>
DESCRIPTION_TAG = "cowvm:"
SIDECAR_SUFFIX = ".conf"
OVERLAY_FORMAT = "qcow2"

METADATA_STORES = {"auto", "description", "file"}
TRANSFER_TOOLS = {"rsync", "scp"}
ADDRESS_SOURCES = ("lease", "arp", "agent")

STATE_RUNNING = "running"
STATE_SHUTOFF = "shut off"

POLL_INTERVAL = 1.0

CONFIG_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in TRUTHY

DEFAULT_SSH_OPTIONS = [
    "-o",
    "StrictHostKeyChecking=no",
    "-o",
    "UserKnownHostsFile=/dev/null",
    "-o",
    "LogLevel=ERROR",
]

DEFAULT_SETTINGS_TEMPLATE = """\
# cowvm settings. Every key is optional; remove a line to use the default.

# libvirt connection URI (qemu:///system or qemu:///session)
connect: qemu:///system

# Where per-VM config strings live: auto, description or file.
# auto keeps them in the domain description on qemu:///system and in
# sidecar files under state_dir on any other connection.
metadata_store: auto
# state_dir: ~/.local/share/cowvm

# SSH login used for new clones when the base VM has none recorded
# default_user: root

# virt-install defaults for clone
memory_mb: 2048
cpus: 2
os_variant: detect=on,require=off
network: network=default

# Polling windows in seconds
start_timeout: 60
stop_timeout: 60
address_timeout: 120

ssh_port: 22
ssh_options:
  - -o
  - StrictHostKeyChecking=no
  - -o
  - UserKnownHostsFile=/dev/null
  - -o
  - LogLevel=ERROR

# push/pull transport: rsync or scp
transfer: rsync

# virsh domifaddr sources, tried in order
address_sources: [lease, arp, agent]
"""
