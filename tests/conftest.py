"""Shared test fixtures."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from cowvm.models import Settings

_COWVM_ENV_VARS = [
    "COWVM_SETTINGS",
    "COWVM_CONNECT",
    "COWVM_STATE_DIR",
    "COWVM_USER",
    "LIBVIRT_URI",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Clear every environment variable that load_settings() reads."""
    for key in _COWVM_ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def mock_env(monkeypatch):
    """Helper to set environment variables for tests."""

    def _set(**kwargs):
        for key, value in kwargs.items():
            if value is None:
                monkeypatch.delenv(key, raising=False)
            else:
                monkeypatch.setenv(key, str(value))

    return _set


@pytest.fixture
def default_settings(tmp_path) -> Settings:
    """Return Settings with the sidecar directory under tmp_path."""
    return Settings(connect="qemu:///system", state_dir=tmp_path / "state")


@pytest.fixture
def completed():
    """Factory for subprocess.CompletedProcess results."""

    def _make(stdout: str = "", returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
        return subprocess.CompletedProcess(args=["virsh"], returncode=returncode, stdout=stdout, stderr=stderr)

    return _make


@pytest.fixture
def no_sleep():
    with patch("cowvm.lifecycle.time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def mock_virsh():
    """A Virsh stand-in whose domains are all shut off and unaddressed."""
    virsh = MagicMock()
    virsh.domain_state.return_value = "shut off"
    virsh.interface_addresses.return_value = []
    virsh.list_domains.return_value = []
    return virsh
