"""Tests for cowvm.remote module."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from cowvm.exceptions import ManagerError
from cowvm.remote import RemoteSession, open_viewer


@pytest.fixture
def session(default_settings):
    default_settings.ssh_options = ["-o", "StrictHostKeyChecking=no"]
    default_settings.ssh_port = 2222
    return RemoteSession(default_settings, "ops", "10.0.0.9")


class TestShell:
    def test_interactive_shell(self, session, completed):
        with patch("cowvm.remote.run", return_value=completed()) as mock_run, patch("cowvm.remote.log"):
            assert session.shell() == 0
        mock_run.assert_called_once_with(
            ["ssh", "-p", "2222", "-o", "StrictHostKeyChecking=no", "-t", "ops@10.0.0.9"],
            check=False,
            capture=False,
        )

    def test_remote_command_status(self, session, completed):
        with patch("cowvm.remote.run", return_value=completed(returncode=5)) as mock_run, patch("cowvm.remote.log"):
            assert session.shell(["uname", "-a"]) == 5
        cmd = mock_run.call_args[0][0]
        assert cmd[-3:] == ["ops@10.0.0.9", "uname", "-a"]
        assert "-t" not in cmd

    def test_requires_user(self, default_settings):
        with pytest.raises(ManagerError, match="SSH user"):
            RemoteSession(default_settings, "", "10.0.0.9")


class TestCopyId:
    def test_with_identity(self, session, completed):
        with patch("cowvm.remote.run", return_value=completed()) as mock_run, patch("cowvm.remote.log"):
            session.copy_id("~/.ssh/id_ed25519.pub")
        assert mock_run.call_args[0][0] == [
            "ssh-copy-id",
            "-i",
            "~/.ssh/id_ed25519.pub",
            "-p",
            "2222",
            "-o",
            "StrictHostKeyChecking=no",
            "ops@10.0.0.9",
        ]


class TestTransfer:
    def test_push_with_rsync(self, session, completed):
        with patch("cowvm.remote.run", return_value=completed()) as mock_run, patch("cowvm.remote.log"):
            session.push(["a.txt", "dir/"], "/tmp/")
        assert mock_run.call_args[0][0] == [
            "rsync",
            "-av",
            "--progress",
            "-e",
            "ssh -p 2222 -o StrictHostKeyChecking=no",
            "a.txt",
            "dir/",
            "ops@10.0.0.9:/tmp/",
        ]

    def test_pull_with_scp(self, session, completed):
        session.settings.transfer = "scp"
        with patch("cowvm.remote.run", return_value=completed()) as mock_run, patch("cowvm.remote.log"):
            session.pull(["/var/log/syslog"], ".")
        assert mock_run.call_args[0][0] == [
            "scp",
            "-r",
            "-P",
            "2222",
            "-o",
            "StrictHostKeyChecking=no",
            "ops@10.0.0.9:/var/log/syslog",
            ".",
        ]

    def test_empty_sources(self, session):
        with pytest.raises(ManagerError, match="Nothing to push"):
            session.push([], "/tmp")


def test_open_viewer(default_settings, completed):
    with patch("cowvm.remote.run", return_value=completed()) as mock_run, patch("cowvm.remote.log"):
        assert open_viewer(default_settings, "vm1") == 0
    mock_run.assert_called_once_with(
        ["virt-viewer", "--connect", "qemu:///system", "vm1"], check=False, capture=False
    )
