"""Tests for cowvm.virsh module."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from cowvm.exceptions import CommandError, DomainNotFoundError, ManagerError
from cowvm.models import BlockDevice, Interface
from cowvm.virsh import Virsh, parse_domblklist, parse_domifaddr, parse_name_list

DOMIFADDR_LEASE = """\
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 vnet3      52:54:00:2a:7b:1c    ipv4         192.168.122.45/24

"""

DOMIFADDR_AGENT = """\
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 lo         00:00:00:00:00:00    ipv4         127.0.0.1/8
 -          -                    ipv6         ::1/128
 enp1s0     52:54:00:2a:7b:1c    ipv4         192.168.122.45/24
 -          -                    ipv6         fe80::5054:ff:fe2a:7b1c/64
"""

DOMBLKLIST = """\
 Type   Device   Target   Source
-----------------------------------------------------------------
 file   cdrom    sda      -
 file   disk     vda      /var/lib/libvirt/images/my disk.qcow2
 file   disk     vdb      /var/lib/libvirt/images/data.qcow2
"""


class TestParsers:
    def test_domifaddr_lease(self):
        assert parse_domifaddr(DOMIFADDR_LEASE) == [
            Interface("vnet3", "52:54:00:2a:7b:1c", "ipv4", "192.168.122.45"),
        ]

    def test_domifaddr_agent_continuation_rows(self):
        rows = parse_domifaddr(DOMIFADDR_AGENT)
        assert [r.address for r in rows] == ["127.0.0.1", "::1", "192.168.122.45", "fe80::5054:ff:fe2a:7b1c"]
        assert rows[1].name == "lo"
        assert rows[3].name == "enp1s0"
        assert rows[3].mac == "52:54:00:2a:7b:1c"

    def test_domifaddr_empty_table(self):
        header_only = " Name  MAC address  Protocol  Address\n--------------------\n\n"
        assert parse_domifaddr(header_only) == []

    def test_domblklist_keeps_spaces_in_source(self):
        devices = parse_domblklist(DOMBLKLIST)
        assert devices[0] == BlockDevice("file", "cdrom", "sda", "-")
        assert devices[1].source == "/var/lib/libvirt/images/my disk.qcow2"
        assert len(devices) == 3

    def test_name_list(self):
        assert parse_name_list("alpha\nbeta\n\n") == ["alpha", "beta"]


class TestVirsh:
    def test_commands_use_connection_uri(self, default_settings, completed):
        default_settings.connect = "qemu:///session"
        with patch("cowvm.virsh.run", return_value=completed("web\ndb\n")) as mock_run:
            names = Virsh(default_settings).list_domains()
        assert names == ["web", "db"]
        mock_run.assert_called_once_with(
            ["virsh", "-c", "qemu:///session", "list", "--name", "--all"], check=True
        )

    def test_list_running_only(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed("")) as mock_run:
            Virsh(default_settings).list_domains(include_inactive=False)
        assert "--all" not in mock_run.call_args[0][0]

    def test_domain_state(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed("running\n\n")):
            assert Virsh(default_settings).domain_state("vm1") == "running"

    def test_unknown_domain(self, default_settings):
        err = CommandError(["virsh"], 1, "error: failed to get domain 'nope'")
        with patch("cowvm.virsh.run", side_effect=err):
            with pytest.raises(DomainNotFoundError, match="No such VM: nope"):
                Virsh(default_settings).domain_state("nope")

    def test_other_failures_propagate(self, default_settings):
        err = CommandError(["virsh"], 1, "error: Requested operation is not valid")
        with patch("cowvm.virsh.run", side_effect=err):
            with pytest.raises(CommandError, match="not valid"):
                Virsh(default_settings).start("vm1")

    def test_domain_exists(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(returncode=1)):
            assert Virsh(default_settings).domain_exists("nope") is False

    def test_interface_addresses_failure_is_empty(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(returncode=1, stderr="no agent")):
            assert Virsh(default_settings).interface_addresses("vm1", "agent") == []

    def test_interface_addresses_source(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(DOMIFADDR_LEASE)) as mock_run:
            rows = Virsh(default_settings).interface_addresses("vm1", "arp")
        assert rows[0].address == "192.168.122.45"
        assert mock_run.call_args[0][0][-3:] == ["vm1", "--source", "arp"]

    def test_primary_disk_skips_cdrom(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(DOMBLKLIST)):
            disk = Virsh(default_settings).primary_disk("vm1")
        assert disk == Path("/var/lib/libvirt/images/my disk.qcow2")

    def test_primary_disk_missing(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(" Type Device Target Source\n---\n")):
            with pytest.raises(ManagerError, match="no file-backed disk"):
                Virsh(default_settings).primary_disk("vm1")

    def test_empty_description(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed("No description for domain: vm1\n")):
            assert Virsh(default_settings).get_description("vm1") == ""

    def test_set_description_live_when_running(self, default_settings, completed):
        with patch("cowvm.virsh.run", side_effect=[completed("running\n"), completed()]) as mock_run:
            Virsh(default_settings).set_description("vm1", "cowvm:user=a")
        cmd = mock_run.call_args_list[1][0][0]
        assert cmd[3:] == ["desc", "vm1", "--config", "--live", "--new-desc", "cowvm:user=a"]

    @pytest.mark.parametrize("state", ["paused", "in shutdown", "pmsuspended"])
    def test_set_description_live_when_active(self, default_settings, completed, state):
        with patch("cowvm.virsh.run", side_effect=[completed(f"{state}\n"), completed()]) as mock_run:
            Virsh(default_settings).set_description("vm1", "cowvm:user=a")
        assert "--live" in mock_run.call_args_list[1][0][0]

    def test_set_description_config_only_when_stopped(self, default_settings, completed):
        with patch("cowvm.virsh.run", side_effect=[completed("shut off\n"), completed()]) as mock_run:
            Virsh(default_settings).set_description("vm1", "x")
        assert "--live" not in mock_run.call_args_list[1][0][0]

    def test_undefine_removes_storage(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed()) as mock_run:
            Virsh(default_settings).undefine("vm1")
        assert mock_run.call_args[0][0][3:] == ["undefine", "vm1", "--nvram", "--remove-all-storage"]

    def test_passthrough_returns_child_status(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed(returncode=3)) as mock_run:
            assert Virsh(default_settings).passthrough(["net-list"]) == 3
        mock_run.assert_called_once_with(
            ["virsh", "-c", "qemu:///system", "net-list"], check=False, capture=False
        )


class TestStorage:
    def test_image_format(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed('{"format": "raw", "virtual-size": 1}')):
            assert Virsh(default_settings).image_format(Path("/img/base.img")) == "raw"

    def test_image_format_bad_json(self, default_settings, completed):
        with patch("cowvm.virsh.run", return_value=completed("garbage")):
            with pytest.raises(ManagerError, match="Unreadable qemu-img output"):
                Virsh(default_settings).image_format(Path("/img/base.img"))

    def test_create_overlay(self, default_settings):
        with patch("cowvm.virsh.run") as mock_run:
            Virsh(default_settings).create_overlay(Path("/img/base.qcow2"), "qcow2", Path("/img/new.qcow2"))
        mock_run.assert_called_once_with(
            ["qemu-img", "create", "-f", "qcow2", "-F", "qcow2", "-b", "/img/base.qcow2", "/img/new.qcow2"]
        )

    def test_import_domain(self, default_settings):
        with patch("cowvm.virsh.run") as mock_run:
            Virsh(default_settings).import_domain(
                "new", Path("/img/new.qcow2"), memory_mb=1024, cpus=4, os_variant="debian12", network="bridge=br0"
            )
        cmd = mock_run.call_args[0][0]
        assert cmd[:3] == ["virt-install", "--connect", "qemu:///system"]
        assert "--import" in cmd
        assert cmd[cmd.index("--disk") + 1] == "path=/img/new.qcow2,format=qcow2"
        assert cmd[cmd.index("--memory") + 1] == "1024"
        assert cmd[cmd.index("--vcpus") + 1] == "4"
        assert cmd[cmd.index("--os-variant") + 1] == "debian12"
        assert cmd[cmd.index("--network") + 1] == "bridge=br0"
