"""CLI entry points for cowvm."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

from cowvm.config import load_settings, resolve_settings_path, write_default_settings
from cowvm.exceptions import ManagerError
from cowvm.manager import VMManager
from cowvm.models import DomainInfo, Settings
from cowvm.utils import confirm, has_controlling_tty, log, set_verbose


def _strip_separator(args: List[str]) -> List[str]:
    if args and args[0] == "--":
        return args[1:]
    return args


def print_vm_table(vms: List[DomainInfo]) -> None:
    if not vms:
        log("INFO", "No VMs defined")
        return
    rows = [("NAME", "STATE", "USER", "BASE")]
    for vm in vms:
        base = vm.base or "-"
        if vm.is_base:
            base = "*base*" if not vm.base else f"{vm.base} *base*"
        rows.append((vm.name, vm.state, vm.user or "-", base))
    widths = [max(len(row[i]) for row in rows) for i in range(3)]
    for row in rows:
        print(f"{row[0]:<{widths[0]}}  {row[1]:<{widths[1]}}  {row[2]:<{widths[2]}}  {row[3]}")


def show_config(settings: Settings, path: Path) -> None:
    """Print the resolved settings."""
    print(f"  settings_file: {path}{'' if path.exists() else ' (not found, defaults)'}")
    for field in dataclasses.fields(settings):
        value = getattr(settings, field.name)
        if isinstance(value, list):
            value = " ".join(value)
        print(f"  {field.name}: {value}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cowvm", description="Copy-on-write VM clones on top of libvirt")
    parser.add_argument("--settings", metavar="PATH", help="Settings file (default: ~/.config/cowvm/settings.yaml)")
    parser.add_argument("-c", "--connect", metavar="URI", help="libvirt connection URI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show the external commands being run")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("clone", help="Clone a VM as a copy-on-write overlay of a base VM")
    p.add_argument("base")
    p.add_argument("name")
    p.add_argument("--user", help="SSH user for the clone (default: inherited from the base)")
    p.add_argument("--memory", type=int, metavar="MB")
    p.add_argument("--cpus", type=int)
    p.add_argument("--os-variant")
    p.add_argument("--network")

    p = sub.add_parser("list", help="List VMs")
    p.add_argument("--running", action="store_true", help="Only list running VMs")

    p = sub.add_parser("shell", help="Open an SSH shell (or run a command) on a VM")
    p.add_argument("vm")
    p.add_argument("--user")
    p.add_argument("remote_command", nargs=argparse.REMAINDER, metavar="-- CMD")

    p = sub.add_parser("sshkeys", help="Install your SSH public keys on a VM")
    p.add_argument("vm")
    p.add_argument("--user")
    p.add_argument("-i", "--identity", metavar="KEY", help="Public key file passed to ssh-copy-id")

    p = sub.add_parser("start", help="Start a VM and wait until it runs")
    p.add_argument("vm")
    p.add_argument("--timeout", type=int)
    p.add_argument("--force", action="store_true", help="Start even if the VM backs clones")

    p = sub.add_parser("stop", help="Shut a VM down and wait until it is off")
    p.add_argument("vm")
    p.add_argument("--timeout", type=int)
    p.add_argument("--force", action="store_true", help="Power off instead of a clean shutdown")

    p = sub.add_parser("stop-all", help="Stop every running VM")
    p.add_argument("--timeout", type=int)
    p.add_argument("--force", action="store_true", help="Power off instead of a clean shutdown")

    p = sub.add_parser("trash", help="Delete a VM and its storage")
    p.add_argument("vm")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    p = sub.add_parser("ipaddr", help="Print a VM's IPv4 address")
    p.add_argument("vm")
    p.add_argument("--wait", type=int, default=0, metavar="SECONDS", help="Wait up to SECONDS for an address")

    # Without -h of its own so "cowvm virsh -h" reaches virsh.
    p = sub.add_parser("virsh", help="Run virsh against the configured connection", add_help=False)
    p.add_argument("virsh_args", nargs=argparse.REMAINDER)

    p = sub.add_parser("view", help="Open the graphical console with virt-viewer")
    p.add_argument("vm")

    p = sub.add_parser("push", help="Copy local files to a VM")
    p.add_argument("vm")
    p.add_argument("paths", nargs="+", metavar="PATH", help="Local sources followed by the remote destination")
    p.add_argument("--user")

    p = sub.add_parser("pull", help="Copy files from a VM")
    p.add_argument("vm")
    p.add_argument("paths", nargs="+", metavar="PATH", help="Remote sources followed by the local destination")
    p.add_argument("--user")

    p = sub.add_parser("setuser", help="Record the SSH user of a VM")
    p.add_argument("vm")
    p.add_argument("user")

    p = sub.add_parser("config", help="Show the resolved settings")
    p.add_argument("--init", action="store_true", help="Write a commented default settings file")

    return parser


def _split_transfer(paths: List[str]) -> tuple:
    if len(paths) < 2:
        raise ManagerError("Give at least one source and a destination")
    return paths[:-1], paths[-1]


def dispatch(args: argparse.Namespace, manager: VMManager) -> int:
    cmd = args.command

    if cmd == "clone":
        manager.clone(
            args.base,
            args.name,
            user=args.user,
            memory_mb=args.memory,
            cpus=args.cpus,
            os_variant=args.os_variant,
            network=args.network,
        )
        return 0

    if cmd == "list":
        print_vm_table(manager.list_vms(include_inactive=not args.running))
        return 0

    if cmd == "shell":
        return manager.session(args.vm, args.user).shell(_strip_separator(args.remote_command))

    if cmd == "sshkeys":
        return manager.session(args.vm, args.user).copy_id(args.identity)

    if cmd == "start":
        manager.start(args.vm, args.timeout, force=args.force)
        return 0

    if cmd == "stop":
        manager.stop(args.vm, args.timeout, force=args.force)
        return 0

    if cmd == "stop-all":
        failed = manager.stop_all(args.timeout, force=args.force)
        if failed:
            log("ERROR", f"Failed to stop: {', '.join(failed)}")
            return 1
        return 0

    if cmd == "trash":
        if not args.yes:
            if not has_controlling_tty():
                raise ManagerError("Refusing to trash without a terminal; pass --yes")
            if not confirm(f"Delete {args.vm} and all of its storage?"):
                log("INFO", "Aborted")
                return 1
        manager.trash(args.vm)
        return 0

    if cmd == "ipaddr":
        print(manager.ipaddr(args.vm, wait=args.wait))
        return 0

    if cmd == "virsh":
        return manager.virsh.passthrough(args.virsh_args)

    if cmd == "view":
        return manager.view(args.vm)

    if cmd == "push":
        sources, destination = _split_transfer(args.paths)
        return manager.session(args.vm, args.user).push(sources, destination)

    if cmd == "pull":
        sources, destination = _split_transfer(args.paths)
        return manager.session(args.vm, args.user).pull(sources, destination)

    if cmd == "setuser":
        manager.set_user(args.vm, args.user)
        return 0

    raise ManagerError(f"Unknown command: {cmd}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    # Options meant for virsh itself (virsh -r list) are unknown to argparse.
    args, extra = parser.parse_known_args(argv)
    if args.command == "virsh":
        args.virsh_args = extra + _strip_separator(args.virsh_args)
    elif extra:
        parser.error(f"unrecognized arguments: {' '.join(extra)}")
    if args.verbose:
        set_verbose(True)

    try:
        settings_path = resolve_settings_path(args.settings)
        if args.command == "config" and args.init:
            write_default_settings(settings_path)
            return 0
        settings = load_settings(settings_path, connect=args.connect)
        if args.command == "config":
            show_config(settings, settings_path)
            return 0
        return dispatch(args, VMManager(settings))
    except ManagerError as exc:
        log("ERROR", str(exc))
        return 1
    except KeyboardInterrupt:
        log("WARN", "Interrupted")
        return 130
