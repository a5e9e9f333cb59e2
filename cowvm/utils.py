"""Utility functions for cowvm."""

from __future__ import annotations

import os
import shlex
import socket
import subprocess
import sys
from pathlib import Path
from typing import List, Optional

from cowvm.constants import _LOG_VERBOSE
from cowvm.exceptions import CommandError, ManagerError

_verbose = _LOG_VERBOSE


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def log(level: str, message: str) -> None:
    """Lightweight structured logging; WARN and ERROR go to stderr."""
    if level == "DEBUG" and not _verbose:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level in {"WARN", "ERROR"} else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def parse_int_value(name: str, raw, min_val: int = 1, max_val: Optional[int] = None) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ManagerError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ManagerError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ManagerError(f"{name} must be <= {max_val} (got {value})")
    return value


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def confirm(prompt: str) -> bool:
    """Ask a yes/no question on the terminal; anything but y/yes is a no."""
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


def tcp_port_open(host: str, port: int, timeout: float = 1.0) -> bool:
    """Probe whether host:port accepts TCP connections."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


def run(cmd: List[str], check: bool = True, capture: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run an external tool with logging.

    With ``capture`` the child's stdout/stderr are collected as text; without
    it the child inherits the terminal (ssh, virt-viewer, rsync progress).
    A nonzero exit raises :class:`CommandError` when ``check`` is set.
    """
    log("DEBUG", f"Running: {shlex.join(cmd)}")
    if capture:
        kwargs.setdefault("capture_output", True)
    try:
        result = subprocess.run(cmd, check=False, text=True, **kwargs)
    except FileNotFoundError:
        raise ManagerError(f"{cmd[0]} not found; is it installed and on PATH?")
    if check and result.returncode != 0:
        raise CommandError(cmd, result.returncode, result.stderr if capture else None)
    return result
