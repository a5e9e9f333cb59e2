"""Settings file loading and environment overrides for cowvm."""

from __future__ import annotations

import dataclasses
import shlex
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from cowvm.constants import (
    ADDRESS_SOURCES,
    DEFAULT_SETTINGS_PATH,
    DEFAULT_SETTINGS_TEMPLATE,
    METADATA_STORES,
    TRANSFER_TOOLS,
)
from cowvm.exceptions import ManagerError
from cowvm.models import Settings
from cowvm.utils import ensure_directory, get_env, log, parse_int_value

_INT_LIMITS = {
    "memory_mb": (64, None),
    "cpus": (1, None),
    "start_timeout": (0, None),
    "stop_timeout": (0, None),
    "address_timeout": (0, None),
    "ssh_port": (1, 65535),
}


def resolve_settings_path(explicit: Optional[str] = None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    from_env = get_env("COWVM_SETTINGS")
    if from_env:
        return Path(from_env).expanduser()
    return DEFAULT_SETTINGS_PATH


def read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        log("DEBUG", f"Settings file {path} not found; using defaults")
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ManagerError(f"Invalid YAML in {path}: {exc}")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ManagerError(f"{path} must contain a mapping of settings")
    return data


def _choice(name: str, raw: Any, allowed) -> str:
    value = str(raw).strip().lower()
    if value not in allowed:
        options = ", ".join(sorted(allowed))
        raise ManagerError(f"{name} must be one of: {options} (got '{raw}')")
    return value


def _string_list(name: str, raw: Any) -> list:
    if isinstance(raw, str):
        return shlex.split(raw)
    if not isinstance(raw, list):
        raise ManagerError(f"{name} must be a list or a string")
    return [str(item) for item in raw]


def build_settings(data: Dict[str, Any]) -> Settings:
    """Validate a raw settings mapping into a :class:`Settings`."""
    known = {f.name for f in dataclasses.fields(Settings)}
    values: Dict[str, Any] = {}
    for key, raw in data.items():
        if key not in known:
            log("WARN", f"Ignoring unknown setting '{key}'")
            continue
        if raw is None:
            continue
        if key in _INT_LIMITS:
            min_val, max_val = _INT_LIMITS[key]
            values[key] = parse_int_value(key, raw, min_val=min_val, max_val=max_val)
        elif key == "metadata_store":
            values[key] = _choice(key, raw, METADATA_STORES)
        elif key == "transfer":
            values[key] = _choice(key, raw, TRANSFER_TOOLS)
        elif key == "address_sources":
            sources = [_choice(key, item, set(ADDRESS_SOURCES)) for item in _string_list(key, raw)]
            if not sources:
                raise ManagerError("address_sources must not be empty")
            values[key] = sources
        elif key == "ssh_options":
            values[key] = _string_list(key, raw)
        elif key == "state_dir":
            values[key] = Path(str(raw)).expanduser()
        else:
            values[key] = str(raw).strip()
    return Settings(**values)


def load_settings(path: Optional[Path] = None, connect: Optional[str] = None) -> Settings:
    """Load the settings file, then apply environment and CLI overrides."""
    if path is None:
        path = resolve_settings_path()
    data = read_settings_file(path)

    uri = get_env("COWVM_CONNECT") or get_env("LIBVIRT_URI")
    if uri:
        data["connect"] = uri
    state_dir = get_env("COWVM_STATE_DIR")
    if state_dir:
        data["state_dir"] = state_dir
    user = get_env("COWVM_USER")
    if user:
        data["default_user"] = user
    if connect:
        data["connect"] = connect

    return build_settings(data)


def write_default_settings(path: Path) -> Path:
    if path.exists():
        raise ManagerError(f"Settings file already exists: {path}")
    ensure_directory(path.parent)
    path.write_text(DEFAULT_SETTINGS_TEMPLATE)
    log("SUCCESS", f"Wrote default settings to {path}")
    return path
