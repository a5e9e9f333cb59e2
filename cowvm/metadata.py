"""Per-VM config strings and the stores that persist them.

A config string is a flat, ordered ``key=value,key=value`` list. cowvm keeps
one per VM to remember the SSH user and the base/clone relationship. It is
stored either on a tagged line of the libvirt domain description or in a
sidecar file, depending on the connection in use.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple

from cowvm.constants import (
    CONFIG_KEY_RE,
    DESCRIPTION_TAG,
    SIDECAR_SUFFIX,
    SYSTEM_URI,
)
from cowvm.exceptions import ConfigStringError, ManagerError
from cowvm.models import Settings
from cowvm.utils import ensure_directory, log


class ConfigString:
    """Ordered key/value pairs with a ``k=v,k=v`` text form."""

    def __init__(self, pairs: Optional[Dict[str, str]] = None) -> None:
        self._pairs: Dict[str, str] = {}
        for key, value in (pairs or {}).items():
            self.set(key, value)

    @classmethod
    def parse(cls, text: str) -> "ConfigString":
        cfg = cls()
        for segment in (text or "").split(","):
            segment = segment.strip()
            if not segment:
                continue
            key, _, value = segment.partition("=")
            cfg._pairs[key.strip()] = value.strip()
        return cfg

    def serialize(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self._pairs.items())

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._pairs.get(key, default)

    def set(self, key: str, value: str) -> None:
        if not CONFIG_KEY_RE.match(key or ""):
            raise ConfigStringError(f"Invalid config key '{key}'")
        value = str(value)
        if any(ch in value for ch in ",=\n\r"):
            raise ConfigStringError(f"Value for '{key}' must not contain ',', '=' or newlines")
        # dict assignment keeps an existing key in place and appends a new one
        self._pairs[key] = value

    def unset(self, key: str) -> bool:
        return self._pairs.pop(key, None) is not None

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._pairs.items()))

    def __contains__(self, key: object) -> bool:
        return key in self._pairs

    def __len__(self) -> int:
        return len(self._pairs)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ConfigString):
            return NotImplemented
        return list(self._pairs.items()) == list(other._pairs.items())

    def __repr__(self) -> str:
        return f"ConfigString({self.serialize()!r})"


def extract_from_description(description: str) -> ConfigString:
    for line in (description or "").splitlines():
        if line.startswith(DESCRIPTION_TAG):
            return ConfigString.parse(line[len(DESCRIPTION_TAG):])
    return ConfigString()


def embed_in_description(description: str, cfg: ConfigString) -> str:
    """Replace (or add) the tagged config line, leaving other text untouched."""
    lines = [line for line in (description or "").splitlines() if not line.startswith(DESCRIPTION_TAG)]
    if len(cfg):
        lines.append(f"{DESCRIPTION_TAG}{cfg.serialize()}")
    return "\n".join(lines)


class MetadataStore:
    """Common get/set behaviour on top of a load/save backend."""

    def load(self, vm: str) -> ConfigString:
        raise NotImplementedError

    def save(self, vm: str, cfg: ConfigString) -> None:
        raise NotImplementedError

    def remove(self, vm: str) -> None:
        raise NotImplementedError

    def get(self, vm: str, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.load(vm).get(key, default)

    def set(self, vm: str, key: str, value: str) -> None:
        cfg = self.load(vm)
        cfg.set(key, value)
        self.save(vm, cfg)

    def unset(self, vm: str, key: str) -> None:
        cfg = self.load(vm)
        if cfg.unset(key):
            self.save(vm, cfg)


class DescriptionStore(MetadataStore):
    """Keeps the config string on a tagged line of the domain description."""

    def __init__(self, virsh) -> None:
        self.virsh = virsh

    def load(self, vm: str) -> ConfigString:
        try:
            description = self.virsh.get_description(vm)
        except ManagerError as exc:
            log("DEBUG", f"Could not read description of {vm}: {exc}")
            return ConfigString()
        return extract_from_description(description)

    def save(self, vm: str, cfg: ConfigString) -> None:
        current = self.virsh.get_description(vm)
        self.virsh.set_description(vm, embed_in_description(current, cfg))

    def remove(self, vm: str) -> None:
        # The description goes away with the domain definition.
        return None


class FileStore(MetadataStore):
    """Keeps the config string in ``<state_dir>/<vm>.conf``."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir

    def path_for(self, vm: str) -> Path:
        if not vm or "/" in vm or vm in {".", ".."}:
            raise ManagerError(f"Invalid VM name for a sidecar file: '{vm}'")
        return self.state_dir / f"{vm}{SIDECAR_SUFFIX}"

    def load(self, vm: str) -> ConfigString:
        path = self.path_for(vm)
        if not path.exists():
            return ConfigString()
        return ConfigString.parse(path.read_text().strip())

    def save(self, vm: str, cfg: ConfigString) -> None:
        ensure_directory(self.state_dir)
        self.path_for(vm).write_text(cfg.serialize() + "\n")

    def remove(self, vm: str) -> None:
        self.path_for(vm).unlink(missing_ok=True)


def open_store(settings: Settings, virsh) -> MetadataStore:
    """Pick the backing store for the active connection."""
    mode = settings.metadata_store
    if mode == "auto":
        mode = "description" if settings.connect == SYSTEM_URI else "file"
    if mode == "description":
        log("DEBUG", "Using domain descriptions for VM metadata")
        return DescriptionStore(virsh)
    log("DEBUG", f"Using sidecar files under {settings.state_dir} for VM metadata")
    return FileStore(settings.state_dir)
