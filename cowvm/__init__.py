"""cowvm package."""

__version__ = "0.1.0"

__all__ = [
    "cli",
    "config",
    "constants",
    "exceptions",
    "lifecycle",
    "manager",
    "metadata",
    "models",
    "remote",
    "utils",
    "virsh",
]
