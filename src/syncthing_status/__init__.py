"""Syncthing status: a live sync summary for waybar-style status bars."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("syncthing-status")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for editable installs / development
