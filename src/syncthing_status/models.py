"""Pydantic models for the aggregated Syncthing state.

Every model is frozen; the reducer builds a new ``SyncState`` for each
transition.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from syncthing_status.formatters import short_id

FolderState = Literal["idle", "scanning", "syncing", "error", "unknown"]
Connectivity = Literal["connected", "disconnected", "paused"]
Link = Literal["up", "down", "auth_failed"]
Status = Literal["ok", "syncing", "error", "disconnected", "unknown"]


# Syncthing reports a richer set of folder states than the bar cares about.
_STATE_MAP: dict[str, FolderState] = {
    "idle": "idle",
    "scanning": "scanning",
    "scan-waiting": "scanning",
    "syncing": "syncing",
    "sync-waiting": "syncing",
    "sync-preparing": "syncing",
    "cleaning": "syncing",
    "clean-waiting": "syncing",
    "error": "error",
}


def normalize_state(raw: str | None) -> FolderState:
    """Map a daemon folder state onto the five states the bar knows about."""
    return _STATE_MAP.get((raw or "").strip().lower(), "unknown")


# ---------------------------------------------------------------------------
#  Entities
# ---------------------------------------------------------------------------


class Folder(BaseModel):
    """A configured folder and its local sync progress."""

    model_config = ConfigDict(frozen=True)
    id: str
    label: str = ""
    state: FolderState = "unknown"
    items_remaining: int = 0
    need_bytes: int = 0
    error: str | None = None
    paused: bool = False

    @property
    def name(self) -> str:
        return self.label or self.id


class Completion(BaseModel):
    """A remote device's progress on one shared folder."""

    model_config = ConfigDict(frozen=True)
    percent: float
    need_bytes: int = 0
    need_items: int = 0


class Device(BaseModel):
    """A remote device and its connectivity."""

    model_config = ConfigDict(frozen=True)
    id: str
    label: str = ""
    connectivity: Connectivity = "disconnected"
    last_seen: datetime | None = None
    expected: bool = True
    completions: dict[str, Completion] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.label or short_id(self.id)


class SyncState(BaseModel):
    """Aggregate snapshot of everything the status bar shows.

    ``link`` is the effect of the driver's connection state: ``down`` while
    the daemon cannot be reached (including before the first bootstrap) and
    ``auth_failed`` while the API key is being rejected.
    """

    model_config = ConfigDict(frozen=True)
    folders: dict[str, Folder] = Field(default_factory=dict)
    devices: dict[str, Device] = Field(default_factory=dict)
    last_event_id: int = 0
    link: Link = "down"
    link_detail: str | None = "connecting"

    @property
    def status(self) -> Status:
        return derive_status(self)


# ---------------------------------------------------------------------------
#  Derived status
# ---------------------------------------------------------------------------


def derive_status(state: SyncState) -> Status:
    """Overall status; the first matching rule wins.

    Link failures come first because nothing else in the state can be
    trusted while the daemon is out of reach.  After that, errors outrank
    missing devices, which outrank sync in progress.
    """
    if state.link == "auth_failed":
        return "error"
    if state.link == "down":
        return "disconnected"
    active = [f for f in state.folders.values() if not f.paused]
    if any(f.state == "error" for f in active):
        return "error"
    if any(d.expected and d.connectivity == "disconnected" for d in state.devices.values()):
        return "disconnected"
    if any(f.state in ("syncing", "scanning") for f in active):
        return "syncing"
    return "ok"
