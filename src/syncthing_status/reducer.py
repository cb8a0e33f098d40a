"""Pure event reducer: ``apply(state, event) -> state``.

No I/O and no clock reads: device ``last_seen`` comes from the event's own
timestamp, so replaying a sequence always yields the same state.
"""

from collections.abc import Callable, Iterable

from syncthing_status.events import (
    ConfigSaved,
    DeviceConnected,
    DeviceDisconnected,
    DevicePaused,
    DeviceResumed,
    Event,
    FolderCompletion,
    FolderErrors,
    FolderPaused,
    FolderResumed,
    FolderSummary,
    StateChanged,
)
from syncthing_status.models import Completion, Device, Folder, Link, SyncState


def _with_folder(state: SyncState, folder: Folder) -> SyncState:
    return state.model_copy(update={"folders": {**state.folders, folder.id: folder}})


def _with_device(state: SyncState, device: Device) -> SyncState:
    return state.model_copy(update={"devices": {**state.devices, device.id: device}})


def _folder(state: SyncState, folder_id: str) -> Folder:
    # Unknown folders are tracked anyway; the driver resyncs to learn their labels.
    return state.folders.get(folder_id) or Folder(id=folder_id)


def _device(state: SyncState, device_id: str) -> Device:
    return state.devices.get(device_id) or Device(id=device_id)


# ---------------------------------------------------------------------------
#  Folder events
# ---------------------------------------------------------------------------


def _folder_summary(state: SyncState, event: FolderSummary) -> SyncState:
    folder = _folder(state, event.folder)
    return _with_folder(
        state,
        folder.model_copy(
            update={
                "state": event.state,
                "items_remaining": event.items_remaining,
                "need_bytes": event.need_bytes,
                "error": folder.error if event.state == "error" else None,
            }
        ),
    )


def _folder_errors(state: SyncState, event: FolderErrors) -> SyncState:
    folder = _folder(state, event.folder)
    if event.errors:
        update = {"state": "error", "error": event.errors[0]}
    elif folder.state == "error":
        update = {"state": "idle" if folder.items_remaining == 0 else "syncing", "error": None}
    else:
        update = {"error": None}
    return _with_folder(state, folder.model_copy(update=update))


def _folder_completion(state: SyncState, event: FolderCompletion) -> SyncState:
    device = _device(state, event.device)
    completions = dict(device.completions)
    if event.completion >= 100:
        completions.pop(event.folder, None)
    else:
        completions[event.folder] = Completion(
            percent=event.completion,
            need_bytes=event.need_bytes,
            need_items=event.need_items,
        )
    state = _with_device(state, device.model_copy(update={"completions": completions}))

    folder = _folder(state, event.folder)
    if folder.items_remaining == 0 and folder.state != "error":
        state = _with_folder(state, folder.model_copy(update={"state": "idle"}))
    return state


def _state_changed(state: SyncState, event: StateChanged) -> SyncState:
    folder = _folder(state, event.folder)
    return _with_folder(state, folder.model_copy(update={"state": event.state}))


def _folder_paused(state: SyncState, event: FolderPaused) -> SyncState:
    folder = _folder(state, event.folder)
    return _with_folder(state, folder.model_copy(update={"paused": True}))


def _folder_resumed(state: SyncState, event: FolderResumed) -> SyncState:
    folder = _folder(state, event.folder)
    return _with_folder(state, folder.model_copy(update={"paused": False}))


# ---------------------------------------------------------------------------
#  Device events
# ---------------------------------------------------------------------------


def _device_connected(state: SyncState, event: DeviceConnected) -> SyncState:
    device = _device(state, event.device)
    update = {"connectivity": "connected"}
    if event.time is not None:
        update["last_seen"] = event.time
    return _with_device(state, device.model_copy(update=update))


def _device_disconnected(state: SyncState, event: DeviceDisconnected) -> SyncState:
    device = _device(state, event.device)
    update = {"connectivity": "disconnected", "completions": {}}
    if event.time is not None:
        update["last_seen"] = event.time
    return _with_device(state, device.model_copy(update=update))


def _device_paused(state: SyncState, event: DevicePaused) -> SyncState:
    device = _device(state, event.device)
    return _with_device(
        state, device.model_copy(update={"connectivity": "paused", "completions": {}})
    )


def _device_resumed(state: SyncState, event: DeviceResumed) -> SyncState:
    device = _device(state, event.device)
    return _with_device(state, device.model_copy(update={"connectivity": "disconnected"}))


_HANDLERS: dict[type[Event], Callable[[SyncState, Event], SyncState]] = {
    FolderSummary: _folder_summary,
    FolderErrors: _folder_errors,
    FolderCompletion: _folder_completion,
    StateChanged: _state_changed,
    FolderPaused: _folder_paused,
    FolderResumed: _folder_resumed,
    DeviceConnected: _device_connected,
    DeviceDisconnected: _device_disconnected,
    DevicePaused: _device_paused,
    DeviceResumed: _device_resumed,
}


# ---------------------------------------------------------------------------
#  Public API
# ---------------------------------------------------------------------------


def apply(state: SyncState, event: Event) -> SyncState:
    """Fold one event into the state.

    Unhandled event types (``ConfigSaved``, ``UnknownEvent``) leave folders
    and devices alone; every event advances ``last_event_id``.
    """
    handler = _HANDLERS.get(type(event))
    if handler is not None:
        state = handler(state, event)
    if event.id > state.last_event_id:
        state = state.model_copy(update={"last_event_id": event.id})
    return state


def apply_all(state: SyncState, events: Iterable[Event]) -> SyncState:
    for event in events:
        state = apply(state, event)
    return state


def requires_resync(state: SyncState, event: Event) -> bool:
    """Whether ``event`` means the current folder/device maps are out of date.

    Checked against the state *before* the event is applied.
    """
    if isinstance(event, ConfigSaved):
        return True
    folder_id = getattr(event, "folder", None)
    if folder_id is not None and folder_id not in state.folders:
        return True
    device_id = getattr(event, "device", None)
    if device_id is not None and device_id not in state.devices:
        return True
    return False


def mark_link(state: SyncState, link: Link, detail: str | None = None) -> SyncState:
    """Record the driver's connection effect on the state."""
    if state.link == link and state.link_detail == detail:
        return state
    return state.model_copy(update={"link": link, "link_detail": detail})
