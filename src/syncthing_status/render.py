"""Turn a ``SyncState`` into the bar's ``{text, tooltip, class}`` summary.

``render`` is pure (the current time is a parameter).  ``Renderer`` is the
debounced task that calls it: the driver ``submit``s every new state into a
single slot, and the task renders the newest one after a short quiet
period, or on the idle tick so that "last seen" ages stay fresh.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

from syncthing_status.formatters import fmt, format_age, format_bytes, truncate
from syncthing_status.models import Device, Folder, Status, SyncState
from syncthing_status.sink import Sink

logger = logging.getLogger(__name__)


class Summary(BaseModel):
    model_config = ConfigDict(frozen=True)
    text: str
    tooltip: str = ""
    css_class: Status

    def to_json(self) -> str:
        return fmt({"text": self.text, "tooltip": self.tooltip, "class": self.css_class})


UNKNOWN = Summary(text="?", tooltip="Syncthing status unavailable", css_class="unknown")


# ---------------------------------------------------------------------------
#  Pure rendering
# ---------------------------------------------------------------------------


def _folder_line(folder: Folder) -> str:
    if folder.paused:
        return f"{folder.name}: paused"
    line = f"{folder.name}: {folder.state}"
    if folder.items_remaining:
        line += f", {folder.items_remaining} items"
        if folder.need_bytes:
            line += f" ({format_bytes(folder.need_bytes)})"
    if folder.error:
        line += f" - {folder.error}"
    return line


def _device_line(device: Device, now: datetime) -> str:
    if device.connectivity != "disconnected":
        return f"{device.name}: {device.connectivity}"
    if device.last_seen is None:
        return f"{device.name}: disconnected"
    age = format_age((now - device.last_seen).total_seconds())
    return f"{device.name}: disconnected, last seen {age}"


def _upload_lines(state: SyncState) -> list[str]:
    lines = []
    for device in sorted(state.devices.values(), key=lambda d: d.name.lower()):
        for folder_id, comp in sorted(device.completions.items()):
            folder = state.folders.get(folder_id)
            label = folder.name if folder else folder_id
            lines.append(
                f"{device.name} <- {label} ({comp.percent:.0f}%, {format_bytes(comp.need_bytes)})"
            )
    return lines


def _tooltip(state: SyncState, now: datetime) -> str:
    sections = []
    if state.link_detail:
        sections.append([f"Syncthing {state.link_detail}"])
    folders = sorted(state.folders.values(), key=lambda f: f.name.lower())
    if folders:
        sections.append(["Folders:"] + [f"  {_folder_line(f)}" for f in folders])
    devices = sorted(state.devices.values(), key=lambda d: d.name.lower())
    if devices:
        sections.append(["Devices:"] + [f"  {_device_line(d, now)}" for d in devices])
    uploads = _upload_lines(state)
    if uploads:
        sections.append(["Remote sync:"] + [f"  {line}" for line in uploads])
    return truncate("\n\n".join("\n".join(s) for s in sections))


def _pending(state: SyncState) -> list[str]:
    """Remote progress as short ``40%/12.0 MB`` entries for the bar text."""
    return [
        f"{comp.percent:.0f}%/{format_bytes(comp.need_bytes)}"
        for device in sorted(state.devices.values(), key=lambda d: d.name.lower())
        for _, comp in sorted(device.completions.items())
    ]


def _text(state: SyncState, status: Status) -> str:
    if status == "ok":
        return " · ".join(["Synced", *_pending(state)])
    if status == "error":
        if state.link == "auth_failed":
            return "Auth error"
        failing = sum(1 for f in state.folders.values() if f.state == "error" and not f.paused)
        return f"Error ({failing})" if failing > 1 else "Error"
    if status == "disconnected":
        if state.link == "down":
            return "Offline"
        return "Disconnected"
    busy = [
        f
        for f in state.folders.values()
        if not f.paused and f.state in ("syncing", "scanning")
    ]
    items = sum(f.items_remaining for f in busy)
    if not items:
        return "Scanning" if all(f.state == "scanning" for f in busy) else "Syncing"
    need = sum(f.need_bytes for f in busy)
    return f"Syncing {items} ({format_bytes(need)})" if need else f"Syncing {items}"


def render(state: SyncState, now: datetime) -> Summary:
    """Render ``state`` as seen at ``now``."""
    status = state.status
    return Summary(
        text=_text(state, status),
        tooltip=_tooltip(state, now),
        css_class=status,
    )


def safe_render(state: SyncState, now: datetime) -> Summary:
    """``render`` that degrades to the ``unknown`` summary instead of raising."""
    try:
        return render(state, now)
    except Exception:
        logger.exception("Rendering failed; showing unknown status")
        return UNKNOWN


# ---------------------------------------------------------------------------
#  Debounced render task
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Renderer:
    """Coalesce submitted states and write each distinct summary once.

    Args:
        sink: Destination for rendered lines.
        debounce: Quiet period after a submit before rendering, seconds.
        idle_tick: Re-render interval when nothing is submitted, seconds.
        clock: Returns the current aware ``datetime``.
    """

    def __init__(
        self,
        sink: Sink,
        *,
        debounce: float = 0.25,
        idle_tick: float = 5.0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.sink = sink
        self.debounce = debounce
        self.idle_tick = idle_tick
        self._clock = clock
        self._latest: SyncState | None = None
        self._dirty = asyncio.Event()
        self._last_line: str | None = None

    def submit(self, state: SyncState) -> None:
        """Replace the pending state; older unrendered states are dropped."""
        self._latest = state
        self._dirty.set()

    async def run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._dirty.wait(), timeout=self.idle_tick)
            except asyncio.TimeoutError:
                pass
            else:
                await asyncio.sleep(self.debounce)
            self._dirty.clear()
            self.flush()

    def flush(self) -> None:
        """Render the newest state now; raises ``OutputFailed`` from the sink."""
        if self._latest is None:
            return
        line = safe_render(self._latest, self._clock()).to_json()
        if line == self._last_line:
            return
        self.sink.write(line)
        self._last_line = line
