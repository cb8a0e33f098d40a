"""Typed Syncthing events and a tolerant parser for ``/rest/events`` entries.

Each event the reducer understands has its own class.  Anything else
(including a known type whose payload fails validation) becomes an
``UnknownEvent`` so that its id still advances the watermark.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from syncthing_status.errors import Malformed
from syncthing_status.formatters import parse_time
from syncthing_status.models import FolderState, normalize_state

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Event variants
# ---------------------------------------------------------------------------


class Event(BaseModel):
    model_config = ConfigDict(frozen=True)
    id: int
    type: str
    time: datetime | None = None


class FolderSummary(Event):
    folder: str
    state: FolderState
    items_remaining: int
    need_bytes: int = 0


class FolderErrors(Event):
    folder: str
    errors: tuple[str, ...] = ()


class FolderCompletion(Event):
    folder: str
    device: str
    completion: float
    need_bytes: int = 0
    need_items: int = 0


class StateChanged(Event):
    folder: str
    state: FolderState


class FolderPaused(Event):
    folder: str


class FolderResumed(Event):
    folder: str


class DeviceConnected(Event):
    device: str


class DeviceDisconnected(Event):
    device: str
    error: str | None = None


class DevicePaused(Event):
    device: str


class DeviceResumed(Event):
    device: str


class ConfigSaved(Event):
    """The daemon configuration changed; folders or devices may have come or gone."""


class UnknownEvent(Event):
    """Any event type the reducer does not act on."""


# ---------------------------------------------------------------------------
#  Wire models (unknown fields ignored, missing required fields rejected)
# ---------------------------------------------------------------------------


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Envelope(_Wire):
    id: int
    type: str
    time: str | None = None
    data: Any = None


class _SummaryBody(_Wire):
    state: str
    need_total_items: int | None = Field(None, alias="needTotalItems")
    need_files: int = Field(0, alias="needFiles")
    need_bytes: int = Field(0, alias="needBytes")


class _FolderSummaryData(_Wire):
    folder: str
    summary: _SummaryBody


class _FolderError(_Wire):
    error: str
    path: str = ""


class _FolderErrorsData(_Wire):
    folder: str
    errors: list[_FolderError] | None = None


class _FolderCompletionData(_Wire):
    folder: str
    device: str
    completion: float
    need_bytes: int = Field(0, alias="needBytes")
    need_items: int = Field(0, alias="needItems")


class _StateChangedData(_Wire):
    folder: str
    to: str


class _FolderIdData(_Wire):
    id: str


class _DeviceIdData(_Wire):
    id: str
    error: str | None = None


class _DeviceData(_Wire):
    device: str


# ---------------------------------------------------------------------------
#  Per-type builders
# ---------------------------------------------------------------------------


def _base(env: _Envelope) -> dict[str, Any]:
    return {"id": env.id, "type": env.type, "time": parse_time(env.time)}


def _folder_summary(env: _Envelope) -> Event:
    data = _FolderSummaryData.model_validate(env.data)
    body = data.summary
    remaining = body.need_total_items if body.need_total_items is not None else body.need_files
    return FolderSummary(
        **_base(env),
        folder=data.folder,
        state=normalize_state(body.state),
        items_remaining=remaining,
        need_bytes=body.need_bytes,
    )


def _folder_errors(env: _Envelope) -> Event:
    data = _FolderErrorsData.model_validate(env.data)
    messages = tuple(
        f"{e.path}: {e.error}" if e.path else e.error for e in data.errors or []
    )
    return FolderErrors(**_base(env), folder=data.folder, errors=messages)


def _folder_completion(env: _Envelope) -> Event:
    data = _FolderCompletionData.model_validate(env.data)
    return FolderCompletion(
        **_base(env),
        folder=data.folder,
        device=data.device,
        completion=data.completion,
        need_bytes=data.need_bytes,
        need_items=data.need_items,
    )


def _state_changed(env: _Envelope) -> Event:
    data = _StateChangedData.model_validate(env.data)
    return StateChanged(**_base(env), folder=data.folder, state=normalize_state(data.to))


def _folder_paused(env: _Envelope) -> Event:
    return FolderPaused(**_base(env), folder=_FolderIdData.model_validate(env.data).id)


def _folder_resumed(env: _Envelope) -> Event:
    return FolderResumed(**_base(env), folder=_FolderIdData.model_validate(env.data).id)


def _device_connected(env: _Envelope) -> Event:
    return DeviceConnected(**_base(env), device=_DeviceIdData.model_validate(env.data).id)


def _device_disconnected(env: _Envelope) -> Event:
    data = _DeviceIdData.model_validate(env.data)
    return DeviceDisconnected(**_base(env), device=data.id, error=data.error)


def _device_paused(env: _Envelope) -> Event:
    return DevicePaused(**_base(env), device=_DeviceData.model_validate(env.data).device)


def _device_resumed(env: _Envelope) -> Event:
    return DeviceResumed(**_base(env), device=_DeviceData.model_validate(env.data).device)


def _config_saved(env: _Envelope) -> Event:
    return ConfigSaved(**_base(env))


_PARSERS: dict[str, Callable[[_Envelope], Event]] = {
    "FolderSummary": _folder_summary,
    "FolderErrors": _folder_errors,
    "FolderCompletion": _folder_completion,
    "StateChanged": _state_changed,
    "FolderPaused": _folder_paused,
    "FolderResumed": _folder_resumed,
    "DeviceConnected": _device_connected,
    "DeviceDisconnected": _device_disconnected,
    "DevicePaused": _device_paused,
    "DeviceResumed": _device_resumed,
    "ConfigSaved": _config_saved,
}

# Value for the ``events`` query parameter; the snapshot and the long-poll
# must use the same filter so that their ids come from one sequence.
EVENT_FILTER = ",".join(_PARSERS)


def parse_event(entry: Any) -> Event:
    """Turn one raw ``/rest/events`` entry into a typed event.

    Raises ``Malformed`` only when the entry has no usable ``id``.  A broken
    envelope with a readable id, or a bad payload for a known type, degrades
    to ``UnknownEvent`` so the id sequence stays gap-free.
    """
    try:
        env = _Envelope.model_validate(entry)
    except ValidationError as exc:
        event_id = entry.get("id") if isinstance(entry, dict) else None
        if not isinstance(event_id, int) or isinstance(event_id, bool):
            raise Malformed(f"Event without a usable id: {exc.error_count()} error(s)") from exc
        logger.warning(
            "Skipping malformed event %d (%d validation error(s))",
            event_id,
            exc.error_count(),
        )
        return UnknownEvent(id=event_id, type=str(entry.get("type") or ""))

    parser = _PARSERS.get(env.type)
    if parser is None:
        return UnknownEvent(**_base(env))
    try:
        return parser(env)
    except ValidationError as exc:
        logger.warning(
            "Skipping malformed %s event %d (%d validation error(s))",
            env.type,
            env.id,
            exc.error_count(),
        )
        return UnknownEvent(**_base(env))
