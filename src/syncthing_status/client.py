"""HTTP client for the Syncthing REST API."""

import logging
from collections.abc import Collection
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from syncthing_status.errors import ApiError, AuthFailed, Malformed, Unreachable
from syncthing_status.events import EVENT_FILTER, Event, parse_event
from syncthing_status.formatters import parse_time
from syncthing_status.models import (
    Completion,
    Connectivity,
    Device,
    Folder,
    SyncState,
    normalize_state,
)

logger = logging.getLogger(__name__)

# Extra read time on top of the server-side long-poll window.
POLL_GRACE = 10.0


# ---------------------------------------------------------------------------
#  Snapshot wire models
# ---------------------------------------------------------------------------


class _Wire(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _SystemStatus(_Wire):
    my_id: str = Field(..., alias="myID")


class _FolderDevice(_Wire):
    device_id: str = Field(..., alias="deviceID")


class _ConfigFolder(_Wire):
    id: str
    label: str = ""
    paused: bool = False
    devices: list[_FolderDevice] = []


class _ConfigDevice(_Wire):
    device_id: str = Field(..., alias="deviceID")
    name: str = ""
    paused: bool = False


class _Config(_Wire):
    folders: list[_ConfigFolder]
    devices: list[_ConfigDevice]


class _Connection(_Wire):
    connected: bool = False
    paused: bool = False


class _Connections(_Wire):
    connections: dict[str, _Connection]


class _DeviceStats(_Wire):
    last_seen: str | None = Field(None, alias="lastSeen")


class _DbStatus(_Wire):
    state: str
    need_total_items: int | None = Field(None, alias="needTotalItems")
    need_files: int = Field(0, alias="needFiles")
    need_bytes: int = Field(0, alias="needBytes")
    error: str | None = None


class _Completion(_Wire):
    completion: float = 100.0
    need_bytes: int = Field(0, alias="needBytes")
    need_items: int = Field(0, alias="needItems")


def _connectivity(conn: _Connection | None) -> Connectivity:
    if conn is None:
        return "disconnected"
    if conn.paused:
        return "paused"
    return "connected" if conn.connected else "disconnected"


# ---------------------------------------------------------------------------
#  Client
# ---------------------------------------------------------------------------


class SyncthingClient:
    """HTTP client for a single Syncthing instance."""

    def __init__(self, url: str, api_key: str, timeout: float = 30.0) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-Key": self.api_key,
            "Accept": "application/json",
        }

    async def _get(
        self,
        path: str,
        params: dict | None = None,
        timeout: httpx.Timeout | float | None = None,
    ) -> Any:
        """Authenticated GET against this instance, with errors translated."""
        try:
            async with httpx.AsyncClient(timeout=timeout or self.timeout) as client:
                resp = await client.get(
                    f"{self.url}{path}",
                    headers=self._headers(),
                    params=params,
                )
                resp.raise_for_status()
                return resp.json()
        except Exception as e:
            raise self.translate_error(e) from e

    def translate_error(self, e: Exception) -> ApiError:
        """Map a transport/decoding failure onto the client error taxonomy."""
        if isinstance(e, ApiError):
            return e
        if isinstance(e, httpx.HTTPStatusError):
            status = e.response.status_code
            if status == 401:
                return AuthFailed("Error 401: Unauthorized. Check the Syncthing API key.")
            if status == 403:
                return AuthFailed("Error 403: Forbidden. API key may be wrong or lack permissions.")
            return Unreachable(f"Error {status}: {e.response.text}")
        if isinstance(e, httpx.ConnectError):
            return Unreachable(f"Cannot connect to Syncthing at {self.url}. Is it running?")
        if isinstance(e, httpx.TimeoutException):
            return Unreachable("Request timed out. Syncthing may be busy or unreachable.")
        if isinstance(e, httpx.TransportError):
            return Unreachable(f"{type(e).__name__}: {e}")
        if isinstance(e, ValueError):
            # json.JSONDecodeError and pydantic.ValidationError both land here.
            return Malformed(f"Unexpected response: {type(e).__name__}: {e}")
        return Unreachable(f"{type(e).__name__}: {e}")

    # -- snapshot -----------------------------------------------------------

    async def latest_event_id(self) -> int:
        """Id of the most recent event in the filtered stream, 0 when empty."""
        events = await self._get(
            "/rest/events",
            params={"since": 0, "limit": 1, "timeout": 0, "events": EVENT_FILTER},
        )
        if not isinstance(events, list):
            raise Malformed("Event list expected from /rest/events")
        ids = [e.get("id") for e in events if isinstance(e, dict)]
        ids = [i for i in ids if isinstance(i, int)]
        return max(ids, default=0)

    async def fetch_snapshot(
        self, expected_devices: Collection[str] | None = None
    ) -> tuple[SyncState, int]:
        """Full-state bootstrap.

        The event id is read first, so any change racing the snapshot is
        replayed by the next poll rather than lost.
        Connected devices also report their progress on each shared
        folder, so remote completion survives a resync.

        Args:
            expected_devices: Device IDs or names that should be online.
                ``None`` means every unpaused remote device.

        Returns:
            tuple: The fresh ``SyncState`` (link up) and its event id.
        """
        event_id = await self.latest_event_id()
        try:
            status = _SystemStatus.model_validate(await self._get("/rest/system/status"))
            config = _Config.model_validate(await self._get("/rest/config"))
            connections = _Connections.model_validate(
                await self._get("/rest/system/connections")
            )
            stats_raw = await self._get("/rest/stats/device")
            if not isinstance(stats_raw, dict):
                raise Malformed("Object expected from /rest/stats/device")
            stats = {
                did: _DeviceStats.model_validate(v)
                for did, v in stats_raw.items()
                if isinstance(v, dict)
            }

            folders: dict[str, Folder] = {}
            for cfg in config.folders:
                folders[cfg.id] = await self._folder(cfg)

            connectivity: dict[str, Connectivity] = {
                cfg.device_id: "paused" if cfg.paused else _connectivity(
                    connections.connections.get(cfg.device_id)
                )
                for cfg in config.devices
                if cfg.device_id != status.my_id
            }
            completions: dict[str, dict[str, Completion]] = {did: {} for did in connectivity}
            for cfg in config.folders:
                if cfg.paused:
                    continue
                for shared in cfg.devices:
                    if connectivity.get(shared.device_id) != "connected":
                        continue
                    comp = await self._completion(cfg.id, shared.device_id)
                    if comp is not None:
                        completions[shared.device_id][cfg.id] = comp
        except ValidationError as e:
            raise Malformed(f"Unexpected snapshot payload: {e.error_count()} error(s)") from e

        wanted = set(expected_devices) if expected_devices else None
        devices: dict[str, Device] = {}
        for cfg in config.devices:
            if cfg.device_id == status.my_id:
                continue
            stat = stats.get(cfg.device_id)
            devices[cfg.device_id] = Device(
                id=cfg.device_id,
                label=cfg.name,
                connectivity=connectivity[cfg.device_id],
                last_seen=parse_time(stat.last_seen) if stat else None,
                expected=not cfg.paused and (
                    wanted is None or cfg.device_id in wanted or cfg.name in wanted
                ),
                completions=completions[cfg.device_id],
            )

        state = SyncState(
            folders=folders,
            devices=devices,
            last_event_id=event_id,
            link="up",
            link_detail=None,
        )
        logger.debug(
            "Snapshot at event %d: %d folder(s), %d device(s)",
            event_id,
            len(folders),
            len(devices),
        )
        return state, event_id

    async def _folder(self, cfg: _ConfigFolder) -> Folder:
        if cfg.paused:
            return Folder(id=cfg.id, label=cfg.label, state="idle", paused=True)
        db = _DbStatus.model_validate(
            await self._get("/rest/db/status", params={"folder": cfg.id})
        )
        state = normalize_state(db.state)
        return Folder(
            id=cfg.id,
            label=cfg.label,
            state=state,
            items_remaining=db.need_total_items if db.need_total_items is not None else db.need_files,
            need_bytes=db.need_bytes,
            error=(db.error or None) if state == "error" else None,
        )

    async def _completion(self, folder_id: str, device_id: str) -> Completion | None:
        """A remote device's progress on a shared folder, ``None`` once complete."""
        comp = _Completion.model_validate(
            await self._get(
                "/rest/db/completion",
                params={"folder": folder_id, "device": device_id},
            )
        )
        if comp.completion >= 100:
            return None
        return Completion(
            percent=comp.completion,
            need_bytes=comp.need_bytes,
            need_items=comp.need_items,
        )

    # -- events -------------------------------------------------------------

    async def poll_events(self, since: int, timeout: float) -> list[Event]:
        """Long-poll for events after ``since``.

        Returns an empty list when the server-side window elapses without
        news.  Entries without a usable id/type are logged and dropped.
        """
        body = await self._get(
            "/rest/events",
            params={"since": since, "timeout": max(1, int(timeout)), "events": EVENT_FILTER},
            timeout=httpx.Timeout(self.timeout, read=timeout + POLL_GRACE),
        )
        if not isinstance(body, list):
            raise Malformed("Event list expected from /rest/events")
        events: list[Event] = []
        for entry in body:
            try:
                events.append(parse_event(entry))
            except Malformed as e:
                logger.warning("Dropping event: %s", e)
        events.sort(key=lambda e: e.id)
        return events
