"""Shared fixtures for syncthing-status tests."""

import io

import pytest
import respx

from syncthing_status.client import SyncthingClient
from syncthing_status.events import FolderSummary
from syncthing_status.models import Device, Folder, SyncState


# ---------------------------------------------------------------------------
# Common Syncthing API response fixtures
# ---------------------------------------------------------------------------

DEVICE_ID_LOCAL = "AAAAAAA-AAAAAAA-AAAAAAA-AAAAAAA-AAAAAAA-AAAAAAA-AAAAAAA-AAAAAAA"
DEVICE_ID_REMOTE = "BBBBBBB-BBBBBBB-BBBBBBB-BBBBBBB-BBBBBBB-BBBBBBB-BBBBBBB-BBBBBBB"
DEVICE_ID_REMOTE2 = "CCCCCCC-CCCCCCC-CCCCCCC-CCCCCCC-CCCCCCC-CCCCCCC-CCCCCCC-CCCCCCC"

FOLDER_ID = "docs"
API_KEY = "test-api-key-12345"
BASE_URL = "http://localhost:8384"


def make_config(
    *,
    folders: list | None = None,
    devices: list | None = None,
) -> dict:
    """Build a minimal Syncthing config response."""
    if devices is None:
        devices = [
            {"deviceID": DEVICE_ID_LOCAL, "name": "local-dev"},
            {"deviceID": DEVICE_ID_REMOTE, "name": "remote-dev"},
            {"deviceID": DEVICE_ID_REMOTE2, "name": "phone", "paused": True},
        ]
    if folders is None:
        folders = [
            {
                "id": FOLDER_ID,
                "label": "Documents",
                "path": "/data/docs",
                "type": "sendreceive",
                "paused": False,
                "devices": [
                    {"deviceID": DEVICE_ID_LOCAL},
                    {"deviceID": DEVICE_ID_REMOTE},
                ],
            }
        ]
    return {"version": 37, "folders": folders, "devices": devices, "options": {}}


def make_system_status(my_id: str = DEVICE_ID_LOCAL) -> dict:
    return {"myID": my_id, "uptime": 3600}


def make_connections(connected: dict | None = None) -> dict:
    if connected is None:
        connected = {
            DEVICE_ID_LOCAL: {"connected": False, "paused": False, "address": ""},
            DEVICE_ID_REMOTE: {"connected": True, "paused": False, "address": "192.168.1.2:22000",
                               "type": "tcp-client", "crypto": "TLS1.3"},
        }
    return {"total": {}, "connections": connected}


def make_db_status(*, state: str = "idle", need_items: int = 0, need_bytes: int = 0) -> dict:
    return {
        "state": state,
        "stateChanged": "2025-01-01T00:00:00Z",
        "globalFiles": 100,
        "globalBytes": 1000000,
        "localFiles": 100,
        "localBytes": 1000000,
        "needFiles": need_items,
        "needTotalItems": need_items,
        "needBytes": need_bytes,
        "error": "",
    }


def make_completion(completion: float = 100, need_bytes: int = 0, need_items: int = 0) -> dict:
    return {
        "completion": completion,
        "globalBytes": 1000000,
        "needBytes": need_bytes,
        "globalItems": 100,
        "needItems": need_items,
        "needDeletes": 0,
        "remoteState": "valid",
        "sequence": 42,
    }


def make_stats_device() -> dict:
    return {
        DEVICE_ID_LOCAL: {"lastSeen": "1970-01-01T00:00:00Z"},
        DEVICE_ID_REMOTE: {"lastSeen": "2025-01-01T12:00:00.123456789+01:00"},
    }


def make_event(event_id: int, event_type: str, data: dict | None = None) -> dict:
    return {
        "id": event_id,
        "globalID": event_id + 1000,
        "type": event_type,
        "time": "2025-01-01T12:00:00.000000001Z",
        "data": data,
    }


def summary_event(event_id: int, folder: str, state: str, remaining: int) -> FolderSummary:
    return FolderSummary(
        id=event_id,
        type="FolderSummary",
        folder=folder,
        state=state,
        items_remaining=remaining,
    )


def docs_state(**folder_fields) -> SyncState:
    """The bootstrap state from the basic scenario: ``docs`` idle at event 10."""
    fields = {"id": "docs", "label": "Docs", "state": "idle", **folder_fields}
    return SyncState(
        folders={"docs": Folder(**fields)},
        devices={DEVICE_ID_REMOTE: Device(id=DEVICE_ID_REMOTE, label="laptop", connectivity="connected")},
        last_event_id=10,
        link="up",
        link_detail=None,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client():
    """A SyncthingClient for testing."""
    return SyncthingClient(BASE_URL, API_KEY)


@pytest.fixture
def mock_api():
    """Activate respx mock for the default Syncthing base URL.

    Pre-configures the snapshot endpoints; ``/rest/events`` answers with an
    empty list unless a test overrides it.
    """
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        router.get("/rest/system/status").respond(json=make_system_status())
        router.get("/rest/config").respond(json=make_config())
        router.get("/rest/system/connections").respond(json=make_connections())
        router.get("/rest/stats/device").respond(json=make_stats_device())
        router.get("/rest/db/status").respond(json=make_db_status())
        router.get("/rest/db/completion").respond(json=make_completion())
        router.get("/rest/events").respond(json=[])
        yield router


class MemorySink:
    """Sink that records every line it is given."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def write(self, line: str) -> None:
        self.lines.append(line)


@pytest.fixture
def sink():
    return MemorySink()


@pytest.fixture
def stream():
    return io.StringIO()
