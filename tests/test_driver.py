"""Tests for the reconnection driver's state machine."""

from datetime import datetime, timezone

import pytest

from syncthing_status.backoff import Backoff
from syncthing_status.driver import BackingOff, Connecting, Disconnected, Driver, Streaming
from syncthing_status.errors import AuthFailed, DaemonUnreachable, Malformed, Unreachable
from syncthing_status.events import ConfigSaved, UnknownEvent
from syncthing_status.models import Folder, SyncState
from syncthing_status.render import render
from tests.conftest import BASE_URL, docs_state, summary_event

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClient:
    """Scripted stand-in for SyncthingClient."""

    url = BASE_URL

    def __init__(self, snapshots=(), polls=()):
        self.snapshots = list(snapshots)
        self.polls = list(polls)
        self.poll_calls: list[int] = []

    async def fetch_snapshot(self, expected_devices=None):
        result = self.snapshots.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def poll_events(self, since, timeout):
        self.poll_calls.append(since)
        result = self.polls.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _snapshot(state: SyncState):
    return state, state.last_event_id


@pytest.fixture
def published():
    return []


@pytest.fixture
def sleeps():
    return []


def make_driver(client, published, sleeps, **kwargs):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    kwargs.setdefault("backoff", Backoff(minimum=1, maximum=60, factor=2, jitter=0, max_attempts=4))
    return Driver(
        client,
        published.append,
        clock=lambda: 100.0,
        sleep=fake_sleep,
        **kwargs,
    )


async def _connect(driver):
    await driver.step()  # Disconnected -> Connecting
    await driver.step()  # Connecting -> Streaming


class TestBootstrap:
    async def test_starts_disconnected(self, published, sleeps):
        driver = make_driver(FakeClient(), published, sleeps)
        assert isinstance(driver.connection, Disconnected)
        await driver.step()
        assert isinstance(driver.connection, Connecting)

    async def test_snapshot_starts_streaming(self, published, sleeps):
        client = FakeClient(snapshots=[_snapshot(docs_state())])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)

        assert driver.connection == Streaming(since=10)
        assert driver.state.status == "ok"
        assert render(published[-1], NOW).text == "Synced"

    async def test_snapshot_failure_backs_off(self, published, sleeps):
        client = FakeClient(snapshots=[Unreachable("refused")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)

        assert driver.connection == BackingOff(until=101.0, attempt=1)
        assert driver.state.status == "disconnected"

    async def test_malformed_snapshot_backs_off(self, published, sleeps):
        client = FakeClient(snapshots=[Malformed("garbage")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        assert isinstance(driver.connection, BackingOff)

    async def test_consecutive_failures_grow_and_cap(self, published, sleeps):
        client = FakeClient(snapshots=[Unreachable("x")] * 6)
        driver = make_driver(client, published, sleeps)
        await driver.step()
        attempts = []
        for _ in range(6):
            await driver.step()  # Connecting -> BackingOff
            attempts.append(driver.connection.attempt)
            await driver.step()  # BackingOff -> Connecting
        assert attempts == [1, 2, 3, 4, 4, 4]
        assert sleeps == [1.0, 2.0, 4.0, 8.0, 8.0, 8.0]

    async def test_auth_failure_waits_capped_interval(self, published, sleeps):
        client = FakeClient(snapshots=[AuthFailed("Error 403: Forbidden.")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)

        assert driver.connection == BackingOff(until=160.0, attempt=1, auth_failed=True)
        assert driver.state.status == "error"
        summary = render(driver.state, NOW)
        assert summary.css_class == "error"
        assert "authentication failed" in summary.tooltip

    async def test_recovers_after_failure(self, published, sleeps):
        client = FakeClient(snapshots=[Unreachable("x"), _snapshot(docs_state())])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()  # timer
        await driver.step()  # snapshot
        assert driver.connection == Streaming(since=10)
        assert driver.state.status == "ok"
        assert driver.state.link_detail is None

    async def test_startup_attempts_exhausted(self, published, sleeps):
        client = FakeClient(snapshots=[Unreachable("x"), Unreachable("x")])
        driver = make_driver(client, published, sleeps, startup_attempts=2)
        await _connect(driver)
        await driver.step()
        with pytest.raises(DaemonUnreachable):
            await driver.step()

    async def test_startup_attempts_ignored_after_first_success(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state()), Unreachable("x")],
            polls=[[ConfigSaved(id=11, type="ConfigSaved")]],
        )
        driver = make_driver(client, published, sleeps, startup_attempts=1)
        await _connect(driver)
        await driver.step()  # config change -> Connecting
        await driver.step()  # snapshot fails, but we were connected before
        assert isinstance(driver.connection, BackingOff)


class TestStreaming:
    async def test_events_applied(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[summary_event(11, "docs", "syncing", 3)]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()

        assert client.poll_calls == [10]
        assert driver.connection == Streaming(since=11)
        assert driver.state.status == "syncing"
        assert "3" in render(published[-1], NOW).text

    async def test_empty_poll_keeps_streaming(self, published, sleeps):
        client = FakeClient(snapshots=[_snapshot(docs_state())], polls=[[], []])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        before = len(published)
        await driver.step()
        await driver.step()

        assert driver.connection == Streaming(since=10)
        assert len(published) == before
        assert client.poll_calls == [10, 10]

    async def test_poll_error_backs_off_at_attempt_one(self, published, sleeps):
        client = FakeClient(snapshots=[_snapshot(docs_state())], polls=[Unreachable("refused")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()

        assert isinstance(driver.connection, BackingOff)
        assert driver.connection.attempt == 1
        assert driver.state.status == "disconnected"
        assert "reconnecting" in render(driver.state, NOW).tooltip

    async def test_poll_auth_failure(self, published, sleeps):
        client = FakeClient(snapshots=[_snapshot(docs_state())], polls=[AuthFailed("401")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert driver.connection.auth_failed
        assert driver.state.link == "auth_failed"

    async def test_config_change_resyncs(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[ConfigSaved(id=11, type="ConfigSaved")]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert isinstance(driver.connection, Connecting)
        assert driver.state.last_event_id == 11

    async def test_unknown_folder_resyncs(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[summary_event(11, "music", "syncing", 1)]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert isinstance(driver.connection, Connecting)

    async def test_id_gap_resyncs(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[UnknownEvent(id=50, type="FolderSummary")]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert isinstance(driver.connection, Connecting)
        assert driver.state.last_event_id == 10

    async def test_degraded_first_event_is_not_a_gap(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[UnknownEvent(id=11, type=""), summary_event(12, "docs", "syncing", 2)]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert driver.connection == Streaming(since=12)
        assert driver.state.folders["docs"].items_remaining == 2

    async def test_ids_going_backwards_resyncs(self, published, sleeps):
        client = FakeClient(
            snapshots=[_snapshot(docs_state())],
            polls=[[summary_event(3, "docs", "idle", 0)]],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert isinstance(driver.connection, Connecting)


class TestResync:
    async def test_reconnect_drops_stale_folders(self, published, sleeps):
        before = docs_state().model_copy(
            update={
                "folders": {
                    "docs": Folder(id="docs", state="idle"),
                    "archive": Folder(id="archive", state="idle"),
                },
                "last_event_id": 40,
            }
        )
        after = docs_state().model_copy(update={"last_event_id": 5})
        client = FakeClient(
            snapshots=[_snapshot(before), _snapshot(after)],
            polls=[Unreachable("daemon restarting")],
        )
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        assert "archive" in driver.state.folders

        await driver.step()  # poll error -> BackingOff
        await driver.step()  # timer -> Connecting
        await driver.step()  # fresh snapshot

        assert "archive" not in driver.state.folders
        assert driver.state.last_event_id == 5
        assert driver.connection == Streaming(since=5)

    async def test_backoff_sleeps_remaining_time(self, published, sleeps):
        client = FakeClient(snapshots=[Unreachable("x")])
        driver = make_driver(client, published, sleeps)
        await _connect(driver)
        await driver.step()
        assert sleeps == [1.0]
        assert isinstance(driver.connection, Connecting)


class TestRun:
    async def test_publishes_initial_state(self, published, sleeps):
        client = FakeClient(snapshots=[DaemonUnreachable("stop")])
        driver = make_driver(client, published, sleeps)
        with pytest.raises(DaemonUnreachable):
            await driver.run()
        assert published[0].status == "disconnected"
