"""Reconnection driver: owns the poll loop and the connection state machine.

Transitions (one per ``step``):

    Disconnected -> Connecting
    Connecting   -> Streaming(since)       snapshot ok
    Connecting   -> BackingOff(attempt=n)  snapshot failed (n consecutive failures)
    Streaming    -> Streaming              empty poll, or events applied
    Streaming    -> Connecting             config change, unknown folder/device, id gap
    Streaming    -> BackingOff(attempt=1)  poll failed
    BackingOff   -> Connecting             timer elapsed

The driver is the only writer of ``SyncState``; every new state is handed
to ``on_state`` (the renderer's single-slot submit).
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection

from pydantic import BaseModel, ConfigDict

from syncthing_status.backoff import Backoff
from syncthing_status.client import SyncthingClient
from syncthing_status.errors import ApiError, AuthFailed, DaemonUnreachable
from syncthing_status.models import SyncState
from syncthing_status.reducer import apply, mark_link, requires_resync

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
#  Connection states
# ---------------------------------------------------------------------------


class Disconnected(BaseModel):
    model_config = ConfigDict(frozen=True)


class Connecting(BaseModel):
    model_config = ConfigDict(frozen=True)


class Streaming(BaseModel):
    model_config = ConfigDict(frozen=True)
    since: int


class BackingOff(BaseModel):
    model_config = ConfigDict(frozen=True)
    until: float
    attempt: int
    auth_failed: bool = False


ConnectionState = Disconnected | Connecting | Streaming | BackingOff


# ---------------------------------------------------------------------------
#  Driver
# ---------------------------------------------------------------------------


class Driver:
    """Poll loop over ``ConnectionState``; run it as one perpetual task."""

    def __init__(
        self,
        client: SyncthingClient,
        on_state: Callable[[SyncState], None],
        *,
        backoff: Backoff | None = None,
        poll_timeout: float = 60.0,
        expected_devices: Collection[str] | None = None,
        startup_attempts: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.backoff = backoff or Backoff()
        self.poll_timeout = poll_timeout
        self.expected_devices = expected_devices
        self.startup_attempts = startup_attempts
        self.state = SyncState()
        self.connection: ConnectionState = Disconnected()
        self._on_state = on_state
        self._clock = clock
        self._sleep = sleep
        self._failures = 0
        self._bootstrapped = False

    async def run(self) -> None:
        self._publish(self.state)
        while True:
            await self.step()

    async def step(self) -> None:
        """Advance the state machine by one transition."""
        conn = self.connection
        if isinstance(conn, Disconnected):
            self._set_connection(Connecting())
        elif isinstance(conn, Connecting):
            await self._bootstrap()
        elif isinstance(conn, Streaming):
            await self._poll(conn.since)
        else:
            await self._wait(conn)

    def _publish(self, state: SyncState) -> None:
        self.state = state
        self._on_state(state)

    def _set_connection(self, conn: ConnectionState) -> None:
        if conn == self.connection:
            return
        logger.debug("Connection: %r -> %r", self.connection, conn)
        self.connection = conn
        self._on_state(self.state)

    # -- transitions --------------------------------------------------------

    async def _bootstrap(self) -> None:
        try:
            state, event_id = await self.client.fetch_snapshot(self.expected_devices)
        except AuthFailed as e:
            logger.warning("Syncthing rejected the API key: %s", e)
            self._back_off(e, auth_failed=True)
            return
        except ApiError as e:
            # Malformed snapshots are retried like an unreachable daemon.
            logger.debug("Bootstrap failed: %s", e)
            self._back_off(e)
            return

        if not self._bootstrapped or self._failures:
            logger.info(
                "Connected to %s: %d folder(s), %d device(s)",
                self.client.url,
                len(state.folders),
                len(state.devices),
            )
        self._failures = 0
        self._bootstrapped = True
        self._publish(state)
        self._set_connection(Streaming(since=event_id))

    async def _poll(self, since: int) -> None:
        try:
            events = await self.client.poll_events(since, self.poll_timeout)
        except ApiError as e:
            logger.debug("Event poll failed: %s", e)
            if isinstance(e, AuthFailed):
                logger.warning("Syncthing rejected the API key: %s", e)
            self._failures = 0
            self._back_off(e, auth_failed=isinstance(e, AuthFailed))
            return

        if not events:
            logger.debug("No events since %d", since)
            return

        first = events[0].id
        if since > 0 and (first <= since or first > since + 1):
            # Ids went backwards (daemon restart) or events fell out of the
            # daemon's buffer; incremental state can no longer be trusted.
            logger.info("Event ids jumped from %d to %d, resyncing", since, first)
            self._set_connection(Connecting())
            return

        state = self.state
        resync = False
        for event in events:
            resync = resync or requires_resync(state, event)
            state = apply(state, event)
        self._publish(state)

        if resync:
            logger.info("Folder/device configuration changed, resyncing")
            self._set_connection(Connecting())
        else:
            self._set_connection(Streaming(since=state.last_event_id))

    async def _wait(self, conn: BackingOff) -> None:
        remaining = conn.until - self._clock()
        if remaining > 0:
            await self._sleep(remaining)
        self._set_connection(Connecting())

    def _back_off(self, error: ApiError, *, auth_failed: bool = False) -> None:
        self._failures += 1
        if (
            not self._bootstrapped
            and self.startup_attempts
            and self._failures >= self.startup_attempts
        ):
            raise DaemonUnreachable(
                f"Syncthing unreachable after {self._failures} attempt(s): {error}"
            ) from error

        attempt = self.backoff.cap(self._failures)
        delay = self.backoff.delay(attempt, capped=auth_failed)
        if auth_failed:
            state = mark_link(
                self.state,
                "auth_failed",
                f"authentication failed, retrying in {delay:.0f}s: {error}",
            )
        else:
            state = mark_link(
                self.state,
                "down",
                f"reconnecting in {delay:.0f}s (attempt {attempt}): {error}",
            )
        self._publish(state)
        self._set_connection(
            BackingOff(until=self._clock() + delay, attempt=attempt, auth_failed=auth_failed)
        )
