"""Wire the client, driver, renderer and sink together and run until stopped."""

import asyncio
import logging
import signal
from typing import TextIO

from syncthing_status.backoff import Backoff
from syncthing_status.client import SyncthingClient
from syncthing_status.config import Settings
from syncthing_status.driver import Driver
from syncthing_status.errors import DaemonUnreachable, OutputFailed
from syncthing_status.render import Renderer
from syncthing_status.sink import Sink, build_sink

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_OUTPUT_CLOSED = 3
EXIT_UNREACHABLE = 4


def build(settings: Settings, sink: Sink | None = None) -> tuple[Driver, Renderer]:
    """Construct the driver/renderer pair described by ``settings``."""
    if sink is None:
        sink = build_sink(settings.output, settings.signal, settings.signal_pid)
    renderer = Renderer(sink, debounce=settings.debounce, idle_tick=settings.idle_tick)
    client = SyncthingClient(settings.url, settings.api_key)
    backoff = Backoff(
        minimum=settings.backoff_min,
        maximum=settings.backoff_max,
        factor=settings.backoff_factor,
        jitter=settings.backoff_jitter,
        max_attempts=settings.max_attempts,
    )
    driver = Driver(
        client,
        renderer.submit,
        backoff=backoff,
        poll_timeout=settings.poll_timeout,
        expected_devices=settings.expected_devices,
        startup_attempts=settings.startup_attempts,
    )
    return driver, renderer


async def run(
    settings: Settings,
    *,
    sink: Sink | None = None,
    stop: asyncio.Event | None = None,
) -> int:
    """Run until SIGINT/SIGTERM (or ``stop``) and return the process exit code."""
    driver, renderer = build(settings, sink)
    stop = stop or asyncio.Event()

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not on the main thread, or no signal support on this platform.
            pass

    driver_task = asyncio.create_task(driver.run(), name="driver")
    render_task = asyncio.create_task(renderer.run(), name="renderer")
    stop_task = asyncio.create_task(stop.wait(), name="stop")
    tasks = {driver_task, render_task, stop_task}

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for sig in installed:
            loop.remove_signal_handler(sig)

    if stop_task in done:
        logger.info("Shutting down")
        return EXIT_OK
    for task in done:
        exc = task.exception()
        if isinstance(exc, OutputFailed):
            logger.error("%s", exc)
            return EXIT_OUTPUT_CLOSED
        if isinstance(exc, DaemonUnreachable):
            logger.error("%s", exc)
            return EXIT_UNREACHABLE
        if exc is not None:
            raise exc
    return EXIT_OK
