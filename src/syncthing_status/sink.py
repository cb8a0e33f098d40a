"""Deliver rendered lines to the status-bar host.

Every write is a whole line; any failure raises ``OutputFailed`` because
there is no point tracking state once the host has gone away.
"""

import logging
import os
import signal
import stat
import sys
from pathlib import Path
from typing import Protocol, TextIO

from syncthing_status.errors import OutputFailed

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, line: str) -> None: ...


def parse_signal(spec: str) -> int:
    """Parse ``RTMIN+8``, ``SIGUSR1``, ``USR1`` or a plain number."""
    text = spec.strip().upper()
    if text.isdigit():
        return int(text)
    if text.startswith("SIG"):
        text = text[3:]
    if text.startswith("RTMIN") and hasattr(signal, "SIGRTMIN"):
        offset = text[5:].lstrip("+") or "0"
        if not offset.isdigit():
            raise ValueError(f"Invalid real-time signal '{spec}'.")
        number = signal.SIGRTMIN + int(offset)
        if number > signal.SIGRTMAX:
            raise ValueError(f"Signal '{spec}' is beyond SIGRTMAX.")
        return number
    try:
        return signal.Signals[f"SIG{text}"].value
    except KeyError:
        raise ValueError(f"Unknown signal '{spec}'.") from None


class HostSignal:
    """Ask a signal-driven host (e.g. waybar with ``signal: N``) to re-read."""

    def __init__(self, pid: int, signum: int) -> None:
        self.pid = pid
        self.signum = signum

    def send(self) -> None:
        try:
            os.kill(self.pid, self.signum)
        except OSError as e:
            raise OutputFailed(f"Cannot signal host process {self.pid}: {e}") from e


class StreamSink:
    """Write one line per summary to a text stream (stdout by default)."""

    def __init__(self, stream: TextIO | None = None, nudge: HostSignal | None = None) -> None:
        self.stream = stream or sys.stdout
        self.nudge = nudge

    def write(self, line: str) -> None:
        try:
            self.stream.write(line + "\n")
            self.stream.flush()
        except (OSError, ValueError) as e:
            # ValueError: write to a closed file.
            raise OutputFailed(f"Output stream closed: {e}") from e
        if self.nudge:
            self.nudge.send()


class FileSink:
    """Write summaries to a path.

    A regular file is replaced atomically, so readers always see one
    complete line.  A named pipe gets one line per write and must already
    have a reader.
    """

    def __init__(self, path: Path, nudge: HostSignal | None = None) -> None:
        self.path = path
        self.nudge = nudge

    def _is_fifo(self) -> bool:
        try:
            return stat.S_ISFIFO(self.path.stat().st_mode)
        except FileNotFoundError:
            return False

    def _write_fifo(self, data: bytes) -> None:
        # O_NONBLOCK only so that a missing reader fails with ENXIO at open;
        # the write itself blocks until the whole line is in the pipe.
        fd = os.open(self.path, os.O_WRONLY | os.O_NONBLOCK)
        try:
            os.set_blocking(fd, True)
            view = memoryview(data)
            while view:
                written = os.write(fd, view)
                view = view[written:]
        finally:
            os.close(fd)

    def write(self, line: str) -> None:
        data = (line + "\n").encode()
        try:
            if self._is_fifo():
                self._write_fifo(data)
            else:
                tmp = self.path.with_name(f".{self.path.name}.tmp")
                tmp.write_bytes(data)
                os.replace(tmp, self.path)
        except OSError as e:
            raise OutputFailed(f"Cannot write {self.path}: {e}") from e
        if self.nudge:
            self.nudge.send()


def build_sink(
    output: str = "-",
    signal_spec: str | None = None,
    signal_pid: int | None = None,
    stream: TextIO | None = None,
) -> Sink:
    """Sink for an ``output`` setting: ``-`` is stdout, anything else a path."""
    nudge = None
    if signal_spec and signal_pid:
        nudge = HostSignal(signal_pid, parse_signal(signal_spec))
        logger.debug("Signalling pid %d with %d after each write", signal_pid, nudge.signum)
    if output == "-":
        return StreamSink(stream, nudge)
    return FileSink(Path(output).expanduser(), nudge)
