"""
File relays over an open serial handle.

stream_file() sends a local file to the port one byte at a time and
capture_to_file() saves whatever the port emits into a local file. Both pace
themselves with periodic drains so a slow receiver (or a slow console) is
never left far behind the transfer.
"""

from __future__ import annotations

import io
import logging
import os
import select
import time
from dataclasses import dataclass
from typing import BinaryIO, Final, Optional

from .port import SerialHandle
from .reader import ReadOutcome, ReadStatus, read_byte
from .writer import drain, write

_logger = logging.getLogger(__name__)

DEFAULT_DRAIN_EVERY: Final[int] = 60
DEFAULT_BYTE_TIMEOUT_MS: Final[int] = 10000
DEFAULT_CAPTURE_TIMEOUT_MS: Final[int] = 5000


@dataclass
class StreamReport:
    """
    Summary of a relay.
    Fields:
        bytes_transferred: bytes moved from source to destination
        drains: pacing drains performed, including the final one
        status: outcome that ended the relay
        error: exception behind an ERROR status
        elapsed: wall-clock seconds
    """
    bytes_transferred: int
    drains: int
    status: ReadStatus
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is ReadStatus.EOF


def _fileno(source: BinaryIO) -> Optional[int]:
    try:
        return source.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        return None


def _buffered(source: BinaryIO, fd: int) -> bytes:
    # Bytes already pulled into a BufferedReader never show up in select().
    peek = getattr(source, "peek", None)
    if peek is None:
        return b""
    blocking = os.get_blocking(fd)
    os.set_blocking(fd, False)
    try:
        return peek(1)
    finally:
        os.set_blocking(fd, blocking)


def read_file_byte(source: BinaryIO, timeout_ms: int = DEFAULT_BYTE_TIMEOUT_MS) -> ReadOutcome:
    """
    Read one byte from a local source, waiting at most timeout_ms for it to
    become readable.
    Args:
        source (BinaryIO): Binary file object
        timeout_ms (int): Wait bound in milliseconds, clamped to >= 0
    Returns:
        ReadOutcome: DATA, TIMEOUT, EOF or ERROR
    """
    fd = _fileno(source)
    if fd is not None:
        try:
            if not _buffered(source, fd):
                ready, _, _ = select.select([fd], [], [], max(0, timeout_ms) / 1000.0)
                if not ready:
                    return ReadOutcome.timed_out()
        except (OSError, ValueError) as exc:
            return ReadOutcome.failed(exc)
    try:
        chunk = source.read(1)
    except OSError as exc:
        return ReadOutcome.failed(exc)
    if not chunk:
        return ReadOutcome.eof()
    return ReadOutcome.data(chunk[0])


def _flush_echo(echo: Optional[BinaryIO]) -> None:
    if echo is not None:
        echo.flush()


def stream_file(
    handle: SerialHandle,
    source: BinaryIO,
    *,
    echo: Optional[BinaryIO] = None,
    drain_every: int = DEFAULT_DRAIN_EVERY,
    timeout_ms: int = DEFAULT_BYTE_TIMEOUT_MS,
) -> StreamReport:
    """
    Relay a local file to the port byte by byte.
    Every drain_every bytes the port is drained and the echo stream flushed.
    The relay ends on EOF (drained once more), or on a local read timeout or
    error, which is reported without retry.
    Args:
        handle (SerialHandle): Open port
        source (BinaryIO): File to send
        echo (BinaryIO, optional): Console stream receiving a copy of each byte
        drain_every (int): Pacing interval in bytes
        timeout_ms (int): Per-byte bound on the local read
    Returns:
        StreamReport: Outcome of the relay
    Raises:
        TransportError: If writing or draining the port fails
    """
    drain_every = max(1, int(drain_every))
    started = time.monotonic()
    sent = 0
    drains = 0
    while True:
        outcome = read_file_byte(source, timeout_ms)
        if outcome.status is not ReadStatus.DATA:
            break
        chunk = bytes([outcome.byte])
        write(handle, chunk)
        if echo is not None:
            echo.write(chunk)
        sent += 1
        if sent % drain_every == 0:
            drain(handle)
            _flush_echo(echo)
            drains += 1

    if outcome.status is ReadStatus.EOF:
        drain(handle)
        _flush_echo(echo)
        drains += 1
        _logger.debug("end of file reached after %d bytes", sent)
    else:
        _logger.warning("input loop broke unexpectedly after %d bytes: %s", sent, outcome)
    return StreamReport(sent, drains, outcome.status, outcome.error, time.monotonic() - started)


def capture_to_file(
    handle: SerialHandle,
    sink: BinaryIO,
    *,
    first_timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS,
    idle_timeout_ms: int = DEFAULT_CAPTURE_TIMEOUT_MS,
    echo: Optional[BinaryIO] = None,
    drain_every: int = DEFAULT_DRAIN_EVERY,
) -> StreamReport:
    """
    Save bytes arriving on the port into a local file until the line goes
    quiet for idle_timeout_ms.
    A capture that ends on an idle line reports TIMEOUT; one that never sees a
    first byte reports TIMEOUT with zero bytes transferred.
    """
    drain_every = max(1, int(drain_every))
    started = time.monotonic()
    received = 0
    drains = 0
    outcome = read_byte(handle, first_timeout_ms)
    while outcome.status is ReadStatus.DATA:
        chunk = bytes([outcome.byte])
        sink.write(chunk)
        if echo is not None:
            echo.write(chunk)
        received += 1
        if received % drain_every == 0:
            sink.flush()
            _flush_echo(echo)
            drains += 1
        outcome = read_byte(handle, idle_timeout_ms)

    sink.flush()
    _flush_echo(echo)
    drains += 1
    if outcome.status is ReadStatus.ERROR:
        _logger.warning("capture stopped after %d bytes: %s", received, outcome.error)
    else:
        _logger.debug("capture finished after %d bytes", received)
    return StreamReport(received, drains, outcome.status, outcome.error, time.monotonic() - started)
