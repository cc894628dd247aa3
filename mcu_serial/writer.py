from __future__ import annotations

import logging

import serial

from .errors import TransportError
from .port import SerialHandle

_logger = logging.getLogger(__name__)


def write(handle: SerialHandle, data: bytes) -> int:
    """
    Write the whole buffer, retrying short writes until the OS has accepted
    every byte.
    Args:
        handle (SerialHandle): Open port
        data (bytes): Bytes to send
    Returns:
        int: Number of bytes written (always len(data))
    Raises:
        TransportError: If the OS reports a write failure
    """
    view = memoryview(bytes(data))
    total = len(view)
    sent = 0
    while sent < total:
        try:
            n = handle.port.write(view[sent:])
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"error writing to {handle.path}: {exc}") from exc
        if not n:
            raise TransportError(f"error writing to {handle.path}: device accepted no data")
        sent += n
    return total


def write_byte(handle: SerialHandle, value: int) -> int:
    """
    Send a number as a single byte.
    Raises:
        ValueError: If value is out of range (u8)
    """
    if not (0 <= value <= 0xFF):
        raise ValueError("byte value out of range (u8)")
    return write(handle, bytes([value]))


def write_text(handle: SerialHandle, text: str, *, newline: bool = False, encoding: str = "utf-8") -> int:
    """Encode and send a string, optionally terminated by a newline."""
    if newline:
        text += "\n"
    return write(handle, text.encode(encoding))


def drain(handle: SerialHandle) -> None:
    """
    Block until all queued output has been physically transmitted.
    Raises:
        TransportError: If the OS reports a failure
    """
    try:
        handle.port.flush()
    except (serial.SerialException, OSError) as exc:
        raise TransportError(f"error draining {handle.path}: {exc}") from exc


def flush(handle: SerialHandle) -> None:
    """
    Discard pending input and pending output without inspecting them.
    Raises:
        TransportError: If the OS reports a failure
    """
    try:
        handle.port.reset_input_buffer()
        handle.port.reset_output_buffer()
    except (serial.SerialException, OSError) as exc:
        raise TransportError(f"error flushing {handle.path}: {exc}") from exc
    _logger.debug("flushed %s", handle.path)
