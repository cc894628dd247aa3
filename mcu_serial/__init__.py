"""MCU serial package.

Raw-mode serial transport and a command chain to talk to USB-UART MCUs using pyserial.
"""

__all__ = [
    "SerialHandle",
    "open_port",
    "SUPPORTED_BAUDRATES",
    "ReadOutcome",
    "ReadStatus",
    "LineResult",
    "read_byte",
    "read_line",
    "write",
    "drain",
    "flush",
    "stream_file",
    "capture_to_file",
    "SerialLinkError",
    "ConfigurationError",
    "TransportError",
]

from .errors import ConfigurationError, SerialLinkError, TransportError
from .port import SUPPORTED_BAUDRATES, SerialHandle, open_port
from .reader import LineResult, ReadOutcome, ReadStatus, read_byte, read_line
from .streamer import capture_to_file, stream_file
from .writer import drain, flush, write

__version__ = "0.1.0"
