from __future__ import annotations


class SerialLinkError(Exception):
    """Base class for all errors raised by the serial link library."""


class ConfigurationError(SerialLinkError):
    """
    The port could not be opened or configured. No handle was produced.
    """


class UnsupportedBaudRate(ConfigurationError):
    """
    Requested baud rate has no exact match in the supported rate table.
    Args:
        baudrate (int): The rejected rate
    """

    def __init__(self, baudrate: int) -> None:
        self.baudrate = baudrate
        super().__init__(f"unsupported baud rate: {baudrate}")


class OpenError(ConfigurationError):
    """
    The device path could not be opened for read+write.
    Args:
        path (str): Device path or URL
        reason (str): OS error text
    """

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"couldn't open port {path}: {reason}")


class ConfigError(ConfigurationError):
    """Terminal attributes could not be applied to an opened device."""


class TransportError(SerialLinkError):
    """OS-level read/write failure on an open handle."""
