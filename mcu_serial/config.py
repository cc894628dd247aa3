from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Union

try:  # Python 3.11+
    import tomllib as _toml
except ModuleNotFoundError:  # pragma: no cover
    import tomli as _toml  # type: ignore

from .port import DEFAULT_BAUDRATE, DEFAULT_POLL_INTERVAL_MS
from .reader import DEFAULT_EOL, DEFAULT_MAX_LEN, DEFAULT_TIMEOUT_MS, eol_byte
from .streamer import DEFAULT_BYTE_TIMEOUT_MS, DEFAULT_DRAIN_EVERY

_logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "mcu_serial.toml"


@dataclass
class LinkConfig:
    baudrate: int = DEFAULT_BAUDRATE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    eol: int = DEFAULT_EOL
    max_len: int = DEFAULT_MAX_LEN
    drain_every: int = DEFAULT_DRAIN_EVERY
    byte_timeout_ms: int = DEFAULT_BYTE_TIMEOUT_MS


def _load_toml(path: Path) -> dict:
    """Load a TOML file, returning {} when it is missing or unreadable."""
    try:
        with path.open("rb") as f:
            return _toml.load(f)
    except FileNotFoundError:
        return {}
    except (OSError, _toml.TOMLDecodeError) as e:
        _logger.warning("Failed to parse config %s: %s. Using default values.", path, e)
        return {}


def _int_field(section: dict, key: str, default: int, minimum: int) -> int:
    value: Any = section.get(key, default)
    try:
        value = int(value)
    except (TypeError, ValueError):
        _logger.warning("Invalid %s=%r in config. Using %d.", key, section.get(key), default)
        return default
    if value < minimum:
        _logger.warning("%s=%d below %d in config. Using %d.", key, value, minimum, default)
        return default
    return value


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_FILE) -> LinkConfig:
    """
    Read link defaults from a TOML file.
    Args:
        path: Config file location
    Returns:
        LinkConfig: Values from the file, defaults for anything missing or invalid
    """
    config = _load_toml(Path(path))
    serial_cfg = config.get("serial", {})
    line_cfg = config.get("line", {})
    stream_cfg = config.get("stream", {})
    defaults = LinkConfig()

    eol = defaults.eol
    if "eolchar" in line_cfg:
        try:
            eol = eol_byte(line_cfg["eolchar"])
        except (TypeError, ValueError):
            _logger.warning("Invalid eolchar=%r in config. Using newline.", line_cfg["eolchar"])

    return LinkConfig(
        baudrate=_int_field(serial_cfg, "baudrate", defaults.baudrate, 1),
        timeout_ms=_int_field(serial_cfg, "timeout_ms", defaults.timeout_ms, 0),
        poll_interval_ms=_int_field(serial_cfg, "poll_interval_ms", defaults.poll_interval_ms, 1),
        eol=eol,
        max_len=_int_field(line_cfg, "max_len", defaults.max_len, 1),
        drain_every=_int_field(stream_cfg, "drain_every", defaults.drain_every, 1),
        byte_timeout_ms=_int_field(stream_cfg, "byte_timeout_ms", defaults.byte_timeout_ms, 0),
    )
