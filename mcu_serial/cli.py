from __future__ import annotations

import functools
import logging
import time
from typing import Optional

import click

from .config import DEFAULT_CONFIG_FILE, load_config
from .discovery import list_likely_ports
from .errors import SerialLinkError
from .port import SerialHandle, open_port
from .reader import ReadStatus, eol_byte, read_byte, read_line
from .streamer import capture_to_file, stream_file
from .writer import flush, write_byte, write_text


class ShellState:
    """Settings and the live port handle shared by every command in a chain."""

    def __init__(self, *, baudrate: int, timeout_ms: int, eol: int, max_len: int,
                 poll_interval_ms: int, drain_every: int, byte_timeout_ms: int, quiet: bool) -> None:
        self.baudrate = baudrate
        self.timeout_ms = timeout_ms
        self.eol = eol
        self.max_len = max_len
        self.poll_interval_ms = poll_interval_ms
        self.drain_every = drain_every
        self.byte_timeout_ms = byte_timeout_ms
        self.quiet = quiet
        self.handle: Optional[SerialHandle] = None

    def say(self, message: str) -> None:
        if not self.quiet:
            click.echo(message)

    def require_handle(self) -> SerialHandle:
        if self.handle is None or not self.handle.is_open:
            raise click.ClickException("serial port not opened")
        return self.handle

    def close(self) -> None:
        if self.handle is not None:
            self.handle.close()
            self.handle = None


def _reports_link_errors(f):
    # Any transport/configuration failure ends the chain with exit status 1.
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except SerialLinkError as e:
            raise click.ClickException(str(e)) from e
    return wrapper


def _parse_eolchar(value: str) -> int:
    if not value:
        raise click.BadParameter("EOL char must not be empty")
    try:
        return eol_byte(value[0])
    except ValueError as e:
        raise click.BadParameter(str(e))


def _console(state: ShellState):
    return None if state.quiet else click.get_binary_stream("stdout")


@click.group(chain=True)
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=DEFAULT_CONFIG_FILE,
              show_default=True, help="TOML file with link defaults")
@click.option("-b", "--baud", type=int, help="Baud rate for ports opened later in the chain (default 9600)")
@click.option("-t", "--timeout", type=int, help="Timeout for reads in millisecs (default 5000)")
@click.option("-e", "--eolchar", help="EOL char for reads (default '\\n')")
@click.option("-q", "--quiet", is_flag=True, help="Don't print out as much info")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str, baud: Optional[int], timeout: Optional[int],
         eolchar: Optional[str], quiet: bool, verbose: bool) -> None:
    """Talk to a microcontroller over a serial port.

    Commands run in the order given, so a chain makes a small script:

      # open at 115200, wait 2s for the board to reset, send, wait, get reply
      mcu-serial open /dev/ttyACM0 -b 115200 delay 2000 sendline hello delay 100 receive

      # send a file, then read one byte back
      mcu-serial open /dev/ttyUSB0 ifile firmware.txt byte -t 1000
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(config_path)
    state = ShellState(
        baudrate=baud if baud is not None else config.baudrate,
        timeout_ms=max(0, timeout) if timeout is not None else config.timeout_ms,
        eol=_parse_eolchar(eolchar) if eolchar is not None else config.eol,
        max_len=config.max_len,
        poll_interval_ms=config.poll_interval_ms,
        drain_every=config.drain_every,
        byte_timeout_ms=config.byte_timeout_ms,
        quiet=quiet,
    )
    ctx.obj = state
    ctx.call_on_close(state.close)


@main.command("open")
@click.argument("port")
@click.option("-b", "--baud", type=int, help="Baud rate (defaults to the global setting)")
@click.pass_obj
@_reports_link_errors
def open_command(state: ShellState, port: str, baud: Optional[int]) -> None:
    """Open PORT, closing any port opened earlier, and flush it."""
    if baud is not None:
        state.baudrate = baud
    previous, state.handle = state.handle, None
    if previous is not None:
        state.say(f"closed port {previous.path}")
    state.handle = open_port(port, state.baudrate, poll_interval_ms=state.poll_interval_ms, previous=previous)
    state.say(f"opened port {port}")
    flush(state.handle)


@main.command("close")
@click.pass_obj
def close_command(state: ShellState) -> None:
    """Flush and close the open port."""
    if state.handle is not None:
        path = state.handle.path
        state.close()
        state.say(f"closed port {path}")


@main.command("send")
@click.argument("text")
@click.pass_obj
@_reports_link_errors
def send_command(state: ShellState, text: str) -> None:
    """Send TEXT as-is."""
    handle = state.require_handle()
    state.say(f"send string:{text}")
    write_text(handle, text)


@main.command("sendline")
@click.argument("text")
@click.pass_obj
@_reports_link_errors
def sendline_command(state: ShellState, text: str) -> None:
    """Send TEXT followed by a newline."""
    handle = state.require_handle()
    state.say(f"send string:{text}\n")
    write_text(handle, text, newline=True)


@main.command("num")
@click.argument("number", type=int)
@click.pass_obj
@_reports_link_errors
def num_command(state: ShellState, number: int) -> None:
    """Send NUMBER as a single byte."""
    handle = state.require_handle()
    try:
        write_byte(handle, number)
    except ValueError as e:
        raise click.ClickException(str(e))


@main.command("stdin")
@click.pass_obj
@_reports_link_errors
def stdin_command(state: ShellState) -> None:
    """Send standard input line by line."""
    handle = state.require_handle()
    for line in click.get_text_stream("stdin"):
        state.say(f"send string:{line}")
        write_text(handle, line)


@main.command("byte")
@click.option("-t", "--timeout", type=int, help="Timeout in millisecs")
@click.pass_obj
@_reports_link_errors
def byte_command(state: ShellState, timeout: Optional[int]) -> None:
    """Receive a single byte and print it in hex."""
    handle = state.require_handle()
    timeout_ms = state.timeout_ms if timeout is None else max(0, timeout)
    outcome = read_byte(handle, timeout_ms)
    if outcome.status is ReadStatus.ERROR:
        raise click.ClickException(f"error reading: {outcome.error}")
    if outcome.status is ReadStatus.TIMEOUT:
        state.say(f"no byte received within {timeout_ms} millisecs")
        return
    if not state.quiet:
        click.echo("read byte:", nl=False)
    click.echo(f"0x{outcome.byte:02x}")


@main.command("receive")
@click.option("-t", "--timeout", type=int, help="Timeout in millisecs")
@click.option("-e", "--eolchar", help="EOL char")
@click.pass_obj
@_reports_link_errors
def receive_command(state: ShellState, timeout: Optional[int], eolchar: Optional[str]) -> None:
    """Receive a line and print it."""
    handle = state.require_handle()
    timeout_ms = state.timeout_ms if timeout is None else max(0, timeout)
    eol = state.eol if eolchar is None else _parse_eolchar(eolchar)
    result = read_line(handle, eol, state.max_len, timeout_ms)
    if not state.quiet:
        click.echo("read string:", nl=False)
    click.echo(result.data.decode("utf-8", errors="replace"))


@main.command("flush")
@click.pass_obj
@_reports_link_errors
def flush_command(state: ShellState) -> None:
    """Discard queued input and output for a fresh read."""
    handle = state.require_handle()
    state.say("flushing receive buffer")
    flush(handle)


@main.command("delay")
@click.argument("millis", type=int)
@click.pass_obj
def delay_command(state: ShellState, millis: int) -> None:
    """Sleep for MILLIS milliseconds."""
    state.say(f"sleep {millis} millisecs")
    time.sleep(max(0, millis) / 1000.0)


@main.command("ifile")
@click.argument("path", type=click.Path(dir_okay=False))
@click.pass_obj
@_reports_link_errors
def ifile_command(state: ShellState, path: str) -> None:
    """Send the file at PATH, echoing it to the console."""
    handle = state.require_handle()
    try:
        source = open(path, "rb")
    except OSError as e:
        raise click.ClickException(f"error opening input file: {e}")
    with source:
        state.say(f'opened file "{path}"')
        report = stream_file(handle, source, echo=_console(state), drain_every=state.drain_every,
                             timeout_ms=state.byte_timeout_ms)
    if not state.quiet:
        click.echo("")
    if report.status is ReadStatus.EOF:
        state.say("end of file reached")
    else:
        raise click.ClickException(f"input loop broke unexpectedly ({report.status.value}): {report.error}")
    state.say(f"completed file read/input ({report.bytes_transferred} bytes) "
              f"({report.elapsed / 60.0:.2f} minutes OR {report.elapsed:.2f} seconds)")


@main.command("ofile")
@click.argument("path", type=click.Path(dir_okay=False))
@click.option("-t", "--timeout", type=int, help="Idle time ending the capture, in millisecs")
@click.pass_obj
@_reports_link_errors
def ofile_command(state: ShellState, path: str, timeout: Optional[int]) -> None:
    """Save bytes received from the port into the file at PATH."""
    handle = state.require_handle()
    timeout_ms = state.timeout_ms if timeout is None else max(0, timeout)
    try:
        sink = open(path, "wb")
    except OSError as e:
        raise click.ClickException(f"error opening output file: {e}")
    with sink:
        state.say(f'opened file "{path}"')
        state.say(f"\twarning: {timeout_ms / 1000.0:g} seconds to send file!")
        report = capture_to_file(handle, sink, first_timeout_ms=timeout_ms, idle_timeout_ms=timeout_ms,
                                 echo=_console(state), drain_every=state.drain_every)
    if report.status is ReadStatus.ERROR:
        raise click.ClickException(f"error reading: {report.error}")
    if report.bytes_transferred == 0:
        click.echo("error: no input found.")
        return
    state.say(f"completed file save ({report.bytes_transferred} bytes)")


@main.command("ports")
def ports_command() -> None:
    """List serial devices, likely USB-UART adapters first."""
    for port in list_likely_ports():
        click.echo(port)


if __name__ == "__main__":
    main()
