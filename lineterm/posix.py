"""POSIX terminal: raw mode, key input decoding and ANSI output."""

from __future__ import annotations

import codecs
import enum
import errno
import logging
import os
import queue
import select
import signal
import socket
import sys
import termios
import threading
import weakref
from dataclasses import dataclass
from typing import Any

from lineterm.escape import KeyReader, read_digits_until
from lineterm.keys import KeyEvent
from lineterm.render import EscapeTracker, Layout, Position, Renderer, graphemes

_log = logging.getLogger(__name__)

UNSUPPORTED_TERM = ("dumb", "cons25", "emacs")

BRACKETED_PASTE_ON = "\x1b[?2004h"
BRACKETED_PASTE_OFF = "\x1b[?2004l"


class ColorMode(enum.Enum):
    """When to emit colours."""

    ENABLED = "enabled"
    FORCED = "forced"
    DISABLED = "disabled"


class Behavior(enum.Enum):
    """Which streams to use for terminal input and output."""

    STDIO = "stdio"
    PREFER_TERM = "prefer_term"


class BellStyle(enum.Enum):
    """How to signal the user."""

    AUDIBLE = "audible"
    NONE = "none"
    VISIBLE = "visible"


class TerminalCommand(enum.Enum):
    """Commands bound to the terminal's special control characters."""

    END_OF_FILE = "end_of_file"
    INTERRUPT = "interrupt"
    SUSPEND = "suspend"


class WindowResized(Exception):
    """The terminal window was resized while waiting for input."""


def is_unsupported_term() -> bool:
    """Return True if $TERM names a terminal that cannot do raw-mode editing."""
    term = os.environ.get("TERM")
    if term is None:
        return False
    return term.lower() in UNSUPPORTED_TERM


def get_win_size(fd: int) -> tuple[int, int]:
    """Return (columns, rows) of the terminal on ``fd``; (80, 24) if unknown.

    A zero-sized pseudo-terminal is treated as 80 columns and unlimited rows.
    """
    try:
        size = os.get_terminal_size(fd)
    except OSError:
        return 80, 24
    cols = size.columns or 80
    rows = size.lines or sys.maxsize
    return cols, rows


def suspend() -> None:
    """Suspend the whole process group."""
    os.kill(0, signal.SIGTSTP)


def _isatty(fd: int) -> bool:
    try:
        return os.isatty(fd)
    except OSError:
        return False


def _write_all(fd: int, text: str) -> None:
    data = memoryview(text.encode("utf-8"))
    while data:
        n = os.write(fd, data)
        if n == 0:
            raise OSError(errno.EIO, os.strerror(errno.EIO))
        data = data[n:]


def _drain(fd: int) -> bool:
    """Empty a non-blocking descriptor; return True if anything was read."""
    got = False
    while True:
        try:
            data = os.read(fd, 64)
        except (BlockingIOError, InterruptedError):
            return got
        if not data:
            return got
        got = True


class PosixRenderer(Renderer):
    """Writes prompt, line and cursor moves as ANSI sequences to ``out``."""

    def __init__(
        self,
        out: int,
        tab_stop: int = 8,
        colors_enabled: bool = False,
        bell_style: BellStyle = BellStyle.AUDIBLE,
        cols: int | None = None,
    ) -> None:
        self.out = out
        self.tab_stop = tab_stop
        self.colors_enabled = colors_enabled
        self.bell_style = bell_style
        self.cols = cols if cols is not None else get_win_size(out)[0]
        self.buffer = ""

    @property
    def rows(self) -> int:
        """Current number of rows of the terminal."""
        return get_win_size(self.out)[1]

    def _clear_old_rows(self, layout: Layout) -> str:
        current_row = layout.cursor.row
        old_rows = layout.end.row
        parts = []
        movement = max(old_rows - current_row, 0)
        if movement > 0:
            parts.append(f"\x1b[{movement}B")
        parts.append("\r\x1b[K\x1b[A" * old_rows)
        parts.append("\r\x1b[K")
        return "".join(parts)

    def move_cursor(self, old: Position, new: Position) -> None:
        """Move the cursor from ``old`` to ``new``."""
        parts = []
        if new.row > old.row:
            shift = new.row - old.row
            parts.append("\x1b[B" if shift == 1 else f"\x1b[{shift}B")
        elif new.row < old.row:
            shift = old.row - new.row
            parts.append("\x1b[A" if shift == 1 else f"\x1b[{shift}A")
        if new.col > old.col:
            shift = new.col - old.col
            parts.append("\x1b[C" if shift == 1 else f"\x1b[{shift}C")
        elif new.col < old.col:
            shift = old.col - new.col
            parts.append("\x1b[D" if shift == 1 else f"\x1b[{shift}D")
        self.buffer = "".join(parts)
        _write_all(self.out, self.buffer)

    def refresh_line(
        self,
        prompt: str,
        line: str,
        pos: int,
        hint: str | None,
        old_layout: Layout,
        new_layout: Layout,
        highlighter: Any = None,
    ) -> None:
        """Redraw prompt, line and hint, then place the cursor."""
        cursor = new_layout.cursor
        end_pos = new_layout.end
        parts = [self._clear_old_rows(old_layout)]
        if highlighter is not None:
            parts.append(highlighter.highlight_prompt(prompt, new_layout.default_prompt))
            parts.append(highlighter.highlight(line, pos))
        else:
            parts.append(prompt)
            parts.append(line)
        if hint is not None:
            parts.append(highlighter.highlight_hint(hint) if highlighter is not None else hint)
        ends_with_newline = hint.endswith("\n") if hint is not None else line.endswith("\n")
        # the terminal does not wrap by itself at the last column
        if end_pos.col == 0 and end_pos.row > 0 and not ends_with_newline:
            parts.append("\n")
        movement = end_pos.row - cursor.row
        if movement > 0:
            parts.append(f"\x1b[{movement}A")
        parts.append(f"\r\x1b[{cursor.col}C" if cursor.col > 0 else "\r")
        self.buffer = "".join(parts)
        _write_all(self.out, self.buffer)

    def write_and_flush(self, text: str) -> None:
        """Write ``text`` to the terminal."""
        _write_all(self.out, text)

    def calculate_position(self, text: str, orig: Position) -> Position:
        """Position after displaying ``text`` from ``orig``, wrapping at ``cols``.

        Escape sequences take no room; wide characters are never split.
        """
        row, col = orig.row, orig.col
        tracker = EscapeTracker()
        for g in graphemes(text):
            if g == "\n":
                row += 1
                col = 0
                continue
            cw = self.tab_stop - col % self.tab_stop if g == "\t" else tracker.width(g)
            col += cw
            if col > self.cols:
                row += 1
                col = cw
        if col == self.cols:
            col = 0
            row += 1
        return Position(row, col)

    def beep(self) -> None:
        """Ring the bell if the bell style is audible."""
        if self.bell_style is BellStyle.AUDIBLE:
            self.write_and_flush("\x07")

    def clear_screen(self) -> None:
        """Clear the whole screen."""
        self.write_and_flush("\x1b[H\x1b[J")

    def clear_rows(self, layout: Layout) -> None:
        """Clear the rows used by the prompt and line of ``layout``."""
        self.buffer = self._clear_old_rows(layout)
        _write_all(self.out, self.buffer)

    def update_size(self) -> None:
        """Re-read the number of columns of the terminal."""
        self.cols = get_win_size(self.out)[0]

    def move_cursor_at_leftmost(self, reader: PosixRawReader) -> None:
        """Start a new line unless the cursor already is in the first column."""
        if reader.poll(0) != 0:
            _log.debug("cannot request cursor location")
            return
        self.write_and_flush("\x1b[6n")
        if (
            reader.poll(100) == 0
            or reader.next_char() != "\x1b"
            or reader.next_char() != "["
            or read_digits_until(reader, ";") is None
        ):
            _log.warning("cannot read initial cursor location")
            return
        col = read_digits_until(reader, "R")
        _log.debug("initial cursor location: %r", col)
        if col != 1:
            self.write_and_flush("\n")


class PosixRawReader:
    """Reads UTF-8 characters from a descriptor and decodes key presses."""

    def __init__(
        self,
        fd: int,
        timeout_ms: int = -1,
        key_map: dict[KeyEvent, TerminalCommand] | None = None,
    ) -> None:
        self.fd = fd
        self.key_map = dict(key_map or {})
        self.sigwinch_fd: int | None = None
        self._external: tuple[int, queue.Queue[str]] | None = None
        self._buf = bytearray()
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._keys = KeyReader(self._read_char, self.poll, timeout_ms)

    @property
    def timeout_ms(self) -> int:
        return self._keys.timeout_ms

    @timeout_ms.setter
    def timeout_ms(self, value: int) -> None:
        self._keys.timeout_ms = value

    def _fill(self) -> bool:
        if self.sigwinch_fd is not None:
            readable = select.select([self.fd, self.sigwinch_fd], [], [])[0]
            if self.fd not in readable and _drain(self.sigwinch_fd):
                raise WindowResized()
        data = os.read(self.fd, 1024)
        self._buf += data
        return bool(data)

    def _read_char(self) -> str:
        while True:
            if not self._buf and not self._fill():
                self._decoder.reset()
                return ""
            byte = bytes(self._buf[:1])
            del self._buf[:1]
            try:
                c = self._decoder.decode(byte)
            except UnicodeDecodeError:
                self._decoder.reset()
                raise
            if c:
                return c

    def poll(self, timeout_ms: int) -> int:
        """Return a non-zero count if input is ready within ``timeout_ms`` ms."""
        if self._buf:
            return len(self._buf)
        fds = [self.fd]
        if self.sigwinch_fd is not None:
            fds.append(self.sigwinch_fd)
        timeout = None if timeout_ms < 0 else timeout_ms / 1000
        readable = select.select(fds, [], [], timeout)[0]
        if self.fd in readable:
            return 1
        if self.sigwinch_fd is not None and self.sigwinch_fd in readable:
            if _drain(self.sigwinch_fd):
                raise WindowResized()
        return 0

    def next_char(self) -> str:
        """Return the next character; raise EOFError at end of input."""
        return self._keys.next_char()

    def next_key(self, single_esc_abort: bool = False) -> KeyEvent:
        """Read and decode one key press."""
        return self._keys.next_key(single_esc_abort)

    def read_pasted_text(self) -> str:
        """Read bracketed-paste text up to its end marker."""
        return self._keys.read_pasted_text()

    def find_binding(self, key: KeyEvent) -> TerminalCommand | None:
        """Return the command the terminal binds ``key`` to, if any."""
        cmd = self.key_map.get(key)
        if cmd is not None:
            _log.debug("terminal key binding: %s => %s", key, cmd)
        return cmd

    def wait_for_input(self, single_esc_abort: bool = False) -> KeyEvent | str:
        """Wait for a key press or, if a printer is attached, an external message.

        Returns the KeyEvent, or the message text. User input is preferred.
        """
        if self._external is None:
            return self.next_key(single_esc_abort)
        wake_fd, messages = self._external
        while True:
            if self._buf:
                return self.next_key(single_esc_abort)
            fds = [self.fd, wake_fd]
            if self.sigwinch_fd is not None:
                fds.append(self.sigwinch_fd)
            readable = select.select(fds, [], [])[0]
            if self.sigwinch_fd is not None and self.sigwinch_fd in readable:
                _drain(self.sigwinch_fd)
                raise WindowResized()
            if self.fd in readable:
                return self.next_key(single_esc_abort)
            if wake_fd in readable:
                os.read(wake_fd, 1)
                try:
                    return messages.get_nowait()
                except queue.Empty:
                    continue


@dataclass
class RawMode:
    """Saved terminal settings; restoring them leaves raw mode."""

    saved: list
    tty_in: int
    tty_out: int | None
    raw_flag: threading.Event

    def disable_raw_mode(self) -> None:
        """Restore the saved settings and turn bracketed paste off."""
        termios.tcsetattr(self.tty_in, termios.TCSADRAIN, self.saved)
        if self.tty_out is not None:
            _write_all(self.tty_out, BRACKETED_PASTE_OFF)
        self.raw_flag.clear()

    def __enter__(self) -> RawMode:
        return self

    def __exit__(self, *args: object) -> None:
        self.disable_raw_mode()


@dataclass(eq=False)
class ExternalPrinter:
    """Prints messages from other threads without garbling the edited line."""

    messages: queue.Queue
    wakeup_fd: int
    raw_flag: threading.Event
    tty_out: int

    def print(self, msg: str) -> None:
        """Print ``msg`` now, or hand it to the reader while in raw mode."""
        if not self.raw_flag.is_set():
            _write_all(self.tty_out, msg)
        else:
            self.messages.put(msg)
            os.write(self.wakeup_fd, b"m")


class _SigWinCh:
    def __init__(self, reader: socket.socket, writer: socket.socket, previous: Any) -> None:
        self.reader = reader
        self.writer = writer
        self.previous = previous

    @property
    def fd(self) -> int:
        return self.reader.fileno()

    @classmethod
    def install(cls) -> _SigWinCh | None:
        reader, writer = socket.socketpair()
        reader.setblocking(False)
        writer.setblocking(False)

        def handler(signum: int, frame: Any) -> None:
            try:
                writer.send(b"s")
            except OSError:
                pass

        try:
            previous = signal.signal(signal.SIGWINCH, handler)
        except ValueError:  # not in the main thread
            reader.close()
            writer.close()
            return None
        return cls(reader, writer, previous)

    def uninstall(self) -> None:
        try:
            signal.signal(
                signal.SIGWINCH,
                self.previous if self.previous is not None else signal.SIG_DFL,
            )
        except ValueError:
            pass
        self.reader.close()
        self.writer.close()


_KEY_CONTROLS = (
    ("VEOF", TerminalCommand.END_OF_FILE),
    ("VINTR", TerminalCommand.INTERRUPT),
    ("VQUIT", TerminalCommand.INTERRUPT),
    ("VSUSP", TerminalCommand.SUSPEND),
)


def _control_char(value: bytes | int) -> str:
    return chr(value[0]) if isinstance(value, bytes) else chr(value)


class PosixTerminal:
    """A POSIX terminal: stream selection, raw mode, readers and writers."""

    def __init__(
        self,
        color_mode: ColorMode = ColorMode.ENABLED,
        behavior: Behavior = Behavior.STDIO,
        tab_stop: int = 8,
        bell_style: BellStyle = BellStyle.AUDIBLE,
        enable_bracketed_paste: bool = True,
    ) -> None:
        tty: int | None = None
        if behavior is Behavior.PREFER_TERM:
            try:
                tty = os.open("/dev/tty", os.O_RDWR)
            except OSError:
                tty = None
        if tty is not None:
            self._tty_in = self._tty_out = tty
            self._close_on_drop = True
        else:
            self._tty_in, self._tty_out = 0, 1
            self._close_on_drop = False
        self._is_in_a_tty = _isatty(self._tty_in)
        self._is_out_a_tty = _isatty(self._tty_out)
        self.color_mode = color_mode
        self.tab_stop = tab_stop
        self.bell_style = bell_style
        self.enable_bracketed_paste = enable_bracketed_paste
        self.raw_flag = threading.Event()
        self._unsupported = is_unsupported_term()
        self._printers: weakref.WeakSet[ExternalPrinter] = weakref.WeakSet()
        self._external: tuple[int, int, queue.Queue[str]] | None = None
        self._closed = False
        self._sigwinch = (
            _SigWinCh.install()
            if not self._unsupported and self._is_in_a_tty and self._is_out_a_tty
            else None
        )

    def is_unsupported(self) -> bool:
        """Whether $TERM rules out rich line editing."""
        return self._unsupported

    def is_input_tty(self) -> bool:
        return self._is_in_a_tty

    def is_output_tty(self) -> bool:
        return self._is_out_a_tty

    def colors_enabled(self) -> bool:
        """Whether output should carry colours."""
        if self.color_mode is ColorMode.FORCED:
            return True
        if self.color_mode is ColorMode.DISABLED:
            return False
        return self._is_out_a_tty

    def _drop_external(self) -> None:
        if self._external is not None:
            read_fd, write_fd, _ = self._external
            os.close(read_fd)
            os.close(write_fd)
            self._external = None

    def enable_raw_mode(self) -> tuple[RawMode, dict[KeyEvent, TerminalCommand]]:
        """Enter raw mode; return the restorer and the terminal's key bindings."""
        if not self._is_in_a_tty:
            raise OSError(errno.ENOTTY, os.strerror(errno.ENOTTY))
        original = termios.tcgetattr(self._tty_in)
        raw = termios.tcgetattr(self._tty_in)
        raw[0] &= ~(termios.BRKINT | termios.ICRNL | termios.INPCK | termios.ISTRIP | termios.IXON)
        raw[2] |= termios.CS8
        raw[3] &= ~(termios.ECHO | termios.ICANON | termios.IEXTEN | termios.ISIG)
        raw[6][termios.VMIN] = 1
        raw[6][termios.VTIME] = 0

        key_map: dict[KeyEvent, TerminalCommand] = {}
        for name, cmd in _KEY_CONTROLS:
            key = KeyEvent.from_char(_control_char(raw[6][getattr(termios, name)]))
            _log.debug("%s: %s", name, key)
            key_map[key] = cmd

        termios.tcsetattr(self._tty_in, termios.TCSADRAIN, raw)
        self.raw_flag.set()

        out: int | None = None
        if self.enable_bracketed_paste:
            try:
                _write_all(self._tty_out, BRACKETED_PASTE_ON)
                out = self._tty_out
            except OSError as exc:
                _log.debug("Cannot enable bracketed paste: %s", exc)

        # no printer left: the reader need not watch the message pipe
        if not self._printers:
            self._drop_external()

        return RawMode(original, self._tty_in, out, self.raw_flag), key_map

    def create_reader(
        self,
        timeout_ms: int = -1,
        key_map: dict[KeyEvent, TerminalCommand] | None = None,
    ) -> PosixRawReader:
        """Create a reader on the terminal input."""
        reader = PosixRawReader(self._tty_in, timeout_ms, key_map)
        if self._sigwinch is not None:
            reader.sigwinch_fd = self._sigwinch.fd
        if self._external is not None:
            read_fd, _, messages = self._external
            reader._external = (read_fd, messages)
        return reader

    def create_writer(self) -> PosixRenderer:
        """Create a renderer on the terminal output."""
        return PosixRenderer(self._tty_out, self.tab_stop, self.colors_enabled(), self.bell_style)

    def writeln(self) -> None:
        """Write a newline to the terminal output."""
        _write_all(self._tty_out, "\n")

    def create_external_printer(self) -> ExternalPrinter:
        """Create a printer usable from other threads."""
        if self._external is None:
            if self._unsupported or not self._is_in_a_tty or not self._is_out_a_tty:
                raise OSError(errno.ENOTTY, os.strerror(errno.ENOTTY))
            read_fd, write_fd = os.pipe()
            self._external = (read_fd, write_fd, queue.Queue(maxsize=1))
        _, write_fd, messages = self._external
        printer = ExternalPrinter(messages, write_fd, self.raw_flag, self._tty_out)
        self._printers.add(printer)
        return printer

    def close(self) -> None:
        """Release the terminal descriptors and the resize handler."""
        if self._closed:
            return
        self._closed = True
        if self._close_on_drop:
            os.close(self._tty_in)
        if self._sigwinch is not None:
            self._sigwinch.uninstall()
            self._sigwinch = None
        self._drop_external()

    def __enter__(self) -> PosixTerminal:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()