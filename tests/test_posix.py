import errno
import os
import queue
import signal
import termios
import threading
from unittest import mock

import pytest

from lineterm.keys import KeyCode, KeyEvent, Modifiers
from lineterm.posix import (
    Behavior,
    BellStyle,
    ColorMode,
    ExternalPrinter,
    PosixRawReader,
    PosixRenderer,
    PosixTerminal,
    RawMode,
    TerminalCommand,
    get_win_size,
    is_unsupported_term,
    suspend,
)
from lineterm.render import Layout, Position


def _drain_pipe(fd):
    os.set_blocking(fd, False)
    chunks = []
    while True:
        try:
            data = os.read(fd, 4096)
        except BlockingIOError:
            break
        if not data:
            break
        chunks.append(data)
    return b"".join(chunks).decode()


@pytest.fixture
def out_pipe():
    r, w = os.pipe()
    yield r, w
    os.close(r)
    os.close(w)


@pytest.fixture
def in_pipe():
    r, w = os.pipe()
    fds = {"r": r, "w": w}
    yield fds
    for fd in fds.values():
        if fd is not None:
            os.close(fd)


def _reader(in_pipe, data, timeout_ms=200):
    os.write(in_pipe["w"], data)
    return PosixRawReader(in_pipe["r"], timeout_ms, {})


class _Highlighter:
    def highlight_prompt(self, prompt, default_prompt):
        return f"<{prompt}>"

    def highlight(self, line, pos):
        return line.upper()

    def highlight_hint(self, hint):
        return f"({hint})"


def test_unsupported_term(monkeypatch):
    monkeypatch.setenv("TERM", "xterm")
    assert not is_unsupported_term()
    monkeypatch.setenv("TERM", "dumb")
    assert is_unsupported_term()
    monkeypatch.setenv("TERM", "EMACS")
    assert is_unsupported_term()
    monkeypatch.delenv("TERM")
    assert not is_unsupported_term()


def test_prompt_with_ansi_escape_codes(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, True, BellStyle.AUDIBLE, 80)
    pos = out.calculate_position("\x1b[1;32m>>\x1b[0m ", Position())
    assert pos == Position(row=0, col=3)


def test_line_wrap(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, True, BellStyle.AUDIBLE, 80)
    prompt = "> "
    prompt_size = out.calculate_position(prompt, Position())

    old_layout = out.compute_layout(prompt_size, True, "", 0, None)
    assert old_layout.cursor == Position(row=0, col=2)
    assert old_layout.cursor == old_layout.end

    line = "a" * (out.cols - prompt_size.col + 1)
    new_layout = out.compute_layout(prompt_size, True, line, len(line), None)
    assert new_layout.cursor == Position(row=1, col=1)
    assert new_layout.cursor == new_layout.end

    out.refresh_line(prompt, line, len(line), None, old_layout, new_layout, None)
    expected = "\r\x1b[K> " + "a" * 79 + "\r\x1b[1C"
    assert out.buffer == expected
    assert _drain_pipe(out_pipe[0]) == expected


def test_refresh_line_with_highlighter_and_hint(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, True, BellStyle.AUDIBLE, 80)
    prompt_size = out.calculate_position("> ", Position())
    layout = out.compute_layout(prompt_size, True, "ab", 2, "cd")
    assert layout.end == Position(row=0, col=6)
    out.refresh_line("> ", "ab", 2, "cd", Layout(), layout, _Highlighter())
    assert out.buffer == "\r\x1b[K<> >AB(cd)\r\x1b[4C"


def test_refresh_line_adds_newline_at_exact_wrap(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 4)
    layout = out.compute_layout(Position(), False, "abcd", 4, None)
    assert layout.cursor == Position(row=1, col=0)
    out.refresh_line("", "abcd", 4, None, Layout(), layout, None)
    assert out.buffer == "\r\x1b[Kabcd\n\r"


def test_calculate_position_tab_wrap_and_wide(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 10)
    assert out.calculate_position("a\tb", Position()) == Position(row=0, col=5)
    assert out.calculate_position("x" * 10, Position()) == Position(row=1, col=0)
    assert out.calculate_position("ab\ncd", Position()) == Position(row=1, col=2)
    narrow = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 3)
    assert narrow.calculate_position("ab\u4e2d", Position()) == Position(row=1, col=2)


def test_move_cursor(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 80)
    out.move_cursor(Position(0, 0), Position(1, 1))
    assert _drain_pipe(out_pipe[0]) == "\x1b[B\x1b[C"
    out.move_cursor(Position(3, 5), Position(0, 2))
    assert _drain_pipe(out_pipe[0]) == "\x1b[3A\x1b[3D"


def test_beep_and_clear(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 80)
    out.beep()
    out.clear_screen()
    assert _drain_pipe(out_pipe[0]) == "\x07\x1b[H\x1b[J"
    quiet = PosixRenderer(out_pipe[1], 4, False, BellStyle.NONE, 80)
    quiet.beep()
    quiet.write_and_flush("x")
    assert _drain_pipe(out_pipe[0]) == "x"


def test_clear_rows(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 80)
    out.clear_rows(Layout(cursor=Position(0, 1), end=Position(2, 0)))
    assert _drain_pipe(out_pipe[0]) == "\x1b[2B" + "\r\x1b[K\x1b[A" * 2 + "\r\x1b[K"


def test_update_size_on_non_tty(out_pipe):
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 33)
    out.update_size()
    assert out.cols == 80


def test_get_win_size_on_non_tty():
    r, w = os.pipe()
    try:
        assert get_win_size(w) == (80, 24)
        assert get_win_size(r) == (80, 24)
    finally:
        os.close(r)
        os.close(w)


def test_reader_arrow_key(in_pipe):
    reader = _reader(in_pipe, b"\x1b[A")
    assert reader.next_key(False) == KeyEvent(KeyCode.UP)


def test_reader_alt_arrow(in_pipe):
    reader = _reader(in_pipe, b"\x1b\x1b[A")
    assert reader.next_key(False) == KeyEvent(KeyCode.UP, Modifiers.ALT)


def test_reader_single_escape(in_pipe):
    reader = _reader(in_pipe, b"\x1b", timeout_ms=10)
    assert reader.next_key(False) == KeyEvent.ESC


def test_reader_plain_and_utf8_chars(in_pipe):
    reader = _reader(in_pipe, "a\u00e9".encode())
    assert reader.next_key(False) == KeyEvent.from_char("a")
    assert reader.next_char() == "\u00e9"


def test_reader_invalid_utf8(in_pipe):
    reader = _reader(in_pipe, b"\xff")
    with pytest.raises(UnicodeDecodeError):
        reader.next_char()


def test_reader_eof(in_pipe):
    reader = _reader(in_pipe, b"x")
    os.close(in_pipe["w"])
    in_pipe["w"] = None
    assert reader.next_char() == "x"
    with pytest.raises(EOFError):
        reader.next_char()


def test_reader_pasted_text(in_pipe):
    reader = _reader(in_pipe, b"a\r\nb\rc\x1b[201~")
    assert reader.read_pasted_text() == "a\nb\nc"


def test_reader_poll(in_pipe):
    reader = PosixRawReader(in_pipe["r"], 10, {})
    assert reader.poll(0) == 0
    os.write(in_pipe["w"], b"xy")
    assert reader.poll(0) > 0


def test_reader_find_binding(in_pipe):
    reader = PosixRawReader(in_pipe["r"], -1, {KeyEvent.ctrl("D"): TerminalCommand.END_OF_FILE})
    assert reader.find_binding(KeyEvent.ctrl("D")) is TerminalCommand.END_OF_FILE
    assert reader.find_binding(KeyEvent.ctrl("C")) is None


def test_reader_wait_for_input_without_printer(in_pipe):
    reader = _reader(in_pipe, b"q")
    assert reader.wait_for_input(False) == KeyEvent.from_char("q")


def test_move_cursor_at_leftmost_with_pending_input(in_pipe, out_pipe):
    reader = _reader(in_pipe, b"x")
    out = PosixRenderer(out_pipe[1], 4, False, BellStyle.AUDIBLE, 80)
    out.move_cursor_at_leftmost(reader)
    assert _drain_pipe(out_pipe[0]) == ""
    assert reader.next_char() == "x"


@pytest.mark.parametrize("response, expected", [(b"\x1b[12;5R", "\n"), (b"\x1b[3;1R", "")])
def test_move_cursor_at_leftmost_requests_position(in_pipe, out_pipe, response, expected):
    reader = PosixRawReader(in_pipe["r"], 100, {})
    out_r, out_w = out_pipe
    out = PosixRenderer(out_w, 4, False, BellStyle.AUDIBLE, 80)
    requests = []

    def respond():
        request = os.read(out_r, 4)
        requests.append(request)
        if request == b"\x1b[6n":
            os.write(in_pipe["w"], response)

    thread = threading.Thread(target=respond)
    thread.start()
    out.move_cursor_at_leftmost(reader)
    thread.join(5)
    assert requests == [b"\x1b[6n"]
    assert _drain_pipe(out_r) == expected
    # The whole response was consumed and nothing more.
    assert reader.poll(0) == 0
    os.write(in_pipe["w"], b"z")
    assert reader.next_char() == "z"


def test_raw_mode_restores_settings(in_pipe, out_pipe):
    saved = [1, 2, 3, 4, 5, 6, []]
    flag = threading.Event()
    flag.set()
    with mock.patch("termios.tcsetattr") as tcsetattr:
        with RawMode(saved, in_pipe["r"], out_pipe[1], flag):
            assert tcsetattr.call_count == 0
    assert tcsetattr.call_args_list == [mock.call(in_pipe["r"], termios.TCSADRAIN, saved)]
    assert not flag.is_set()
    assert _drain_pipe(out_pipe[0]) == "\x1b[?2004l"


def test_external_printer_writes_directly_outside_raw_mode(out_pipe):
    wake_r, wake_w = os.pipe()
    try:
        printer = ExternalPrinter(queue.Queue(maxsize=1), wake_w, threading.Event(), out_pipe[1])
        printer.print("hello")
        assert _drain_pipe(out_pipe[0]) == "hello"
        assert _drain_pipe(wake_r) == ""
    finally:
        os.close(wake_r)
        os.close(wake_w)


def test_external_printer_queues_in_raw_mode(out_pipe):
    wake_r, wake_w = os.pipe()
    try:
        flag = threading.Event()
        flag.set()
        messages = queue.Queue(maxsize=1)
        printer = ExternalPrinter(messages, wake_w, flag, out_pipe[1])
        printer.print("later")
        assert messages.get_nowait() == "later"
        assert _drain_pipe(wake_r) == "m"
        assert _drain_pipe(out_pipe[0]) == ""
    finally:
        os.close(wake_r)
        os.close(wake_w)


def test_terminal_unsupported(monkeypatch):
    monkeypatch.setenv("TERM", "dumb")
    with PosixTerminal(ColorMode.FORCED, Behavior.STDIO, 4, BellStyle.NONE, False) as term:
        assert term.is_unsupported()
        assert term.colors_enabled()
        with pytest.raises(OSError) as info:
            term.create_external_printer()
        assert info.value.errno == errno.ENOTTY


def test_terminal_writer_and_colors(monkeypatch):
    monkeypatch.setenv("TERM", "xterm")
    with PosixTerminal(ColorMode.DISABLED, Behavior.STDIO, 4, BellStyle.NONE, False) as term:
        assert not term.colors_enabled()
        writer = term.create_writer()
        assert writer.tab_stop == 4
        assert writer.bell_style is BellStyle.NONE
        assert writer.colors_enabled is False
        reader = term.create_reader(50, {KeyEvent.ctrl("C"): TerminalCommand.INTERRUPT})
        assert reader.timeout_ms == 50
        assert reader.find_binding(KeyEvent.ctrl("C")) is TerminalCommand.INTERRUPT


def test_terminal_writeln(capfd, monkeypatch):
    monkeypatch.setenv("TERM", "xterm")
    with PosixTerminal(ColorMode.ENABLED, Behavior.STDIO, 8, BellStyle.AUDIBLE, False) as term:
        term.writeln()
    assert capfd.readouterr().out == "\n"


def test_suspend_signals_process_group():
    with mock.patch("os.kill") as kill:
        result = suspend()
    assert result is None
    assert kill.call_args_list == [mock.call(0, signal.SIGTSTP)]