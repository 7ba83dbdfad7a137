from collections import deque

import pytest

from lineterm.escape import KeyReader, read_digits_until
from lineterm.keys import KeyCode, KeyEvent, Modifiers


class _Feed:
    def __init__(self, text, fail_poll=False):
        self.chars = deque(text)
        self.timeouts = []
        self.fail_poll = fail_poll

    def read_char(self):
        return self.chars.popleft() if self.chars else ""

    def poll(self, timeout_ms):
        self.timeouts.append(timeout_ms)
        if self.fail_poll:
            raise OSError("poll failed")
        return len(self.chars)


def _reader(text, timeout_ms=-1, fail_poll=False):
    feed = _Feed(text, fail_poll)
    return KeyReader(feed.read_char, feed.poll, timeout_ms), feed


def _key(text):
    reader, _ = _reader(text)
    return reader.next_key(False)


def test_plain_char():
    assert _key("a") == KeyEvent.from_char("a")


def test_lone_escape():
    assert _key("\x1b") == KeyEvent.ESC


@pytest.mark.parametrize(
    "seq, expected",
    [
        ("\x1b[A", KeyEvent(KeyCode.UP)),
        ("\x1b[D", KeyEvent(KeyCode.LEFT)),
        ("\x1b[Z", KeyEvent(KeyCode.BACK_TAB)),
        ("\x1b[a", KeyEvent(KeyCode.UP, Modifiers.SHIFT)),
        ("\x1b[[A", KeyEvent.function(1)),
        ("\x1b[3~", KeyEvent(KeyCode.DELETE)),
        ("\x1b[7~", KeyEvent(KeyCode.HOME)),
        ("\x1b[15~", KeyEvent.function(5)),
        ("\x1b[24~", KeyEvent.function(12)),
        ("\x1b[15;5~", KeyEvent.function(5, Modifiers.CTRL)),
        ("\x1b[200~", KeyEvent(KeyCode.BRACKETED_PASTE_START)),
        ("\x1b[201~", KeyEvent(KeyCode.BRACKETED_PASTE_END)),
        ("\x1b[1;5C", KeyEvent(KeyCode.RIGHT, Modifiers.CTRL)),
        ("\x1b[1;2H", KeyEvent(KeyCode.HOME, Modifiers.SHIFT)),
        ("\x1b[1;5p", KeyEvent(KeyCode.CHAR, Modifiers.CTRL, "0")),
        ("\x1b[1;5P", KeyEvent.function(1, Modifiers.CTRL)),
        ("\x1b[1;9A", KeyEvent(KeyCode.UP, Modifiers.ALT)),
        ("\x1b[2;3~", KeyEvent(KeyCode.INSERT, Modifiers.ALT)),
        ("\x1b[6;8~", KeyEvent(KeyCode.PAGE_DOWN, Modifiers.CTRL_ALT_SHIFT)),
        ("\x1b[5\x1e", KeyEvent(KeyCode.PAGE_UP, Modifiers.CTRL)),
        ("\x1b[8$", KeyEvent(KeyCode.END, Modifiers.SHIFT)),
        ("\x1b[5A", KeyEvent(KeyCode.UP, Modifiers.CTRL)),
        ("\x1bOP", KeyEvent.function(1)),
        ("\x1bOM", KeyEvent.ENTER),
        ("\x1bOa", KeyEvent(KeyCode.UP, Modifiers.CTRL)),
        ("\x1bOx", KeyEvent.function(10)),
        ("\x1bb", KeyEvent.alt("b")),
    ],
)
def test_escape_sequences(seq, expected):
    assert _key(seq) == expected


@pytest.mark.parametrize(
    "seq",
    ["\x1b[0", "\x1b[9", "\x1b[[Z", "\x1b[Q", "\x1b[9~", "\x1b[16~", "\x1bOz", "\x1b[11;5~"],
)
def test_unknown_sequences(seq):
    assert _key(seq) == KeyEvent(KeyCode.UNKNOWN_ESC_SEQ)


def test_double_escape_adds_alt():
    assert _key("\x1b\x1b[A") == KeyEvent(KeyCode.UP, Modifiers.ALT)


def test_double_escape_alone_is_escape():
    reader, feed = _reader("\x1b\x1b")
    assert reader.next_key(False) == KeyEvent.ESC
    assert not feed.chars


def test_double_escape_poll_error_is_escape():
    reader, _ = _reader("\x1b\x1b[A")
    reader._poll = lambda t: (_ for _ in ()).throw(OSError("boom")) if t == 100 else 1
    assert reader.next_key(False) == KeyEvent.ESC


def test_cursor_report_is_consumed():
    reader, _ = _reader("\x1b[12;34Rx")
    assert reader.next_key(False) == KeyEvent(KeyCode.UNKNOWN_ESC_SEQ)
    assert reader.next_key(False) == KeyEvent.from_char("x")


def test_single_esc_abort_polls_without_waiting():
    reader, feed = _reader("\x1b", timeout_ms=-1)
    assert reader.next_key(True) == KeyEvent.ESC
    assert feed.timeouts == [0]


def test_escape_poll_uses_configured_timeout():
    reader, feed = _reader("\x1b", timeout_ms=500)
    reader.next_key(True)
    assert feed.timeouts == [500]


def test_eof_raises():
    reader, _ = _reader("")
    with pytest.raises(EOFError):
        reader.next_key(False)


def test_truncated_sequence_raises_eof():
    reader, _ = _reader("\x1b[")
    with pytest.raises(EOFError):
        reader.next_key(False)


def test_read_pasted_text_normalises_newlines():
    reader, _ = _reader("hello\r\nworld\rx\x1b[201~rest")
    assert reader.read_pasted_text() == "hello\nworld\nx"
    assert reader.next_char() == "r"


def test_read_pasted_text_skips_other_sequences():
    reader, _ = _reader("ab\x1b[Ac\x1b[201~")
    assert reader.read_pasted_text() == "abc"


def test_read_digits_until():
    reader, _ = _reader("12;34R")
    assert read_digits_until(reader, ";") == 12
    assert read_digits_until(reader, "R") == 34


def test_read_digits_until_rejects_other_chars():
    reader, _ = _reader("1a")
    assert read_digits_until(reader, ";") is None


def test_read_digits_until_saturates():
    reader, _ = _reader("99999999999R")
    assert read_digits_until(reader, "R") == 4294967295


def test_next_char_sequence():
    reader, _ = _reader("xy")
    assert [reader.next_char(), reader.next_char()] == ["x", "y"]
    with pytest.raises(EOFError):
        reader.next_char()