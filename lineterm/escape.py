"""Decoding of terminal input characters into key events."""

from __future__ import annotations

import logging
from typing import Callable

from lineterm.keys import KeyCode, KeyEvent, Modifiers

_log = logging.getLogger(__name__)

_DIGITS = "0123456789"
_U32_MAX = 2**32 - 1

_UNKNOWN = KeyEvent(KeyCode.UNKNOWN_ESC_SEQ)
_PASTE_END = KeyEvent(KeyCode.BRACKETED_PASTE_END)

# Cursor-key final characters
_UP, _DOWN, _RIGHT, _LEFT, _END, _HOME = "A", "B", "C", "D", "F", "H"
# Keypad digits of "\E[<digit>~"
_INSERT, _DELETE, _PAGE_UP, _PAGE_DOWN = "2", "3", "5", "6"
_RXVT_HOME, _RXVT_END = "7", "8"

_RXVT_SHIFT = "$"
_RXVT_CTRL = "\x1e"
_RXVT_CTRL_SHIFT = "@"

# xterm modifier parameter -> modifiers
_MOD_DIGITS = {
    "2": Modifiers.SHIFT,
    "3": Modifiers.ALT,
    "4": Modifiers.ALT_SHIFT,
    "5": Modifiers.CTRL,
    "6": Modifiers.CTRL_SHIFT,
    "7": Modifiers.CTRL_ALT,
    "8": Modifiers.CTRL_ALT_SHIFT,
}

_CURSOR_KEYS = {
    _UP: KeyCode.UP,
    _DOWN: KeyCode.DOWN,
    _RIGHT: KeyCode.RIGHT,
    _LEFT: KeyCode.LEFT,
    _END: KeyCode.END,
    _HOME: KeyCode.HOME,
}

_ARROWS = {k: v for k, v in _CURSOR_KEYS.items() if k in (_UP, _DOWN, _RIGHT, _LEFT)}


def _key(code: KeyCode, mods: Modifiers = Modifiers.NONE) -> KeyEvent:
    return KeyEvent(code, mods)


# "\E[[<c>" (Linux console)
_LINUX_CONSOLE = {c: KeyEvent.function(n) for n, c in enumerate("ABCDE", start=1)}

# "\E[<c>" (ANSI)
_CSI_SIMPLE = {
    **{c: _key(code) for c, code in _CURSOR_KEYS.items()},
    "Z": _key(KeyCode.BACK_TAB),
    "a": _key(KeyCode.UP, Modifiers.SHIFT),
    "b": _key(KeyCode.DOWN, Modifiers.SHIFT),
    "c": _key(KeyCode.RIGHT, Modifiers.SHIFT),
    "d": _key(KeyCode.LEFT, Modifiers.SHIFT),
}

# "\E[<digit>~"
_CSI_TILDE = {
    "1": _key(KeyCode.HOME),
    _RXVT_HOME: _key(KeyCode.HOME),
    _INSERT: _key(KeyCode.INSERT),
    _DELETE: _key(KeyCode.DELETE),
    "4": _key(KeyCode.END),
    _RXVT_END: _key(KeyCode.END),
    _PAGE_UP: _key(KeyCode.PAGE_UP),
    _PAGE_DOWN: _key(KeyCode.PAGE_DOWN),
}

# "\E[<digit><digit>~" -> function key number
_FUNCTION_KEYS = {
    "11": 1, "12": 2, "13": 3, "14": 4, "15": 5,
    "17": 6, "18": 7, "19": 8, "20": 9, "21": 10,
    "23": 11, "24": 12,
}

# "\E[<digit><digit>;5~" -> CTRL + function key
_CTRL_FUNCTION_KEYS = {
    "15": 5, "17": 6, "18": 7, "19": 8, "20": 9,
    "21": 10, "23": 11, "24": 12,
}

# "\E[<digit><digit><digit>~"
_CSI_THREE_DIGITS = {
    "200": _key(KeyCode.BRACKETED_PASTE_START),
    "201": _PASTE_END,
}


def _modified_cursor_table() -> dict[tuple[str, str], KeyEvent]:
    """Build the "\\E[1;<mod><c>" table."""
    table: dict[tuple[str, str], KeyEvent] = {}
    for digit, mods in _MOD_DIGITS.items():
        for c, code in _CURSOR_KEYS.items():
            table[(digit, c)] = _key(code, mods)
        if Modifiers.CTRL in mods:
            for n, c in enumerate("pqrstuvwxy"):
                table[(digit, c)] = KeyEvent(KeyCode.CHAR, mods, str(n))
    table[("5", "P")] = KeyEvent.function(1, Modifiers.CTRL)
    table[("5", "Q")] = KeyEvent.function(2, Modifiers.CTRL)
    table[("5", "S")] = KeyEvent.function(4, Modifiers.CTRL)
    # Meta + arrow on some Macs with iTerm defaults
    for c, code in _ARROWS.items():
        table[("9", c)] = _key(code, Modifiers.ALT)
    return table


_CSI_MODIFIED = _modified_cursor_table()

# "\E[<digit>;<mod>~"
_CSI_MODIFIED_TILDE = {
    (seq, digit): _key(code, mods)
    for seq, code in (
        (_INSERT, KeyCode.INSERT),
        (_DELETE, KeyCode.DELETE),
        (_PAGE_UP, KeyCode.PAGE_UP),
        (_PAGE_DOWN, KeyCode.PAGE_DOWN),
    )
    for digit, mods in _MOD_DIGITS.items()
}

# "\E[<digit><c>" (rxvt)
_RXVT = {
    (_DELETE, _RXVT_CTRL): _key(KeyCode.DELETE, Modifiers.CTRL),
    (_DELETE, _RXVT_CTRL_SHIFT): _key(KeyCode.DELETE, Modifiers.CTRL_SHIFT),
    **{("5", c): _key(code, Modifiers.CTRL) for c, code in _ARROWS.items()},
    **{
        (seq, suffix): _key(code, mods)
        for seq, code in (
            (_PAGE_UP, KeyCode.PAGE_UP),
            (_PAGE_DOWN, KeyCode.PAGE_DOWN),
            (_RXVT_HOME, KeyCode.HOME),
            (_RXVT_END, KeyCode.END),
        )
        for suffix, mods in (
            (_RXVT_CTRL, Modifiers.CTRL),
            (_RXVT_SHIFT, Modifiers.SHIFT),
            (_RXVT_CTRL_SHIFT, Modifiers.CTRL_SHIFT),
        )
    },
}

# "\EO<c>" (SS3)
_SS3 = {
    **{c: _key(code) for c, code in _CURSOR_KEYS.items()},
    "M": KeyEvent.ENTER,
    "P": KeyEvent.function(1),
    "Q": KeyEvent.function(2),
    "R": KeyEvent.function(3),
    "S": KeyEvent.function(4),
    "a": _key(KeyCode.UP, Modifiers.CTRL),
    "b": _key(KeyCode.DOWN, Modifiers.CTRL),
    "c": _key(KeyCode.RIGHT, Modifiers.CTRL),
    "d": _key(KeyCode.LEFT, Modifiers.CTRL),
    "l": KeyEvent.function(8),
    "t": KeyEvent.function(5),
    "u": KeyEvent.function(6),
    "v": KeyEvent.function(7),
    "w": KeyEvent.function(9),
    "x": KeyEvent.function(10),
}


def _unsupported(seq: str) -> KeyEvent:
    _log.debug("unsupported esc sequence: \\E%r", seq)
    return _UNKNOWN


class KeyReader:
    """Turns a stream of characters into key events.

    ``read_char()`` returns the next character, or ``""`` at end of input.
    ``poll(timeout_ms)`` returns how many characters are ready within
    ``timeout_ms`` milliseconds (a negative timeout waits indefinitely).
    ``timeout_ms`` is the delay used to tell a lone Escape from the start of
    an escape sequence.
    """

    def __init__(
        self,
        read_char: Callable[[], str],
        poll: Callable[[int], int],
        timeout_ms: int = -1,
    ) -> None:
        self._read_char = read_char
        self._poll = poll
        self.timeout_ms = timeout_ms

    def next_char(self) -> str:
        """Return the next character; raise EOFError at end of input."""
        c = self._read_char()
        if not c:
            raise EOFError("end of input")
        if len(c) != 1:
            raise ValueError(f"expected a single character, got {c!r}")
        return c

    def next_key(self, single_esc_abort: bool = False) -> KeyEvent:
        """Read one key press, decoding escape sequences."""
        c = self.next_char()
        key = KeyEvent.from_char(c)
        if key == KeyEvent.ESC:
            timeout = 0 if single_esc_abort and self.timeout_ms == -1 else self.timeout_ms
            if self._poll(timeout) != 0:
                key = self.escape_sequence()
        _log.debug("c: %r => key: %s", c, key)
        return key

    def escape_sequence(self) -> KeyEvent:
        """Decode the rest of a sequence whose leading Escape was already read."""
        return self._escape_sequence(allow_recurse=True)

    def _escape_sequence(self, allow_recurse: bool) -> KeyEvent:
        seq1 = self.next_char()
        if seq1 == "[":
            return self._escape_csi()
        if seq1 == "O":
            return self._escape_o()
        if seq1 == "\x1b":
            # "\E\E<seq>" is Alt plus <seq>; "\E\E" alone is the Escape key.
            if not allow_recurse:
                return KeyEvent.ESC
            timeout = 100 if self.timeout_ms < 0 else self.timeout_ms
            try:
                ready = self._poll(timeout)
            except Exception:  # poll failures resurface on the next read
                return KeyEvent.ESC
            if ready == 0:
                return KeyEvent.ESC
            return self._escape_sequence(allow_recurse=False).with_mods(Modifiers.ALT)
        return KeyEvent.alt(seq1)

    def _escape_csi(self) -> KeyEvent:
        seq2 = self.next_char()
        if seq2 in _DIGITS:
            if seq2 in "09":
                return _unsupported("[" + seq2)
            return self._extended_escape(seq2)
        if seq2 == "[":
            seq3 = self.next_char()
            return _LINUX_CONSOLE.get(seq3) or _unsupported("[[" + seq3)
        return _CSI_SIMPLE.get(seq2) or _unsupported("[" + seq2)

    def _extended_escape(self, seq2: str) -> KeyEvent:
        seq3 = self.next_char()
        if seq3 == "~":
            return _CSI_TILDE.get(seq2) or _unsupported(f"[{seq2}~")
        if seq3 in _DIGITS:
            return self._two_digit_escape(seq2 + seq3)
        if seq3 == ";":
            seq4 = self.next_char()
            if seq4 not in _DIGITS:
                return _unsupported(f"[{seq2};{seq4}")
            seq5 = self.next_char()
            if seq5 in _DIGITS:
                self.next_char()  # 'R' expected (cursor position report)
                return _UNKNOWN
            if seq2 == "1":
                return _CSI_MODIFIED.get((seq4, seq5)) or _unsupported(f"[1;{seq4}{seq5}")
            if seq5 == "~":
                return _CSI_MODIFIED_TILDE.get((seq2, seq4)) or _unsupported(f"[{seq2};{seq4}~")
            return _unsupported(f"[{seq2};{seq4}{seq5}")
        return _RXVT.get((seq2, seq3)) or _unsupported(f"[{seq2}{seq3}")

    def _two_digit_escape(self, digits: str) -> KeyEvent:
        seq4 = self.next_char()
        if seq4 == "~":
            n = _FUNCTION_KEYS.get(digits)
            return KeyEvent.function(n) if n else _unsupported(f"[{digits}~")
        if seq4 == ";":
            seq5 = self.next_char()
            if seq5 not in _DIGITS:
                return _unsupported(f"[{digits};{seq5}")
            seq6 = self.next_char()
            if seq6 in _DIGITS:
                self.next_char()  # 'R' expected (cursor position report)
                return _UNKNOWN
            if seq6 == "R":
                return _UNKNOWN
            if seq6 == "~":
                n = _CTRL_FUNCTION_KEYS.get(digits) if seq5 == "5" else None
                if n:
                    return KeyEvent.function(n, Modifiers.CTRL)
                return _unsupported(f"[{digits};{seq5}~")
            return _unsupported(f"[{digits};{seq5}{seq6}")
        if seq4 in _DIGITS:
            seq5 = self.next_char()
            if seq5 == "~":
                return _CSI_THREE_DIGITS.get(digits + seq4) or _unsupported(f"[{digits}{seq4}~")
            return _unsupported(f"[{digits}{seq4}{seq5}")
        return _unsupported(f"[{digits}{seq4}")

    def _escape_o(self) -> KeyEvent:
        seq2 = self.next_char()
        return _SS3.get(seq2) or _unsupported("O" + seq2)

    def read_pasted_text(self) -> str:
        """Read bracketed-paste text up to its end marker, with newlines normalised."""
        chars: list[str] = []
        while True:
            c = self.next_char()
            if c == "\x1b":
                if self.escape_sequence() == _PASTE_END:
                    break
                continue
            chars.append(c)
        return "".join(chars).replace("\r\n", "\n").replace("\r", "\n")


def read_digits_until(reader: KeyReader, sep: str) -> int | None:
    """Read decimal digits up to ``sep``; return None on any other character.

    The value saturates at the largest unsigned 32-bit integer.
    """
    num = 0
    while True:
        c = reader.next_char()
        if c in _DIGITS:
            num = min(num * 10 + int(c), _U32_MAX)
        elif c == sep:
            return num
        else:
            return None