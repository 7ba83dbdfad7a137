"""Key codes, modifier flags and key events."""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import ClassVar


class KeyCode(enum.Enum):
    """Which key was pressed, independent of modifiers."""

    BACKSPACE = "backspace"
    BACK_TAB = "backtab"
    BRACKETED_PASTE_START = "bracketed_paste_start"
    BRACKETED_PASTE_END = "bracketed_paste_end"
    CHAR = "char"
    DELETE = "delete"
    DOWN = "down"
    END = "end"
    ENTER = "enter"
    ESC = "esc"
    F = "f"
    HOME = "home"
    INSERT = "insert"
    LEFT = "left"
    PAGE_DOWN = "page_down"
    PAGE_UP = "page_up"
    RIGHT = "right"
    TAB = "tab"
    UNKNOWN_ESC_SEQ = "unknown_esc_seq"
    UP = "up"


class Modifiers(enum.Flag):
    """Modifier keys held down with a key."""

    NONE = 0
    SHIFT = enum.auto()
    ALT = enum.auto()
    CTRL = enum.auto()
    ALT_SHIFT = ALT | SHIFT
    CTRL_SHIFT = CTRL | SHIFT
    CTRL_ALT = CTRL | ALT
    CTRL_ALT_SHIFT = CTRL | ALT | SHIFT


_SPECIAL_CHARS = {
    "\x1b": KeyCode.ESC,
    "\r": KeyCode.ENTER,
    "\t": KeyCode.TAB,
    "\x7f": KeyCode.BACKSPACE,
}


@dataclass(frozen=True)
class KeyEvent:
    """A key press: a key code, its modifiers and, for characters and
    function keys, the character or function-key number."""

    code: KeyCode
    mods: Modifiers = Modifiers.NONE
    value: str | int | None = None

    ESC: ClassVar[KeyEvent]
    ENTER: ClassVar[KeyEvent]
    BACKSPACE: ClassVar[KeyEvent]

    def __post_init__(self) -> None:
        if self.code is KeyCode.CHAR:
            if not isinstance(self.value, str) or len(self.value) != 1:
                raise ValueError(f"a character key needs one character, got {self.value!r}")
        elif self.code is KeyCode.F:
            if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 1:
                raise ValueError(f"a function key needs a positive number, got {self.value!r}")
        elif self.value is not None:
            raise ValueError(f"{self.code.name} takes no value, got {self.value!r}")

    @classmethod
    def from_char(cls, c: str, mods: Modifiers = Modifiers.NONE) -> KeyEvent:
        """Build the event for a character read from the terminal.

        Escape, carriage return, tab and DEL become their named keys; other
        control characters become the matching CTRL-letter key.
        """
        if len(c) != 1:
            raise ValueError(f"expected a single character, got {c!r}")
        special = _SPECIAL_CHARS.get(c)
        if special is not None:
            return cls(special, mods)
        code = ord(c)
        if code < 0x20:
            return cls(KeyCode.CHAR, mods | Modifiers.CTRL, chr(code + 0x40))
        return cls(KeyCode.CHAR, mods, c)

    @classmethod
    def alt(cls, c: str) -> KeyEvent:
        """Meta/Alt plus the character ``c``."""
        return cls.from_char(c, Modifiers.ALT)

    @classmethod
    def ctrl(cls, c: str) -> KeyEvent:
        """Control plus the character ``c``."""
        return cls(KeyCode.CHAR, Modifiers.CTRL, c)

    @classmethod
    def function(cls, n: int, mods: Modifiers = Modifiers.NONE) -> KeyEvent:
        """Function key ``F<n>``."""
        return cls(KeyCode.F, mods, n)

    def with_mods(self, mods: Modifiers) -> KeyEvent:
        """Return this event with ``mods`` added to its modifiers."""
        return replace(self, mods=self.mods | mods)

    def __str__(self) -> str:
        prefix = "".join(
            f"{name}-"
            for flag, name in (
                (Modifiers.CTRL, "C"),
                (Modifiers.ALT, "M"),
                (Modifiers.SHIFT, "S"),
            )
            if flag in self.mods
        )
        if self.code is KeyCode.CHAR:
            body = repr(self.value)
        elif self.code is KeyCode.F:
            body = f"F{self.value}"
        else:
            body = self.code.name
        return prefix + body


KeyEvent.ESC = KeyEvent(KeyCode.ESC, Modifiers.NONE)
KeyEvent.ENTER = KeyEvent(KeyCode.ENTER, Modifiers.NONE)
KeyEvent.BACKSPACE = KeyEvent(KeyCode.BACKSPACE, Modifiers.NONE)