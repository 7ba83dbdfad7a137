"""Screen layout computation for a prompt, an edited line and extra info."""

from __future__ import annotations

import abc
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Any

import regex
from wcwidth import wcwidth

_GRAPHEME = regex.compile(r"\X")


@dataclass(frozen=True, order=True)
class Position:
    """A screen position; ordered by row first, then column."""

    row: int = 0
    col: int = 0


@dataclass
class Layout:
    """Where the prompt ends, where the cursor is and where the output ends."""

    prompt_size: Position = field(default_factory=Position)
    default_prompt: bool = False
    cursor: Position = field(default_factory=Position)
    end: Position = field(default_factory=Position)


def graphemes(text: str) -> Iterator[str]:
    """Yield the extended grapheme clusters of ``text``."""
    for match in _GRAPHEME.finditer(text):
        yield match.group()


def _display_width(grapheme: str) -> int:
    return sum(max(wcwidth(c), 0) for c in grapheme)


class EscapeTracker:
    """Measures graphemes while skipping ANSI escape sequences."""

    _NONE = 0
    _ESC = 1
    _CSI = 2

    def __init__(self) -> None:
        self.state = self._NONE

    def width(self, grapheme: str) -> int:
        """Return the display width of ``grapheme``; escape sequences count as zero."""
        if self.state == self._ESC:
            # "[" starts a CSI sequence; anything else ends a two-character one.
            self.state = self._CSI if grapheme == "[" else self._NONE
            return 0
        if self.state == self._CSI:
            if not (grapheme == ";" or grapheme[:1].isascii() and grapheme[:1].isdigit()):
                self.state = self._NONE
            return 0
        if grapheme == "\x1b":
            self.state = self._ESC
            return 0
        if grapheme == "\n":
            return 0
        return _display_width(grapheme)


class Renderer(abc.ABC):
    """Displays prompt, line and cursor on a terminal."""

    @abc.abstractmethod
    def calculate_position(self, text: str, orig: Position) -> Position:
        """Return the position reached by displaying ``text`` starting at ``orig``."""

    def compute_layout(
        self,
        prompt_size: Position,
        default_prompt: bool,
        line: str,
        pos: int,
        info: str | None = None,
    ) -> Layout:
        """Compute the layout of prompt, ``line`` (cursor at ``pos``) and ``info``."""
        if not 0 <= pos <= len(line):
            raise IndexError(f"cursor {pos} out of range for line of length {len(line)}")
        cursor = self.calculate_position(line[:pos], prompt_size)
        end = cursor if pos == len(line) else self.calculate_position(line[pos:], cursor)
        if info is not None:
            end = self.calculate_position(info, end)
        return Layout(
            prompt_size=prompt_size,
            default_prompt=default_prompt,
            cursor=cursor,
            end=end,
        )


class Sink(Renderer):
    """A renderer that shows nothing on an 80x24 screen without colours.

    It only remembers what would have been shown: the written text, the
    cursor position, the last layout and the number of bells.
    """

    colors_enabled = False

    def __init__(self) -> None:
        self.cols = 80
        self.rows = 24
        self.output: list[str] = []
        self.cursor = Position()
        self.layout = Layout()
        self.bells = 0

    def calculate_position(self, text: str, orig: Position) -> Position:
        return replace(orig, col=orig.col + len(text))

    def move_cursor(self, old: Position, new: Position) -> None:
        """Record the new cursor position."""
        self.cursor = new

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
        """Record the new layout and its cursor."""
        self.layout = new_layout
        self.cursor = new_layout.cursor

    def write_and_flush(self, text: str) -> None:
        """Record written text."""
        self.output.append(text)

    def beep(self) -> None:
        """Count a bell."""
        self.bells += 1

    def clear_screen(self) -> None:
        """Forget written text and home the cursor."""
        self.output.clear()
        self.cursor = Position()

    def clear_rows(self, layout: Layout) -> None:
        """Forget the layout of the cleared rows."""
        self.layout = Layout()
        self.cursor = replace(layout.cursor, col=0)

    def update_size(self) -> None:
        """Reset to the fixed 80x24 size."""
        self.cols = 80
        self.rows = 24