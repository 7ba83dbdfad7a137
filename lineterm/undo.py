"""Undo/redo bookkeeping for line edits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Union

import regex

_log = logging.getLogger(__name__)
_GRAPHEME = regex.compile(r"\X")


class TextLine:
    """A line of text with a cursor position."""

    def __init__(self, text: str = "", pos: int = 0) -> None:
        if not 0 <= pos <= len(text):
            raise IndexError(f"position {pos} out of range for line of length {len(text)}")
        self.text = text
        self.pos = pos

    def __str__(self) -> str:
        return self.text

    def __len__(self) -> int:
        return len(self.text)

    def _check_range(self, start: int, end: int) -> None:
        if not 0 <= start <= end <= len(self.text):
            raise IndexError(f"range {start}..{end} out of bounds for line of length {len(self.text)}")

    def insert_str(self, idx: int, text: str) -> None:
        """Insert ``text`` at ``idx``; the cursor moves along if it was after ``idx``."""
        self._check_range(idx, idx)
        self.text = self.text[:idx] + text + self.text[idx:]
        if self.pos > idx:
            self.pos += len(text)

    def delete_range(self, start: int, end: int) -> str:
        """Remove ``text[start:end]``, put the cursor at ``start``, and return what was removed."""
        self._check_range(start, end)
        removed = self.text[start:end]
        self.text = self.text[:start] + self.text[end:]
        self.pos = start
        return removed

    def replace(self, start: int, end: int, text: str) -> None:
        """Replace ``text[start:end]`` by ``text``; the cursor ends after the new text."""
        self._check_range(start, end)
        self.text = self.text[:start] + text + self.text[end:]
        self.pos = start + len(text)


class _Begin:
    __slots__ = ()


class _End:
    __slots__ = ()


_BEGIN = _Begin()
_END = _End()


@dataclass
class _Insert:
    idx: int
    text: str

    def undo(self, line: TextLine) -> None:
        line.delete_range(self.idx, self.idx + len(self.text))

    def redo(self, line: TextLine) -> None:
        line.insert_str(self.idx, self.text)

    def follows(self, idx: int) -> bool:
        return self.idx + len(self.text) == idx


@dataclass
class _Delete:
    idx: int
    text: str

    def undo(self, line: TextLine) -> None:
        line.insert_str(self.idx, self.text)
        line.pos = self.idx + len(self.text)

    def redo(self, line: TextLine) -> None:
        line.delete_range(self.idx, self.idx + len(self.text))

    def follows(self, idx: int, length: int) -> bool:
        # delete (same index) or backspace (just before)
        return self.idx == idx or self.idx == idx + length


@dataclass
class _Replace:
    idx: int
    old: str
    new: str

    def undo(self, line: TextLine) -> None:
        line.replace(self.idx, self.idx + len(self.new), self.old)

    def redo(self, line: TextLine) -> None:
        line.replace(self.idx, self.idx + len(self.old), self.new)

    def follows(self, idx: int) -> bool:
        return self.idx + len(self.new) == idx


_Change = Union[_Begin, _End, _Insert, _Delete, _Replace]


def _single_alnum_grapheme(s: str) -> bool:
    graphemes = _GRAPHEME.findall(s)
    return len(graphemes) == 1 and all(c.isalnum() for c in graphemes[0])


class Changeset:
    """Undo manager recording edits, merging runs of single-character edits."""

    def __init__(self) -> None:
        self.undo_group_level = 0
        self.undos: list[_Change] = []
        self.redos: list[_Change] = []

    def begin(self) -> int:
        """Open an undo group and return a mark usable with :meth:`truncate`."""
        _log.debug("Changeset.begin")
        self.redos.clear()
        mark = len(self.undos)
        self.undos.append(_BEGIN)
        self.undo_group_level += 1
        return mark

    def end(self) -> bool:
        """Close all open groups; return True if anything changed since ``begin``."""
        _log.debug("Changeset.end")
        self.redos.clear()
        touched = False
        while self.undo_group_level > 0:
            self.undo_group_level -= 1
            if self.undos and self.undos[-1] is _BEGIN:
                self.undos.pop()
            else:
                self.undos.append(_END)
                touched = True
        return touched

    def insert(self, idx: int, c: str) -> None:
        """Record insertion of the single character ``c`` at ``idx``."""
        _log.debug("Changeset.insert(%d, %r)", idx, c)
        self.redos.clear()
        last = self.undos[-1] if self.undos else None
        if c.isalnum() and isinstance(last, _Insert) and last.follows(idx):
            last.text += c
        else:
            self.undos.append(_Insert(idx, c))

    def insert_str(self, idx: int, string: str) -> None:
        """Record insertion of ``string`` at ``idx``."""
        _log.debug("Changeset.insert_str(%d, %r)", idx, string)
        self.redos.clear()
        if string:
            self.undos.append(_Insert(idx, string))

    def delete(self, idx: int, string: str) -> None:
        """Record deletion of ``string`` that started at ``idx``."""
        _log.debug("Changeset.delete(%d, %r)", idx, string)
        self.redos.clear()
        if not string:
            return
        last = self.undos[-1] if self.undos else None
        if (
            not _single_alnum_grapheme(string)
            or not isinstance(last, _Delete)
            or not last.follows(idx, len(string))
        ):
            self.undos.append(_Delete(idx, string))
            return
        if last.idx == idx:
            last.text += string
        else:
            last.text = string + last.text
            last.idx = idx

    def replace(self, idx: int, old: str, new: str) -> None:
        """Record replacement of ``old`` by ``new`` at ``idx``."""
        _log.debug("Changeset.replace(%d, %r, %r)", idx, old, new)
        self.redos.clear()
        last = self.undos[-1] if self.undos else None
        if isinstance(last, _Replace) and last.follows(idx):
            last.old += old
            last.new += new
        else:
            self.undos.append(_Replace(idx, old, new))

    def undo(self, line: TextLine, n: int = 1) -> bool:
        """Undo ``n`` changes or groups on ``line``; return True if anything was undone."""
        _log.debug("Changeset.undo")
        count = 0
        waiting_for_begin = 0
        undone = False
        while self.undos:
            change = self.undos.pop()
            if change is _BEGIN:
                waiting_for_begin -= 1
            elif change is _END:
                waiting_for_begin += 1
            else:
                change.undo(line)
                undone = True
            self.redos.append(change)
            if waiting_for_begin <= 0:
                count += 1
                if count >= n:
                    break
        return undone

    def redo(self, line: TextLine) -> bool:
        """Redo the last undone change or group; return True if anything was redone."""
        waiting_for_end = 0
        redone = False
        while self.redos:
            change = self.redos.pop()
            if change is _BEGIN:
                waiting_for_end += 1
            elif change is _END:
                waiting_for_end -= 1
            else:
                change.redo(line)
                redone = True
            self.undos.append(change)
            if waiting_for_end <= 0:
                break
        return redone

    def truncate(self, length: int) -> None:
        """Drop recorded changes beyond ``length``."""
        _log.debug("Changeset.truncate(%d)", length)
        del self.undos[length:]

    def last_insert(self) -> str | None:
        """Return the text of the most recent insertion or replacement, if it is the last change."""
        for change in reversed(self.undos):
            if isinstance(change, _Insert):
                return change.text
            if isinstance(change, _Replace):
                return change.new
            if change is _END:
                continue
            return None
        return None