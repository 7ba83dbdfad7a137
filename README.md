# lineterm

Building blocks for an interactive line editor on POSIX terminals.

## Modules

- **`lineterm.keys`**: `KeyCode`, `Modifiers` (a flag enum) and the frozen
  `KeyEvent`. Use `KeyEvent.from_char`, `KeyEvent.alt`, `KeyEvent.ctrl` and
  `KeyEvent.function` to build events. `with_mods` adds modifiers.
  `KeyEvent.ESC`, `KeyEvent.ENTER` and `KeyEvent.BACKSPACE` are ready-made
  events.
- **`lineterm.escape`**: `KeyReader` turns a stream of characters into key
  events. It takes a `read_char()` callable, which returns `""` at end of
  input, and a `poll(timeout_ms)` callable. It decodes CSI, SS3, rxvt and
  Linux console escape sequences. `\E\E<seq>` is read as Alt plus the
  sequence. `read_pasted_text` reads bracketed-paste text and turns CR and
  CRLF into LF. `read_digits_until` reads a decimal number that ends in a
  separator.
- **`lineterm.undo`**: `TextLine` holds a line of text and a cursor
  position. `Changeset` records insertions, deletions and replacements, and
  `begin()`/`end()` group them. Typed alphanumeric characters that follow one
  another become a single undo step. Deletions and backspaces of single
  alphanumeric graphemes also merge. `undo`, `redo`, `truncate` and
  `last_insert` work on that record.
- **`lineterm.render`**: `Position`, `Layout`, `graphemes()` and
  `EscapeTracker`. The `EscapeTracker` measures display width and gives ANSI
  escape sequences zero width. `Renderer.compute_layout` works out where the
  cursor and the end of the output land for a prompt, a line and optional
  extra text. `Sink` is a renderer on an 80×24 screen that draws nothing. It
  only records output, cursor, layout and bells, which makes it handy in
  tests.
- **`lineterm.validate`**: `ValidationResult` (incomplete, invalid or valid,
  with an optional message), `ValidationContext`, the `Validator` base class,
  `MatchingBracketValidator` and `validate_brackets`.
- **`lineterm.posix`**:
  - `PosixTerminal` chooses stdin/stdout or `/dev/tty`. It enters raw mode
    through `enable_raw_mode`, which returns a `RawMode` context manager and
    the terminal's bindings for EOF, interrupt and suspend as
    `TerminalCommand`s. It creates readers, writers and `ExternalPrinter`s.
  - `PosixRenderer` writes the prompt, the line, cursor moves and clears as
    ANSI sequences, and wraps at the terminal width, taking wide characters
    and tab stops into account.
  - `PosixRawReader` reads UTF-8 keys from a descriptor. It raises
    `WindowResized` when SIGWINCH arrives while it waits.
  - The module also has `is_unsupported_term`, `get_win_size` and `suspend`.

## Installation

```
pip install .
```

## Examples

Validate input:

```python
from lineterm.validate import validate_brackets

result = validate_brackets("([)")
print(result.is_valid())   # False
print(result.message)      # Mismatched brackets: '[' is not properly closed
```

Undo an edit:

```python
from lineterm.undo import Changeset, TextLine

line = TextLine("Hello, world!", 13)
changes = Changeset()
changes.insert_str(13, "!!")
line.insert_str(13, "!!")
changes.undo(line, 1)
print(str(line))           # Hello, world!
```

Decode keys from a string of input:

```python
from lineterm.escape import KeyReader

chars = iter("\x1b[A")
reader = KeyReader(lambda: next(chars), lambda timeout_ms: 1, -1)
print(reader.next_key(False))   # UP
```

Compute a layout:

```python
from lineterm.render import Position, Sink

sink = Sink()
prompt_size = sink.calculate_position("> ", Position(0, 0))
layout = sink.compute_layout(prompt_size, True, "hello", 5, None)
print(layout.cursor)       # Position(row=0, col=7)
```

## What it does not do

This package is a set of parts, not a finished line editor. It has no
`readline()` loop and no Emacs or Vi key bindings that map key events to
editing commands. It also has no history store, no completion, no hints and
no command-line program. Terminal support covers POSIX systems only.

## Running the tests

```
pip install .[test]
pytest
```