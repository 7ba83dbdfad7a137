"""Terminal line-editing building blocks: key decoding, undo history, layout, validation and POSIX raw mode."""

__version__ = "0.1.0"

__all__ = ["escape", "keys", "posix", "render", "undo", "validate"]