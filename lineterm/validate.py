"""Input validation for multi-line editing."""

from __future__ import annotations

import enum
from dataclasses import dataclass

_OPENING = {"(": ")", "[": "]", "{": "}"}
_CLOSING = {")", "]", "}"}


class ValidationKind(enum.Enum):
    """Outcome category of a validation."""

    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    VALID = "valid"


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating the current input, with an optional message."""

    kind: ValidationKind
    message: str | None = None

    @classmethod
    def incomplete(cls) -> ValidationResult:
        """Input is not finished yet."""
        return cls(ValidationKind.INCOMPLETE)

    @classmethod
    def invalid(cls, message: str | None = None) -> ValidationResult:
        """Input is wrong and must be fixed by the user."""
        return cls(ValidationKind.INVALID, message)

    @classmethod
    def valid(cls, message: str | None = None) -> ValidationResult:
        """Input is accepted."""
        return cls(ValidationKind.VALID, message)

    def is_valid(self) -> bool:
        return self.kind is ValidationKind.VALID

    def has_message(self) -> bool:
        return (
            self.kind in (ValidationKind.VALID, ValidationKind.INVALID)
            and self.message is not None
        )


class ValidationContext:
    """Gives a validator access to the user input."""

    def __init__(self, text: str) -> None:
        self._text = text

    def input(self) -> str:
        """Return the user input."""
        return self._text


class Validator:
    """Decides whether the current input ends the editing session."""

    def validate(self, ctx: ValidationContext) -> ValidationResult:
        """Validate the input held by ``ctx``; accepts everything by default."""
        return ValidationResult.valid(None)

    def validate_while_typing(self) -> bool:
        """Whether validation runs on every keystroke (default: only on Enter)."""
        return False


class MatchingBracketValidator(Validator):
    """Checks that (), [] and {} are balanced."""

    def validate(self, ctx: ValidationContext) -> ValidationResult:
        return validate_brackets(ctx.input())


def validate_brackets(text: str) -> ValidationResult:
    """Validate bracket nesting in ``text``."""
    stack: list[str] = []
    for c in text:
        if c in _OPENING:
            stack.append(c)
        elif c in _CLOSING:
            if not stack:
                return ValidationResult.invalid(
                    f"Mismatched brackets: {c!r} is unpaired"
                )
            wanted = stack.pop()
            if _OPENING[wanted] != c:
                return ValidationResult.invalid(
                    f"Mismatched brackets: {wanted!r} is not properly closed"
                )
    if stack:
        return ValidationResult.incomplete()
    return ValidationResult.valid(None)