"""Error types raised while loading and reconciling policy tables."""

from __future__ import annotations

from dataclasses import dataclass


class ReconcileError(Exception):
    """Base class for reconciliation library failures."""


class ParseError(ReconcileError):
    """Raised when a payload cannot be decoded as delimited text at all."""


class FileReadError(ReconcileError):
    """Raised when the underlying file read fails."""


class RuleStoreError(ReconcileError):
    """Raised when equivalence rules cannot be read, written or validated."""


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    """A malformed row that was dropped while parsing.

    ``line`` is the 1-based line number in the payload where the row started,
    or ``None`` when the problem is not tied to a single line.
    """

    line: int | None
    message: str

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f"line {self.line}: {self.message}"


__all__ = [
    "FileReadError",
    "ParseError",
    "ReconcileError",
    "RuleStoreError",
    "ValidationWarning",
]
