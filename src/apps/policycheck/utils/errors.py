"""Utility types for consistent CLI error handling."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Standardised exit codes for the policycheck CLI."""

    SUCCESS = 0
    DISCREPANCIES = 1
    IO = 2
    CONFIG = 3
    VALIDATION = 4
    RUNTIME = 5


class PolicyCheckError(Exception):
    """Base for predictable CLI errors that surface to users."""

    exit_code: ExitCode = ExitCode.RUNTIME
    label = "Error"

    def __init__(
        self, message: str, *, exit_code: ExitCode | int | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        if exit_code is None:
            exit_code = type(self).exit_code
        self.exit_code = ExitCode(exit_code)

    def __str__(self) -> str:
        return self.message

    @property
    def heading(self) -> str:
        """Return a short label describing the error class."""

        return type(self).label


class PolicyCheckValidationError(PolicyCheckError):
    """Raised when user input or a rule file fails validation."""

    exit_code = ExitCode.VALIDATION
    label = "Validation error"


class PolicyCheckIOError(PolicyCheckError):
    """Raised when a payload cannot be read or decoded."""

    exit_code = ExitCode.IO
    label = "I/O error"


class PolicyCheckConfigError(PolicyCheckError):
    """Raised when configuration or environment is invalid."""

    exit_code = ExitCode.CONFIG
    label = "Configuration error"
