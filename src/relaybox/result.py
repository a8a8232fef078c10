"""Explicit success/failure results returned by public operations."""

from dataclasses import dataclass
from typing import Self

from relaybox.exceptions import ErrorKind, RelayboxError


@dataclass(frozen=True, slots=True)
class OperationResult:
    """Outcome of a supervisor, installer, or orchestrator operation.

    Attributes:
        success: Whether the operation completed.
        error: Human-readable failure message, None on success.
        kind: Failure category, None on success.
    """

    success: bool
    error: str | None = None
    kind: ErrorKind | None = None

    @classmethod
    def ok(cls) -> Self:
        """Return a successful result."""
        return cls(success=True)

    @classmethod
    def fail(cls, kind: ErrorKind, error: str) -> Self:
        """Return a failed result with the given category and message."""
        return cls(success=False, error=error, kind=kind)

    @classmethod
    def from_error(cls, error: RelayboxError) -> Self:
        """Convert a relaybox exception into a failed result."""
        return cls(success=False, error=str(error), kind=error.kind)

    def __bool__(self) -> bool:
        return self.success
