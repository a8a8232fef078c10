"""relaybox exceptions."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from pathlib import Path


class ErrorKind(StrEnum):
    """Failure categories reported by public operations."""

    NOT_FOUND = "not_found"
    ALREADY_IN_PROGRESS = "already_in_progress"
    PROCESS_CRASH = "process_crash"
    DOWNLOAD_FAILURE = "download_failure"
    EXTRACT_FAILURE = "extract_failure"
    INSTALL_FAILURE = "install_failure"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_STATE = "invalid_state"
    INTERRUPTED = "interrupted"


class RelayboxError(Exception):
    """Base exception for relaybox errors.

    Attributes:
        kind: The failure category used when the error is converted into
            an operation result.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.INSTALL_FAILURE


class EngineNotFoundError(RelayboxError):
    """A required file (engine binary, config file, backup) does not exist."""

    kind: ClassVar[ErrorKind] = ErrorKind.NOT_FOUND

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        """Initialize with error message and the missing path."""
        super().__init__(message)
        self.path: Path | None = path


class AlreadyInProgressError(RelayboxError):
    """A start or stop was requested while one is already running."""

    kind: ClassVar[ErrorKind] = ErrorKind.ALREADY_IN_PROGRESS


class ProcessCrashError(RelayboxError):
    """The engine process exited or failed while it was expected to run.

    Attributes:
        exit_code: The process exit code, if known.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.PROCESS_CRASH

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        """Initialize with error message and exit code."""
        super().__init__(message)
        self.exit_code: int | None = exit_code


class StartupTimeoutError(RelayboxError, TimeoutError):
    """A deadline elapsed (readiness probe or graceful stop)."""

    kind: ClassVar[ErrorKind] = ErrorKind.TIMEOUT

    def __init__(self, message: str, *, timeout: float | None = None) -> None:
        """Initialize with error message and the elapsed deadline in seconds."""
        super().__init__(message)
        self.timeout: float | None = timeout


class NetworkError(RelayboxError):
    """An HTTP request to the release feed or control API failed.

    Attributes:
        url: The URL that was being requested.
    """

    kind: ClassVar[ErrorKind] = ErrorKind.NETWORK_ERROR

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and request context."""
        super().__init__(message)
        self.url: str | None = url
        self.cause: Exception | None = cause


# =============================================================================
# Installation Exceptions
# =============================================================================


class DownloadError(RelayboxError):
    """An engine archive could not be downloaded."""

    kind: ClassVar[ErrorKind] = ErrorKind.DOWNLOAD_FAILURE


class ReleaseFeedError(DownloadError):
    """The release feed returned a payload that does not match its schema."""


class ExtractError(RelayboxError):
    """An archive could not be extracted or did not contain the engine."""

    kind: ClassVar[ErrorKind] = ErrorKind.EXTRACT_FAILURE


class InstallError(RelayboxError):
    """The engine binary could not be moved into place."""

    kind: ClassVar[ErrorKind] = ErrorKind.INSTALL_FAILURE


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(RelayboxError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column
