"""Error taxonomy for buildstash.

Every error carries a stable ``code`` attribute for structured handling
by the CLI and by callers that decide on retries.
"""

from __future__ import annotations

# Error code constants
INVALID_CONFIG = "invalid_config"
CREDENTIAL_FETCH_FAILED = "credential_fetch_failed"
FETCH_TIMEOUT = "fetch_timeout"
BUILD_FAILED = "build_failed"
CANCELLED = "cancelled"


class BuildStashError(Exception):
    """Base error for buildstash operations."""

    def __init__(self, message: str, code: str = "buildstash_error") -> None:
        super().__init__(message)
        self.code = code


class InvalidConfig(BuildStashError):
    """Raised when a build configuration is malformed.

    Not retryable: the caller must fix the configuration.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, code=INVALID_CONFIG)
        self.field = field


class CredentialFetchFailed(BuildStashError):
    """Raised when a credential provider cannot supply a fresh value.

    The stash is left untouched, so retrying the whole evaluation is safe.
    """

    def __init__(self, message: str, code: str = CREDENTIAL_FETCH_FAILED) -> None:
        super().__init__(message, code=code)


class Cancelled(BuildStashError):
    """Raised when an evaluation is aborted before publishing any state."""

    def __init__(self, message: str = "Evaluation cancelled") -> None:
        super().__init__(message, code=CANCELLED)


class BuildFailed(BuildStashError):
    """Raised when the build engine fails.

    Attributes:
        engine_error: The underlying engine exception.
    """

    def __init__(self, message: str, engine_error: Exception | None = None) -> None:
        super().__init__(message, code=BUILD_FAILED)
        self.engine_error = engine_error


__all__ = [
    "BUILD_FAILED",
    "CANCELLED",
    "CREDENTIAL_FETCH_FAILED",
    "FETCH_TIMEOUT",
    "INVALID_CONFIG",
    "BuildFailed",
    "BuildStashError",
    "Cancelled",
    "CredentialFetchFailed",
    "InvalidConfig",
]
