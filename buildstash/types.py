"""Shared type definitions for buildstash.

This module contains the sensitive-value helpers and small enums shared
across subpackages to avoid circular imports.
"""

from collections.abc import Mapping
from enum import Enum
from typing import TypeAlias

from pydantic import SecretStr

# Marker shown instead of a sensitive value in any echoed output
REDACTED = "[secret]"

SensitiveString: TypeAlias = SecretStr
BuildArgValue: TypeAlias = str | SecretStr
Fingerprint: TypeAlias = str


class StashOutcome(str, Enum):
    """How a stash evaluation produced its value."""

    CREATED = "created"
    REUSED = "reused"
    REPLACED = "replaced"


def is_sensitive(value: object) -> bool:
    """Check whether a value is marked sensitive."""
    return isinstance(value, SecretStr)


def redact(value: BuildArgValue) -> str:
    """Return the printable form of a build argument value."""
    if isinstance(value, SecretStr):
        return REDACTED
    return value


def redact_args(args: Mapping[str, BuildArgValue]) -> dict[str, str]:
    """Return a copy of build arguments with sensitive values masked.

    Args:
        args: Mapping of build-argument names to plain or sensitive values.

    Returns:
        Dictionary safe to log, print or persist.
    """
    return {name: redact(value) for name, value in args.items()}


def short_fingerprint(fingerprint: Fingerprint, length: int = 19) -> str:
    """Truncate a fingerprint for log lines."""
    return fingerprint[:length]


__all__ = [
    "REDACTED",
    "BuildArgValue",
    "Fingerprint",
    "SensitiveString",
    "StashOutcome",
    "is_sensitive",
    "redact",
    "redact_args",
    "short_fingerprint",
]
