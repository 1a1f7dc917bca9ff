"""Fingerprint computation for build configurations.

This module handles:
- Validation of the fields a fingerprint depends on
- Canonical input snapshot creation from a BuildConfig
- Deterministic hash computation over normalized inputs

Equal configurations always produce equal fingerprints, independent of
the order in which build arguments, tags or exports were declared.
"""

from __future__ import annotations

import hashlib
import json
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any

from buildstash.builds.schema import BuildConfig
from buildstash.errors import InvalidConfig
from buildstash.types import Fingerprint

# Schema version for fingerprint format; bump when the snapshot layout changes
FINGERPRINT_SCHEMA_VERSION = "1"


@dataclass
class BuildInputs:
    """Canonical representation of all build inputs.

    This structure captures all inputs that affect the built image.
    It is serialized to JSON and hashed to produce the fingerprint.

    Attributes:
        schema_version: Version of fingerprint schema.
        context: Build context locator.
        dockerfile: Dockerfile locator.
        build_args: Build arguments sorted by name.
        tags: Sorted image tags.
        push: Whether the image is pushed.
        exports: Rendered export targets, sorted.
    """

    schema_version: str = FINGERPRINT_SCHEMA_VERSION
    context: str = ""
    dockerfile: str = ""
    build_args: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    push: bool = False
    exports: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def validate_build_config(config: BuildConfig) -> None:
    """Check the fields a fingerprint depends on.

    Args:
        config: Build configuration.

    Raises:
        InvalidConfig: If a locator is blank, or an argument name is blank
            or declared twice.
    """
    if not config.context.strip():
        raise InvalidConfig("Build context locator must not be empty", field="context")
    if not config.dockerfile.strip():
        raise InvalidConfig(
            "Dockerfile locator must not be empty", field="dockerfile"
        )

    names = config.arg_names()
    if any(not name.strip() for name in names):
        raise InvalidConfig("Build argument names must not be empty", field="build_args")

    duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
    if duplicates:
        raise InvalidConfig(
            f"Duplicate build argument(s): {', '.join(duplicates)}",
            field="build_args",
        )


def normalize_build_config(config: BuildConfig) -> BuildInputs:
    """Create canonical build inputs from a configuration.

    Args:
        config: Validated build configuration.

    Returns:
        BuildInputs with order-insensitive fields sorted.
    """
    return BuildInputs(
        schema_version=FINGERPRINT_SCHEMA_VERSION,
        context=config.context,
        dockerfile=config.dockerfile,
        build_args=dict(sorted(config.public_args().items())),
        tags=sorted(config.tags),
        push=config.push,
        exports=sorted(target.to_output() for target in config.exports),
    )


def compute_fingerprint_from_inputs(inputs: BuildInputs) -> Fingerprint:
    """Compute a fingerprint from canonical build inputs.

    Args:
        inputs: BuildInputs instance.

    Returns:
        Fingerprint as hex string (sha256:...).
    """
    # Serialize to canonical JSON (sorted keys, no extra whitespace)
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    digest = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def compute_fingerprint(config: BuildConfig) -> Fingerprint:
    """Validate a configuration and compute its fingerprint.

    Args:
        config: Build configuration.

    Returns:
        Fingerprint string.

    Raises:
        InvalidConfig: If the configuration is malformed.
    """
    validate_build_config(config)
    return compute_fingerprint_from_inputs(normalize_build_config(config))


class FingerprintComputer:
    """Derives stable fingerprints from build configurations."""

    def compute(self, config: BuildConfig) -> Fingerprint:
        """Return the fingerprint of ``config``.

        Raises:
            InvalidConfig: If the configuration is malformed.
        """
        return compute_fingerprint(config)

    def snapshot(self, config: BuildConfig) -> dict[str, Any]:
        """Return the canonical inputs the fingerprint is computed over."""
        validate_build_config(config)
        return normalize_build_config(config).to_dict()


__all__ = [
    "FINGERPRINT_SCHEMA_VERSION",
    "BuildInputs",
    "FingerprintComputer",
    "compute_fingerprint",
    "compute_fingerprint_from_inputs",
    "normalize_build_config",
    "validate_build_config",
]
