"""Build coordinator.

This module provides the high-level build API:
- CoordinatorConfig: explicit settings of one coordinator
- BuildCoordinator.run(): fingerprint, stage secret, build exactly once

The staged secret is added to the public build arguments as a sensitive
value. Every argument view the coordinator exposes is redacted.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from pydantic import SecretStr

from buildstash.builds.engine import BuildEngine, BuildResult, BuildxEngine
from buildstash.builds.fingerprint import FingerprintComputer
from buildstash.builds.schema import BuildConfig
from buildstash.credentials import CredentialProvider
from buildstash.errors import BuildFailed, InvalidConfig
from buildstash.stash.service import SecretStash
from buildstash.stash.store import StashStore
from buildstash.types import BuildArgValue, redact_args, short_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CoordinatorConfig:
    """Settings of one build coordinator.

    Attributes:
        target: Build target identity; keys the stash.
        secret_arg_name: Default build argument receiving the secret.
        fetch_timeout: Bound on a credential fetch in seconds.
        build_timeout: Bound on a build in seconds.
        work_dir: Directory for build logs.
        lock_dir: Directory for cross-process stash locks.
        lock_timeout: Bound on waiting for a stash lock in seconds.
    """

    target: str
    secret_arg_name: str = "CODEARTIFACT_TOKEN"
    fetch_timeout: float | None = None
    build_timeout: int | None = None
    work_dir: Path | None = None
    lock_dir: Path | None = None
    lock_timeout: float | None = None


def check_secret_arg_name(config: BuildConfig, secret_arg_name: str) -> None:
    """Reject a secret argument name that is blank or already public.

    Raises:
        InvalidConfig: If the name cannot carry the staged secret.
    """
    if not secret_arg_name.strip():
        raise InvalidConfig("Secret build argument name must not be empty")
    if secret_arg_name in config.arg_names():
        raise InvalidConfig(
            f"Build argument {secret_arg_name} is reserved for the staged secret",
            field="build_args",
        )


def assemble_build_args(
    config: BuildConfig,
    secret_arg_name: str,
    secret: SecretStr,
) -> dict[str, BuildArgValue]:
    """Combine public build arguments with the staged secret.

    Args:
        config: Build configuration.
        secret_arg_name: Name of the secret build argument.
        secret: Staged secret.

    Returns:
        Ordered argument mapping with the secret last.

    Raises:
        InvalidConfig: If the secret argument name is blank or is already
            a public build argument.
    """
    check_secret_arg_name(config, secret_arg_name)

    args: dict[str, BuildArgValue] = dict(config.public_args())
    args[secret_arg_name] = secret
    return args


class BuildCoordinator:
    """Orchestrates one build evaluation per run."""

    def __init__(
        self,
        config: CoordinatorConfig,
        stash: SecretStash,
        engine: BuildEngine,
        fingerprinter: FingerprintComputer | None = None,
    ) -> None:
        self.config = config
        self.stash = stash
        self.engine = engine
        self.fingerprinter = fingerprinter or FingerprintComputer()
        self.last_args: dict[str, str] = {}

    def run(
        self,
        config: BuildConfig,
        secret_arg_name: str | None = None,
        cancel: threading.Event | None = None,
    ) -> BuildResult:
        """Run one build with the staged secret.

        Args:
            config: Build configuration (without the secret argument).
            secret_arg_name: Build argument receiving the secret; defaults
                to the coordinator's configured name.
            cancel: Event that aborts a pending credential fetch.

        Returns:
            BuildResult from the engine; its argument echo is redacted.

        Raises:
            InvalidConfig: If the configuration is malformed.
            CredentialFetchFailed: If a required fetch fails.
            Cancelled: If the fetch is cancelled.
            BuildFailed: If the engine fails.
        """
        arg_name = (
            secret_arg_name
            if secret_arg_name is not None
            else self.config.secret_arg_name
        )

        fingerprint = self.fingerprinter.compute(config)
        logger.info(
            "Evaluating %s (fingerprint %s)",
            self.config.target,
            short_fingerprint(fingerprint),
        )

        # Before any fetch can happen
        check_secret_arg_name(config, arg_name)

        secret = self.stash.evaluate(fingerprint, cancel=cancel)
        args = assemble_build_args(config, arg_name, secret)
        self.last_args = redact_args(args)
        logger.info("Build arguments: %s", self.last_args)

        try:
            result = self.engine.build(
                config.context,
                config.dockerfile,
                args,
                list(config.exports),
                tags=list(config.tags),
                push=config.push,
            )
        except Exception as e:
            raise BuildFailed(f"Build of {self.config.target} failed: {e}", e) from e

        # Engines are collaborators; never pass their echo through unmasked
        result.args = redact_args(args)
        logger.info("Build of %s finished: %s", self.config.target, result.ref)
        return result

    def secrets_used(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        """Return the redacted arguments of the latest run plus ``extra``."""
        summary = dict(self.last_args)
        if extra:
            summary.update(extra)
        return summary


def create_coordinator(
    config: CoordinatorConfig,
    provider: CredentialProvider,
    store: StashStore | None = None,
    engine: BuildEngine | None = None,
) -> BuildCoordinator:
    """Wire a coordinator with its stash and a buildx engine.

    Args:
        config: Coordinator settings.
        provider: Credential provider for the target's stash.
        store: Stash store; in-memory if not provided.
        engine: Build engine; a BuildxEngine under ``config.work_dir`` if
            not provided.

    Returns:
        Ready BuildCoordinator.
    """
    stash = SecretStash(
        target=config.target,
        provider=provider,
        store=store,
        fetch_timeout=config.fetch_timeout,
        lock_dir=config.lock_dir,
        lock_timeout=config.lock_timeout,
    )
    if engine is None:
        work_dir = config.work_dir or Path.cwd() / ".buildstash"
        engine = BuildxEngine(work_dir / config.target, timeout=config.build_timeout)
    return BuildCoordinator(config=config, stash=stash, engine=engine)


__all__ = [
    "BuildCoordinator",
    "CoordinatorConfig",
    "create_coordinator",
    "assemble_build_args",
    "check_secret_arg_name",
]
