"""Build engine for executing container image builds.

This module handles:
- The BuildEngine interface the coordinator drives
- Composing `docker buildx build` commands
- Executing builds with subprocess, capturing output to a log file
- Enforcing build timeouts

Sensitive build arguments are passed as ``--build-arg NAME`` with the
value placed in the child process environment, so they never appear in
the command line, the log file, or the returned BuildResult.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import SecretStr

from buildstash.builds.schema import ExportTarget
from buildstash.types import BuildArgValue, redact_args

logger = logging.getLogger(__name__)


class BuildEngineError(Exception):
    """Raised when build execution fails."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_error",
        log_path: Path | None = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code
        self.log_path = log_path


@dataclass
class BuildResult:
    """Result of a build execution.

    Attributes:
        ref: Image id reported by the builder, or None for cache-only exports.
        args: Redacted echo of the build arguments used.
        command: The executed command (contains no secret values).
        exit_code: Process exit code.
        log_path: Path to the build log file.
        started_at: Build start time.
        finished_at: Build finish time.
    """

    ref: str | None
    args: dict[str, str]
    command: str
    exit_code: int = 0
    log_path: Path | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    tags: list[str] = field(default_factory=list)


class BuildEngine(Protocol):
    """Executes one container image build."""

    def build(
        self,
        context: str,
        dockerfile: str,
        args: Mapping[str, BuildArgValue],
        exports: Sequence[ExportTarget],
        *,
        tags: Sequence[str] = (),
        push: bool = False,
    ) -> BuildResult: ...


def compose_build_command(
    context: str,
    dockerfile: str,
    args: Mapping[str, BuildArgValue],
    exports: Sequence[ExportTarget],
    tags: Sequence[str] = (),
    push: bool = False,
    iidfile: Path | None = None,
    docker_bin: str = "docker",
) -> list[str]:
    """Compose the `docker buildx build` command.

    Args:
        context: Build context locator.
        dockerfile: Dockerfile locator.
        args: Build arguments; sensitive values are referenced by name only.
        exports: Output targets.
        tags: Image tags.
        push: Push after building.
        iidfile: File the builder writes the image id to.
        docker_bin: Docker executable.

    Returns:
        Command as list of strings suitable for subprocess.
    """
    cmd = [docker_bin, "buildx", "build", "--file", dockerfile]

    for name, value in args.items():
        if isinstance(value, SecretStr):
            # Value is read from the environment by the docker client
            cmd.extend(["--build-arg", name])
        else:
            cmd.extend(["--build-arg", f"{name}={value}"])

    for tag in tags:
        cmd.extend(["--tag", tag])

    for target in exports:
        cmd.extend(["--output", target.to_output()])

    if push:
        cmd.append("--push")

    if iidfile is not None:
        cmd.extend(["--iidfile", str(iidfile)])

    cmd.append(context)
    return cmd


def secret_environment(args: Mapping[str, BuildArgValue]) -> dict[str, str]:
    """Return the environment entries carrying sensitive build arguments."""
    return {
        name: value.get_secret_value()
        for name, value in args.items()
        if isinstance(value, SecretStr)
    }


class BuildxEngine:
    """BuildEngine backed by the docker buildx CLI.

    Attributes:
        work_dir: Directory for per-build logs and image id files.
        timeout: Build timeout in seconds (None = no timeout).
        docker_bin: Docker executable.
    """

    def __init__(
        self,
        work_dir: Path,
        timeout: int | None = None,
        docker_bin: str = "docker",
    ) -> None:
        self.work_dir = work_dir
        self.timeout = timeout
        self.docker_bin = docker_bin

    def build(
        self,
        context: str,
        dockerfile: str,
        args: Mapping[str, BuildArgValue],
        exports: Sequence[ExportTarget],
        *,
        tags: Sequence[str] = (),
        push: bool = False,
    ) -> BuildResult:
        """Execute a buildx build.

        Returns:
            BuildResult with the image id and redacted argument echo.

        Raises:
            BuildEngineError: If the build cannot start, exits non-zero or
                times out.
        """
        started_at = datetime.now(timezone.utc)
        build_dir = self.work_dir / (
            f"{started_at:%Y%m%dT%H%M%S}_{uuid.uuid4().hex[:8]}"
        )
        build_dir.mkdir(parents=True, exist_ok=True)
        log_path = build_dir / "build.log"
        iidfile = build_dir / "image.id"

        cmd = compose_build_command(
            context=context,
            dockerfile=dockerfile,
            args=args,
            exports=exports,
            tags=tags,
            push=push,
            iidfile=iidfile,
            docker_bin=self.docker_bin,
        )
        cmd_str = shlex.join(cmd)
        logger.info("Executing build: %s", cmd_str)
        logger.info("Build log: %s", log_path)

        env = dict(os.environ)
        env.update(secret_environment(args))

        try:
            with log_path.open("w") as log_file:
                log_file.write(f"# Command: {cmd_str}\n")
                log_file.write(f"# Started: {started_at.isoformat()}\n")
                log_file.write("# " + "=" * 70 + "\n\n")
                log_file.flush()

                result = subprocess.run(
                    cmd,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    timeout=self.timeout,
                    env=env,
                    check=False,
                )
        except subprocess.TimeoutExpired as e:
            message = f"Build timed out after {self.timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            with log_path.open("a") as log_file:
                log_file.write(f"\n# TIMEOUT after {self.timeout} seconds\n")
            raise BuildEngineError(
                message, exit_code=-1, code="build_timeout", log_path=log_path
            ) from e
        except OSError as e:
            message = f"Failed to execute build: {e}"
            logger.error(message)
            raise BuildEngineError(
                message, code="execution_error", log_path=log_path
            ) from e

        finished_at = datetime.now(timezone.utc)
        exit_code = result.returncode

        with log_path.open("a") as log_file:
            log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
            log_file.write(f"# Exit code: {exit_code}\n")
            duration = (finished_at - started_at).total_seconds()
            log_file.write(f"# Duration: {duration:.1f}s\n")

        if exit_code != 0:
            message = f"Build failed with exit code {exit_code}"
            logger.error("%s. See log: %s", message, log_path)
            raise BuildEngineError(
                message, exit_code=exit_code, code="build_exit", log_path=log_path
            )

        ref = iidfile.read_text().strip() if iidfile.exists() else None

        return BuildResult(
            ref=ref or None,
            args=redact_args(args),
            command=cmd_str,
            exit_code=exit_code,
            log_path=log_path,
            started_at=started_at,
            finished_at=finished_at,
            tags=list(tags),
        )


__all__ = [
    "BuildEngine",
    "BuildEngineError",
    "BuildResult",
    "BuildxEngine",
    "compose_build_command",
    "secret_environment",
]
