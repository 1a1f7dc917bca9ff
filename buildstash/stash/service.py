"""Secret stash service.

This module provides the change-triggered staging of one secret per
build target:
- decide(): pure Stable / NeedsReplace decision by fingerprint comparison
- SecretStash.evaluate(): reuse the staged secret or fetch and publish a new one
- stash_lock(): cross-process lock around the check-then-act sequence
- StashRegistry: one independent SecretStash per build target

A staged secret is replaced only when the fingerprint it was staged under
differs from the current one. Raw secret values presented by callers for
an unchanged fingerprint are ignored.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import Future, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pydantic import SecretStr

from buildstash.credentials import CredentialProvider
from buildstash.errors import FETCH_TIMEOUT, Cancelled, CredentialFetchFailed
from buildstash.stash.store import InMemoryStashStore, StashRecord, StashStore
from buildstash.types import Fingerprint, StashOutcome, short_fingerprint

logger = logging.getLogger(__name__)

# How often a pending fetch is checked for cancellation (seconds)
FETCH_POLL_INTERVAL = 0.05


@dataclass(frozen=True)
class Stable:
    """The staged record is valid for the current fingerprint."""

    record: StashRecord


@dataclass(frozen=True)
class NeedsReplace:
    """A fresh secret must be fetched; ``previous`` is None on first run."""

    previous: StashRecord | None


StashDecision = Stable | NeedsReplace


def decide(record: StashRecord | None, fingerprint: Fingerprint) -> StashDecision:
    """Decide whether a staged record can be reused.

    Args:
        record: Currently staged record, if any.
        fingerprint: Fingerprint of the current build inputs.

    Returns:
        Stable when the record was staged under ``fingerprint``,
        NeedsReplace otherwise.
    """
    if record is not None and record.staged_under == fingerprint:
        return Stable(record)
    return NeedsReplace(record)


@contextlib.contextmanager
def stash_lock(
    lock_dir: Path,
    target: str,
    timeout: float | None = None,
) -> Iterator[None]:
    """Acquire a lock for a stash target.

    Uses a file-based lock so evaluations of the same target from
    different processes are serialized.

    Args:
        lock_dir: Directory for lock files.
        target: Build target to lock on.
        timeout: Lock acquisition timeout in seconds (None = blocking).

    Yields:
        None when lock is acquired.

    Raises:
        TimeoutError: If lock cannot be acquired within timeout.
    """
    lock_dir.mkdir(parents=True, exist_ok=True)

    safe_name = target.replace(":", "_").replace("/", "_")[:64]
    lock_file = lock_dir / f"stash_{safe_name}.lock"

    logger.debug("Acquiring stash lock for target: %s", target)

    fd = os.open(str(lock_file), os.O_RDWR | os.O_CREAT, 0o600)
    lock_acquired = False
    try:
        if timeout is not None:
            start = time.monotonic()
            while True:
                try:
                    fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                    lock_acquired = True
                    break
                except BlockingIOError:
                    if time.monotonic() - start >= timeout:
                        raise TimeoutError(
                            f"Timeout waiting for stash lock on {target}"
                        ) from None
                    time.sleep(0.1)
        else:
            fcntl.flock(fd, fcntl.LOCK_EX)
            lock_acquired = True

        logger.debug("Stash lock acquired for target: %s", target)
        yield
    finally:
        if lock_acquired:
            fcntl.flock(fd, fcntl.LOCK_UN)
            logger.debug("Stash lock released for target: %s", target)
        os.close(fd)


class SecretStash:
    """Holds the staged secret of one build target.

    Attributes:
        target: Build target identity.
        provider: Source of fresh secrets.
        store: Where the current record lives.
        fetch_timeout: Bound on a single fetch in seconds (None = unbounded).
        lock_dir: Directory for cross-process locks (None = in-process only).
        lock_timeout: Bound on waiting for the cross-process lock in seconds
            (None = blocking).
        fetch_count: Number of fetches started by this stash.
        last_outcome: How the latest successful evaluation got its value.
    """

    def __init__(
        self,
        target: str,
        provider: CredentialProvider,
        store: StashStore | None = None,
        fetch_timeout: float | None = None,
        lock_dir: Path | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.target = target
        self.provider = provider
        self.store = store if store is not None else InMemoryStashStore()
        self.fetch_timeout = fetch_timeout
        self.lock_dir = lock_dir
        self.lock_timeout = lock_timeout
        self.fetch_count = 0
        self.last_outcome: StashOutcome | None = None
        self._lock = threading.Lock()

    def evaluate(
        self,
        current_fingerprint: Fingerprint,
        raw_value: SecretStr | str | None = None,
        cancel: threading.Event | None = None,
    ) -> SecretStr:
        """Return the secret valid for ``current_fingerprint``.

        Args:
            current_fingerprint: Fingerprint of the current build inputs.
            raw_value: A secret value the caller happens to hold. Ignored;
                only a fingerprint change triggers a refresh.
            cancel: Event that aborts a pending fetch when set.

        Returns:
            The staged secret, fetched anew only on a fingerprint change.

        Raises:
            CredentialFetchFailed: If the provider fails or times out.
            Cancelled: If ``cancel`` is set while fetching.
            TimeoutError: If the cross-process lock is not acquired within
                ``lock_timeout``.
        """
        with self._lock, self._process_lock():
            record = self.store.load(self.target)
            decision = decide(record, current_fingerprint)

            if isinstance(decision, Stable):
                if raw_value is not None:
                    logger.debug(
                        "Ignoring supplied secret for %s; inputs unchanged",
                        self.target,
                    )
                self.last_outcome = StashOutcome.REUSED
                logger.info(
                    "Reusing staged secret for %s (generation %d, fingerprint %s)",
                    self.target,
                    decision.record.generation,
                    short_fingerprint(current_fingerprint),
                )
                return decision.record.secret_value

            previous = decision.previous
            if previous is None:
                logger.info(
                    "No staged secret for %s, fetching (fingerprint %s)",
                    self.target,
                    short_fingerprint(current_fingerprint),
                )
            else:
                logger.info(
                    "Build inputs changed for %s (%s -> %s), fetching fresh secret",
                    self.target,
                    short_fingerprint(previous.staged_under),
                    short_fingerprint(current_fingerprint),
                )

            value = self._fetch(cancel)
            new_record = StashRecord(
                secret_value=value,
                staged_under=current_fingerprint,
                generation=0 if previous is None else previous.generation + 1,
                staged_at=datetime.now(timezone.utc),
            )
            self.store.publish(self.target, new_record)
            self.last_outcome = (
                StashOutcome.CREATED if previous is None else StashOutcome.REPLACED
            )
            logger.info(
                "Staged secret for %s (generation %d)",
                self.target,
                new_record.generation,
            )
            return value

    def current(self) -> StashRecord | None:
        """Return the staged record without fetching."""
        return self.store.load(self.target)

    def invalidate(self) -> None:
        """Drop the staged record so the next evaluation fetches."""
        with self._lock, self._process_lock():
            self.store.discard(self.target)
            logger.info("Invalidated staged secret for %s", self.target)

    def _process_lock(self) -> contextlib.AbstractContextManager[None]:
        if self.lock_dir is None:
            return contextlib.nullcontext()
        return stash_lock(self.lock_dir, self.target, timeout=self.lock_timeout)

    def _fetch(self, cancel: threading.Event | None) -> SecretStr:
        """Run one provider fetch bounded by timeout and cancellation."""
        self.fetch_count += 1
        future: Future[SecretStr] = Future()

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                value = self.provider.fetch()
            except BaseException as e:
                future.set_exception(e)
            else:
                future.set_result(value)

        # Daemon worker: a fetch abandoned after a timeout must not keep
        # the interpreter from exiting
        worker = threading.Thread(
            target=run, name=f"stash-fetch-{self.target}", daemon=True
        )
        worker.start()

        deadline = (
            None if self.fetch_timeout is None else time.monotonic() + self.fetch_timeout
        )
        while True:
            if cancel is not None and cancel.is_set():
                future.cancel()
                logger.warning("Fetch for %s cancelled", self.target)
                raise Cancelled(f"Credential fetch for {self.target} cancelled")

            interval = FETCH_POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    future.cancel()
                    logger.error(
                        "Fetch for %s timed out after %ss",
                        self.target,
                        self.fetch_timeout,
                    )
                    raise CredentialFetchFailed(
                        f"Credential fetch for {self.target} timed out "
                        f"after {self.fetch_timeout}s",
                        code=FETCH_TIMEOUT,
                    )
                interval = min(interval, remaining)

            done, _ = wait([future], timeout=interval)
            if done:
                return self._result(future)

    def _result(self, future: Future[SecretStr]) -> SecretStr:
        try:
            value = future.result()
        except CredentialFetchFailed:
            logger.error("Credential fetch for %s failed", self.target)
            raise
        except Exception as e:
            logger.error("Credential fetch for %s failed: %s", self.target, e)
            raise CredentialFetchFailed(
                f"Credential provider failed for {self.target}: {e}"
            ) from e

        if not isinstance(value, SecretStr):
            value = SecretStr(str(value))
        if not value.get_secret_value():
            raise CredentialFetchFailed(
                f"Credential provider returned an empty value for {self.target}"
            )
        return value


class StashRegistry:
    """Hands out one independent SecretStash per build target.

    Stashes created by the registry share a store but no mutable state;
    each target's record lives under its own key.
    """

    def __init__(
        self,
        provider_factory: Callable[[str], CredentialProvider],
        store: StashStore | None = None,
        fetch_timeout: float | None = None,
        lock_dir: Path | None = None,
        lock_timeout: float | None = None,
    ) -> None:
        self.provider_factory = provider_factory
        self.store = store if store is not None else InMemoryStashStore()
        self.fetch_timeout = fetch_timeout
        self.lock_dir = lock_dir
        self.lock_timeout = lock_timeout
        self._stashes: dict[str, SecretStash] = {}
        self._lock = threading.Lock()

    def get(self, target: str) -> SecretStash:
        """Return the stash of ``target``, creating it on first use."""
        with self._lock:
            stash = self._stashes.get(target)
            if stash is None:
                stash = SecretStash(
                    target=target,
                    provider=self.provider_factory(target),
                    store=self.store,
                    fetch_timeout=self.fetch_timeout,
                    lock_dir=self.lock_dir,
                    lock_timeout=self.lock_timeout,
                )
                self._stashes[target] = stash
            return stash

    def targets(self) -> list[str]:
        """Return targets with a staged record in the store."""
        return self.store.targets()


__all__ = [
    "FETCH_POLL_INTERVAL",
    "NeedsReplace",
    "SecretStash",
    "Stable",
    "StashDecision",
    "StashRegistry",
    "decide",
    "stash_lock",
]
