"""Credential providers.

A credential provider supplies a fresh short-lived secret on demand. The
stash calls ``fetch()`` only when a staged secret has to be replaced; it
never authenticates on its own.

Providers:
- StaticCredentialProvider: returns a configured value
- TimestampTokenProvider: mints ``temp-token-<epoch-ms>`` demo tokens
- HttpTokenProvider: asks an HTTP token endpoint for a new token
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

import httpx
from pydantic import SecretStr

from buildstash.errors import FETCH_TIMEOUT, CredentialFetchFailed

logger = logging.getLogger(__name__)

# Timeout for token endpoint requests (seconds)
TOKEN_REQUEST_TIMEOUT = 30.0


class CredentialProvider(Protocol):
    """Supplies fresh secret values."""

    def fetch(self) -> SecretStr: ...


class StaticCredentialProvider:
    """Provider that always returns the same configured value."""

    def __init__(self, value: SecretStr | str) -> None:
        self._value = value if isinstance(value, SecretStr) else SecretStr(value)

    def fetch(self) -> SecretStr:
        """Return the configured value."""
        return self._value


class TimestampTokenProvider:
    """Demo provider minting a new token per fetch from the current time.

    Stands in for a real token service when none is configured: every
    fetch yields a different value, like a short-lived credential would.
    """

    def __init__(
        self,
        prefix: str = "temp-token-",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.prefix = prefix
        self._clock = clock

    def fetch(self) -> SecretStr:
        """Return ``<prefix><epoch milliseconds>``."""
        return SecretStr(f"{self.prefix}{int(self._clock() * 1000)}")


class HttpTokenProvider:
    """Provider that requests a token from an HTTP endpoint.

    The endpoint is POSTed to and must answer with a JSON object holding
    the token under ``token_field``.

    Attributes:
        url: Token endpoint URL.
        token_field: JSON field containing the token.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        client: httpx.Client,
        url: str,
        token_field: str = "authorizationToken",
        timeout: float = TOKEN_REQUEST_TIMEOUT,
    ) -> None:
        self.client = client
        self.url = url
        self.token_field = token_field
        self.timeout = timeout

    def fetch(self) -> SecretStr:
        """Request a new token.

        Returns:
            The token, marked sensitive.

        Raises:
            CredentialFetchFailed: On HTTP errors, timeouts, connection
                errors, or a response without the token field.
        """
        logger.debug("Requesting token from %s", self.url)
        try:
            response = self.client.post(self.url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise CredentialFetchFailed(
                f"Token endpoint returned HTTP {e.response.status_code}: {self.url}"
            ) from e
        except httpx.TimeoutException as e:
            raise CredentialFetchFailed(
                f"Timeout requesting token from {self.url}", code=FETCH_TIMEOUT
            ) from e
        except httpx.RequestError as e:
            raise CredentialFetchFailed(
                f"Failed to request token from {self.url}: {e}"
            ) from e
        except ValueError as e:
            raise CredentialFetchFailed(
                f"Token endpoint returned invalid JSON: {self.url}"
            ) from e

        token = payload.get(self.token_field) if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise CredentialFetchFailed(
                f"Token endpoint response has no '{self.token_field}' field"
            )
        return SecretStr(token)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()

    def __enter__(self) -> HttpTokenProvider:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()



__all__ = [
    "TOKEN_REQUEST_TIMEOUT",
    "CredentialProvider",
    "HttpTokenProvider",
    "StaticCredentialProvider",
    "TimestampTokenProvider",
]
