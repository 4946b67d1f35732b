"""
Shared-secret request signing with replay protection.

A request is signed with a hex HMAC-SHA256 over ``access_key:timestamp:nonce``.
The guard rejects unknown access keys, timestamps outside the TTL window,
bad signatures and nonces it has already accepted within that window.
"""

from __future__ import annotations

import hashlib
import heapq
import hmac
import logging
import secrets
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class AuthError(RuntimeError):
    """Base class for authentication failures."""


class Unauthorized(AuthError):
    """Unknown access key or signature mismatch."""


class Expired(AuthError):
    """Timestamp outside the accepted window."""


class Replayed(AuthError):
    """Nonce already accepted within its TTL window."""


def sign(secret: str, access_key: str, timestamp: int, nonce: str) -> str:
    """Return the hex signature for the given request fields."""
    message = f"{access_key}:{timestamp}:{nonce}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def new_nonce() -> str:
    return secrets.token_hex(16)


class AuthGuard:
    """
    Verify signed requests and remember accepted nonces.

    The replay cache maps ``(access_key, nonce)`` to its expiry; a min-heap
    ordered by expiry lets each verification purge stale entries cheaply.
    """

    def __init__(
        self,
        *,
        access_key: str,
        secret_key: str,
        signature_ttl_seconds: int = 300,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not access_key or not secret_key:
            raise ValueError("access_key and secret_key must be non-empty")
        if signature_ttl_seconds <= 0:
            raise ValueError("signature_ttl_seconds must be positive")
        self._access_key = access_key
        self._secret_key = secret_key
        self._ttl = signature_ttl_seconds
        self._clock = clock or time.time
        self._seen: dict[tuple[str, str], int] = {}
        self._expiries: list[tuple[int, str, str]] = []

    @property
    def signature_ttl_seconds(self) -> int:
        return self._ttl

    def verify(self, access_key: str, timestamp: int, nonce: str, signature: str) -> None:
        """Raise an `AuthError` subclass unless the request is fresh and correctly signed."""
        now = int(self._clock())
        self._purge(now)

        if not hmac.compare_digest(access_key.encode("utf-8"), self._access_key.encode("utf-8")):
            raise Unauthorized("unknown access key")
        if abs(now - timestamp) > self._ttl:
            raise Expired(f"timestamp {timestamp} outside the {self._ttl}s window")

        try:
            provided = bytes.fromhex(signature)
        except ValueError as exc:
            raise Unauthorized("signature is not valid hex") from exc
        expected = bytes.fromhex(sign(self._secret_key, access_key, timestamp, nonce))
        if not hmac.compare_digest(provided, expected):
            raise Unauthorized("signature mismatch")

        key = (access_key, nonce)
        if key in self._seen:
            raise Replayed("nonce already used")
        expiry = timestamp + self._ttl
        self._seen[key] = expiry
        heapq.heappush(self._expiries, (expiry, access_key, nonce))

    def cached_nonces(self) -> int:
        return len(self._seen)

    def _purge(self, now: int) -> None:
        while self._expiries and self._expiries[0][0] < now:
            expiry, access_key, nonce = heapq.heappop(self._expiries)
            key = (access_key, nonce)
            if self._seen.get(key) == expiry:
                del self._seen[key]


__all__ = [
    "AuthError",
    "AuthGuard",
    "Expired",
    "Replayed",
    "Unauthorized",
    "new_nonce",
    "sign",
]
