"""Tests for request signing and the replay cache."""

from __future__ import annotations

import hashlib
import hmac

import pytest

from vutber.core.auth import AuthGuard, Expired, Replayed, Unauthorized, new_nonce, sign


class _Clock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _guard(clock: _Clock, ttl: int = 300) -> AuthGuard:
    return AuthGuard(
        access_key="key", secret_key="secret", signature_ttl_seconds=ttl, clock=clock
    )


def test_sign_matches_known_digest() -> None:
    expected = hmac.new(b"secret", b"key:1700000000:abc", hashlib.sha256).hexdigest()
    assert sign("secret", "key", 1700000000, "abc") == expected


def test_valid_request_is_accepted_and_cached() -> None:
    clock = _Clock(1_000)
    guard = _guard(clock)
    nonce = new_nonce()

    guard.verify("key", 1_000, nonce, sign("secret", "key", 1_000, nonce))

    assert guard.cached_nonces() == 1


def test_unknown_access_key_is_rejected() -> None:
    guard = _guard(_Clock(1_000))
    with pytest.raises(Unauthorized):
        guard.verify("other", 1_000, "n1", sign("secret", "other", 1_000, "n1"))


def test_bad_signature_is_rejected_without_caching() -> None:
    guard = _guard(_Clock(1_000))
    with pytest.raises(Unauthorized):
        guard.verify("key", 1_000, "n1", sign("wrong", "key", 1_000, "n1"))
    with pytest.raises(Unauthorized):
        guard.verify("key", 1_000, "n1", "not-hex")
    assert guard.cached_nonces() == 0


def test_stale_timestamp_is_expired_even_with_bad_signature() -> None:
    guard = _guard(_Clock(10_000), ttl=60)
    with pytest.raises(Expired):
        guard.verify("key", 1_000, "n", "deadbeef")


def test_timestamp_outside_window_is_expired() -> None:
    guard = _guard(_Clock(1_000), ttl=60)
    with pytest.raises(Expired):
        guard.verify("key", 939, "old", sign("secret", "key", 939, "old"))
    with pytest.raises(Expired):
        guard.verify("key", 1_061, "future", sign("secret", "key", 1_061, "future"))
    # The window boundary itself is accepted.
    guard.verify("key", 940, "edge", sign("secret", "key", 940, "edge"))


def test_reused_nonce_is_replayed() -> None:
    guard = _guard(_Clock(1_000))
    signature = sign("secret", "key", 1_000, "once")
    guard.verify("key", 1_000, "once", signature)

    with pytest.raises(Replayed):
        guard.verify("key", 1_000, "once", signature)


def test_expired_nonces_are_purged() -> None:
    clock = _Clock(1_000)
    guard = _guard(clock, ttl=60)
    guard.verify("key", 1_000, "a", sign("secret", "key", 1_000, "a"))
    guard.verify("key", 1_010, "b", sign("secret", "key", 1_010, "b"))
    assert guard.cached_nonces() == 2

    clock.now = 1_065
    guard.verify("key", 1_065, "c", sign("secret", "key", 1_065, "c"))

    # "a" expired at 1060; "b" lives until 1070.
    assert guard.cached_nonces() == 2


def test_guard_rejects_empty_credentials() -> None:
    with pytest.raises(ValueError):
        AuthGuard(access_key="", secret_key="secret")
