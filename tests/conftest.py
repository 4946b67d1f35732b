from __future__ import annotations

import textwrap
import time
from pathlib import Path

import pytest

from vutber.core.auth import new_nonce, sign
from vutber.core.config import ConfigService

ACCESS_KEY = "lab-access"
SECRET_KEY = "lab-secret"


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def signed_params(
    *,
    access_key: str = ACCESS_KEY,
    secret_key: str = SECRET_KEY,
    timestamp: int | None = None,
    nonce: str | None = None,
) -> dict[str, str]:
    """Build a signed query string for the HTTP boundary."""

    ts = int(time.time()) if timestamp is None else timestamp
    nonce = nonce or new_nonce()
    return {
        "access_key": access_key,
        "timestamp": str(ts),
        "nonce": nonce,
        "signature": sign(secret_key, access_key, ts, nonce),
    }


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    artifacts_dir = tmp_path / "artifacts"
    config_yaml = f"""
    server:
      host: "127.0.0.1"
      port: 9100
      keepalive_seconds: 5
      subscriber_queue_size: 16

    auth:
      signature_ttl_seconds: 120

    artifacts_dir: "{artifacts_dir.as_posix()}"

    openai:
      chat_model: "gpt-4o-mini"
      image_model: "dall-e-3"

    hyperbolic:
      language: "ZH"
      voice: "ZH"

    providers:
      intent:
        provider: "zhipu"
      video:
        provider: "none"

    intent:
      min_confidence: 0.7

    live:
      stop_timeout_seconds: 2
      bilibili:
        app_id: 1234
        id_code: "anchor-code"
        heartbeat_interval_seconds: 1
    """
    secrets_yaml = f"""
    auth:
      access_key: "{ACCESS_KEY}"
      secret_key: "{SECRET_KEY}"

    openai:
      api_key: "sk-test"

    zhipu:
      api_key: "zhipu-test"

    hyperbolic:
      api_key: "hyperbolic-test"

    live:
      bilibili:
        access_key: "bili-key"
        access_secret: "bili-secret"
    """
    _write_yaml(config_dir / "config.yaml", config_yaml)
    _write_yaml(config_dir / "secrets.yaml", secrets_yaml)
    return config_dir


@pytest.fixture
def sample_config_service(sample_config_dir: Path) -> ConfigService:
    """Return a ConfigService wired to the temporary configuration."""

    return ConfigService(config_dir=sample_config_dir)


@pytest.fixture
def sign_request():
    """Factory for signed query parameters accepted by the sample credentials."""

    return signed_params
