"""Tests for the Dynaconf-backed configuration service."""

from __future__ import annotations

from pathlib import Path

import pytest

from vutber.core.config import (
    AuthSettings,
    BilibiliLiveSettings,
    ConfigError,
    ConfigService,
    ConfigSnapshot,
)


def test_config_service_loads_snapshot(sample_config_service: ConfigService) -> None:
    snapshot = sample_config_service.snapshot
    assert isinstance(snapshot, ConfigSnapshot)
    assert snapshot.server.port == 9100
    assert snapshot.server.keepalive_seconds == 5
    assert snapshot.server.subscriber_queue_size == 16
    assert snapshot.auth.access_key == "lab-access"
    assert snapshot.auth.secret_key == "lab-secret"
    assert snapshot.auth.signature_ttl_seconds == 120
    assert snapshot.artifacts_dir.name == "artifacts"
    assert snapshot.intent.min_confidence == 0.7


def test_secrets_are_merged_into_nested_sections(sample_config_service: ConfigService) -> None:
    live = sample_config_service.snapshot.live
    assert live.configured
    assert live.bilibili is not None
    assert live.bilibili.app_id == 1234
    assert live.bilibili.access_key == "bili-key"
    assert live.bilibili.id_code == "anchor-code"
    assert live.stop_timeout_seconds == 2


def test_provider_routes_are_derived_and_overridable(
    sample_config_service: ConfigService,
) -> None:
    routes = sample_config_service.snapshot.providers
    assert routes.intent is not None and routes.intent.provider == "zhipu"
    assert routes.conversation is not None and routes.conversation.provider == "openai"
    assert routes.conversation.model == "gpt-4o-mini"
    assert routes.image is not None and routes.image.model == "dall-e-3"
    assert routes.music is not None and routes.music.provider == "hyperbolic"
    assert routes.music.model == "ZH"
    assert routes.video is not None and routes.video.disabled


def test_environment_overrides_files(
    sample_config_dir: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("VUTBER_SERVER__PORT", "9200")
    snapshot = ConfigService(config_dir=sample_config_dir).snapshot
    assert snapshot.server.port == 9200


def test_missing_config_dir_raises(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        ConfigService(config_dir=tmp_path / "nope")


def test_missing_auth_section_raises(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text("server:\n  port: 9000\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="auth"):
        ConfigService(config_dir=tmp_path)


def test_invalid_values_raise_config_error(tmp_path: Path) -> None:
    (tmp_path / "config.yaml").write_text(
        "auth:\n  access_key: a\n  secret_key: b\nserver:\n  port: 99999\n", encoding="utf-8"
    )
    with pytest.raises(ConfigError, match="validation"):
        ConfigService(config_dir=tmp_path)


def test_signature_ttl_is_clamped() -> None:
    settings = AuthSettings(access_key="a", secret_key="b", signature_ttl_seconds=5)
    assert settings.signature_ttl_seconds == AuthSettings.MIN_TTL_SECONDS


def test_incomplete_live_credentials_disable_live() -> None:
    snapshot = ConfigSnapshot.model_validate(
        {
            "auth": {"access_key": "a", "secret_key": "b"},
            "live": {"bilibili": {"access_key": "k", "app_id": 1}},
        }
    )
    assert snapshot.live.bilibili is None
    assert not snapshot.live.configured


def test_bilibili_heartbeat_is_clamped() -> None:
    settings = BilibiliLiveSettings(
        access_key="k", access_secret="s", app_id=1, heartbeat_interval_seconds=1
    )
    assert settings.heartbeat_interval_seconds == BilibiliLiveSettings.MIN_HEARTBEAT_SECONDS


def test_no_credentials_leaves_routes_empty() -> None:
    snapshot = ConfigSnapshot.model_validate({"auth": {"access_key": "a", "secret_key": "b"}})
    routes = snapshot.providers
    assert routes.conversation is None
    assert routes.image is None
    assert routes.music is None
    assert routes.video is None


def test_zhipu_backs_conversation_when_openai_is_missing() -> None:
    snapshot = ConfigSnapshot.model_validate(
        {"auth": {"access_key": "a", "secret_key": "b"}, "zhipu": {"api_key": "z"}}
    )
    assert snapshot.providers.conversation is not None
    assert snapshot.providers.conversation.provider == "zhipu"
    assert snapshot.providers.image is None
