"""
Dynaconf-powered configuration loader with Pydantic validation.

The configuration service loads the layered YAML files from a config
directory (``config.yaml`` then ``secrets.yaml``), lets ``VUTBER_`` prefixed
environment variables override them, and validates the merged result into a
`ConfigSnapshot` consumed by the entrypoint.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


def _lower_keys(raw: Any) -> Any:
    """Dynaconf upper-cases top-level keys; normalise the whole tree."""
    if isinstance(raw, dict):
        return {str(key).lower(): _lower_keys(value) for key, value in raw.items()}
    if isinstance(raw, list):
        return [_lower_keys(item) for item in raw]
    return raw


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"
DISABLED_PROVIDERS = frozenset({"", "none", "disabled"})
DEFAULT_PREAMBLE = (
    "You are Vutber, a multi-modal creative AI who can chat, narrate, sing, "
    "paint and storyboard videos."
)
DEFAULT_ZHIPU_API_URL = "https://open.bigmodel.cn/api/paas/v4/chat/completions"


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


class ServerSettings(BaseModel):
    """HTTP boundary bind address and streaming knobs."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=9000, ge=0, le=65535)
    keepalive_seconds: float = Field(default=15.0, gt=0)
    subscriber_queue_size: int = Field(default=256, ge=1)


class AuthSettings(BaseModel):
    """Shared-secret request signing."""

    model_config = ConfigDict(extra="ignore")

    MIN_TTL_SECONDS: ClassVar[int] = 30

    access_key: str = Field(min_length=1)
    secret_key: str = Field(min_length=1)
    signature_ttl_seconds: int = Field(default=300)

    @field_validator("signature_ttl_seconds")
    @classmethod
    def _clamp_ttl(cls, value: int) -> int:
        return max(value, cls.MIN_TTL_SECONDS)


class OpenAiSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str | None = Field(default=None)
    base_url: str = Field(default="https://api.openai.com/v1")
    chat_model: str = Field(default="gpt-4o-mini")
    agent_preamble: str = Field(default=DEFAULT_PREAMBLE)
    image_model: str = Field(default="dall-e-3")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class ZhipuSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str | None = Field(default=None)
    chat_model: str = Field(default="glm-4-flash")
    agent_preamble: str = Field(default=DEFAULT_PREAMBLE)
    api_url: str = Field(default=DEFAULT_ZHIPU_API_URL)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class HyperbolicSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_key: str | None = Field(default=None)
    base_url: str = Field(default="https://api.hyperbolic.xyz")
    language: str = Field(default="EN")
    voice: str = Field(default="EN-US")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


class VideoSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    endpoint: str | None = Field(default=None)
    api_key: str | None = Field(default=None)
    format: str = Field(default="mp4")
    max_duration_seconds: int | None = Field(default=None, ge=1)

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)


class CapabilityRoute(BaseModel):
    """Provider selected for one capability."""

    model_config = ConfigDict(extra="ignore")

    provider: str
    model: str | None = Field(default=None)

    @field_validator("provider", mode="before")
    @classmethod
    def _normalise_provider(cls, value: Any) -> str:
        return str(value or "").strip().lower()

    @property
    def disabled(self) -> bool:
        return self.provider in DISABLED_PROVIDERS


class ProviderRoutes(BaseModel):
    model_config = ConfigDict(extra="ignore")

    intent: CapabilityRoute | None = None
    conversation: CapabilityRoute | None = None
    image: CapabilityRoute | None = None
    music: CapabilityRoute | None = None
    video: CapabilityRoute | None = None


class IntentSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class BilibiliLiveSettings(BaseModel):
    """Credentials for the Bilibili open-platform live feed."""

    model_config = ConfigDict(extra="ignore")

    MIN_HEARTBEAT_SECONDS: ClassVar[int] = 5

    access_key: str = Field(min_length=1)
    access_secret: str = Field(min_length=1)
    app_id: int
    id_code: str | None = Field(default=None)
    host: str | None = Field(default=None)
    heartbeat_interval_seconds: int = Field(default=20)

    @field_validator("heartbeat_interval_seconds")
    @classmethod
    def _clamp_heartbeat(cls, value: int) -> int:
        return max(value, cls.MIN_HEARTBEAT_SECONDS)


class LiveSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bilibili: BilibiliLiveSettings | None = None
    stop_timeout_seconds: float = Field(default=5.0, gt=0)

    @field_validator("bilibili", mode="before")
    @classmethod
    def _drop_incomplete(cls, value: Any) -> Any:
        if isinstance(value, dict) and not all(
            value.get(key) for key in ("access_key", "access_secret", "app_id")
        ):
            return None
        return value

    @property
    def configured(self) -> bool:
        return self.bilibili is not None


class ConfigSnapshot(BaseModel):
    """
    Validated, strongly typed view of the merged configuration.

    Provider routes that are not configured explicitly are derived from the
    provider sections that carry credentials.
    """

    model_config = ConfigDict(extra="ignore")

    server: ServerSettings = Field(default_factory=ServerSettings)
    auth: AuthSettings
    artifacts_dir: Path = Field(default_factory=lambda: Path.cwd() / "artifacts")
    openai: OpenAiSettings = Field(default_factory=OpenAiSettings)
    zhipu: ZhipuSettings = Field(default_factory=ZhipuSettings)
    hyperbolic: HyperbolicSettings = Field(default_factory=HyperbolicSettings)
    video: VideoSettings = Field(default_factory=VideoSettings)
    providers: ProviderRoutes = Field(default_factory=ProviderRoutes)
    intent: IntentSettings = Field(default_factory=IntentSettings)
    live: LiveSettings = Field(default_factory=LiveSettings)

    @field_validator("artifacts_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value
        return Path(value)

    @model_validator(mode="after")
    def _default_routes(self) -> ConfigSnapshot:
        routes = self.providers
        chat_route: CapabilityRoute | None = None
        if self.openai.configured:
            chat_route = CapabilityRoute(provider="openai", model=self.openai.chat_model)
        elif self.zhipu.configured:
            chat_route = CapabilityRoute(provider="zhipu", model=self.zhipu.chat_model)
        if routes.intent is None:
            routes.intent = chat_route
        if routes.conversation is None:
            routes.conversation = chat_route
        if routes.image is None and self.openai.configured:
            routes.image = CapabilityRoute(provider="openai", model=self.openai.image_model)
        if routes.music is None and self.hyperbolic.configured:
            routes.music = CapabilityRoute(provider="hyperbolic", model=self.hyperbolic.language)
        if routes.video is None and self.video.configured:
            routes.video = CapabilityRoute(provider="custom", model=self.video.format)
        return self


class ConfigService:
    """
    Runtime facade for loading and validating configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        if settings is None:
            settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
            existing_files = [str(path) for path in settings_files if path.exists()]
            if not existing_files:
                raise ConfigError(
                    f"No configuration files found in {self._config_dir}. "
                    "Expected at least config.yaml."
                )
            settings = Dynaconf(
                envvar_prefix="VUTBER",
                settings_files=existing_files,
                load_dotenv=True,
                environments=False,
                merge_enabled=True,
            )
        self._settings = settings
        self._snapshot = self._build_snapshot()

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def _build_snapshot(self) -> ConfigSnapshot:
        raw = _lower_keys(self._settings.as_dict())
        if not _section(raw, "auth"):
            raise ConfigError(
                "Missing 'auth' section; configure auth.access_key and auth.secret_key."
            )
        try:
            return ConfigSnapshot.model_validate(raw)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc


__all__ = [
    "DISABLED_PROVIDERS",
    "AuthSettings",
    "BilibiliLiveSettings",
    "CapabilityRoute",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "HyperbolicSettings",
    "IntentSettings",
    "LiveSettings",
    "OpenAiSettings",
    "ProviderRoutes",
    "ServerSettings",
    "VideoSettings",
    "ZhipuSettings",
]
