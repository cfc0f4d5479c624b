"""Pydantic settings for the extraction service.

Settings come from an optional YAML file, then environment overrides. They
are read once at startup and treated as read-only afterwards.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import (
    APIFY_API_BASE,
    DEFAULT_ACTORS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_FETCH_TIMEOUT_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_WAIT_SECONDS,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from .errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("audiograb.yaml")


class ProviderSettings(BaseModel):
    token: Optional[str] = None
    api_base: str = APIFY_API_BASE
    actors: List[str] = Field(default_factory=lambda: list(DEFAULT_ACTORS))
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("actors")
    def ensure_actors(cls, value: List[str]) -> List[str]:
        actors = [actor.strip() for actor in value if actor and actor.strip()]
        if not actors:
            raise ValueError("At least one provider actor is required")
        return actors

    def require_token(self) -> str:
        if not self.token:
            raise ConfigurationError("Server missing Apify token")
        return self.token


class PollingSettings(BaseModel):
    interval_seconds: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    max_wait_seconds: float = Field(default=DEFAULT_MAX_WAIT_SECONDS, gt=0)


class DeliverySettings(BaseModel):
    ffmpeg_bin: str = "ffmpeg"
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1024)
    fetch_timeout_seconds: float = Field(default=DEFAULT_FETCH_TIMEOUT_SECONDS, gt=0)
    mp3_bitrate: str = "192k"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(default=5175, ge=1, le=65535)


class AppSettings(BaseModel):
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppSettings:
    """Load settings from YAML (if present) and apply environment overrides."""
    env = os.environ if environ is None else environ
    config_path = path or Path(env.get("AUDIOGRAB_CONFIG", DEFAULT_CONFIG_PATH))

    data: dict = {}
    if config_path.exists():
        loaded = yaml.safe_load(config_path.read_text())
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(f"Invalid settings file at {config_path}")
        data = loaded or {}
        log.debug("Loaded settings from %s", config_path)

    settings = AppSettings.model_validate(data)
    return _apply_env(settings, env)


def _apply_env(settings: AppSettings, env: Mapping[str, str]) -> AppSettings:
    provider = settings.provider
    token = env.get("APIFY_TOKEN") or env.get("VITE_APIFY_TOKEN")
    if token:
        provider.token = token.strip()

    actor = (env.get("APIFY_ACTOR") or "").strip()
    if actor:
        provider.actors = [actor] + [name for name in provider.actors if name != actor]

    if env.get("AUDIOGRAB_MAX_ATTEMPTS"):
        provider.max_attempts = max(1, int(env["AUDIOGRAB_MAX_ATTEMPTS"]))
    if env.get("AUDIOGRAB_POLL_INTERVAL"):
        settings.polling.interval_seconds = float(env["AUDIOGRAB_POLL_INTERVAL"])
    if env.get("AUDIOGRAB_MAX_WAIT"):
        settings.polling.max_wait_seconds = float(env["AUDIOGRAB_MAX_WAIT"])
    if env.get("AUDIOGRAB_LOG_LEVEL"):
        settings.logging.level = env["AUDIOGRAB_LOG_LEVEL"]
    if env.get("FFMPEG_BIN"):
        settings.delivery.ffmpeg_bin = env["FFMPEG_BIN"]
    if env.get("PORT"):
        settings.server.port = int(env["PORT"])
    return settings
