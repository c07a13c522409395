from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

# environment variable -> config field
ENV_VARS = {
    "HOST": "host",
    "PORT": "port",
    "HEARTBEAT_INTERVAL": "heartbeat_interval_ms",
    "CLIENT_HEARTBEAT_INTERVAL": "client_heartbeat_ms",
    "MAX_MESSAGE_LENGTH": "max_message_length",
    "LOG_LEVEL": "log_level",
}


class ConfigError(ValueError):
    pass


DEFAULT_CLIENT_HEARTBEAT_MS = 25_000


def default_client_heartbeat_ms(heartbeat_interval_ms: int) -> int:
    """Client heartbeat period used when none is configured."""

    return min(DEFAULT_CLIENT_HEARTBEAT_MS, heartbeat_interval_ms * 5 // 6)


class ServerConfig(BaseModel):
    """Runtime settings for the chat server."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=0, le=65535)
    heartbeat_interval_ms: int = Field(default=30_000, gt=0)
    client_heartbeat_ms: Optional[int] = Field(default=None, gt=0)
    max_message_length: int = Field(default=500, gt=0)
    max_frame_bytes: int = Field(default=64 * 1024, gt=0)
    max_outbox_frames: int = Field(default=256, gt=0)
    log_level: str = "INFO"

    model_config = ConfigDict(extra="forbid")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _client_beats_faster_than_sweep(self) -> "ServerConfig":
        if self.client_heartbeat_ms is None:
            self.client_heartbeat_ms = default_client_heartbeat_ms(self.heartbeat_interval_ms)
        # every sweep interval must contain at least one client heartbeat
        if not 0 < self.client_heartbeat_ms < self.heartbeat_interval_ms:
            raise ValueError("client_heartbeat_ms must be smaller than heartbeat_interval_ms")
        return self


def _from_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping")
    return data


def _from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    return {field: environ[var] for var, field in ENV_VARS.items() if environ.get(var, "").strip()}


def load_config(
    path: Optional[str | Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServerConfig:
    """defaults < YAML file < environment < explicit overrides"""

    values: Dict[str, Any] = {}
    if path is not None:
        values.update(_from_yaml(Path(path)))
    values.update(_from_env(os.environ if environ is None else environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        return ServerConfig(**values)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc


__all__ = [
    "ServerConfig",
    "ConfigError",
    "load_config",
    "default_client_heartbeat_ms",
    "DEFAULT_CLIENT_HEARTBEAT_MS",
    "ENV_VARS",
]
