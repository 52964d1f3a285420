"""Gateway configuration — loads from difygate.yaml + .env."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml_config() -> dict[str, Any]:
    """Load difygate.yaml from DIFYGATE_CONFIG_PATH or default locations."""
    config_path = os.getenv("DIFYGATE_CONFIG_PATH")
    search_paths = (
        [Path(config_path)]
        if config_path
        else [
            Path("/etc/difygate/difygate.yaml"),
            Path("difygate.yaml"),
        ]
    )
    for path in search_paths:
        if path.exists():
            with open(path) as f:
                return yaml.safe_load(f) or {}
    return {}


class UpstreamConfig(BaseSettings):
    """Settings for calls to the Dify backend."""

    timeout_s: float | None = Field(
        default=None,
        gt=0,
        description="Upstream request timeout in seconds. None = wait indefinitely",
    )
    user: str = Field(default="apiuser", description="User identifier sent to Dify")

    @field_validator("timeout_s", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> float | None:
        if value is None:
            return None
        if isinstance(value, str):
            text = value.strip().lower()
            if text in {"", "none", "null", "0"}:
                return None
            return float(text)
        if value == 0:
            return None
        return value

    model_config = SettingsConfigDict(env_prefix="DIFYGATE_UPSTREAM_")


class GatewayConfig(BaseSettings):
    """Root gateway configuration."""

    # Server
    host: str = Field(default="0.0.0.0", description="Server bind host")
    port: int = Field(default=8000, description="Server bind port")

    # Admin API
    admin_api_key: str = Field(
        default="",
        description="Key required by the /api admin routes. Empty = admin API disabled",
    )

    # Storage
    data_dir: str = Field(default="./data")
    db_journal_mode: Literal["WAL", "DELETE"] = Field(default="WAL")
    db_busy_timeout_ms: int = Field(default=5000, ge=100, le=120000)

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="'json' or 'console'")
    log_prompts: bool = Field(
        default=True,
        description="Log question/answer previews for user-originated prompts",
    )

    model_config = SettingsConfigDict(
        env_prefix="DIFYGATE_",
        env_nested_delimiter="__",
    )

    @classmethod
    def load(cls) -> GatewayConfig:
        """Load config from YAML + env vars (env takes precedence)."""
        yaml_cfg = _load_yaml_config()

        upstream_data = yaml_cfg.pop("upstream", {})

        # Drop YAML keys that are overridden in the environment
        kwargs: dict[str, Any] = {
            key: value
            for key, value in yaml_cfg.items()
            if f"DIFYGATE_{key.upper()}" not in os.environ
        }
        if upstream_data:
            kwargs["upstream"] = UpstreamConfig(**upstream_data)

        return cls(**kwargs)


# Singleton
_config: GatewayConfig | None = None


def get_config() -> GatewayConfig:
    """Get or create the global config."""
    global _config
    if _config is None:
        _config = GatewayConfig.load()
    return _config
