"""
Configuration management for cors-relay.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "CORSRELAY_"


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "cors-relay"
    version: str = "0.1.0"
    log_level: str = "INFO"
    json_logs: bool = True
    log_file: str | None = None


class ServerConfig(BaseModel):
    """Listening socket configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)
    shutdown_timeout: float = 10.0


class UpstreamConfig(BaseModel):
    """Outbound client configuration.

    Timeouts bound how long a slow or stalled upstream can hold a pooled
    connection.
    """

    model_config = ConfigDict(extra="forbid")

    connect_timeout: float = 10.0
    read_timeout: float = 60.0  # per read, not for the whole body
    write_timeout: float = 10.0
    pool_timeout: float = 10.0
    max_connections: int = 1000
    max_keepalive_connections: int = 100
    chunk_size: int | None = None  # None = relay chunks as received


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml with local.yaml overrides.

    local.yaml keeps its overrides under a top-level ``settings`` key:

        settings:
          server:
            port: 9090

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / "settings.yaml"
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            local_overrides = yaml.safe_load(f) or {}
        if "settings" in local_overrides:
            config = _deep_merge(config, local_overrides["settings"])

    return config


def _apply_port_override(config: dict[str, Any]) -> dict[str, Any]:
    """Apply the conventional PORT environment variable.

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with server.port taken from PORT when set.
    """
    port = os.environ.get("PORT")
    if port:
        config.setdefault("server", {})["port"] = port
    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with CORSRELAY_ and use
    double underscores for nested keys.

    Example:
        CORSRELAY_UPSTREAM__READ_TIMEOUT=30

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == f"{ENV_PREFIX}CONFIG_DIR":
            continue

        key_path = key[len(ENV_PREFIX) :].lower().split("__")

        current = config
        for part in key_path[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. PORT environment variable
    4. CORSRELAY_* environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get(f"{ENV_PREFIX}CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_port_override(config)
    config = _apply_env_overrides(config)

    return Settings(**config)
