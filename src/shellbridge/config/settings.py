"""Configuration management for shellbridge.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files and the un-prefixed ``WS_PORT``/``PORT``/
``WS_URL`` variables older deployments set.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/shellbridge.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080, ge=1, le=65535)
    ws_path: str = Field(default="/ws", pattern=r"^/")
    send_queue_size: int = Field(
        default=4096, gt=0,
        description="Outbound envelopes buffered per channel before it is closed",
    )


class SSHConfig(BaseModel):
    connect_timeout: float = Field(default=15.0, gt=0)
    handshake_timeout: float = Field(default=10.0, gt=0)
    close_timeout: float = Field(default=5.0, gt=0)
    term_type: str = Field(default="xterm-256color")
    default_rows: int = Field(default=24, gt=0)
    default_cols: int = Field(default=80, gt=0)
    known_hosts: str | None = Field(
        default=None, description="known_hosts file; None disables host key checks"
    )
    keepalive_interval: float = Field(default=0.0, ge=0)


class ClientConfig(BaseModel):
    url: str = Field(default="ws://localhost:8080/ws")
    max_reconnect_attempts: int = Field(default=5, ge=0)
    reconnect_delay: float = Field(default=1.0, ge=0)
    open_timeout: float = Field(default=10.0, gt=0)
    auto_reconnect_on_send: bool = Field(default=False)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the shellbridge system.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "SHELLBRIDGE_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    ssh: SSHConfig = Field(default_factory=SSHConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # YAML values arrive as init kwargs; the environment wins over them.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply un-prefixed environment variables on top of the YAML data."""
    port = os.environ.get("WS_PORT") or os.environ.get("PORT", "")
    url = os.environ.get("WS_URL", "")

    if port:
        yaml_data.setdefault("server", {})["port"] = int(port)
    if url:
        yaml_data.setdefault("client", {})["url"] = url
