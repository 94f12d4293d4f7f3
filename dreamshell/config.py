"""
Configuration management for the dreamshell server.

Precedence: env vars > .env file > config.yaml > defaults

Config file: ~/.dreamshell/config.yaml (or $DREAMSHELL_HOME/config.yaml)
Signing secret: JWT_SECRET, normally written to .env by `dreamshell create-env`
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Known config keys that can be set via `dreamshell config set`
CONFIG_KEYS = {
    "port", "host", "image", "log_level", "cors_origins",
    "sessions_dir", "logs_dir", "runtime_timeout", "docker_binary",
}

DEFAULT_HOME = Path("~/.dreamshell")


def _resolve_home() -> Path:
    """Resolve the dreamshell home directory before Settings init."""
    raw = os.environ.get("DREAMSHELL_HOME", "")
    if raw:
        return Path(raw).expanduser().resolve()
    return DEFAULT_HOME.expanduser().resolve()


def get_config_path(home: Path) -> Path:
    """Get the config.yaml path for a home directory."""
    return home / "config.yaml"


def _load_yaml_config(home: Path) -> dict[str, Any]:
    """Load config.yaml from the home directory."""
    config_file = get_config_path(home)
    if not config_file.exists():
        return {}
    try:
        with open(config_file) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(f"config.yaml is not a dict, ignoring: {config_file}")
            return {}
        return data
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config.yaml: {e}")
        return {}


def save_yaml_config(home: Path, data: dict[str, Any]) -> Path:
    """Write config values to config.yaml."""
    config_file = get_config_path(home)
    config_file.parent.mkdir(parents=True, exist_ok=True)
    with open(config_file, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    return config_file


class Settings(BaseSettings):
    """Server configuration. Precedence: env vars > .env > config.yaml > defaults."""

    dreamshell_home: Path = Field(
        default=DEFAULT_HOME,
        description="Root directory for session transcripts, logs and config.yaml",
    )
    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=3000, description="Server port")

    # Security
    jwt_secret: Optional[str] = Field(
        default=None,
        description="HMAC secret used to verify bearer tokens (JWT_SECRET)",
    )
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins, or * for all",
    )

    # Storage
    sessions_dir: Optional[Path] = Field(
        default=None,
        description="Directory holding <uuid>_stdio.xml transcripts (defaults to home/sessions)",
    )
    logs_dir: Optional[Path] = Field(
        default=None,
        description="Directory holding error.log (defaults to home/logs)",
    )

    # Container runtime
    image: str = Field(
        default="dreamshell-nixos:latest",
        description="Image every session container is started from",
    )
    docker_binary: str = Field(default="docker", description="Container runtime CLI")
    runtime_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Seconds before a single runtime command is killed",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    model_config = {
        "env_prefix": "",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="before")
    @classmethod
    def _inject_yaml_config(cls, data: Any) -> Any:
        """Inject config.yaml values as fallbacks below env vars and .env."""
        if not isinstance(data, dict):
            data = {}

        home = Path(data["dreamshell_home"]).expanduser() if data.get("dreamshell_home") else _resolve_home()
        yaml_config = _load_yaml_config(home)

        for key, value in yaml_config.items():
            if key not in data or data[key] is None:
                env_val = os.environ.get(key.upper()) or os.environ.get(key)
                if env_val is None:
                    data[key] = value

        return data

    @property
    def home(self) -> Path:
        """Expanded home directory."""
        return self.dreamshell_home.expanduser()

    @property
    def sessions_path(self) -> Path:
        """Directory for session transcripts, defaulting to home/sessions."""
        if self.sessions_dir:
            return self.sessions_dir.expanduser()
        return self.home / "sessions"

    @property
    def logs_path(self) -> Path:
        """Directory for the error log, defaulting to home/logs."""
        if self.logs_dir:
            return self.logs_dir.expanduser()
        return self.home / "logs"

    @property
    def error_log_path(self) -> Path:
        return self.logs_path / "error.log"

    @property
    def cors_origins_list(self) -> list[str] | None:
        """Parse CORS origins into a list, or None for wildcard."""
        if self.cors_origins == "*":
            return None
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def stdio_url(self, session_id: str) -> str:
        """Websocket URL a client would use to follow a session transcript."""
        return f"ws://localhost:{self.port}/ws?uuid={session_id}"


# Global settings instance (created lazily so tests can set env first)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
