"""
Configuration management for the execution client.
"""

from pathlib import Path
from typing import Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_PATH = Path.home() / ".taskpilot" / "config.yaml"


class ClientSettings(BaseSettings):
    """Client settings with environment variable support (prefix TASKPILOT_)."""

    # Server
    base_url: str = Field(default="http://localhost:3000/api", description="Agent API base URL")
    request_timeout: float = Field(default=30.0, description="Timeout for request/response calls (s)")
    connect_timeout: float = Field(default=10.0, description="Connect timeout for all calls (s)")

    # Stream handling
    max_malformed_frames: Optional[int] = Field(
        default=None,
        description="Malformed frames tolerated per stream before it fails (None = unlimited)",
    )

    # Debug settings
    debug: bool = Field(default=False, description="Enable debug output")
    log_level: str = Field(default="WARNING", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="TASKPILOT_",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def load_from_file(cls, config_path: Path) -> "ClientSettings":
        """Load settings from a YAML configuration file."""
        if not config_path.exists():
            return cls()

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save_to_file(self, config_path: Path) -> None:
        """Save settings to a YAML configuration file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False, indent=2)


def load_settings(config_path: Optional[Path] = None) -> ClientSettings:
    """Settings from the given YAML file, else the default file, else env/defaults."""
    return ClientSettings.load_from_file(config_path or DEFAULT_CONFIG_PATH)
