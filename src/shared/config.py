"""Configuration management for the Airtable MCP Server.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AirtableSettings(BaseSettings):
    """Airtable API connection configuration."""
    api_key: Optional[str] = Field(default=None, description="Personal access token")
    api_base: str = Field(default="https://api.airtable.com/v0", description="API base URL")
    timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="AIRTABLE_",
        env_file=".env",
        extra="ignore"
    )

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)


class MCPServerSettings(BaseSettings):
    """HTTP/SSE transport configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(
        default=3001,
        validation_alias=AliasChoices("PORT", "MCP_SERVER_PORT"),
    )

    # Streaming
    heartbeat_interval: float = Field(default=30.0, gt=0, description="Seconds between SSE pings")
    message_path: str = Field(default="/messages")

    # Seconds to wait for open connections on SIGINT/SIGTERM
    shutdown_timeout: int = Field(default=10, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="MCP_SERVER_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Identity advertised to MCP clients
    server_name: str = Field(default="airtable-mcp-server")
    server_version: str = Field(default="0.3.1")

    # Component settings
    airtable: AirtableSettings = Field(default_factory=AirtableSettings)
    mcp_server: MCPServerSettings = Field(default_factory=MCPServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="MCP_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a YAML file.

        Nested sections are built as their own settings classes so that
        values missing from the file still fall back to the environment.
        """
        data = load_yaml_config(path)
        if not data:
            return cls()

        for key, section_cls in (("airtable", AirtableSettings), ("mcp_server", MCPServerSettings)):
            if isinstance(data.get(key), dict):
                data[key] = section_cls(**data[key])

        return cls(**data)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("MCP_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
