"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from convoflow.utils.paths import get_config_dir, get_data_dir


class ExecutorConfig(BaseModel):
    # What check_availability does when no calendar capability is registered
    availability_policy: Literal["fail_open", "fail_closed"] = "fail_open"
    await_input_on_missing: bool = True
    lease_ttl_seconds: float = 60.0


class HttpServiceConfig(BaseModel):
    """Companion integration service reached over HTTP."""
    base_url: str = ""
    api_key: str = ""
    actions: list[str] = Field(default_factory=lambda: [
        "check_availability",
        "schedule_meeting",
        "cancel_meeting",
        "update_meeting",
        "send_email",
    ])


class SlackConfig(BaseModel):
    webhook_url: str = ""
    channel: str = ""


class CapabilitiesConfig(BaseModel):
    timeout_seconds: float = 10.0
    http: HttpServiceConfig = Field(default_factory=HttpServiceConfig)
    slack: SlackConfig = Field(default_factory=SlackConfig)


class NotificationsConfig(BaseModel):
    default_organizer: str = ""
    chat_enabled: bool = True
    email_enabled: bool = True


class StorageConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "sqlite"
    db_path: str = ""


class ServerConfig(BaseModel):
    bind: str = "127.0.0.1"
    port: int = 8430


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CONVOFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    capabilities: CapabilitiesConfig = Field(default_factory=CapabilitiesConfig)
    notifications: NotificationsConfig = Field(default_factory=NotificationsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    data_dir: str = ""
    log_level: str = "INFO"
    log_json: bool = False

    def get_data_dir(self) -> Path:
        if self.data_dir:
            return Path(self.data_dir)
        return get_data_dir()

    def get_db_path(self) -> Path:
        if self.storage.db_path:
            return Path(self.storage.db_path)
        return self.get_data_dir() / "workflows.db"


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    if config_path is None:
        config_path = os.environ.get("CONVOFLOW_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    # Init kwargs outrank env vars in pydantic-settings, so YAML keys win
    return Settings(**yaml_data)
