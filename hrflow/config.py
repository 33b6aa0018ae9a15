from __future__ import annotations

import os
from typing import Optional, Literal

import yaml
from pydantic import BaseModel

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///hrflow.db"


class QueueConfig(BaseModel):
    """Settings for the delayed-resume queue processor."""

    poll_interval: float = 60.0
    batch_size: int = 50
    max_attempts: int = 3


class NotificationConfig(BaseModel):
    """Where action nodes send their side effects."""

    backend: Literal["logging", "webhook"] = "logging"
    webhook_url: Optional[str] = None
    timeout: float = 10.0


class HrflowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: str = DEFAULT_DATABASE_URL
    queue: QueueConfig = QueueConfig()
    notifications: NotificationConfig = NotificationConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> HrflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to HRFLOW_CONFIG env
            variable or 'hrflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("HRFLOW_CONFIG", "hrflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = HrflowConfig(**data)
    else:
        config = HrflowConfig()

    env_db_url = os.getenv("HRFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
