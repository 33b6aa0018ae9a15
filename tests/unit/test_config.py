"""Tests for configuration loading."""

import pytest

from hrflow.config import DEFAULT_DATABASE_URL, load_config
from hrflow.db import get_database
from hrflow.hooks import LoggingHooks, WebhookHooks, get_hooks


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "hrflow.yaml"
    config_path.write_text(
        """
queue:
  poll_interval: 5
  batch_size: 10
notifications:
  backend: webhook
  webhook_url: http://hooks.local/notify
"""
    )
    monkeypatch.setenv("HRFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("HRFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.queue.poll_interval == 5
    assert config.queue.batch_size == 10
    assert config.queue.max_attempts == 3
    assert config.database_url == DEFAULT_DATABASE_URL

    hooks = get_hooks(config)
    assert isinstance(hooks, WebhookHooks)
    assert hooks.url == "http://hooks.local/notify"


def test_database_url_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("HRFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    url = f"sqlite+aiosqlite:///{tmp_path / 'env.db'}"
    monkeypatch.setenv("HRFLOW_DATABASE_URL", url)

    config = load_config()
    assert config.database_url == url
    assert isinstance(get_hooks(config), LoggingHooks)
    assert get_database(config=config).database_url == url
    assert get_database() is get_database()


def test_unsupported_database_url():
    with pytest.raises(ValueError):
        get_database("mysql://localhost/hr")


def test_webhook_backend_requires_url(tmp_path, monkeypatch):
    config_path = tmp_path / "hrflow.yaml"
    config_path.write_text("notifications:\n  backend: webhook\n")
    with pytest.raises(ValueError):
        get_hooks(load_config(str(config_path)))
