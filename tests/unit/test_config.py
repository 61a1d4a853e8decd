"""Tests for configuration loading and store selection."""

import pytest

import postpay.persistence as persistence
from postpay.config import load_config
from postpay.persistence import (
    InMemoryPipelineStore,
    JSONFileStore,
    PostgresPipelineStore,
    SQLitePipelineStore,
    create_store,
    get_store,
)


@pytest.fixture(autouse=True)
def _reset_store(monkeypatch):
    monkeypatch.setattr(persistence, "_store_instance", None)


def test_defaults_without_config_file():
    config = load_config()

    assert config.store_url is None
    assert config.retry.max_attempts == 3
    assert config.retry.base_delay_ms == 1000
    assert config.services.community_webhook_url is None
    assert config.log_level == "INFO"


def test_load_config_from_yaml(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
store_url: sqlite:///tmp/pipelines.db
retry:
  max_attempts: 5
  base_delay_ms: 250
services:
  community_webhook_url: https://hooks.example.com/invite
  crm_endpoint: https://crm.example.com/members
log_level: debug
"""
    )
    monkeypatch.setenv("POSTPAY_CONFIG", str(config_path))

    config = load_config()
    assert config.store_url == "sqlite:///tmp/pipelines.db"
    assert config.retry.max_attempts == 5
    assert config.retry.base_delay_ms == 250
    assert config.services.community_webhook_url == "https://hooks.example.com/invite"
    assert config.services.crm_endpoint == "https://crm.example.com/members"
    assert config.log_level == "DEBUG"


def test_environment_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("retry:\n  max_attempts: 5\n")
    monkeypatch.setenv("PIPELINE_RETRY_COUNT", "2")
    monkeypatch.setenv("PIPELINE_RETRY_BASE_MS", "50")
    monkeypatch.setenv("SKOOL_WEBHOOK_URL", "https://hooks.example.com/skool")
    monkeypatch.setenv("CRM_API_KEY", "secret")
    monkeypatch.setenv("POSTPAY_HTTP_TIMEOUT", "2.5")
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/postpay")

    config = load_config(str(config_path))
    assert config.retry.max_attempts == 2
    assert config.retry.base_delay_ms == 50
    assert config.services.community_webhook_url == "https://hooks.example.com/skool"
    assert config.services.crm_api_key == "secret"
    assert config.services.timeout == 2.5
    assert config.store_url == "postgresql://db/postpay"


def test_store_url_precedence(monkeypatch):
    monkeypatch.setenv("PIPELINE_STORE_PATH", "data/pipelines.json")
    assert load_config().store_url == "data/pipelines.json"

    monkeypatch.setenv("POSTPAY_STORE_URL", "memory://")
    assert load_config().store_url == "memory://"


@pytest.mark.parametrize(
    "url, expected",
    [
        (None, InMemoryPipelineStore),
        ("memory://", InMemoryPipelineStore),
        ("postgres://db/postpay", PostgresPipelineStore),
        ("postgresql://db/postpay", PostgresPipelineStore),
    ],
)
def test_create_store_selects_backend(url, expected):
    assert isinstance(create_store(url), expected)


def test_create_store_file_backends(tmp_path):
    json_store = create_store(f"file://{tmp_path / 'a.json'}")
    assert isinstance(json_store, JSONFileStore)
    assert json_store.path == tmp_path / "a.json"

    bare = create_store(str(tmp_path / "b.json"))
    assert isinstance(bare, JSONFileStore)

    sqlite_store = create_store(f"sqlite://{tmp_path / 'c.db'}")
    assert isinstance(sqlite_store, SQLitePipelineStore)
    sqlite_store.close()


@pytest.mark.parametrize("url", ["redis://localhost", "pipelines.txt"])
def test_create_store_rejects_unknown_backend(url):
    with pytest.raises(ValueError, match="Unsupported store backend"):
        create_store(url)


def test_get_store_uses_config_and_caches(tmp_path, monkeypatch):
    monkeypatch.setenv("POSTPAY_STORE_URL", f"file://{tmp_path / 'pipelines.json'}")

    store = get_store()
    assert isinstance(store, JSONFileStore)
    assert get_store() is store

    explicit = get_store("memory://")
    assert isinstance(explicit, InMemoryPipelineStore)
    assert get_store() is explicit
