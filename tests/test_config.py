"""Tests for the YAML configuration loader."""
import pytest
import yaml

from farm_sync.config import ConfigLoader
from farm_sync.thresholds import ThresholdTable


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump({
        "websocket": {"url": "wss://farm.example/ws", "reconnect": {"max_delay": 60}},
        "api": {"base_url": "https://farm.example/api"},
        "store": {"history_capacity": 50},
        "thresholds": {"pH": {"max": 8.0}, "salinity": {"min": 1, "max": 2, "optimal": 1.5}},
        "auth": {"token": "file-token"},
    }))
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("FARM_SYNC_CONFIG", "FARM_SYNC_WS_URL", "FARM_SYNC_API_URL", "FARM_SYNC_TOKEN", "FRONTEND_ORIGINS"):
        monkeypatch.delenv(name, raising=False)


def test_file_values_merge_over_defaults(config_file):
    config = ConfigLoader(str(config_file))

    ws = config.get_websocket_config()
    assert ws["url"] == "wss://farm.example/ws"
    assert ws["base_delay"] == 1.0
    assert ws["max_delay"] == 60.0
    assert config.get_store_config() == {"history_capacity": 50, "default_range": "24h"}
    assert config.get_evaluation_config() == {"warning_deviation": 0.1, "trend_window": 10}


def test_dot_notation(config_file):
    config = ConfigLoader(str(config_file))
    assert config.get("api.base_url") == "https://farm.example/api"
    assert config.get("api.missing", "fallback") == "fallback"
    assert config.get("websocket.url.deeper") is None


def test_env_overrides(config_file, monkeypatch):
    monkeypatch.setenv("FARM_SYNC_WS_URL", "ws://override/ws")
    monkeypatch.setenv("FARM_SYNC_API_URL", "http://override/api")
    monkeypatch.setenv("FARM_SYNC_TOKEN", "env-token")
    monkeypatch.setenv("FRONTEND_ORIGINS", "http://a.test, http://b.test")

    config = ConfigLoader(str(config_file))
    assert config.get_websocket_config()["url"] == "ws://override/ws"
    assert config.get_api_config()["base_url"] == "http://override/api"
    assert config.get_token() == "env-token"
    assert config.get_frontend_origins() == ["http://a.test", "http://b.test"]


def test_token_from_file(config_file):
    assert ConfigLoader(str(config_file)).get_token() == "file-token"


def test_config_path_from_env(config_file, monkeypatch):
    monkeypatch.setenv("FARM_SYNC_CONFIG", str(config_file))
    config = ConfigLoader()
    assert config.config_path == config_file


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ConfigLoader(str(tmp_path / "nope.yaml"))


def test_in_memory_data_uses_defaults():
    config = ConfigLoader(data={"sync": {"poll_interval": 5}})
    assert config.config_path is None
    assert config.get_sync_config() == {"poll_interval": 5.0, "subscribe_known_devices": True}
    assert config.get_api_config()["base_url"] == "http://localhost:3000/api"
    assert config.get_token() is None


def test_threshold_overrides_ignore_unknown_types(config_file):
    table = ThresholdTable(ConfigLoader(str(config_file)).get_thresholds())
    assert table.get("pH").max == 8.0
    assert table.get("pH").min == 6.5
    assert table.get("salinity") is None
