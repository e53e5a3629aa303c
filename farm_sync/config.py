"""Configuration loader for YAML config file."""
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "websocket": {
        "url": "ws://localhost:3000/ws",
        "open_timeout": 10.0,
        "reconnect": {"base_delay": 1.0, "max_delay": 30.0},
    },
    "api": {
        "base_url": "http://localhost:3000/api",
        "timeout": 10.0,
    },
    "store": {
        "history_capacity": 100,
        "default_range": "24h",
    },
    "evaluation": {
        "warning_deviation": 0.1,
        "trend_window": 10,
    },
    "sync": {
        "poll_interval": 60.0,
        "subscribe_known_devices": True,
    },
    "thresholds": {},
    "server": {
        "frontend_origins": [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigLoader:
    """Loads and parses YAML configuration file.

    Values missing from the file fall back to DEFAULT_CONFIG. Environment
    variables override the push channel URL, API URL, auth token and
    frontend origins.
    """

    def __init__(self, config_path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """Initialize config loader.

        Args:
            config_path: Path to config.yaml. If None, searches in common locations.
            data: Configuration mapping used instead of a file (no search).
        """
        self.config_path: Optional[Path] = None
        self._config: Dict[str, Any] = {}

        if data is not None:
            self._config = _merge(DEFAULT_CONFIG, data)
            return

        if config_path is None:
            # Try common locations
            env_path = os.getenv("FARM_SYNC_CONFIG")
            possible_paths = [
                Path(env_path) if env_path else None,
                Path.cwd() / "config.yaml",
                Path(__file__).parent.parent / "config.yaml",
            ]
            for path in possible_paths:
                if path is not None and path.exists():
                    config_path = str(path)
                    break

        if config_path is None or not Path(config_path).exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        self.config_path = Path(config_path)
        self.load()

    def load(self) -> None:
        """Load configuration from YAML file."""
        with open(self.config_path, 'r') as f:
            loaded = yaml.safe_load(f) or {}
        self._config = _merge(DEFAULT_CONFIG, loaded)
        logger.info(f"Loaded config from {self.config_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'websocket.url')."""
        keys = key.split('.')
        value = self._config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def get_websocket_config(self) -> Dict[str, Any]:
        """Get push channel configuration."""
        ws_config = dict(self._config.get('websocket', {}))
        url = os.getenv("FARM_SYNC_WS_URL")
        if url:
            ws_config['url'] = url
        reconnect = ws_config.get('reconnect') or {}
        return {
            'url': ws_config.get('url', DEFAULT_CONFIG['websocket']['url']),
            'open_timeout': float(ws_config.get('open_timeout', 10.0)),
            'base_delay': float(reconnect.get('base_delay', 1.0)),
            'max_delay': float(reconnect.get('max_delay', 30.0)),
        }

    def get_api_config(self) -> Dict[str, Any]:
        """Get bulk-pull API configuration."""
        api_config = dict(self._config.get('api', {}))
        url = os.getenv("FARM_SYNC_API_URL")
        if url:
            api_config['base_url'] = url
        return {
            'base_url': api_config.get('base_url', DEFAULT_CONFIG['api']['base_url']),
            'timeout': float(api_config.get('timeout', 10.0)),
        }

    def get_token(self) -> Optional[str]:
        """Get auth token for the push channel and API, if any."""
        return os.getenv("FARM_SYNC_TOKEN") or self.get('auth.token')

    def get_store_config(self) -> Dict[str, Any]:
        """Get time-series store configuration."""
        store = self._config.get('store', {})
        return {
            'history_capacity': int(store.get('history_capacity', 100)),
            'default_range': str(store.get('default_range', '24h')),
        }

    def get_evaluation_config(self) -> Dict[str, Any]:
        """Get status/trend policy constants."""
        evaluation = self._config.get('evaluation', {})
        return {
            'warning_deviation': float(evaluation.get('warning_deviation', 0.1)),
            'trend_window': int(evaluation.get('trend_window', 10)),
        }

    def get_sync_config(self) -> Dict[str, Any]:
        """Get session/polling configuration."""
        sync = self._config.get('sync', {})
        return {
            'poll_interval': float(sync.get('poll_interval', 60.0)),
            'subscribe_known_devices': bool(sync.get('subscribe_known_devices', True)),
        }

    def get_thresholds(self) -> Dict[str, Dict[str, Any]]:
        """Get threshold overrides keyed by sensor type."""
        return self._config.get('thresholds') or {}

    def get_frontend_origins(self) -> List[str]:
        """Get allowed CORS origins for the UI."""
        env_origins = os.environ.get("FRONTEND_ORIGINS")
        if env_origins:
            return [o.strip() for o in env_origins.split(",") if o.strip()]
        return list(self.get('server.frontend_origins', []))
