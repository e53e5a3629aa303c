"""Shared dependencies for FastAPI routes."""
import logging
from typing import Optional

from fastapi import HTTPException

from farm_sync.config import ConfigLoader
from farm_sync.sync import FarmSyncSession

logger = logging.getLogger(__name__)

# Global instances (set by the application lifespan)
_session: Optional[FarmSyncSession] = None
_config_loader: Optional[ConfigLoader] = None


def set_session(session: Optional[FarmSyncSession]) -> None:
    """Install (or clear) the session served by the API."""
    global _session
    _session = session


def get_session() -> FarmSyncSession:
    """Get the running sync session."""
    if _session is None:
        raise HTTPException(status_code=503, detail="Sync session not started")
    return _session


def get_config_loader() -> ConfigLoader:
    """Get or create config loader instance."""
    global _config_loader
    if _config_loader is None:
        try:
            _config_loader = ConfigLoader()
        except FileNotFoundError as e:
            logger.warning(f"⚠️  {e}, using built-in defaults")
            _config_loader = ConfigLoader(data={})
    return _config_loader
