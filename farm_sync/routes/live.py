"""Live device view API routes."""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from farm_sync.dependencies import get_session
from farm_sync.models import DeviceView, Reading
from farm_sync.sync import FarmSyncSession

router = APIRouter(prefix="/api/live", tags=["live"])


@router.get("", response_model=List[DeviceView])
async def get_live_snapshot(
    range_label: Optional[str] = Query(None, alias="range"),
    session: FarmSyncSession = Depends(get_session),
):
    """Derived view of every known device."""
    return session.all_device_views(range_label)


@router.get("/{device_id}", response_model=DeviceView)
async def get_device_view(
    device_id: str,
    range_label: Optional[str] = Query(None, alias="range"),
    session: FarmSyncSession = Depends(get_session),
):
    """Latest reading, status, trend and statistics for one device.

    Args:
        device_id: Device identifier
        range_label: Cached range (defaults to the store's default range)
    """
    return session.device_view(device_id, range_label)


@router.get("/{device_id}/history", response_model=List[Reading])
async def get_device_history(
    device_id: str,
    range_label: Optional[str] = Query(None, alias="range"),
    session: FarmSyncSession = Depends(get_session),
):
    """Cached series for a device in insertion order."""
    return session.store.get_historical_data(device_id, range_label)


@router.post("/{device_id}/history/refresh", response_model=List[Reading])
async def refresh_device_history(
    device_id: str,
    range_label: Optional[str] = Query(None, alias="range"),
    limit: Optional[int] = Query(None, ge=1),
    session: FarmSyncSession = Depends(get_session),
):
    """Pull a device's history from the API and return the cached series."""
    await session.refresh_history(device_id, range_label, limit=limit)
    return session.store.get_historical_data(device_id, range_label)
