"""Connection, subscription and threshold API routes."""
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from farm_sync.dependencies import get_session
from farm_sync.models import ConnectionResponse, Threshold, ThresholdUpdate, TopicKind
from farm_sync.sync import FarmSyncSession

router = APIRouter(prefix="/api", tags=["control"])


def _connection_response(session: FarmSyncSession) -> ConnectionResponse:
    return ConnectionResponse(
        state=session.connection.state,
        realtime_connected=session.store.realtime_connected,
        epoch=session.connection.epoch,
        last_error=session.last_error,
        subscriptions=session.registry.replay_all(),
    )


@router.get("/connection", response_model=ConnectionResponse)
async def get_connection(session: FarmSyncSession = Depends(get_session)):
    """Push channel state, last error and desired subscriptions."""
    return _connection_response(session)


@router.post("/connection/reconnect", response_model=ConnectionResponse)
async def reconnect(session: FarmSyncSession = Depends(get_session)):
    """Retry the push channel now."""
    await session.connection.connect()
    return _connection_response(session)


@router.post("/subscriptions/{kind}/{topic_id}", response_model=ConnectionResponse)
async def subscribe(kind: TopicKind, topic_id: str, session: FarmSyncSession = Depends(get_session)):
    """Add a device or farm subscription."""
    if kind == TopicKind.DEVICE:
        await session.connection.subscribe_device(topic_id)
    else:
        await session.connection.subscribe_farm(topic_id)
    return _connection_response(session)


@router.delete("/subscriptions/{kind}/{topic_id}", response_model=ConnectionResponse)
async def unsubscribe(kind: TopicKind, topic_id: str, session: FarmSyncSession = Depends(get_session)):
    """Remove a device or farm subscription."""
    if kind == TopicKind.DEVICE:
        await session.connection.unsubscribe_device(topic_id)
    else:
        await session.connection.unsubscribe_farm(topic_id)
    return _connection_response(session)


@router.get("/thresholds", response_model=Dict[str, Threshold])
async def get_thresholds(session: FarmSyncSession = Depends(get_session)):
    """Current bounds per sensor type."""
    return session.thresholds.as_dict()


@router.put("/thresholds/{sensor_type}", response_model=Threshold)
async def update_threshold(
    sensor_type: str,
    update: ThresholdUpdate,
    session: FarmSyncSession = Depends(get_session),
):
    """Merge partial bounds into a known sensor type's threshold."""
    if session.thresholds.get(sensor_type) is None:
        raise HTTPException(status_code=404, detail=f"Unknown sensor type '{sensor_type}'")
    if not session.store.update_threshold(sensor_type, update.model_dump(exclude_none=True)):
        raise HTTPException(status_code=422, detail="Invalid threshold values")
    return session.thresholds.get(sensor_type)
