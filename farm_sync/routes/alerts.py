"""Alert API routes."""
from typing import Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from farm_sync.dependencies import get_session
from farm_sync.models import Alert
from farm_sync.sync import FarmSyncSession

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("", response_model=List[Alert])
async def get_alerts(
    resolved: Optional[bool] = Query(None),
    priority: Optional[Literal["low", "medium", "high"]] = Query(None),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    session: FarmSyncSession = Depends(get_session),
):
    """Alerts newest first, optionally filtered."""
    if priority is not None:
        alerts = session.alerts.by_priority(priority)
    elif resolved is True:
        alerts = session.alerts.resolved()
    elif resolved is False:
        alerts = session.alerts.unresolved()
    else:
        alerts = session.alerts.alerts

    if device_id is not None:
        alerts = [a for a in alerts if a.device_id == device_id]
    return alerts


@router.get("/counts")
async def get_alert_counts(session: FarmSyncSession = Depends(get_session)) -> Dict[str, int]:
    """Unresolved alert counts per priority."""
    return session.alerts.counts()


@router.post("/{alert_id}/resolve", response_model=Alert)
async def resolve_alert(alert_id: str, session: FarmSyncSession = Depends(get_session)):
    """Mark an alert resolved in the local view."""
    if not session.alerts.resolve_local(alert_id):
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
    return session.alerts.get(alert_id)


@router.delete("/resolved")
async def clear_resolved_alerts(session: FarmSyncSession = Depends(get_session)):
    """Drop resolved alerts from the local view."""
    session.alerts.clear_resolved()
    return {"remaining": len(session.alerts)}
