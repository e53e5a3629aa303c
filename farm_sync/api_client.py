"""REST client for bulk pulls of readings, alerts and devices."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from farm_sync.errors import ApiError
from farm_sync.models import Alert, Reading

logger = logging.getLogger(__name__)


def _unwrap(body: Any) -> Any:
    """Accept both bare bodies and {"data": ...} envelopes."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _as_list(body: Any) -> List[Any]:
    body = _unwrap(body)
    if body is None:
        return []
    if isinstance(body, list):
        return body
    return [body]


def _date_param(value: Optional[Union[datetime, str]]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class FarmApiClient:
    """Client for the farm REST API (read side used by the sync engine)."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize API client.

        Args:
            base_url: API base URL (e.g., "http://localhost:3000/api")
            token: Optional bearer token
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            logger.debug(f"GET {self.base_url}{path} {params}")
            response = await self.client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise ApiError(f"Timeout requesting {path}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 401:
                logger.error("Unauthorized - auth token missing or expired")
            elif status == 404:
                logger.error(f"Resource not found: {path}")
            raise ApiError(f"HTTP {status} requesting {path}", status_code=status) from e
        except httpx.HTTPError as e:
            raise ApiError(f"Network error requesting {path}: {e}") from e
        except ValueError as e:
            raise ApiError(f"Invalid JSON from {path}: {e}") from e

    def _readings(self, items: List[Any], device_id: Optional[str] = None) -> List[Reading]:
        readings = []
        for item in items:
            if device_id is not None and isinstance(item, dict):
                if not any(k in item for k in ("deviceId", "device_id", "device")):
                    item = {**item, "deviceId": device_id}
            try:
                readings.append(Reading.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid reading from API: {e}")
        return readings

    async def get_latest_readings(self, device_id: Optional[str] = None) -> List[Reading]:
        """Fetch latest readings for one device or for all devices."""
        if device_id is not None:
            body = await self._get(f"/sensor-data/{device_id}/latest")
        else:
            body = await self._get("/sensor-data/latest")
        return self._readings(_as_list(body), device_id)

    async def get_historical_data(
        self,
        device_id: str,
        range: str = "24h",
        start_date: Optional[Union[datetime, str]] = None,
        end_date: Optional[Union[datetime, str]] = None,
        limit: Optional[int] = None,
    ) -> List[Reading]:
        """Fetch a device's historical readings for a range."""
        body = await self._get(
            f"/sensor-data/{device_id}/history",
            params={
                "range": range,
                "startDate": _date_param(start_date),
                "endDate": _date_param(end_date),
                "limit": limit,
            },
        )
        return self._readings(_as_list(body), device_id)

    async def get_alerts(self, resolved: Optional[bool] = None) -> List[Alert]:
        """Fetch alerts, optionally filtered by resolved state."""
        params = {"resolved": str(resolved).lower()} if resolved is not None else None
        body = await self._get("/alerts", params=params)
        alerts = []
        for item in _as_list(body):
            try:
                alerts.append(Alert.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid alert from API: {e}")
        return alerts

    async def get_devices(self, farm_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fetch the device listing, optionally for one farm."""
        body = await self._get("/devices", params={"farmId": farm_id})
        return [d for d in _as_list(body) if isinstance(d, dict)]
