"""
HTTP client for the external sync functions.

meta-ads-sync fetches one window of metrics and upserts it (idempotent per
project/date/breakdown). sync-demographics does the same for one breakdown
dimension. Both answer {success, data: {...}} or {success: false, error}.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from metricsync.core.config import settings
from metricsync.services.backfill.batching import DateRange
from metricsync.services.backfill.errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class SyncResponse:
    """Normalized answer from a sync function call"""

    success: bool
    records: int = 0
    error: Optional[str] = None
    error_code: Optional[int] = None
    status_code: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def _extract_error(data: Dict[str, Any]):
    """Return (message, code) from either a string or a Graph-style error object"""
    error = data.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        try:
            code = int(code) if code is not None else None
        except (TypeError, ValueError):
            code = None
        return error.get("message") or str(error), code
    if error:
        return str(error), data.get("error_code")
    return None, data.get("error_code")


def _extract_records(data: Dict[str, Any]) -> int:
    payload = data.get("data") or {}
    for value in (
        payload.get("daily_records_count") if isinstance(payload, dict) else None,
        data.get("records_count"),
        data.get("count"),
    ):
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                return 0
    return 0


class SyncFunctionsClient:
    """Thin httpx wrapper around the sync endpoints"""

    WINDOW_PATH = "meta-ads-sync"
    DEMOGRAPHICS_PATH = "sync-demographics"

    def __init__(
        self,
        base_url: Optional[str] = None,
        service_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = (base_url or settings.SYNC_FUNCTIONS_URL or "").rstrip("/")
        self.service_key = service_key or settings.SYNC_SERVICE_KEY
        if not self.base_url or not self.service_key:
            raise ConfigurationError("SYNC_FUNCTIONS_URL and SYNC_SERVICE_KEY must be configured")
        self.timeout = timeout or settings.SYNC_HTTP_TIMEOUT_SECONDS
        self._client = client

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def close(self):
        """Close the HTTP client"""
        if self._client:
            self._client.close()
            self._client = None

    def sync_window(
        self,
        project_id: str,
        ad_account_id: str,
        date_range: DateRange,
        period_key: Optional[str] = None,
    ) -> SyncResponse:
        """Fetch and upsert one window of daily metrics"""
        payload = {
            "project_id": project_id,
            "ad_account_id": ad_account_id,
            "time_range": date_range.as_params(),
            "period_key": period_key or f"history_{date_range.since}_{date_range.until}",
        }
        return self._post(self.WINDOW_PATH, payload)

    def sync_breakdown(
        self,
        project_id: str,
        ad_account_id: str,
        date_range: DateRange,
        breakdown: str,
    ) -> SyncResponse:
        """Fetch and upsert one demographic breakdown for a range"""
        payload = {
            "project_id": project_id,
            "ad_account_id": ad_account_id,
            "time_range": date_range.as_params(),
            "breakdowns": [breakdown],
        }
        return self._post(self.DEMOGRAPHICS_PATH, payload)

    def _post(self, path: str, payload: Dict[str, Any]) -> SyncResponse:
        url = f"{self.base_url}/{path}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.service_key}",
        }

        try:
            response = self.client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning(f"Timeout calling {path}: {e}")
            return SyncResponse(success=False, error=f"Request timeout: {e}")
        except httpx.HTTPError as e:
            logger.warning(f"Connection error calling {path}: {e}")
            return SyncResponse(success=False, error=f"Connection error: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        message, code = _extract_error(data)
        success = response.is_success and data.get("success") is True

        if not success and not message:
            message = f"Sync failed with status {response.status_code}"

        return SyncResponse(
            success=success,
            records=_extract_records(data) if success else 0,
            error=None if success else message,
            error_code=code,
            status_code=response.status_code,
            raw=data,
        )
