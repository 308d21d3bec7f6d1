"""
MasjidConnect portal client.

Performs one authenticated request per resource kind and returns a uniform
FetchResult. Transport and HTTP errors are reported in the result, never
raised.

Endpoints:
- GET  /api/screen/content
- GET  /api/screen/prayer-status
- GET  /api/screen/prayer-times?startDate=YYYY-MM-DD&endDate=YYYY-MM-DD
- GET  /api/screen/events?count=N
- GET  /api/screen/sync           (change stamps, used to skip unchanged content)
- POST /api/screen/heartbeat
"""

import threading
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Optional

import requests

from masjid_display import __version__
from masjid_display.common.credentials import DeviceCredentials
from masjid_display.common.logger import setup_logger
from masjid_display.sync.resources import ResourceKind

logger = setup_logger(__name__)

CONTENT_ENDPOINT = "/api/screen/content"
PRAYER_STATUS_ENDPOINT = "/api/screen/prayer-status"
PRAYER_TIMES_ENDPOINT = "/api/screen/prayer-times"
EVENTS_ENDPOINT = "/api/screen/events"
SYNC_STATUS_ENDPOINT = "/api/screen/sync"
HEARTBEAT_ENDPOINT = "/api/screen/heartbeat"

# Request timeout in seconds
REQUEST_TIMEOUT = 10

DEFAULT_EVENTS_COUNT = 10
DEFAULT_PRAYER_TIMES_DAYS = 7


@dataclass
class FetchResult:
    """Outcome of a single remote call."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    unchanged: bool = False
    # Content change stamp this payload was downloaded under
    change_stamp: Optional[str] = None

    @classmethod
    def ok(cls, data: Any, status_code: Optional[int] = 200) -> "FetchResult":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def failed(cls, error: str, status_code: Optional[int] = None) -> "FetchResult":
        return cls(success=False, error=error, status_code=status_code)


class RemoteResourceClient:
    """Client for the screen endpoints of the portal API."""

    def __init__(
        self,
        base_url: str,
        credentials: DeviceCredentials,
        timeout: float = REQUEST_TIMEOUT,
        events_count: int = DEFAULT_EVENTS_COUNT,
        prayer_times_days: int = DEFAULT_PRAYER_TIMES_DAYS,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Portal base URL (trailing slash is stripped)
            credentials: Paired screen credentials (API key, screen ID)
            timeout: Per-request timeout in seconds
            events_count: Number of upcoming events to request
            prayer_times_days: Days of prayer times to request from today
            session: Optional requests session (tests inject a mock)
        """
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.events_count = events_count
        self.prayer_times_days = prayer_times_days
        self._session = session or requests.Session()

        # Last seen change stamp for content, from /api/screen/sync
        self._stamp_lock = threading.Lock()
        self._content_stamp: Optional[str] = None

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.credentials.api_key:
            headers["Authorization"] = f"Bearer {self.credentials.api_key}"
        if self.credentials.screen_id:
            headers["X-Screen-ID"] = self.credentials.screen_id
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> FetchResult:
        """Perform one request and unwrap the {success, data, error} envelope."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.Timeout:
            return FetchResult.failed(f"Timeout calling {endpoint}")
        except requests.RequestException as e:
            return FetchResult.failed(f"Request to {endpoint} failed: {e}")

        status = response.status_code
        if status == 401:
            return FetchResult.failed("Unauthorized - screen credentials rejected", status)
        if status == 429:
            return FetchResult.failed("Rate limited by server", status)
        if status < 200 or status >= 300:
            return FetchResult.failed(f"HTTP {status} from {endpoint}", status)

        try:
            body = response.json()
        except ValueError:
            return FetchResult.failed(f"Invalid JSON from {endpoint}", status)

        if isinstance(body, dict) and "success" in body:
            if not body.get("success"):
                return FetchResult.failed(body.get("error") or f"{endpoint} reported failure", status)
            return FetchResult.ok(body.get("data"), status)

        return FetchResult.ok(body, status)

    def fetch(self, kind: ResourceKind, force_refresh: bool = False) -> FetchResult:
        """
        Fetch the current payload for a pull resource.

        Args:
            kind: Resource to fetch (HEARTBEAT is not fetchable)
            force_refresh: Skip change detection and always download

        Returns:
            FetchResult with the payload in `data`
        """
        if kind is ResourceKind.CONTENT:
            return self._fetch_content(force_refresh)
        if kind is ResourceKind.PRAYER_STATUS:
            return self._request("GET", PRAYER_STATUS_ENDPOINT)
        if kind is ResourceKind.PRAYER_TIMES:
            start = date.today()
            end = start + timedelta(days=self.prayer_times_days)
            return self._request("GET", PRAYER_TIMES_ENDPOINT, params={
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
            })
        if kind is ResourceKind.EVENTS:
            return self._request("GET", EVENTS_ENDPOINT, params={"count": self.events_count})
        if kind is ResourceKind.SCHEDULE:
            return self._fetch_schedule()
        raise ValueError(f"{kind.value} is not a fetchable resource")

    def _fetch_content(self, force_refresh: bool) -> FetchResult:
        stamp = None
        if force_refresh:
            with self._stamp_lock:
                self._content_stamp = None
        else:
            stamp = self._content_change_stamp()
            if stamp is not None:
                with self._stamp_lock:
                    unchanged = stamp == self._content_stamp
                if unchanged:
                    logger.debug("Content unchanged since %s", stamp)
                    return FetchResult(success=True, unchanged=True, status_code=200)

        result = self._request("GET", CONTENT_ENDPOINT)
        if result.success:
            result.change_stamp = stamp
        return result

    def confirm_saved(self, kind: ResourceKind, result: FetchResult) -> None:
        """
        Remember the change stamp of a payload that is now in the cache.

        Content keeps downloading until its stamp is confirmed here.
        """
        if kind is not ResourceKind.CONTENT or result.change_stamp is None:
            return
        with self._stamp_lock:
            self._content_stamp = result.change_stamp

    def _content_change_stamp(self) -> Optional[str]:
        """
        Ask the sync endpoint when content last changed.

        Returns None when the stamp is unavailable, which callers treat as
        "changed".
        """
        result = self._request("GET", SYNC_STATUS_ENDPOINT)
        if not result.success or not isinstance(result.data, dict):
            logger.debug("Sync status unavailable, assuming content changed")
            return None
        return result.data.get("contentUpdated")

    def _fetch_schedule(self) -> FetchResult:
        """Schedule is published as part of the screen content."""
        result = self._request("GET", CONTENT_ENDPOINT)
        if not result.success:
            return result
        if not isinstance(result.data, dict) or result.data.get("schedule") is None:
            return FetchResult.failed("Content response has no schedule", result.status_code)
        return FetchResult.ok(result.data["schedule"], result.status_code)

    def submit_heartbeat(self, status: str, metrics: Dict[str, Any]) -> FetchResult:
        """
        Report screen status. The response may carry pending remote commands.

        Args:
            status: Screen status string (e.g. "ONLINE")
            metrics: Uptime, memory and last error figures
        """
        body = {
            "status": status,
            "appVersion": __version__,
            "currentView": "display",
            "metrics": metrics,
        }
        return self._request("POST", HEARTBEAT_ENDPOINT, json_body=body)

    def close(self) -> None:
        self._session.close()
